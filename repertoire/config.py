"""Runtime settings, read from the environment with sane defaults."""

import os

DATABASE_URL = os.environ.get(
    "DATABASE_URL",
    "postgresql://localhost:5432/repertoire?user=postgres&password=postgres",
)
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Repertoire limits
MAX_REPERTOIRES = int(os.environ.get("MAX_REPERTOIRES", "50"))
MAX_REPERTOIRE_NAME_LEN = int(os.environ.get("MAX_REPERTOIRE_NAME_LEN", "100"))
MAX_CATEGORIES = int(os.environ.get("MAX_CATEGORIES", "50"))

# Read-merge-retry attempts when a save loses the optimistic version check
EDIT_RETRIES = int(os.environ.get("EDIT_RETRIES", "3"))

# Upload limits
MAX_PGN_FILE_SIZE = int(os.environ.get("MAX_PGN_FILE_SIZE", str(10 * 1024 * 1024)))

# Lichess game import
LICHESS_API = os.environ.get("LICHESS_API", "https://lichess.org/api")
LICHESS_TOKEN = os.environ.get("LICHESS_TOKEN")
DEFAULT_LICHESS_GAMES = 20
MAX_LICHESS_GAMES = 100

# Game listing page size
DEFAULT_GAMES_LIMIT = 20
MAX_GAMES_LIMIT = 100
