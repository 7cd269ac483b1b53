"""
PGN adapter: turns PGN text into Game objects the matcher understands.

Parsing and legality are left to python-chess; this module only splits
multi-game files, decides which side the user played and labels every ply.
"""

import hashlib
import io
import logging

import chess
import chess.pgn

from models import BLACK, WHITE, Color, Game, Ply
from rules import position_key

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {"Event": "Unknown", "White": "Unknown", "Black": "Unknown", "Result": "*"}
FINGERPRINT_MOVES = 10
TIME_CLASSES = ("bullet", "blitz", "rapid", "daily")
SOURCES = ("lichess", "chesscom", "pgn")


def split_pgn_games(pgn_text: str) -> list[str]:
    """
    Split a multi-game PGN into one string per game.

    A new game starts at a tag line that follows move text, so blank lines
    between headers and moves do not split a game in two.
    """
    games = []
    current: list[str] = []
    seen_moves = False
    for line in pgn_text.splitlines():
        stripped = line.strip()
        if stripped.startswith("[") and seen_moves:
            game = "\n".join(current).strip()
            if game:
                games.append(game)
            current = []
            seen_moves = False
        if stripped and not stripped.startswith("["):
            seen_moves = True
        current.append(line)
    game = "\n".join(current).strip()
    if game:
        games.append(game)
    return games


def read_games(pgn_text: str) -> list[chess.pgn.Game]:
    """Parse every game, skipping the ones with errors or without moves."""
    games = []
    for index, raw in enumerate(split_pgn_games(pgn_text)):
        game = chess.pgn.read_game(io.StringIO(raw))
        if game is None:
            continue
        if game.errors:
            logger.warning("skipping game %d: %s", index, game.errors[0])
            continue
        if game.next() is None:
            continue
        games.append(game)
    return games


def extract_headers(pgn_game: chess.pgn.Game) -> dict[str, str]:
    headers = dict(pgn_game.headers)
    for key, default in DEFAULT_HEADERS.items():
        if not headers.get(key) or headers[key] == "?":
            headers[key] = default
    return headers


def determine_user_color(headers: dict[str, str], username: str) -> Color | None:
    """Case-insensitive match of `username` against the White and Black tags."""
    name = username.strip().lower()
    if headers.get("White", "").lower() == name:
        return WHITE
    if headers.get("Black", "").lower() == name:
        return BLACK
    return None


def game_from_pgn(pgn_game: chess.pgn.Game, user_color: Color) -> Game:
    user_turn = chess.WHITE if user_color == WHITE else chess.BLACK
    board = pgn_game.board()
    plies = []
    for move in pgn_game.mainline_moves():
        plies.append(Ply(san=board.san(move), fen=position_key(board), is_user_move=board.turn == user_turn))
        board.push(move)
    return Game(headers=extract_headers(pgn_game), plies=plies, user_color=user_color)


def parse_pgn(pgn_text: str, username: str) -> list[Game]:
    """Games from `pgn_text` that `username` played, in file order."""
    games = []
    for pgn_game in read_games(pgn_text):
        headers = extract_headers(pgn_game)
        user_color = determine_user_color(headers, username)
        if user_color is None:
            continue
        games.append(game_from_pgn(pgn_game, user_color))
    return games


def compute_fingerprint(headers: dict[str, str], sans: list[str]) -> str:
    """
    Stable identity of a game for import deduplication.

    Lichess and Chess.com games use their URL; anything else hashes the key
    headers plus the opening moves.
    """
    site = headers.get("Site", "")
    if "lichess.org/" in site:
        return site
    link = headers.get("Link", "")
    if "chess.com/" in link:
        return link

    key = "|".join(headers.get(h, "") for h in ("White", "Black", "Date", "Result", "Event"))
    key += "|" + " ".join(sans[:FINGERPRINT_MOVES])
    return "sha256:" + hashlib.sha256(key.encode("utf-8")).hexdigest()


def classify_time_control(tc: str | None) -> str:
    """Map a TimeControl tag ("600+5", "1/86400", "-") to bullet/blitz/rapid/daily."""
    if not tc or tc == "-" or "/" in tc:
        return "daily"
    base, _, increment = tc.partition("+")
    try:
        base_seconds = int(base)
    except ValueError:
        return ""
    if base_seconds >= 86400:
        return "daily"
    try:
        inc_seconds = int(increment) if increment else 0
    except ValueError:
        inc_seconds = 0

    estimate = base_seconds + inc_seconds * 40
    if estimate < 180:
        return "bullet"
    if estimate < 600:
        return "blitz"
    if estimate < 1800:
        return "rapid"
    return "daily"


def game_source(filename: str, headers: dict[str, str]) -> str:
    """Where an imported game came from: lichess, chesscom or a plain pgn upload."""
    if filename.startswith("lichess:") or "lichess.org/" in headers.get("Site", ""):
        return "lichess"
    if "chess.com/" in headers.get("Link", "") or "chess.com" in headers.get("Site", "").lower():
        return "chesscom"
    return "pgn"
