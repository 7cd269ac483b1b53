"""Celery application for batch game analysis.

Each task analyzes a whole batch; games are independent of one another, so
batches can run on any number of workers. A batch is never cancelled mid-game.
"""

import logging

from celery import Celery
from celery.signals import after_setup_logger

import config

logger = logging.getLogger(__name__)

app = Celery("repertoire", broker=config.REDIS_URL, backend=config.REDIS_URL)
app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)


@after_setup_logger.connect
def _set_level(logger, *args, **kwargs):
    logger.setLevel(config.LOG_LEVEL)


@app.task(bind=True, max_retries=3)
def import_games_task(self, username: str, filename: str, pgn_text: str) -> dict:
    """Celery task: parse, analyze and store one PGN upload."""
    import psycopg
    from db import get_connection
    from repertoire_service import import_games

    try:
        with get_connection() as conn:
            summary, _ = import_games(conn, username, filename, pgn_text)
    except psycopg.OperationalError as exc:
        raise self.retry(exc=exc, countdown=5)
    logger.info("analysis %s stored with %d games", summary.id, summary.game_count)
    return summary.to_dict()


@app.task(bind=True, max_retries=3)
def rescore_analysis_task(self, analysis_id: str) -> int:
    """Celery task: re-match a stored analysis against the current repertoires."""
    import psycopg
    from db import get_connection
    from repertoire_service import rescore_analysis

    try:
        with get_connection() as conn:
            results = rescore_analysis(conn, analysis_id)
    except psycopg.OperationalError as exc:
        raise self.retry(exc=exc, countdown=5)
    return len(results)
