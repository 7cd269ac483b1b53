#!/usr/bin/env python3
"""
Lichess game import

Fetches a user's recent games from the Lichess API as PGN and runs them through
the repertoire analysis.

Usage:
  python lichess_import.py --username alice --max 50 --perf-type blitz
  LICHESS_TOKEN=xxx python lichess_import.py --username alice
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parent))
import config
from db import get_connection
from errors import LichessError, LichessRateLimited, LichessUserNotFound, NotFound, PayloadTooLarge
from repertoire_service import import_games

logger = logging.getLogger(__name__)


def build_params(
    max_games: int | None = None,
    since: int | None = None,
    until: int | None = None,
    rated: bool | None = None,
    perf_type: str | None = None,
) -> dict:
    """Query parameters for /games/user; `max` is clamped to MAX_LICHESS_GAMES."""
    if not max_games or max_games <= 0:
        max_games = config.DEFAULT_LICHESS_GAMES
    params = {"max": str(min(max_games, config.MAX_LICHESS_GAMES))}
    if since:
        params["since"] = str(since)
    if until:
        params["until"] = str(until)
    if rated is not None:
        params["rated"] = "true" if rated else "false"
    if perf_type:
        params["perfType"] = perf_type
    return params


async def fetch_user_games(
    username: str,
    session: httpx.AsyncClient,
    token: str | None = None,
    **options,
) -> str:
    """Download a user's games as one PGN string."""
    if not username:
        raise ValueError("username is required")
    headers = {"Accept": "application/x-chess-pgn"}
    if token:
        headers["Authorization"] = f"Bearer {token}"

    try:
        resp = await session.get(
            f"{config.LICHESS_API}/games/user/{username}",
            params=build_params(**options),
            headers=headers,
        )
    except httpx.RequestError as e:
        raise LichessError(f"Lichess API unreachable: {e}") from e
    if resp.status_code == 404:
        raise LichessUserNotFound(f"Lichess user '{username}' not found")
    if resp.status_code == 429:
        raise LichessRateLimited("Lichess API rate limited, try again later")
    if resp.status_code != 200:
        raise LichessError(f"Lichess API error: {resp.status_code}")

    pgn = resp.text
    if not pgn.strip():
        raise NotFound(f"no games found for user '{username}' with given filters")
    if len(pgn.encode("utf-8")) > config.MAX_PGN_FILE_SIZE:
        raise PayloadTooLarge(f"Lichess export for '{username}' exceeds {config.MAX_PGN_FILE_SIZE} bytes")
    return pgn


async def main_async():
    parser = argparse.ArgumentParser()
    parser.add_argument("--username", required=True)
    parser.add_argument("--max", type=int, default=config.DEFAULT_LICHESS_GAMES)
    parser.add_argument("--since", type=int, default=None, help="Unix ms")
    parser.add_argument("--until", type=int, default=None, help="Unix ms")
    parser.add_argument("--perf-type", default=None, help="bullet, blitz, rapid, classical")
    args = parser.parse_args()

    async with httpx.AsyncClient(timeout=30.0) as session:
        pgn = await fetch_user_games(
            args.username,
            session,
            config.LICHESS_TOKEN,
            max_games=args.max,
            since=args.since,
            until=args.until,
            perf_type=args.perf_type,
        )

    with get_connection() as conn:
        summary, results = import_games(conn, args.username, f"lichess:{args.username}", pgn)
    matched = sum(1 for r in results if r.matched_repertoire)
    print(f"Imported {summary.game_count} games ({matched} matched a repertoire) as analysis {summary.id}.")


def main():
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
