#!/usr/bin/env python3
"""
Game analysis CLI

Checks the games of a PGN file against the stored repertoires and reports
where the user left preparation.

Usage:
  python analyze.py --pgn games/*.pgn --username alice
  python analyze.py --pgn games/*.pgn --username alice --parallel  # Celery, requires Redis
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))
import config
from db import get_connection
from errors import RepertoireError
from models import GameAnalysis
from repertoire_service import import_games


def describe(result: GameAnalysis) -> str:
    """One report line for an analyzed game."""
    white = result.headers.get("White", "?")
    black = result.headers.get("Black", "?")
    line = f"#{result.game_index:<3d} {white} - {black} ({result.user_color})"
    if result.matched_repertoire is None:
        return f"{line} | no repertoire"

    line += f" | {result.matched_repertoire.name}, {result.match_score} moves in book"
    if result.divergence_index is None:
        return f"{line}, never left the repertoire"
    move = result.moves[result.divergence_index]
    number = move.ply_number // 2 + 1
    played = f"{number}.{'' if move.ply_number % 2 == 0 else '..'}{move.san}"
    if move.expected_move:
        return f"{line}, left with {played} (expected {move.expected_move})"
    return f"{line}, new territory at {played}"


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--pgn", nargs="+", required=True, help="PGN file paths")
    parser.add_argument("--username", required=True)
    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Enqueue Celery tasks instead of running locally (requires Redis)",
    )
    args = parser.parse_args()
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")

    pgn_paths = [Path(p) for p in args.pgn]
    if args.parallel:
        from celery_app import import_games_task

        enqueued = 0
        for path in pgn_paths:
            if not path.exists():
                print(f"Warning: {path} not found", file=sys.stderr)
                continue
            import_games_task.delay(args.username, path.name, path.read_text(encoding="utf-8", errors="replace"))
            enqueued += 1
        print(f"Enqueued {enqueued} analysis tasks.")
        return

    for path in pgn_paths:
        if not path.exists():
            print(f"Warning: {path} not found", file=sys.stderr)
            continue
        if path.stat().st_size > config.MAX_PGN_FILE_SIZE:
            print(f"Warning: {path} exceeds {config.MAX_PGN_FILE_SIZE} bytes, skipped", file=sys.stderr)
            continue
        try:
            with get_connection() as conn:
                summary, results = import_games(
                    conn, args.username, path.name, path.read_text(encoding="utf-8", errors="replace")
                )
        except RepertoireError as e:
            print(f"{path}: {e}", file=sys.stderr)
            continue
        print(f"{path}: {summary.game_count} games, {summary.skipped_duplicates} duplicates skipped")
        for result in results:
            print(f"  {describe(result)}")


if __name__ == "__main__":
    main()
