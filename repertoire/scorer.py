"""
Repertoire scorer: picks the repertoire a game was played from.

Every candidate of the user's color is matched independently. The best match
has the most leading in-repertoire user plies; ties go to the larger tree, then
to the older repertoire.
"""

import logging
from datetime import datetime, timezone

from errors import ColorMismatch
from matcher import MatchResult, match_game
from models import OPPONENT_NEW, Game, GameAnalysis, MoveAnalysis, Repertoire

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _ranking_key(repertoire: Repertoire, result: MatchResult):
    created = repertoire.created_at or _EPOCH
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    # Negated so min() picks: highest score, most nodes, earliest creation
    return (-result.score, -repertoire.metadata.total_nodes, created)


def _unmatched(game: Game, game_index: int) -> GameAnalysis:
    moves = [
        MoveAnalysis(ply_number=i, san=p.san, fen=p.fen, status=OPPONENT_NEW, is_user_move=p.is_user_move)
        for i, p in enumerate(game.plies)
    ]
    return GameAnalysis(
        game_index=game_index,
        headers=dict(game.headers),
        moves=moves,
        user_color=game.user_color,
        divergence_index=0 if moves else None,
    )


def _to_analysis(game: Game, game_index: int, repertoire: Repertoire, result: MatchResult) -> GameAnalysis:
    return GameAnalysis(
        game_index=game_index,
        headers=dict(game.headers),
        moves=result.moves,
        user_color=game.user_color,
        matched_repertoire=repertoire.ref,
        match_score=result.score,
        divergence_index=result.divergence_index,
    )


def analyze_game(game: Game, candidates: list[Repertoire], game_index: int = 0) -> GameAnalysis:
    """
    Match `game` against every candidate of the game's user color.

    Candidates of the other color are ignored. With no candidate left the
    result has every ply `opponent-new` and no matched repertoire.
    """
    candidates = [r for r in candidates if r.color == game.user_color]
    if not candidates:
        return _unmatched(game, game_index)

    runs = [(rep, match_game(game, rep.tree)) for rep in candidates]
    best, result = min(runs, key=lambda run: _ranking_key(*run))
    logger.debug("game %d matched %s with score %d", game_index, best.name, result.score)
    return _to_analysis(game, game_index, best, result)


def reanalyze_game(game: Game, repertoire: Repertoire, game_index: int = 0) -> GameAnalysis:
    """Match `game` against one explicitly chosen repertoire, skipping scoring."""
    if repertoire.color != game.user_color:
        raise ColorMismatch(
            f"repertoire {repertoire.name} is {repertoire.color}, user played {game.user_color}"
        )
    return _to_analysis(game, game_index, repertoire, match_game(game, repertoire.tree))
