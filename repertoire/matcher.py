"""
Move matcher: walks one game against one repertoire tree.

State is a cursor (current tree node, starting at the root) and a frozen flag.
Plies must be fed strictly in game order. Once frozen the matcher never
re-synchronizes, even if a later position appears in the tree.
"""

import logging
from dataclasses import dataclass, field

from models import IN_REPERTOIRE, OPPONENT_NEW, OUT_OF_REPERTOIRE, Game, MoveAnalysis, Ply
from tree import RepertoireTree

logger = logging.getLogger(__name__)


@dataclass
class MatchResult:
    moves: list[MoveAnalysis] = field(default_factory=list)
    divergence_index: int | None = None
    score: int = 0


class MoveMatcher:
    def __init__(self, tree: RepertoireTree):
        self.tree = tree
        self.cursor = tree.root_id
        self.frozen = False
        self._result = MatchResult()

    def feed(self, ply: Ply) -> MoveAnalysis:
        ply_number = len(self._result.moves)
        expected = None

        if self.frozen:
            status = OPPONENT_NEW
        else:
            child = self.tree.child_by_move(self.cursor, ply.san)
            if child is not None:
                status = IN_REPERTOIRE
                self.cursor = child.id
                if ply.is_user_move:
                    self._result.score += 1
            elif not ply.is_user_move:
                # Opponent left preparation
                status = OPPONENT_NEW
                self.frozen = True
            else:
                primary = self.tree.primary_child(self.cursor)
                if primary is not None:
                    status = OUT_OF_REPERTOIRE
                    expected = primary.move
                else:
                    status = OPPONENT_NEW
                self.frozen = True

        if status != IN_REPERTOIRE and self._result.divergence_index is None:
            self._result.divergence_index = ply_number
            logger.debug("diverged at ply %d (%s): %s", ply_number, ply.san, status)

        analysis = MoveAnalysis(
            ply_number=ply_number,
            san=ply.san,
            fen=ply.fen,
            status=status,
            expected_move=expected,
            is_user_move=ply.is_user_move,
        )
        self._result.moves.append(analysis)
        return analysis

    @property
    def result(self) -> MatchResult:
        return self._result


def match_game(game: Game, tree: RepertoireTree) -> MatchResult:
    """Classify every ply of `game` against `tree`. Deterministic for equal inputs."""
    matcher = MoveMatcher(tree)
    for ply in game.plies:
        matcher.feed(ply)
    return matcher.result
