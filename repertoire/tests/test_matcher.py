"""Tests for matcher.py"""

import sys
from pathlib import Path

import chess
import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from matcher import MoveMatcher, match_game
from models import BLACK, IN_REPERTOIRE, OPPONENT_NEW, OUT_OF_REPERTOIRE, WHITE, Game, Ply
from rules import position_key
from tree import RepertoireTree


def make_game(sans: list[str], user_color=WHITE) -> Game:
    board = chess.Board()
    plies = []
    for san in sans:
        user_turn = board.turn == (user_color == WHITE)
        plies.append(Ply(san=san, fen=position_key(board), is_user_move=user_turn))
        board.push_san(san)
    return Game(headers={"White": "alice", "Black": "bob"}, plies=plies, user_color=user_color)


@pytest.fixture
def italian() -> RepertoireTree:
    tree = RepertoireTree()
    tree.add_line(["e4", "e5", "Nf3", "Nc6", "Bc4"])
    tree.add_line(["e4", "c5", "Nf3"])
    return tree


def statuses(result):
    return [m.status for m in result.moves]


def test_full_line_is_in_repertoire(italian):
    result = match_game(make_game(["e4", "e5", "Nf3"]), italian)

    assert statuses(result) == [IN_REPERTOIRE] * 3
    assert result.divergence_index is None
    assert result.score == 2


def test_user_deviation_reports_expected_move(italian):
    result = match_game(make_game(["e4", "e5", "d4", "exd4"]), italian)

    assert statuses(result) == [IN_REPERTOIRE, IN_REPERTOIRE, OUT_OF_REPERTOIRE, OPPONENT_NEW]
    assert result.moves[2].expected_move == "Nf3"
    assert result.divergence_index == 2
    assert result.score == 1


def test_first_user_move_deviation(italian):
    result = match_game(make_game(["d4", "d5"]), italian)

    assert result.moves[0].status == OUT_OF_REPERTOIRE
    assert result.moves[0].expected_move == "e4"
    assert result.divergence_index == 0
    assert result.score == 0


def test_opponent_new_move_freezes_matching(italian):
    # 3...Nc6 would be back in the tree but matching never resumes
    result = match_game(make_game(["e4", "e6", "Nf3", "Nc6"]), italian)

    assert statuses(result) == [IN_REPERTOIRE, OPPONENT_NEW, OPPONENT_NEW, OPPONENT_NEW]
    assert result.moves[1].expected_move is None
    assert result.divergence_index == 1
    assert result.score == 1


def test_user_move_past_leaf_is_opponent_new(italian):
    result = match_game(make_game(["e4", "c5", "Nf3", "d6", "d4"]), italian)

    assert statuses(result)[:3] == [IN_REPERTOIRE] * 3
    assert result.moves[3].status == OPPONENT_NEW
    assert result.divergence_index == 3
    assert result.score == 2


def test_user_move_at_leaf_has_no_expected_move():
    tree = RepertoireTree()
    tree.add_line(["e4", "e5"])
    result = match_game(make_game(["e4", "e5", "Nf3"]), tree)

    assert result.moves[2].status == OPPONENT_NEW
    assert result.moves[2].expected_move is None
    assert result.divergence_index == 2


def test_black_repertoire_counts_black_moves():
    tree = RepertoireTree()
    tree.add_line(["e4", "c5", "Nf3", "d6"])
    result = match_game(make_game(["e4", "c5", "Nf3", "Nc6"], user_color=BLACK), tree)

    assert statuses(result) == [IN_REPERTOIRE, IN_REPERTOIRE, IN_REPERTOIRE, OUT_OF_REPERTOIRE]
    assert result.moves[3].expected_move == "d6"
    assert result.score == 1


def test_empty_game():
    result = match_game(make_game([]), RepertoireTree())
    assert result.moves == []
    assert result.divergence_index is None
    assert result.score == 0


def test_expected_move_is_primary_child():
    tree = RepertoireTree()
    tree.add_line(["e4", "e5", "Bc4"])
    tree.add_line(["e4", "e5", "Nf3"])
    result = match_game(make_game(["e4", "e5", "f4"]), tree)
    assert result.moves[2].expected_move == "Bc4"


def test_matcher_feeds_incrementally(italian):
    matcher = MoveMatcher(italian)
    game = make_game(["e4", "e5", "d4"])

    first = matcher.feed(game.plies[0])
    assert first.status == IN_REPERTOIRE
    assert not matcher.frozen
    assert italian.lookup(matcher.cursor).move == "e4"

    matcher.feed(game.plies[1])
    matcher.feed(game.plies[2])
    assert matcher.frozen
    assert italian.lookup(matcher.cursor).move == "e5"
    assert [m.ply_number for m in matcher.result.moves] == [0, 1, 2]


def test_matching_is_deterministic(italian):
    game = make_game(["e4", "e5", "Nf3", "Nc6", "Bb5"])
    first = match_game(game, italian)
    second = match_game(game, italian)
    assert [m.to_dict() for m in first.moves] == [m.to_dict() for m in second.moves]
    assert first.divergence_index == second.divergence_index
    assert first.score == second.score
