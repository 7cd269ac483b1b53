"""Tests for repertoire_service.py"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import config
from errors import LimitReached, NotFound, ValidationError, VersionConflict
from models import (
    BLACK,
    IN_REPERTOIRE,
    OPPONENT_NEW,
    OUT_OF_REPERTOIRE,
    WHITE,
    AnalysisDetail,
    AnalysisSummary,
    Category,
    GameAnalysis,
    MoveAnalysis,
    RepertoireRef,
)
from repertoire_service import (
    add_move,
    assign_category,
    create_category,
    create_repertoire,
    delete_game,
    edit_repertoire,
    extract_subtree,
    import_games,
    list_by_color,
    list_games,
    mark_game_viewed,
    merge_repertoires,
    reanalyze_stored_game,
    rename_repertoire,
    seed_repertoires,
    validate_name,
)
from tree import new_repertoire

PGN = """[Event "Casual"]
[Site "https://lichess.org/game0001"]
[White "alice"]
[Black "bob"]
[Result "1-0"]

1. e4 e5 2. Nf3 Nc6 3. Bb5 1-0

[Event "Casual"]
[Site "https://lichess.org/game0002"]
[White "bob"]
[Black "alice"]
[Result "0-1"]

1. d4 d5 2. c4 e6 0-1
"""


def italian(version=0):
    rep = new_repertoire("Italian", WHITE, repertoire_id="rep-1")
    rep.tree.add_line(["e4", "e5", "Nf3", "Nc6", "Bc4"])
    rep.version = version
    return rep


def saved(conn, rep, expected_version):
    rep.version = expected_version + 1
    return rep


def test_validate_name():
    assert validate_name("  Italian ") == "Italian"
    with pytest.raises(ValidationError):
        validate_name("   ")
    with pytest.raises(ValidationError):
        validate_name("x" * (config.MAX_REPERTOIRE_NAME_LEN + 1))


def test_create_repertoire_rejects_bad_color():
    with pytest.raises(ValidationError):
        create_repertoire(MagicMock(), "Italian", "green")


def test_create_repertoire_enforces_limit():
    with patch("repertoire_service.count_repertoires", return_value=config.MAX_REPERTOIRES), \
         patch("repertoire_service.insert_repertoire") as mock_insert:
        with pytest.raises(LimitReached):
            create_repertoire(MagicMock(), "Italian", WHITE)
    mock_insert.assert_not_called()


def test_create_repertoire_inserts_root_only_tree():
    with patch("repertoire_service.count_repertoires", return_value=0), \
         patch("repertoire_service.insert_repertoire", side_effect=lambda conn, rep: rep):
        rep = create_repertoire(MagicMock(), " Italian ", WHITE)
    assert rep.name == "Italian"
    assert rep.metadata.total_nodes == 1


def test_list_by_color_validates():
    with pytest.raises(ValidationError):
        list_by_color(MagicMock(), "purple")


def test_add_move_saves_with_read_version():
    stored = italian(version=2)
    with patch("repertoire_service.get_repertoire", return_value=stored), \
         patch("repertoire_service.save_repertoire", side_effect=saved) as mock_save:
        rep = add_move(MagicMock(), "rep-1", stored.tree.root_id, "d4")

    assert mock_save.call_args[0][2] == 2
    assert rep.version == 3
    assert rep.metadata.total_nodes == 7


def test_edit_retries_on_version_conflict():
    snapshots = [italian(version=0), italian(version=1)]
    with patch("repertoire_service.get_repertoire", side_effect=snapshots), \
         patch("repertoire_service.save_repertoire",
               side_effect=[VersionConflict("stale"), snapshots[1]]) as mock_save:
        rep = rename_repertoire(MagicMock(), "rep-1", "Giuoco Piano")

    assert mock_save.call_count == 2
    assert rep.name == "Giuoco Piano"
    assert [c[0][2] for c in mock_save.call_args_list] == [0, 1]


def test_edit_gives_up_after_retries():
    with patch("repertoire_service.get_repertoire", side_effect=lambda conn, rid: italian()), \
         patch("repertoire_service.save_repertoire", side_effect=VersionConflict("stale")) as mock_save:
        with pytest.raises(VersionConflict):
            edit_repertoire(MagicMock(), "rep-1", lambda rep: None)
    assert mock_save.call_count == config.EDIT_RETRIES + 1


def test_failed_edit_is_not_saved():
    with patch("repertoire_service.get_repertoire", return_value=italian()), \
         patch("repertoire_service.save_repertoire") as mock_save:
        with pytest.raises(NotFound):
            add_move(MagicMock(), "rep-1", "no-such-node", "d4")
    mock_save.assert_not_called()


def test_merge_requires_same_color():
    black = new_repertoire("French", BLACK)
    with patch("repertoire_service.get_repertoire", side_effect=[italian(), black]):
        with pytest.raises(ValidationError):
            merge_repertoires(MagicMock(), ["rep-1", black.id], "Mixed")


def test_merge_rejects_duplicate_ids():
    with pytest.raises(ValidationError):
        merge_repertoires(MagicMock(), ["rep-1", "rep-1"], "Twice")


def test_merge_creates_union_and_deletes_sources():
    other = new_repertoire("Scotch", WHITE, repertoire_id="rep-2")
    other.tree.add_line(["e4", "e5", "Nf3", "Nc6", "d4"])

    with patch("repertoire_service.get_repertoire", side_effect=[italian(), other]), \
         patch("repertoire_service.insert_repertoire", side_effect=lambda conn, rep: rep), \
         patch("repertoire_service.delete_repertoire") as mock_delete:
        merged = merge_repertoires(MagicMock(), ["rep-1", "rep-2"], "1.e4 e5")

    assert merged.metadata.total_nodes == 7
    assert [c[0][1] for c in mock_delete.call_args_list] == ["rep-1", "rep-2"]


def test_extract_subtree_saves_both():
    rep = italian(version=5)
    nc6 = rep.tree.lookup(rep.tree.root.children[0])
    for san in ["e5", "Nf3", "Nc6"]:
        nc6 = rep.tree.child_by_move(nc6.id, san)

    with patch("repertoire_service.get_repertoire", return_value=rep), \
         patch("repertoire_service.count_repertoires", return_value=0), \
         patch("repertoire_service.insert_repertoire", side_effect=lambda conn, r: r), \
         patch("repertoire_service.save_repertoire", side_effect=saved) as mock_save:
        original, extracted = extract_subtree(MagicMock(), "rep-1", nc6.id)

    assert extracted.name == "Italian - Nc6"
    assert extracted.metadata.total_nodes == 6
    assert original.metadata.total_nodes == 4
    assert mock_save.call_args[0][2] == 5


def test_seed_unknown_template():
    with patch("repertoire_service.count_repertoires", return_value=0):
        with pytest.raises(ValidationError):
            seed_repertoires(MagicMock(), ["nope"])


def test_seed_builds_template_lines():
    with patch("repertoire_service.count_repertoires", return_value=0), \
         patch("repertoire_service.insert_repertoire", side_effect=lambda conn, r: r):
        reps = seed_repertoires(MagicMock(), ["italian", "french"])
    assert [(r.name, r.color) for r in reps] == [("Italian Game", WHITE), ("French Defense", BLACK)]
    assert reps[0].metadata.total_moves == 9


def summary_for(conn, username, filename, results):
    return AnalysisSummary(id="an-1", username=username, filename=filename, game_count=len(results))


def test_import_games_analyzes_and_stores():
    candidates = {WHITE: [italian()], BLACK: []}
    with patch("repertoire_service.list_repertoires", side_effect=lambda conn, color: candidates[color]), \
         patch("repertoire_service.get_existing_fingerprints", return_value=set()), \
         patch("repertoire_service.save_analysis", side_effect=summary_for), \
         patch("repertoire_service.save_fingerprints") as mock_fps:
        summary, results = import_games(MagicMock(), "alice", "games.pgn", PGN)

    assert summary.game_count == 2
    assert summary.skipped_duplicates == 0
    first, second = results
    assert first.matched_repertoire.name == "Italian"
    assert first.match_score == 2
    assert first.divergence_index == 4
    assert first.moves[4].expected_move == "Bc4"
    assert second.user_color == BLACK
    assert second.matched_repertoire is None
    assert mock_fps.call_args[0][3] == [
        ("https://lichess.org/game0001", 0),
        ("https://lichess.org/game0002", 1),
    ]


def test_import_games_skips_known_fingerprints():
    with patch("repertoire_service.list_repertoires", return_value=[]), \
         patch("repertoire_service.get_existing_fingerprints",
               return_value={"https://lichess.org/game0001"}), \
         patch("repertoire_service.save_analysis", side_effect=summary_for), \
         patch("repertoire_service.save_fingerprints"):
        summary, results = import_games(MagicMock(), "alice", "games.pgn", PGN)

    assert summary.skipped_duplicates == 1
    assert [r.game_index for r in results] == [0]
    assert results[0].headers["Site"] == "https://lichess.org/game0002"


def test_import_games_all_duplicates():
    with patch("repertoire_service.list_repertoires", return_value=[]), \
         patch("repertoire_service.get_existing_fingerprints",
               return_value={"https://lichess.org/game0001", "https://lichess.org/game0002"}), \
         patch("repertoire_service.save_analysis") as mock_save:
        with pytest.raises(ValidationError):
            import_games(MagicMock(), "alice", "games.pgn", PGN)
    mock_save.assert_not_called()


def test_import_games_without_user_games():
    with pytest.raises(NotFound):
        import_games(MagicMock(), "zoe", "games.pgn", PGN)


def test_reanalyze_stored_game_replaces_result():
    with patch("repertoire_service.list_repertoires", return_value=[]), \
         patch("repertoire_service.get_existing_fingerprints", return_value=set()), \
         patch("repertoire_service.save_analysis", side_effect=summary_for), \
         patch("repertoire_service.save_fingerprints"):
        _, results = import_games(MagicMock(), "alice", "games.pgn", PGN)

    detail = AnalysisDetail(id="an-1", username="alice", filename="games.pgn", game_count=2, results=results)
    with patch("repertoire_service.get_analysis", return_value=detail), \
         patch("repertoire_service.get_repertoire", return_value=italian()), \
         patch("repertoire_service.update_analysis_results") as mock_update:
        result = reanalyze_stored_game(MagicMock(), "an-1", 0, "rep-1")

    assert result.matched_repertoire.id == "rep-1"
    assert result.match_score == 2
    stored = mock_update.call_args[0][2]
    assert stored[0] is result
    assert stored[1].matched_repertoire is None


def test_reanalyze_unknown_game_index():
    detail = AnalysisDetail(id="an-1", username="alice", filename="games.pgn", game_count=0)
    with patch("repertoire_service.get_analysis", return_value=detail):
        with pytest.raises(NotFound):
            reanalyze_stored_game(MagicMock(), "an-1", 3, "rep-1")


def stored_game(index, statuses, time_control="600+5", site="https://lichess.org/abc", matched=None):
    moves = [MoveAnalysis(i, "e4", "", s, is_user_move=i % 2 == 0) for i, s in enumerate(statuses)]
    divergence = next((i for i, s in enumerate(statuses) if s != IN_REPERTOIRE), None)
    return GameAnalysis(
        game_index=index,
        headers={"White": "alice", "Black": "bob", "Result": "1-0", "TimeControl": time_control, "Site": site},
        moves=moves,
        matched_repertoire=matched,
        divergence_index=divergence,
    )


def test_delete_game_keeps_other_indexes():
    detail = AnalysisDetail(
        id="an-1", username="alice", filename="games.pgn", game_count=3,
        results=[stored_game(0, []), stored_game(1, []), stored_game(2, [])],
    )
    with patch("repertoire_service.get_analysis", return_value=detail), \
         patch("repertoire_service.update_analysis_results") as mock_update, \
         patch("repertoire_service.delete_fingerprint") as mock_fp:
        delete_game(MagicMock(), "an-1", 1)

    assert [r.game_index for r in mock_update.call_args[0][2]] == [0, 2]
    assert mock_fp.call_args[0][1:] == ("an-1", 1)


def test_delete_unknown_game():
    detail = AnalysisDetail(id="an-1", username="alice", filename="games.pgn", game_count=0)
    with patch("repertoire_service.get_analysis", return_value=detail), \
         patch("repertoire_service.delete_fingerprint") as mock_fp:
        with pytest.raises(NotFound):
            delete_game(MagicMock(), "an-1", 0)
    mock_fp.assert_not_called()


def test_mark_game_viewed_saves_once():
    detail = AnalysisDetail(
        id="an-1", username="alice", filename="games.pgn", game_count=1, results=[stored_game(0, [])],
    )
    with patch("repertoire_service.get_analysis", return_value=detail), \
         patch("repertoire_service.update_analysis_results") as mock_update:
        assert mark_game_viewed(MagicMock(), "an-1", 0).viewed is True
        mark_game_viewed(MagicMock(), "an-1", 0)
    assert mock_update.call_count == 1


@pytest.fixture
def stored_analyses():
    italian_ref = RepertoireRef(id="rep-1", name="Italian")
    return [
        AnalysisDetail(
            id="an-2", username="alice", filename="lichess:alice", game_count=2,
            results=[
                stored_game(0, [IN_REPERTOIRE, IN_REPERTOIRE], "60+0", matched=italian_ref),
                stored_game(1, [IN_REPERTOIRE, OPPONENT_NEW], "300+3", matched=italian_ref),
            ],
        ),
        AnalysisDetail(
            id="an-1", username="alice", filename="games.pgn", game_count=2,
            results=[
                stored_game(0, [OUT_OF_REPERTOIRE, OPPONENT_NEW], "600+5", site="Local", matched=italian_ref),
                stored_game(1, [OPPONENT_NEW], "1/86400", site="Local"),
            ],
        ),
    ]


def test_list_games_pages_across_analyses(stored_analyses):
    with patch("repertoire_service.list_analysis_details", return_value=stored_analyses):
        page = list_games(MagicMock(), "alice", limit=3, offset=1)

    assert page.total == 4
    assert [(g.analysis_id, g.game_index) for g in page.games] == [("an-2", 1), ("an-1", 0), ("an-1", 1)]
    assert [g.status for g in page.games] == ["new-line", "error", "new-line"]
    assert [g.time_class for g in page.games] == ["blitz", "rapid", "daily"]
    assert [g.source for g in page.games] == ["lichess", "pgn", "pgn"]


@pytest.mark.parametrize("filters, expected", [
    ({"time_class": "bullet"}, [("an-2", 0)]),
    ({"source": "pgn"}, [("an-1", 0), ("an-1", 1)]),
    ({"repertoire": "Italian", "source": "pgn"}, [("an-1", 0)]),
    ({"repertoire": "rep-1"}, [("an-2", 0), ("an-2", 1), ("an-1", 0)]),
])
def test_list_games_filters(stored_analyses, filters, expected):
    with patch("repertoire_service.list_analysis_details", return_value=stored_analyses):
        page = list_games(MagicMock(), **filters)
    assert [(g.analysis_id, g.game_index) for g in page.games] == expected
    assert page.total == len(expected)


@pytest.mark.parametrize("kwargs", [
    {"limit": 0},
    {"limit": config.MAX_GAMES_LIMIT + 1},
    {"offset": -1},
    {"time_class": "classical"},
    {"source": "chess24"},
])
def test_list_games_rejects_bad_filters(kwargs):
    with pytest.raises(ValidationError):
        list_games(MagicMock(), **kwargs)


def test_create_category_enforces_limit():
    with patch("repertoire_service.count_categories", return_value=config.MAX_CATEGORIES), \
         patch("repertoire_service.insert_category") as mock_insert:
        with pytest.raises(LimitReached):
            create_category(MagicMock(), "Open games", WHITE)
    mock_insert.assert_not_called()


def test_create_category_validates_name_and_color():
    with pytest.raises(ValidationError):
        create_category(MagicMock(), "Open games", "green")
    with pytest.raises(ValidationError):
        create_category(MagicMock(), "  ", WHITE)


def test_assign_category_same_color():
    category = Category(id="cat-1", name="Open games", color=WHITE)
    with patch("repertoire_service.get_category", return_value=category), \
         patch("repertoire_service.get_repertoire", return_value=italian()), \
         patch("repertoire_service.save_repertoire", side_effect=saved):
        rep = assign_category(MagicMock(), "rep-1", "cat-1")
    assert rep.category_id == "cat-1"


def test_assign_category_rejects_other_color():
    category = Category(id="cat-2", name="Sicilians", color=BLACK)
    with patch("repertoire_service.get_category", return_value=category), \
         patch("repertoire_service.get_repertoire", return_value=italian()), \
         patch("repertoire_service.save_repertoire") as mock_save:
        with pytest.raises(ValidationError):
            assign_category(MagicMock(), "rep-1", "cat-2")
    mock_save.assert_not_called()


def test_empty_category_id_clears_category():
    rep = italian()
    rep.category_id = "cat-1"
    with patch("repertoire_service.get_category") as mock_get, \
         patch("repertoire_service.get_repertoire", return_value=rep), \
         patch("repertoire_service.save_repertoire", side_effect=saved):
        assert assign_category(MagicMock(), "rep-1", "").category_id is None
    mock_get.assert_not_called()
