"""
Repertoire service: read-modify-write orchestration over the storage layer.

Tree edits load a snapshot, mutate it in memory and save it with an
optimistic version check. A lost race re-reads and replays the edit.
"""

import logging
from typing import Callable

import config
from db import (
    count_categories,
    count_repertoires,
    create_category as insert_category,
    create_repertoire as insert_repertoire,
    delete_fingerprint,
    delete_repertoire,
    get_analysis,
    get_category,
    get_existing_fingerprints,
    get_repertoire,
    list_analysis_details,
    list_categories as fetch_categories,
    list_repertoires,
    rename_category as save_category_name,
    save_analysis,
    save_fingerprints,
    save_repertoire,
    update_analysis_results,
)
from errors import LimitReached, NotFound, ValidationError, VersionConflict
from models import COLORS, AnalysisSummary, Category, GameAnalysis, GamesPage, GameSummary, Repertoire
from pgn_games import (
    SOURCES,
    TIME_CLASSES,
    classify_time_control,
    compute_fingerprint,
    game_source,
    parse_pgn,
)
from scorer import analyze_game, reanalyze_game
from templates import build_template_tree, get_template
from tree import add_node, delete_node, new_repertoire

logger = logging.getLogger(__name__)


def validate_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required")
    if len(name) > config.MAX_REPERTOIRE_NAME_LEN:
        raise ValidationError(f"name must be {config.MAX_REPERTOIRE_NAME_LEN} characters or less")
    return name


def validate_color(color: str) -> str:
    if color not in COLORS:
        raise ValidationError(f"invalid color: {color}")
    return color


def _check_limit(conn) -> None:
    if count_repertoires(conn) >= config.MAX_REPERTOIRES:
        raise LimitReached(f"maximum repertoire limit reached ({config.MAX_REPERTOIRES})")


def create_repertoire(conn, name: str, color: str) -> Repertoire:
    color = validate_color(color)
    name = validate_name(name)
    _check_limit(conn)
    return insert_repertoire(conn, new_repertoire(name, color))


def list_by_color(conn, color: str | None = None) -> list[Repertoire]:
    if color is not None:
        validate_color(color)
    return list_repertoires(conn, color)


def edit_repertoire(conn, repertoire_id: str, edit: Callable[[Repertoire], object]) -> Repertoire:
    """
    Apply `edit` to a fresh snapshot and save it.

    On VersionConflict the snapshot is re-read and the edit replayed, up to
    EDIT_RETRIES times; the last conflict propagates.
    """
    attempt = 0
    while True:
        repertoire = get_repertoire(conn, repertoire_id)
        expected = repertoire.version
        edit(repertoire)
        try:
            return save_repertoire(conn, repertoire, expected)
        except VersionConflict:
            attempt += 1
            if attempt > config.EDIT_RETRIES:
                raise
            logger.warning("version conflict on repertoire %s, retry %d", repertoire_id, attempt)


def rename_repertoire(conn, repertoire_id: str, name: str) -> Repertoire:
    name = validate_name(name)

    def rename(rep: Repertoire):
        rep.name = name

    return edit_repertoire(conn, repertoire_id, rename)


def add_move(
    conn,
    repertoire_id: str,
    parent_id: str,
    move: str,
    result_fen: str | None = None,
    move_number: int | None = None,
    color_to_move: str | None = None,
) -> Repertoire:
    return edit_repertoire(
        conn,
        repertoire_id,
        lambda rep: add_node(rep, parent_id, move, result_fen, move_number, color_to_move),
    )


def delete_move(conn, repertoire_id: str, node_id: str) -> Repertoire:
    return edit_repertoire(conn, repertoire_id, lambda rep: delete_node(rep, node_id))


def update_comment(conn, repertoire_id: str, node_id: str, comment: str | None) -> Repertoire:
    return edit_repertoire(conn, repertoire_id, lambda rep: rep.tree.set_comment(node_id, comment))


def merge_repertoires(conn, ids: list[str], name: str) -> Repertoire:
    """Merge two or more same-color repertoires into a new one and delete the sources."""
    if len(ids) < 2:
        raise ValidationError("at least two repertoires are required to merge")
    name = validate_name(name)
    if len(set(ids)) != len(ids):
        raise ValidationError("duplicate repertoire IDs")

    sources = [get_repertoire(conn, rid) for rid in ids]
    color = sources[0].color
    if any(rep.color != color for rep in sources[1:]):
        raise ValidationError("cannot merge repertoires of different colors")

    merged = new_repertoire(name, color)
    for rep in sources:
        merged.tree.merge(rep.tree)
    merged = insert_repertoire(conn, merged)

    for rid in ids:
        delete_repertoire(conn, rid)
    logger.info("merged %d repertoires into %s (%d nodes)", len(ids), merged.id, merged.metadata.total_nodes)
    return merged


def extract_subtree(conn, repertoire_id: str, node_id: str, name: str | None = None) -> tuple[Repertoire, Repertoire]:
    """Move the subtree at `node_id` into a new repertoire. Returns (original, extracted)."""
    original = get_repertoire(conn, repertoire_id)
    expected = original.version
    target = original.tree.lookup(node_id)

    name = (name or "").strip() or f"{original.name} - {target.move or ''}"
    name = validate_name(name)
    _check_limit(conn)

    extracted = new_repertoire(name, original.color)
    extracted.tree = original.tree.extract_subtree(node_id)
    extracted = insert_repertoire(conn, extracted)
    original = save_repertoire(conn, original, expected)
    return original, extracted


def seed_repertoires(conn, template_ids: list[str]) -> list[Repertoire]:
    created = []
    for template_id in template_ids:
        template = get_template(template_id)
        if template is None:
            raise ValidationError(f"unknown template: {template_id}")
        _check_limit(conn)
        rep = new_repertoire(template.name, template.color)
        rep.tree = build_template_tree(template)
        created.append(insert_repertoire(conn, rep))
    return created


def import_games(conn, username: str, filename: str, pgn_text: str) -> tuple[AnalysisSummary, list[GameAnalysis]]:
    """
    Analyze every game `username` played in `pgn_text` and persist the results.

    Games already imported (same fingerprint) are skipped.
    """
    games = parse_pgn(pgn_text, username)
    if not games:
        raise NotFound(f"no games found where '{username}' was a player")

    candidates = {color: list_repertoires(conn, color) for color in COLORS}
    results = [
        analyze_game(game, candidates[game.user_color], game_index=i) for i, game in enumerate(games)
    ]

    fingerprints = [compute_fingerprint(r.headers, [m.san for m in r.moves]) for r in results]
    existing = get_existing_fingerprints(conn, username, fingerprints)
    kept, kept_fingerprints, seen = [], [], set(existing)
    for result, fingerprint in zip(results, fingerprints):
        if fingerprint in seen:
            continue
        seen.add(fingerprint)
        kept.append(result)
        kept_fingerprints.append(fingerprint)
    skipped = len(results) - len(kept)
    if not kept:
        raise ValidationError("all games have already been imported")

    for i, result in enumerate(kept):
        result.game_index = i

    summary = save_analysis(conn, username, filename, kept)
    summary.skipped_duplicates = skipped
    save_fingerprints(conn, username, summary.id, list(zip(kept_fingerprints, range(len(kept)))))
    logger.info("imported %d games for %s (%d duplicates skipped)", len(kept), username, skipped)
    return summary, kept


def reanalyze_stored_game(conn, analysis_id: str, game_index: int, repertoire_id: str) -> GameAnalysis:
    """Re-run one stored game against an explicitly chosen repertoire and save it."""
    detail = get_analysis(conn, analysis_id)
    position = _stored_game(detail, game_index)
    stored = detail.results[position]
    repertoire = get_repertoire(conn, repertoire_id)
    result = reanalyze_game(stored.to_game(), repertoire, game_index=game_index)

    detail.results[position] = result
    update_analysis_results(conn, analysis_id, detail.results)
    return result


def rescore_analysis(conn, analysis_id: str) -> list[GameAnalysis]:
    """Re-run the scorer over every game of a stored analysis against current repertoires."""
    detail = get_analysis(conn, analysis_id)
    candidates = {color: list_repertoires(conn, color) for color in COLORS}
    results = [
        analyze_game(stored.to_game(), candidates[stored.user_color], game_index=stored.game_index)
        for stored in detail.results
    ]
    update_analysis_results(conn, analysis_id, results)
    return results


def _stored_game(detail, game_index: int) -> int:
    position = next((i for i, r in enumerate(detail.results) if r.game_index == game_index), None)
    if position is None:
        raise NotFound(f"game {game_index} not found in analysis {detail.id}")
    return position


def delete_game(conn, analysis_id: str, game_index: int) -> None:
    """
    Remove one game from a stored analysis.

    Remaining games keep their index. The game's fingerprint is dropped too,
    so the same game can be imported again later.
    """
    detail = get_analysis(conn, analysis_id)
    del detail.results[_stored_game(detail, game_index)]
    update_analysis_results(conn, analysis_id, detail.results)
    delete_fingerprint(conn, analysis_id, game_index)
    logger.info("deleted game %d from analysis %s", game_index, analysis_id)


def mark_game_viewed(conn, analysis_id: str, game_index: int) -> GameAnalysis:
    detail = get_analysis(conn, analysis_id)
    result = detail.results[_stored_game(detail, game_index)]
    if not result.viewed:
        result.viewed = True
        update_analysis_results(conn, analysis_id, detail.results)
    return result


def list_games(
    conn,
    username: str | None = None,
    limit: int = config.DEFAULT_GAMES_LIMIT,
    offset: int = 0,
    time_class: str | None = None,
    repertoire: str | None = None,
    source: str | None = None,
) -> GamesPage:
    """
    Every stored game across analyses, newest import first, one page at a time.

    `repertoire` matches the matched repertoire's id or name. `total` counts
    the filtered games before paging.
    """
    if not 1 <= limit <= config.MAX_GAMES_LIMIT:
        raise ValidationError(f"limit must be between 1 and {config.MAX_GAMES_LIMIT}")
    if offset < 0:
        raise ValidationError("offset must not be negative")
    if time_class and time_class not in TIME_CLASSES:
        raise ValidationError(f"invalid time class: {time_class}")
    if source and source not in SOURCES:
        raise ValidationError(f"invalid source: {source}")

    games = []
    for detail in list_analysis_details(conn, username):
        for result in detail.results:
            summary = GameSummary(
                analysis_id=detail.id,
                game_index=result.game_index,
                white=result.headers.get("White", ""),
                black=result.headers.get("Black", ""),
                result=result.headers.get("Result", ""),
                date=result.headers.get("Date") or result.headers.get("UTCDate", ""),
                user_color=result.user_color,
                status=result.status,
                time_class=classify_time_control(result.headers.get("TimeControl")),
                source=game_source(detail.filename, result.headers),
                repertoire=result.matched_repertoire,
                imported_at=detail.uploaded_at,
                viewed=result.viewed,
            )
            if time_class and summary.time_class != time_class:
                continue
            if source and summary.source != source:
                continue
            if repertoire and (
                summary.repertoire is None or repertoire not in (summary.repertoire.id, summary.repertoire.name)
            ):
                continue
            games.append(summary)

    return GamesPage(games=games[offset:offset + limit], total=len(games), limit=limit, offset=offset)


def create_category(conn, name: str, color: str) -> Category:
    color = validate_color(color)
    name = validate_name(name)
    if count_categories(conn) >= config.MAX_CATEGORIES:
        raise LimitReached(f"maximum category limit reached ({config.MAX_CATEGORIES})")
    return insert_category(conn, name, color)


def list_categories(conn, color: str | None = None) -> list[Category]:
    if color is not None:
        validate_color(color)
    return fetch_categories(conn, color)


def rename_category(conn, category_id: str, name: str) -> Category:
    return save_category_name(conn, category_id, validate_name(name))


def get_category_with_repertoires(conn, category_id: str) -> tuple[Category, list[Repertoire]]:
    category = get_category(conn, category_id)
    return category, list_repertoires(conn, category_id=category_id)


def assign_category(conn, repertoire_id: str, category_id: str | None) -> Repertoire:
    """Put a repertoire into a same-color category. An empty id removes it from its category."""
    category = get_category(conn, category_id) if category_id else None

    def assign(rep: Repertoire):
        if category is not None and category.color != rep.color:
            raise ValidationError(f"category {category.name} is {category.color}, repertoire is {rep.color}")
        rep.category_id = category.id if category else None

    return edit_repertoire(conn, repertoire_id, assign)
