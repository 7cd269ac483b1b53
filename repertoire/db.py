"""Database layer: repertoires, categories, analyses and import fingerprints in PostgreSQL."""

from contextlib import contextmanager
from uuid import UUID

import psycopg
from psycopg.types.json import Jsonb

import config
from errors import NotFound, VersionConflict
from models import AnalysisDetail, AnalysisSummary, Category, Color, GameAnalysis, Repertoire
from tree import RepertoireTree

REPERTOIRE_COLUMNS = "id, name, color, tree_data, created_at, updated_at, version, category_id"
CATEGORY_COLUMNS = "id, name, color, created_at, updated_at"
ANALYSIS_COLUMNS = "id, username, filename, game_count, uploaded_at"


def get_connection_string() -> str:
    """Get database connection string from environment."""
    return config.DATABASE_URL


@contextmanager
def get_connection():
    """Context manager for database connections."""
    conn = psycopg.connect(get_connection_string())
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _row_to_repertoire(row) -> Repertoire:
    return Repertoire(
        id=str(row[0]),
        name=row[1],
        color=row[2],
        tree=RepertoireTree.from_dict(row[3]),
        created_at=row[4],
        updated_at=row[5],
        version=row[6],
        category_id=str(row[7]) if row[7] else None,
    )


def get_repertoire(conn: psycopg.Connection, repertoire_id: str | UUID) -> Repertoire:
    with conn.cursor() as cur:
        cur.execute(f"SELECT {REPERTOIRE_COLUMNS} FROM repertoires WHERE id = %s", (str(repertoire_id),))
        row = cur.fetchone()
    if not row:
        raise NotFound(f"repertoire {repertoire_id} not found")
    return _row_to_repertoire(row)


def list_repertoires(
    conn: psycopg.Connection, color: Color | None = None, category_id: str | None = None
) -> list[Repertoire]:
    """All repertoires, oldest first, optionally restricted to one color or category."""
    sql = f"SELECT {REPERTOIRE_COLUMNS} FROM repertoires"
    clauses, params = [], []
    if color is not None:
        clauses.append("color = %s")
        params.append(color)
    if category_id is not None:
        clauses.append("category_id = %s")
        params.append(category_id)
    if clauses:
        sql += " WHERE " + " AND ".join(clauses)
    sql += " ORDER BY created_at"
    with conn.cursor() as cur:
        cur.execute(sql, params)
        return [_row_to_repertoire(r) for r in cur.fetchall()]


def count_repertoires(conn: psycopg.Connection) -> int:
    with conn.cursor() as cur:
        cur.execute("SELECT COUNT(*) FROM repertoires")
        return cur.fetchone()[0] or 0


def create_repertoire(conn: psycopg.Connection, repertoire: Repertoire) -> Repertoire:
    """Insert a new repertoire. Returns it with timestamps and version from the database."""
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO repertoires (id, name, color, tree_data, metadata, category_id, version)
            VALUES (%s, %s, %s, %s, %s, %s, 0)
            RETURNING created_at, updated_at, version
            """,
            (
                repertoire.id,
                repertoire.name,
                repertoire.color,
                Jsonb(repertoire.tree.to_dict()),
                Jsonb(repertoire.metadata.to_dict()),
                repertoire.category_id,
            ),
        )
        row = cur.fetchone()
    if not row:
        raise RuntimeError("create_repertoire failed to return row")
    repertoire.created_at, repertoire.updated_at, repertoire.version = row
    return repertoire


def save_repertoire(conn: psycopg.Connection, repertoire: Repertoire, expected_version: int) -> Repertoire:
    """
    Write name, tree, metadata and category if the stored version still equals
    `expected_version`. Raises VersionConflict on a stale write.
    """
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE repertoires
            SET name = %s, tree_data = %s, metadata = %s, category_id = %s,
                version = version + 1, updated_at = NOW()
            WHERE id = %s AND version = %s
            RETURNING updated_at, version
            """,
            (
                repertoire.name,
                Jsonb(repertoire.tree.to_dict()),
                Jsonb(repertoire.metadata.to_dict()),
                repertoire.category_id,
                repertoire.id,
                expected_version,
            ),
        )
        row = cur.fetchone()
        if not row:
            cur.execute("SELECT version FROM repertoires WHERE id = %s", (repertoire.id,))
            current = cur.fetchone()
            if not current:
                raise NotFound(f"repertoire {repertoire.id} not found")
            raise VersionConflict(
                f"repertoire {repertoire.id} is at version {current[0]}, expected {expected_version}"
            )
    repertoire.updated_at, repertoire.version = row
    return repertoire


def delete_repertoire(conn: psycopg.Connection, repertoire_id: str) -> None:
    with conn.cursor() as cur:
        cur.execute("DELETE FROM repertoires WHERE id = %s", (repertoire_id,))
        if cur.rowcount == 0:
            raise NotFound(f"repertoire {repertoire_id} not found")


def save_analysis(
    conn: psycopg.Connection, username: str, filename: str, results: list[GameAnalysis]
) -> AnalysisSummary:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO analyses (username, filename, game_count, results)
            VALUES (%s, %s, %s, %s)
            RETURNING id, uploaded_at
            """,
            (username, filename, len(results), Jsonb([r.to_dict() for r in results])),
        )
        row = cur.fetchone()
    if not row:
        raise RuntimeError("save_analysis failed to return row")
    return AnalysisSummary(
        id=str(row[0]),
        username=username,
        filename=filename,
        game_count=len(results),
        uploaded_at=row[1],
    )


def _row_to_analysis(row) -> AnalysisDetail:
    return AnalysisDetail(
        id=str(row[0]),
        username=row[1],
        filename=row[2],
        game_count=row[3],
        uploaded_at=row[4],
        results=[GameAnalysis.from_dict(r) for r in row[5] or []],
    )


def list_analyses(conn: psycopg.Connection, username: str | None = None) -> list[AnalysisSummary]:
    """Analysis summaries, newest first."""
    sql = f"SELECT {ANALYSIS_COLUMNS} FROM analyses"
    params = []
    if username is not None:
        sql += " WHERE username = %s"
        params.append(username)
    sql += " ORDER BY uploaded_at DESC"
    with conn.cursor() as cur:
        cur.execute(sql, params)
        return [
            AnalysisSummary(id=str(r[0]), username=r[1], filename=r[2], game_count=r[3], uploaded_at=r[4])
            for r in cur.fetchall()
        ]


def list_analysis_details(conn: psycopg.Connection, username: str | None = None) -> list[AnalysisDetail]:
    """Every analysis with its stored results, newest first."""
    sql = f"SELECT {ANALYSIS_COLUMNS}, results FROM analyses"
    params = []
    if username is not None:
        sql += " WHERE username = %s"
        params.append(username)
    sql += " ORDER BY uploaded_at DESC"
    with conn.cursor() as cur:
        cur.execute(sql, params)
        return [_row_to_analysis(r) for r in cur.fetchall()]


def get_analysis(conn: psycopg.Connection, analysis_id: str) -> AnalysisDetail:
    with conn.cursor() as cur:
        cur.execute(
            f"SELECT {ANALYSIS_COLUMNS}, results FROM analyses WHERE id = %s",
            (analysis_id,),
        )
        row = cur.fetchone()
    if not row:
        raise NotFound(f"analysis {analysis_id} not found")
    return _row_to_analysis(row)


def delete_analysis(conn: psycopg.Connection, analysis_id: str) -> None:
    """Delete an analysis; its import fingerprints cascade."""
    with conn.cursor() as cur:
        cur.execute("DELETE FROM analyses WHERE id = %s", (analysis_id,))
        if cur.rowcount == 0:
            raise NotFound(f"analysis {analysis_id} not found")


def update_analysis_results(conn: psycopg.Connection, analysis_id: str, results: list[GameAnalysis]) -> None:
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE analyses SET results = %s, game_count = %s WHERE id = %s",
            (Jsonb([r.to_dict() for r in results]), len(results), analysis_id),
        )
        if cur.rowcount == 0:
            raise NotFound(f"analysis {analysis_id} not found")


def get_existing_fingerprints(conn: psycopg.Connection, username: str, fingerprints: list[str]) -> set[str]:
    if not fingerprints:
        return set()
    with conn.cursor() as cur:
        cur.execute(
            "SELECT fingerprint FROM game_fingerprints WHERE username = %s AND fingerprint = ANY(%s)",
            (username, fingerprints),
        )
        return {r[0] for r in cur.fetchall()}


def save_fingerprints(
    conn: psycopg.Connection, username: str, analysis_id: str, entries: list[tuple[str, int]]
) -> None:
    """Record (fingerprint, game_index) pairs of an import."""
    with conn.cursor() as cur:
        for fingerprint, game_index in entries:
            cur.execute(
                """
                INSERT INTO game_fingerprints (username, fingerprint, analysis_id, game_index)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (username, fingerprint) DO NOTHING
                """,
                (username, fingerprint, analysis_id, game_index),
            )


def delete_fingerprint(conn: psycopg.Connection, analysis_id: str, game_index: int) -> None:
    """Forget the fingerprint of one deleted game so it can be imported again."""
    with conn.cursor() as cur:
        cur.execute(
            "DELETE FROM game_fingerprints WHERE analysis_id = %s AND game_index = %s",
            (analysis_id, game_index),
        )


def _row_to_category(row) -> Category:
    return Category(id=str(row[0]), name=row[1], color=row[2], created_at=row[3], updated_at=row[4])


def get_category(conn: psycopg.Connection, category_id: str) -> Category:
    with conn.cursor() as cur:
        cur.execute(f"SELECT {CATEGORY_COLUMNS} FROM categories WHERE id = %s", (category_id,))
        row = cur.fetchone()
    if not row:
        raise NotFound(f"category {category_id} not found")
    return _row_to_category(row)


def list_categories(conn: psycopg.Connection, color: Color | None = None) -> list[Category]:
    sql = f"SELECT {CATEGORY_COLUMNS} FROM categories"
    params = []
    if color is not None:
        sql += " WHERE color = %s"
        params.append(color)
    sql += " ORDER BY created_at"
    with conn.cursor() as cur:
        cur.execute(sql, params)
        return [_row_to_category(r) for r in cur.fetchall()]


def count_categories(conn: psycopg.Connection) -> int:
    with conn.cursor() as cur:
        cur.execute("SELECT COUNT(*) FROM categories")
        return cur.fetchone()[0] or 0


def create_category(conn: psycopg.Connection, name: str, color: Color) -> Category:
    with conn.cursor() as cur:
        cur.execute(
            f"INSERT INTO categories (name, color) VALUES (%s, %s) RETURNING {CATEGORY_COLUMNS}",
            (name, color),
        )
        row = cur.fetchone()
    if not row:
        raise RuntimeError("create_category failed to return row")
    return _row_to_category(row)


def rename_category(conn: psycopg.Connection, category_id: str, name: str) -> Category:
    with conn.cursor() as cur:
        cur.execute(
            f"UPDATE categories SET name = %s, updated_at = NOW() WHERE id = %s RETURNING {CATEGORY_COLUMNS}",
            (name, category_id),
        )
        row = cur.fetchone()
    if not row:
        raise NotFound(f"category {category_id} not found")
    return _row_to_category(row)


def delete_category(conn: psycopg.Connection, category_id: str) -> None:
    """Delete a category; its repertoires cascade."""
    with conn.cursor() as cur:
        cur.execute("DELETE FROM categories WHERE id = %s", (category_id,))
        if cur.rowcount == 0:
            raise NotFound(f"category {category_id} not found")
