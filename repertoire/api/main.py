"""
FastAPI surface for repertoire editing and game analysis

Endpoints:
  GET/POST /repertoires  - List (optionally ?color=) / create
  GET/PATCH/DELETE /repertoires/{id}  - Fetch / rename / delete
  POST /repertoires/{id}/nodes  - Add a move
  DELETE /repertoires/{id}/nodes/{node_id}  - Delete a move and its subtree
  PUT /repertoires/{id}/nodes/{node_id}/comment  - Set or clear a comment
  GET/POST /categories, GET/PATCH/DELETE /categories/{id}  - Repertoire categories
  PATCH /repertoires/{id}/category  - Assign or clear a category
  POST /repertoires/merge, POST /repertoires/{id}/extract  - Restructure
  GET /templates, POST /repertoires/seed  - Starter repertoires
  POST /analyses  - Analyze a PGN upload
  POST /analyses/lichess  - Import and analyze a Lichess user's games
  GET /analyses, GET/DELETE /analyses/{id}  - List (optionally ?username=) / fetch / delete analyses
  DELETE /analyses/{id}/games/{game_index}  - Delete one stored game
  POST /analyses/{id}/games/{game_index}/viewed  - Mark a game as viewed
  GET /games  - Stored games across analyses (?timeClass=, ?repertoire=, ?source=, paged)
  POST /analyses/{id}/games/{game_index}/reanalyze  - Match against a chosen repertoire
  POST /moves/validate, GET /moves/legal  - Rules engine helpers
"""

import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import httpx
from fastapi import FastAPI, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

import config
from db import (
    delete_analysis,
    delete_category,
    delete_repertoire,
    get_analysis,
    get_connection,
    get_repertoire,
    list_analyses,
)
from errors import (
    ColorMismatch,
    DuplicateMove,
    InvalidMove,
    LichessError,
    LichessRateLimited,
    LichessUserNotFound,
    LimitReached,
    NotFound,
    PayloadTooLarge,
    RepertoireError,
    RootDeletion,
    ValidationError,
    VersionConflict,
)
from repertoire_service import (
    add_move,
    assign_category,
    create_category,
    create_repertoire,
    delete_game,
    delete_move,
    extract_subtree,
    get_category_with_repertoires,
    import_games,
    list_by_color,
    list_categories,
    list_games,
    mark_game_viewed,
    merge_repertoires,
    reanalyze_stored_game,
    rename_category,
    rename_repertoire,
    seed_repertoires,
    update_comment,
)
from lichess_import import fetch_user_games
from rules import legal_moves, validate_move
from templates import STARTER_TEMPLATES

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")

app = FastAPI(title="Chess Repertoire API", version="1.0.0")

ERROR_STATUS = {
    NotFound: 404,
    DuplicateMove: 409,
    InvalidMove: 400,
    RootDeletion: 400,
    VersionConflict: 409,
    ColorMismatch: 400,
    ValidationError: 400,
    LimitReached: 403,
    LichessUserNotFound: 404,
    LichessRateLimited: 429,
    LichessError: 502,
    PayloadTooLarge: 413,
}


@app.exception_handler(RepertoireError)
async def repertoire_error_handler(request, exc: RepertoireError):
    status = next((code for cls, code in ERROR_STATUS.items() if isinstance(exc, cls)), 500)
    return JSONResponse(status_code=status, content={"detail": str(exc), "error": type(exc).__name__})


class CreateRepertoireRequest(BaseModel):
    name: str
    color: str


class RenameRequest(BaseModel):
    name: str


class AddNodeRequest(BaseModel):
    parentId: str
    move: str
    fen: str | None = None
    moveNumber: int | None = None
    colorToMove: str | None = None


class CommentRequest(BaseModel):
    comment: str | None = None


class MergeRequest(BaseModel):
    ids: list[str]
    name: str


class ExtractRequest(BaseModel):
    nodeId: str
    name: str | None = None


class SeedRequest(BaseModel):
    templates: list[str] = Field(default_factory=list)


class AnalyzeRequest(BaseModel):
    username: str
    pgn: str
    filename: str = "upload.pgn"


class LichessImportRequest(BaseModel):
    username: str = Field(..., min_length=1)
    max: int | None = None
    since: int | None = None
    until: int | None = None
    rated: bool | None = None
    perfType: str | None = None


class CategoryRequest(BaseModel):
    name: str
    color: str


class AssignCategoryRequest(BaseModel):
    categoryId: str | None = None


class ReanalyzeRequest(BaseModel):
    repertoireId: str


class MoveRequest(BaseModel):
    fen: str
    move: str


@app.get("/repertoires")
def list_repertoires_endpoint(color: str | None = None):
    with get_connection() as conn:
        return [r.to_dict() for r in list_by_color(conn, color)]


@app.post("/repertoires", status_code=201)
def create_repertoire_endpoint(body: CreateRepertoireRequest):
    with get_connection() as conn:
        return create_repertoire(conn, body.name, body.color).to_dict()


@app.get("/repertoires/{repertoire_id}")
def get_repertoire_endpoint(repertoire_id: str):
    with get_connection() as conn:
        return get_repertoire(conn, repertoire_id).to_dict()


@app.patch("/repertoires/{repertoire_id}")
def rename_repertoire_endpoint(repertoire_id: str, body: RenameRequest):
    with get_connection() as conn:
        return rename_repertoire(conn, repertoire_id, body.name).to_dict()


@app.delete("/repertoires/{repertoire_id}", status_code=204)
def delete_repertoire_endpoint(repertoire_id: str):
    with get_connection() as conn:
        delete_repertoire(conn, repertoire_id)


@app.post("/repertoires/{repertoire_id}/nodes")
def add_node_endpoint(repertoire_id: str, body: AddNodeRequest):
    with get_connection() as conn:
        rep = add_move(
            conn, repertoire_id, body.parentId, body.move, body.fen, body.moveNumber, body.colorToMove
        )
        return rep.to_dict()


@app.delete("/repertoires/{repertoire_id}/nodes/{node_id}")
def delete_node_endpoint(repertoire_id: str, node_id: str):
    with get_connection() as conn:
        return delete_move(conn, repertoire_id, node_id).to_dict()


@app.put("/repertoires/{repertoire_id}/nodes/{node_id}/comment")
def comment_endpoint(repertoire_id: str, node_id: str, body: CommentRequest):
    with get_connection() as conn:
        return update_comment(conn, repertoire_id, node_id, body.comment).to_dict()


@app.post("/repertoires/merge", status_code=201)
def merge_endpoint(body: MergeRequest):
    with get_connection() as conn:
        return {"merged": merge_repertoires(conn, body.ids, body.name).to_dict()}


@app.post("/repertoires/{repertoire_id}/extract", status_code=201)
def extract_endpoint(repertoire_id: str, body: ExtractRequest):
    with get_connection() as conn:
        original, extracted = extract_subtree(conn, repertoire_id, body.nodeId, body.name)
        return {"original": original.to_dict(), "extracted": extracted.to_dict()}


@app.get("/templates")
def templates_endpoint():
    return [t.to_dict() for t in STARTER_TEMPLATES]


@app.post("/repertoires/seed", status_code=201)
def seed_endpoint(body: SeedRequest):
    with get_connection() as conn:
        return [r.to_dict() for r in seed_repertoires(conn, body.templates)]


def _store_import(username: str, filename: str, pgn: str) -> dict:
    with get_connection() as conn:
        summary, results = import_games(conn, username, filename, pgn)
        return {"summary": summary.to_dict(), "results": [r.to_dict() for r in results]}


@app.post("/analyses", status_code=201)
def analyze_endpoint(body: AnalyzeRequest):
    if len(body.pgn.encode("utf-8")) > config.MAX_PGN_FILE_SIZE:
        raise HTTPException(status_code=413, detail="PGN file too large")
    return _store_import(body.username, body.filename, body.pgn)


@app.post("/analyses/lichess", status_code=201)
async def lichess_import_endpoint(body: LichessImportRequest):
    async with httpx.AsyncClient(timeout=30.0) as session:
        pgn = await fetch_user_games(
            body.username,
            session,
            config.LICHESS_TOKEN,
            max_games=body.max,
            since=body.since,
            until=body.until,
            rated=body.rated,
            perf_type=body.perfType,
        )
    return await run_in_threadpool(_store_import, body.username, f"lichess:{body.username}", pgn)


@app.get("/analyses")
def list_analyses_endpoint(username: str | None = None):
    with get_connection() as conn:
        return [a.to_dict() for a in list_analyses(conn, username)]


@app.get("/analyses/{analysis_id}")
def get_analysis_endpoint(analysis_id: str):
    with get_connection() as conn:
        return get_analysis(conn, analysis_id).to_dict()


@app.delete("/analyses/{analysis_id}", status_code=204)
def delete_analysis_endpoint(analysis_id: str):
    with get_connection() as conn:
        delete_analysis(conn, analysis_id)


@app.delete("/analyses/{analysis_id}/games/{game_index}", status_code=204)
def delete_game_endpoint(analysis_id: str, game_index: int):
    with get_connection() as conn:
        delete_game(conn, analysis_id, game_index)


@app.post("/analyses/{analysis_id}/games/{game_index}/viewed")
def mark_viewed_endpoint(analysis_id: str, game_index: int):
    with get_connection() as conn:
        return mark_game_viewed(conn, analysis_id, game_index).to_dict()


@app.get("/games")
def list_games_endpoint(
    username: str | None = None,
    limit: int = Query(config.DEFAULT_GAMES_LIMIT, ge=1, le=config.MAX_GAMES_LIMIT),
    offset: int = Query(0, ge=0),
    timeClass: str | None = None,
    repertoire: str | None = None,
    source: str | None = None,
):
    with get_connection() as conn:
        return list_games(conn, username, limit, offset, timeClass, repertoire, source).to_dict()


@app.get("/categories")
def list_categories_endpoint(color: str | None = None):
    with get_connection() as conn:
        return [c.to_dict() for c in list_categories(conn, color)]


@app.post("/categories", status_code=201)
def create_category_endpoint(body: CategoryRequest):
    with get_connection() as conn:
        return create_category(conn, body.name, body.color).to_dict()


@app.get("/categories/{category_id}")
def get_category_endpoint(category_id: str):
    with get_connection() as conn:
        category, repertoires = get_category_with_repertoires(conn, category_id)
        return {**category.to_dict(), "repertoires": [r.to_dict() for r in repertoires]}


@app.patch("/categories/{category_id}")
def rename_category_endpoint(category_id: str, body: RenameRequest):
    with get_connection() as conn:
        return rename_category(conn, category_id, body.name).to_dict()


@app.delete("/categories/{category_id}", status_code=204)
def delete_category_endpoint(category_id: str):
    with get_connection() as conn:
        delete_category(conn, category_id)


@app.patch("/repertoires/{repertoire_id}/category")
def assign_category_endpoint(repertoire_id: str, body: AssignCategoryRequest):
    with get_connection() as conn:
        return assign_category(conn, repertoire_id, body.categoryId).to_dict()


@app.post("/analyses/{analysis_id}/games/{game_index}/reanalyze")
def reanalyze_endpoint(analysis_id: str, game_index: int, body: ReanalyzeRequest):
    with get_connection() as conn:
        return reanalyze_stored_game(conn, analysis_id, game_index, body.repertoireId).to_dict()


@app.post("/moves/validate")
def validate_move_endpoint(body: MoveRequest):
    return {"valid": True, "san": validate_move(body.fen, body.move)}


@app.get("/moves/legal")
def legal_moves_endpoint(fen: str = Query(..., min_length=1)):
    return {"moves": legal_moves(fen.replace("_", " "))}


@app.get("/health")
def health():
    return {"status": "ok"}
