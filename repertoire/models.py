"""Data models for repertoire trees and game analysis."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

Color = Literal["white", "black"]
ChessColor = Literal["w", "b"]
MoveStatus = Literal["in-repertoire", "out-of-repertoire", "opponent-new"]

WHITE: Color = "white"
BLACK: Color = "black"
COLORS = (WHITE, BLACK)

IN_REPERTOIRE: MoveStatus = "in-repertoire"
OUT_OF_REPERTOIRE: MoveStatus = "out-of-repertoire"
OPPONENT_NEW: MoveStatus = "opponent-new"

GameStatus = Literal["ok", "error", "new-line"]
GAME_OK: GameStatus = "ok"
GAME_ERROR: GameStatus = "error"
GAME_NEW_LINE: GameStatus = "new-line"


@dataclass
class RepertoireNode:
    """One reachable position in a repertoire. Links are node ids, never objects."""

    id: str
    fen: str
    move: str | None = None
    move_number: int = 0
    color_to_move: ChessColor = "w"
    parent_id: str | None = None
    children: list[str] = field(default_factory=list)
    transposition_of: str | None = None
    comment: str | None = None


@dataclass
class Metadata:
    total_nodes: int = 1
    total_moves: int = 0
    deepest_depth: int = 0

    def to_dict(self) -> dict:
        return {
            "totalNodes": self.total_nodes,
            "totalMoves": self.total_moves,
            "deepestDepth": self.deepest_depth,
        }


@dataclass
class RepertoireRef:
    """Lightweight pointer to a repertoire, attached to analyses."""

    id: str
    name: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name}


@dataclass
class Repertoire:
    """A named, colored repertoire owning exactly one tree.

    `metadata` is read from the tree, it is never stored on its own.
    """

    id: str
    name: str
    color: Color
    tree: "RepertoireTree"  # noqa: F821 - defined in tree.py
    created_at: datetime | None = None
    updated_at: datetime | None = None
    version: int = 0
    category_id: str | None = None

    @property
    def metadata(self) -> Metadata:
        return self.tree.metadata

    @property
    def ref(self) -> RepertoireRef:
        return RepertoireRef(id=self.id, name=self.name)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "treeData": self.tree.to_dict(),
            "metadata": self.metadata.to_dict(),
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
            "version": self.version,
            "categoryId": self.category_id,
        }


@dataclass
class Category:
    """A named group of same-color repertoires."""

    id: str
    name: str
    color: Color
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class Ply:
    """One half-move of a played game; `fen` is the short FEN before the move."""

    san: str
    fen: str = ""
    is_user_move: bool = False


@dataclass
class Game:
    headers: dict[str, str] = field(default_factory=dict)
    plies: list[Ply] = field(default_factory=list)
    user_color: Color = WHITE


@dataclass
class MoveAnalysis:
    ply_number: int
    san: str
    fen: str
    status: MoveStatus
    expected_move: str | None = None
    is_user_move: bool = False

    def to_dict(self) -> dict:
        out = {
            "plyNumber": self.ply_number,
            "san": self.san,
            "fen": self.fen,
            "status": self.status,
            "isUserMove": self.is_user_move,
        }
        if self.expected_move:
            out["expectedMove"] = self.expected_move
        return out

    @classmethod
    def from_dict(cls, data: dict) -> "MoveAnalysis":
        return cls(
            ply_number=data["plyNumber"],
            san=data["san"],
            fen=data.get("fen", ""),
            status=data["status"],
            expected_move=data.get("expectedMove") or None,
            is_user_move=data.get("isUserMove", False),
        )


@dataclass
class GameAnalysis:
    game_index: int = 0
    headers: dict[str, str] = field(default_factory=dict)
    moves: list[MoveAnalysis] = field(default_factory=list)
    user_color: Color = WHITE
    matched_repertoire: RepertoireRef | None = None
    match_score: int = 0
    divergence_index: int | None = None
    viewed: bool = False

    @property
    def status(self) -> GameStatus:
        """ok: never left the book; error: the user left it; new-line: the opponent did."""
        if self.divergence_index is None:
            return GAME_OK
        if self.moves[self.divergence_index].status == OUT_OF_REPERTOIRE:
            return GAME_ERROR
        return GAME_NEW_LINE

    def to_game(self) -> Game:
        """Rebuild the played game from a stored analysis, for reanalysis."""
        return Game(
            headers=dict(self.headers),
            plies=[Ply(san=m.san, fen=m.fen, is_user_move=m.is_user_move) for m in self.moves],
            user_color=self.user_color,
        )

    def to_dict(self) -> dict:
        return {
            "gameIndex": self.game_index,
            "headers": self.headers,
            "moves": [m.to_dict() for m in self.moves],
            "userColor": self.user_color,
            "matchedRepertoire": self.matched_repertoire.to_dict() if self.matched_repertoire else None,
            "matchScore": self.match_score,
            "divergenceIndex": self.divergence_index,
            "viewed": self.viewed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GameAnalysis":
        matched = data.get("matchedRepertoire")
        return cls(
            game_index=data.get("gameIndex", 0),
            headers=dict(data.get("headers") or {}),
            moves=[MoveAnalysis.from_dict(m) for m in data.get("moves", [])],
            user_color=data.get("userColor", WHITE),
            matched_repertoire=RepertoireRef(**matched) if matched else None,
            match_score=data.get("matchScore", 0),
            divergence_index=data.get("divergenceIndex"),
            viewed=data.get("viewed", False),
        )


@dataclass
class AnalysisSummary:
    id: str
    username: str
    filename: str
    game_count: int
    uploaded_at: datetime | None = None
    skipped_duplicates: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "filename": self.filename,
            "gameCount": self.game_count,
            "uploadedAt": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "skippedDuplicates": self.skipped_duplicates,
        }


@dataclass
class AnalysisDetail:
    id: str
    username: str
    filename: str
    game_count: int
    uploaded_at: datetime | None = None
    results: list[GameAnalysis] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "filename": self.filename,
            "gameCount": self.game_count,
            "uploadedAt": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class GameSummary:
    """One stored game as listed across all analyses."""

    analysis_id: str
    game_index: int
    white: str
    black: str
    result: str
    date: str
    user_color: Color
    status: GameStatus
    time_class: str
    source: str
    repertoire: RepertoireRef | None = None
    imported_at: datetime | None = None
    viewed: bool = False

    def to_dict(self) -> dict:
        return {
            "analysisId": self.analysis_id,
            "gameIndex": self.game_index,
            "white": self.white,
            "black": self.black,
            "result": self.result,
            "date": self.date,
            "userColor": self.user_color,
            "status": self.status,
            "timeClass": self.time_class,
            "source": self.source,
            "repertoireId": self.repertoire.id if self.repertoire else None,
            "repertoireName": self.repertoire.name if self.repertoire else None,
            "importedAt": self.imported_at.isoformat() if self.imported_at else None,
            "viewed": self.viewed,
        }


@dataclass
class GamesPage:
    games: list[GameSummary]
    total: int
    limit: int
    offset: int

    def to_dict(self) -> dict:
        return {
            "games": [g.to_dict() for g in self.games],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }
