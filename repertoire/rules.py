"""Rules engine adapter: every legality question is answered by python-chess."""

import chess

from errors import InvalidMove

STARTING_FEN = chess.STARTING_FEN


def short_fen(fen: str) -> str:
    """Keep board, side to move, castling and en passant; drop the clocks."""
    parts = fen.split()
    if len(parts) >= 4:
        return " ".join(parts[:4])
    return fen


def ensure_full_fen(fen: str) -> str:
    """Pad a short FEN with clocks so it can be loaded into a board."""
    parts = fen.split()
    if len(parts) >= 6:
        return fen
    return " ".join(parts[:4]) + " 0 1"


def board_from_fen(fen: str) -> chess.Board:
    try:
        return chess.Board(ensure_full_fen(fen))
    except ValueError as e:
        raise InvalidMove(f"invalid FEN {fen!r}: {e}") from e


def position_key(board: chess.Board) -> str:
    """Short FEN of a board; en passant is only kept when a capture is legal."""
    return short_fen(board.fen())


def apply_move(fen: str, move: str) -> tuple[str, str]:
    """
    Play `move` on `fen`.

    Returns (canonical SAN, resulting short FEN) or raises InvalidMove. Any
    spelling python-chess understands is accepted ("Bb5" for "Bb5+", "e2e4",
    "0-0"), the returned SAN is the one the board writes.
    """
    board = board_from_fen(fen)
    try:
        parsed = board.parse_san(move)
    except ValueError as e:
        raise InvalidMove(f"{move} is not playable in {short_fen(fen)}: {e}") from e
    san = board.san(parsed)
    board.push(parsed)
    return san, position_key(board)


def same_position(fen_a: str, fen_b: str) -> bool:
    """Compare two FENs as positions, ignoring clocks and unusable en passant squares."""
    return position_key(board_from_fen(fen_a)) == position_key(board_from_fen(fen_b))


def side_to_move(fen: str) -> str:
    parts = fen.split()
    return "b" if len(parts) >= 2 and parts[1] == "b" else "w"


def legal_moves(fen: str) -> list[str]:
    board = board_from_fen(fen)
    return [board.san(move) for move in board.legal_moves]


def validate_move(fen: str, move: str) -> str:
    """Canonical SAN of `move` in `fen`. Raises InvalidMove."""
    san, _ = apply_move(fen, move)
    return san


STARTING_SHORT_FEN = position_key(chess.Board())
