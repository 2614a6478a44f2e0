"""PGN/FEN checks for authored content, delegated to python-chess."""

from __future__ import annotations

import io
from typing import Any

import chess
import chess.pgn

from coachess.core.errors import InvalidPosition
from coachess.schemas.content import ContentType


def validate_lesson_pgn(pgn: str) -> chess.pgn.Game:
    game = chess.pgn.read_game(io.StringIO(pgn))
    if game is None:
        raise InvalidPosition("PGN contains no game")
    if game.errors:
        raise InvalidPosition(f"Invalid PGN: {game.errors[0]}")
    if game.next() is None:
        raise InvalidPosition("PGN contains no moves")
    return game


def san_history(game: chess.pgn.Game) -> list[str]:
    board = game.board()
    moves = []
    for move in game.mainline_moves():
        moves.append(board.san(move))
        board.push(move)
    return moves


def validate_puzzle_fen(fen: str) -> chess.Board:
    try:
        board = chess.Board(fen.strip())
    except ValueError as exc:
        raise InvalidPosition(f"Invalid FEN: {exc}") from exc
    if not board.is_valid():
        raise InvalidPosition(f"Illegal position: {board.status()!r}")
    return board


def build_move(board: chess.Board, from_square: str, to_square: str) -> chess.Move | None:
    """Return the legal move between two squares, pawns promoting to a queen."""
    try:
        source = chess.parse_square(from_square)
        target = chess.parse_square(to_square)
    except ValueError:
        return None
    promotion = None
    piece = board.piece_at(source)
    if piece is not None and piece.piece_type == chess.PAWN and chess.square_rank(target) in (0, 7):
        promotion = chess.QUEEN
    move = chess.Move(source, target, promotion=promotion)
    return move if move in board.legal_moves else None


def prepare_content(content_type: ContentType, pgn: str | None, fen: str | None) -> dict[str, Any]:
    """Validate the chess payload and return the fields to store.

    Lessons keep their PGN plus a snapshot of the starting position; puzzles
    keep only the position.
    """
    if content_type == ContentType.LESSON:
        if not pgn or not pgn.strip():
            raise InvalidPosition("A lesson needs a PGN")
        game = validate_lesson_pgn(pgn)
        return {"pgn": pgn.strip(), "fen": game.board().fen()}
    if not fen or not fen.strip():
        raise InvalidPosition("A puzzle needs a FEN position")
    board = validate_puzzle_fen(fen)
    return {"pgn": None, "fen": board.fen()}
