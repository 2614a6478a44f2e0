from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import chess

from coachess.board.validation import build_move, validate_puzzle_fen


class PuzzleFeedback(str, Enum):
    INCORRECT = "incorrect"
    CORRECT = "correct"
    CHECK = "check"
    SOLVED = "solved"


@dataclass
class PuzzleAttempt:
    feedback: PuzzleFeedback
    message: str
    fen: str
    san: str | None = None


class PuzzleSession:
    """A player working through one puzzle position.

    Any legal move is accepted; the puzzle counts as solved on checkmate.
    """

    def __init__(self, fen: str):
        self.start_fen = validate_puzzle_fen(fen).fen()
        self.reset()

    def reset(self) -> None:
        self.board = chess.Board(self.start_fen)
        self.move_count = 0
        self.solved = False

    @property
    def fen(self) -> str:
        return self.board.fen()

    def attempt(self, from_square: str, to_square: str) -> PuzzleAttempt:
        if self.solved:
            return PuzzleAttempt(PuzzleFeedback.SOLVED, "Puzzle already solved.", self.fen)

        move = build_move(self.board, from_square, to_square)
        if move is None:
            return PuzzleAttempt(PuzzleFeedback.INCORRECT, "Illegal move! Try again.", self.fen)

        san = self.board.san(move)
        self.board.push(move)
        self.move_count += 1

        if self.board.is_checkmate():
            self.solved = True
            return PuzzleAttempt(PuzzleFeedback.SOLVED, "Checkmate! Puzzle solved!", self.fen, san)
        if self.board.is_check():
            return PuzzleAttempt(PuzzleFeedback.CHECK, "Check! Good move!", self.fen, san)
        return PuzzleAttempt(PuzzleFeedback.CORRECT, "Good move! Continue...", self.fen, san)
