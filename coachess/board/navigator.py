from __future__ import annotations

import logging

import chess

from coachess.board.validation import build_move, san_history, validate_lesson_pgn, validate_puzzle_fen
from coachess.core.errors import InvalidPosition

logger = logging.getLogger(__name__)


class MoveNavigator:
    """Step through a lesson's main line, with optional side exploration.

    Every position on the main line is rebuilt by replaying SAN moves from the
    starting position, so the board never drifts from the recorded game.
    """

    def __init__(self, pgn: str | None = None, fen: str | None = None):
        self.start_fen = chess.STARTING_FEN
        self.moves: list[str] = []
        try:
            if pgn:
                game = validate_lesson_pgn(pgn)
                self.start_fen = game.board().fen()
                self.moves = san_history(game)
            elif fen:
                self.start_fen = validate_puzzle_fen(fen).fen()
        except InvalidPosition as exc:
            logger.warning(f"Falling back to the starting position: {exc}")
            self.start_fen = chess.STARTING_FEN
            self.moves = []

        self.current_move = 0
        self.board = chess.Board(self.start_fen)
        self.main_line_fen = self.board.fen()
        self.is_exploring = False

    @property
    def fen(self) -> str:
        return self.board.fen()

    @property
    def last_move(self) -> str | None:
        if self.current_move == 0:
            return None
        return self.moves[self.current_move - 1]

    @property
    def at_start(self) -> bool:
        return self.current_move == 0

    @property
    def at_end(self) -> bool:
        return self.current_move == len(self.moves)

    def go_to(self, index: int) -> str:
        index = max(0, min(index, len(self.moves)))
        board = chess.Board(self.start_fen)
        for san in self.moves[:index]:
            board.push_san(san)
        self.board = board
        self.current_move = index
        self.main_line_fen = board.fen()
        self.is_exploring = False
        return self.fen

    def go_to_start(self) -> str:
        return self.go_to(0)

    def go_to_previous(self) -> str:
        return self.go_to(self.current_move - 1)

    def go_to_next(self) -> str:
        return self.go_to(self.current_move + 1)

    def go_to_end(self) -> str:
        return self.go_to(len(self.moves))

    def explore(self, from_square: str, to_square: str) -> bool:
        move = build_move(self.board, from_square, to_square)
        if move is None:
            return False
        self.board.push(move)
        self.is_exploring = True
        return True

    def reset_to_main_line(self) -> str:
        self.board = chess.Board(self.main_line_fen)
        self.is_exploring = False
        return self.fen
