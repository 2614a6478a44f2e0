from coachess.board.navigator import MoveNavigator
from coachess.board.puzzle import PuzzleAttempt, PuzzleFeedback, PuzzleSession
from coachess.board.validation import prepare_content, validate_lesson_pgn, validate_puzzle_fen

__all__ = [
    "MoveNavigator",
    "PuzzleAttempt",
    "PuzzleFeedback",
    "PuzzleSession",
    "prepare_content",
    "validate_lesson_pgn",
    "validate_puzzle_fen",
]
