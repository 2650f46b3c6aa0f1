"""
Offline play: two players on one device, or one player against the computer.

Nothing here touches the store. The state is a board and the player to move,
kept in memory and thrown away on reset.
"""

import logging
import random
from dataclasses import dataclass, field
from typing import Optional, Sequence

from errors import GameError, Reason
from rules import available_moves, evaluate
from schemas import BOARD_SIZE, EMPTY_BOARD, Board, Cell, Outcome, Player, Win, place

logger = logging.getLogger(__name__)

CENTER = 4
CORNERS = (0, 2, 6, 8)


def _winning_move(board: Sequence[Cell], player: Player) -> Optional[int]:
    for i in available_moves(board):
        outcome = evaluate(place(board, i, player))
        if isinstance(outcome, Win) and outcome.player == player:
            return i
    return None


def find_best_move(board: Sequence[Cell], me: Player = Player.O, rng: Optional[random.Random] = None) -> Optional[int]:
    """Pick a move for the computer.

    Win if possible, otherwise block the opponent's win, otherwise take the
    center, then a random free corner, then any free square.
    Returns None on a full board.
    """
    rng = rng or random
    move = _winning_move(board, me)
    if move is not None:
        return move
    move = _winning_move(board, me.opposite())
    if move is not None:
        return move
    if board[CENTER] == Cell.EMPTY:
        return CENTER
    corners = [i for i in CORNERS if board[i] == Cell.EMPTY]
    if corners:
        return rng.choice(corners)
    free = available_moves(board)
    if free:
        return rng.choice(free)
    return None


@dataclass
class LocalGame:
    board: Board = EMPTY_BOARD
    turn: Player = Player.X
    computer: Optional[Player] = None
    rng: random.Random = field(default_factory=random.Random, repr=False)

    @property
    def outcome(self) -> Outcome:
        return evaluate(self.board)

    @property
    def computer_to_move(self) -> bool:
        return self.computer is not None and self.turn == self.computer and self.outcome is None

    def play(self, index: int) -> Outcome:
        """Place the current player's mark. Raises GameError on an illegal move."""
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < BOARD_SIZE:
            raise GameError(Reason.INVALID_CELL)
        if self.outcome is not None:
            raise GameError(Reason.GAME_OVER)
        if self.board[index] != Cell.EMPTY:
            raise GameError(Reason.CELL_OCCUPIED)
        self.board = place(self.board, index, self.turn)
        self.turn = self.turn.opposite()
        return self.outcome

    def play_human(self, index: int) -> Outcome:
        if self.computer_to_move:
            raise GameError(Reason.NOT_YOUR_TURN, "The computer is thinking...")
        return self.play(index)

    def computer_move(self) -> Optional[int]:
        """Let the computer take its turn; returns the square it took, if any."""
        if not self.computer_to_move:
            return None
        index = find_best_move(self.board, self.computer, self.rng)
        if index is not None:
            self.play(index)
            logger.debug("Computer took %d", index)
        return index

    def reset(self) -> None:
        self.board = EMPTY_BOARD
        self.turn = Player.X
