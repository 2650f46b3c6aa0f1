"""
Terminal-state evaluation for a 3x3 board.

Indices are laid out row by row:

    0 1 2
    3 4 5
    6 7 8
"""

from typing import List, Sequence, Tuple

from schemas import Cell, Draw, Outcome, Player, Win

WIN_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2), (3, 4, 5), (6, 7, 8),  # rows
    (0, 3, 6), (1, 4, 7), (2, 5, 8),  # cols
    (0, 4, 8), (2, 4, 6),             # diags
)


def evaluate(board: Sequence[Cell]) -> Outcome:
    """Return the first completed line as a Win, a Draw on a full board, else None.

    A board reached through legal play has at most one winner. On a
    corrupted board with several completed lines the first line in
    WIN_LINES order is reported; callers must not rely on which.
    """
    for a, b, c in WIN_LINES:
        if board[a] != Cell.EMPTY and board[a] == board[b] == board[c]:
            return Win(player=Player(board[a].value), line=(a, b, c))
    if all(cell != Cell.EMPTY for cell in board):
        return Draw()
    return None


def available_moves(board: Sequence[Cell]) -> List[int]:
    return [i for i, cell in enumerate(board) if cell == Cell.EMPTY]
