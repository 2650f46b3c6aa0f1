"""
Rejection reasons for game actions.

Every expected failure carries a Reason and a message fit to show a player.
The controller catches GameError at its boundary and reports it as a result
instead of letting it propagate.
"""

from enum import Enum
from typing import Optional


class Reason(str, Enum):
    GAME_NOT_FOUND = "game_not_found"
    GAME_FULL = "game_full"
    NOT_YOUR_TURN = "not_your_turn"
    CELL_OCCUPIED = "cell_occupied"
    GAME_OVER = "game_over"
    STORE_UNAVAILABLE = "store_unavailable"
    IDENTITY_MISSING = "identity_missing"
    NOT_PERMITTED = "not_permitted"
    NOT_SEATED = "not_seated"
    INVALID_CELL = "invalid_cell"
    NO_ACTIVE_GAME = "no_active_game"


MESSAGES = {
    Reason.GAME_NOT_FOUND: "The game ID you entered does not exist or has been deleted.",
    Reason.GAME_FULL: "This game already has two players.",
    Reason.NOT_YOUR_TURN: "Not your turn! Wait for the other player to move.",
    Reason.CELL_OCCUPIED: "That square is already taken.",
    Reason.GAME_OVER: "The game is over. Start a new round to keep playing.",
    Reason.STORE_UNAVAILABLE: "Could not reach the game server. Please try again.",
    Reason.IDENTITY_MISSING: "Player ID not found. Please refresh and try again.",
    Reason.NOT_PERMITTED: "Only the player who created the game can restart it.",
    Reason.NOT_SEATED: "You are not a player in this game.",
    Reason.INVALID_CELL: "Squares are numbered 0 to 8.",
    Reason.NO_ACTIVE_GAME: "Create or join a game first.",
}


class GameError(Exception):
    def __init__(self, reason: Reason, detail: Optional[str] = None):
        self.reason = reason
        self.detail = detail or MESSAGES[reason]
        super().__init__(self.detail)


class StoreUnavailable(GameError):
    """The shared game store could not be reached or rejected the operation."""

    def __init__(self, detail: Optional[str] = None):
        super().__init__(Reason.STORE_UNAVAILABLE, detail)


class IdentityMissing(GameError):
    def __init__(self, detail: Optional[str] = None):
        super().__init__(Reason.IDENTITY_MISSING, detail)
