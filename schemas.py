"""
Game Record Schemas for online Tic-Tac-Toe

Each Pydantic model mirrors one piece of a game record in the shared store.
Records live under the "games" collection, keyed by game id.

- GameRecord -> "games/<game_id>"
- Slots      -> "games/<game_id>/slots"

The board is stored as a mapping of index -> cell with all nine keys present.
Array encodings lose trailing empty slots on some stores, so reads accept
both shapes and writes only ever emit the mapping.
"""

from enum import Enum
from datetime import datetime
from typing import Annotated, Any, Dict, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator


BOARD_SIZE = 9


class Player(str, Enum):
    X = "X"
    O = "O"

    def opposite(self) -> "Player":
        return Player.O if self is Player.X else Player.X


class Cell(str, Enum):
    EMPTY = ""
    X = "X"
    O = "O"

    @classmethod
    def of(cls, player: Player) -> "Cell":
        return cls(player.value)

    @property
    def player(self) -> Optional[Player]:
        return None if self is Cell.EMPTY else Player(self.value)


Board = Tuple[Cell, ...]

EMPTY_BOARD: Board = (Cell.EMPTY,) * BOARD_SIZE


class Win(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["win"] = "win"
    player: Player
    line: Tuple[int, int, int]


class Draw(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["draw"] = "draw"


# None while the game is still in play
Outcome = Optional[Union[Win, Draw]]


class Slots(BaseModel):
    X: Optional[str] = Field(None, description="Identity seated as X (the creator)")
    O: Optional[str] = Field(None, description="Identity seated as O (the joiner)")

    def seat_of(self, identity: Optional[str]) -> Optional[Player]:
        if not identity:
            return None
        if self.X == identity:
            return Player.X
        if self.O == identity:
            return Player.O
        return None

    def holder(self, player: Player) -> Optional[str]:
        return self.X if player is Player.X else self.O

    @property
    def full(self) -> bool:
        return bool(self.X and self.O)


# ---------------------------
# Board codec
# ---------------------------

def _to_cell(value: Any) -> Cell:
    if value is None or value == "":
        return Cell.EMPTY
    if isinstance(value, Cell):
        return value
    if isinstance(value, Player):
        return Cell.of(value)
    if value in ("X", "O"):
        return Cell(value)
    raise ValueError(f"Invalid cell value: {value!r}")


def decode_board(raw: Any) -> Board:
    """Decode a stored board into nine cells.

    Accepts an absent board (all empty), a mapping with string or integer
    keys where missing keys are empty, and the legacy array shape, which
    may be shorter than nine entries.
    """
    if raw is None:
        return EMPTY_BOARD
    if isinstance(raw, dict):
        return tuple(_to_cell(raw.get(str(i), raw.get(i))) for i in range(BOARD_SIZE))
    if isinstance(raw, (list, tuple)):
        return tuple(_to_cell(raw[i] if i < len(raw) else None) for i in range(BOARD_SIZE))
    raise ValueError(f"Board must be a mapping or a sequence, got {type(raw).__name__}")


def encode_board(board: Sequence[Cell]) -> Dict[str, str]:
    if len(board) != BOARD_SIZE:
        raise ValueError(f"Board must have {BOARD_SIZE} cells, got {len(board)}")
    return {str(i): _to_cell(cell).value for i, cell in enumerate(board)}


def place(board: Sequence[Cell], index: int, player: Player) -> Board:
    """Return a copy of the board with one cell set to the player's mark."""
    cells = list(board)
    cells[index] = Cell.of(player)
    return tuple(cells)


# ---------------------------
# Game record
# ---------------------------

class GameRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    board: Board = Field(default=EMPTY_BOARD, description="Nine cells, index 0 top-left to 8 bottom-right")
    turn: Player = Field(Player.X, description="Player to move next")
    outcome: Optional[Annotated[Union[Win, Draw], Field(discriminator="kind")]] = Field(
        None, description="Win or draw once the game has ended"
    )
    slots: Slots = Field(default_factory=Slots)
    created_at: Optional[int] = Field(None, alias="createdAt", description="Store-assigned creation time (ms)")

    @model_validator(mode="before")
    @classmethod
    def upgrade_legacy_shape(cls, values: Any) -> Any:
        # Older clients wrote xIsNext/winner/winningLine/isDraw/players
        if not isinstance(values, dict):
            return values
        values = dict(values)
        if "players" in values and "slots" not in values:
            values["slots"] = values.pop("players")
        if "xIsNext" in values and "turn" not in values:
            values["turn"] = Player.X if values.pop("xIsNext") else Player.O
        if "outcome" not in values and any(k in values for k in ("winner", "winningLine", "isDraw")):
            winner = values.pop("winner", None)
            line = values.pop("winningLine", None)
            is_draw = values.pop("isDraw", False)
            if winner and line:
                values["outcome"] = {"kind": "win", "player": winner, "line": line}
            elif is_draw:
                values["outcome"] = {"kind": "draw"}
            else:
                values["outcome"] = None
        return values

    @field_validator("board", mode="before")
    @classmethod
    def decode_stored_board(cls, value: Any) -> Board:
        return decode_board(value)

    @field_validator("slots", mode="before")
    @classmethod
    def default_slots(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("created_at", mode="before")
    @classmethod
    def coerce_millis(cls, value: Any) -> Any:
        if isinstance(value, datetime):
            return int(value.timestamp() * 1000)
        if isinstance(value, float):
            return int(value)
        return value

    @field_serializer("board")
    def encode_stored_board(self, board: Board) -> Dict[str, str]:
        return encode_board(board)

    @classmethod
    def from_wire(cls, data: Dict[str, Any]) -> "GameRecord":
        return cls.model_validate(data)

    def to_wire(self, created_at: Any = None) -> Dict[str, Any]:
        """Dump the canonical stored shape.

        ``created_at`` overrides the stored timestamp, typically with the
        store's server-timestamp sentinel on create and reset.
        """
        data = self.model_dump(mode="json", by_alias=True)
        if created_at is not None:
            data["createdAt"] = created_at
        return data


def new_record(slots: Slots) -> GameRecord:
    """Fresh record: empty board, X to move, no outcome, seats kept."""
    return GameRecord(slots=slots.model_copy())
