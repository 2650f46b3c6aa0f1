"""Tests for the game record model and board codec."""

import pytest
from pydantic import ValidationError

from schemas import (
    EMPTY_BOARD, Cell, Draw, GameRecord, Player, Slots, Win,
    decode_board, encode_board, new_record, place,
)
from store import SERVER_TIMESTAMP

X, O, E = Cell.X, Cell.O, Cell.EMPTY


def stored_board(*cells):
    return {str(i): cell for i, cell in enumerate(cells)}


def test_board_round_trip_with_all_keys():
    raw = stored_board("X", "", "O", "", "X", "", "O", "", "")
    assert encode_board(decode_board(raw)) == raw


def test_missing_keys_decode_as_empty():
    raw = {"0": "X", "1": "O", "2": "X"}
    assert decode_board(raw) == (X, O, X, E, E, E, E, E, E)


def test_absent_board_is_empty():
    assert decode_board(None) == EMPTY_BOARD
    assert GameRecord.from_wire({"turn": "X", "slots": {"X": "a"}}).board == EMPTY_BOARD


def test_legacy_array_board_is_padded():
    assert decode_board(["X", None, "O"]) == (X, E, O, E, E, E, E, E, E)


def test_integer_keys_and_null_cells():
    assert decode_board({0: "O", 4: None, 8: "X"}) == (O, E, E, E, E, E, E, E, X)


def test_invalid_cell_is_rejected():
    with pytest.raises(ValueError):
        decode_board({"0": "Z"})


def test_encode_always_writes_nine_keys():
    assert list(encode_board(EMPTY_BOARD)) == [str(i) for i in range(9)]


def test_place_copies_the_board():
    board = place(EMPTY_BOARD, 4, Player.O)
    assert board[4] is O
    assert EMPTY_BOARD[4] is E


def test_to_wire_shape():
    record = GameRecord(
        board=(X, X, X, O, O, E, E, E, E),
        turn=Player.O,
        outcome=Win(player=Player.X, line=(0, 1, 2)),
        slots=Slots(X="a", O="b"),
        created_at=17,
    )
    assert record.to_wire() == {
        "board": stored_board("X", "X", "X", "O", "O", "", "", "", ""),
        "turn": "O",
        "outcome": {"kind": "win", "player": "X", "line": [0, 1, 2]},
        "slots": {"X": "a", "O": "b"},
        "createdAt": 17,
    }


def test_to_wire_with_server_timestamp():
    data = new_record(Slots(X="a")).to_wire(created_at=SERVER_TIMESTAMP)
    assert data["createdAt"] == SERVER_TIMESTAMP
    assert data["outcome"] is None
    assert data["slots"] == {"X": "a", "O": None}


def test_wire_round_trip():
    record = GameRecord(board=place(EMPTY_BOARD, 0, Player.X), turn=Player.O, slots=Slots(X="a"), created_at=3)
    assert GameRecord.from_wire(record.to_wire()) == record


def test_draw_outcome_decodes():
    record = GameRecord.from_wire({"outcome": {"kind": "draw"}})
    assert record.outcome == Draw()


def test_slots_dropped_by_store_default_to_empty():
    record = GameRecord.from_wire({"board": stored_board(*[""] * 9), "turn": "X", "slots": {"X": "a"}})
    assert record.slots == Slots(X="a", O=None)
    assert GameRecord.from_wire({"slots": None}).slots == Slots()


def test_legacy_record_shape():
    legacy = {
        "board": ["X", "X", "X", "O", "O"],
        "xIsNext": False,
        "winner": "X",
        "winningLine": [0, 1, 2],
        "isDraw": False,
        "players": {"X": "a", "O": "b"},
        "createdAt": 1700000000000,
    }
    record = GameRecord.from_wire(legacy)
    assert record.turn is Player.O
    assert record.outcome == Win(player=Player.X, line=(0, 1, 2))
    assert record.slots.seat_of("b") is Player.O
    assert record.created_at == 1700000000000


def test_legacy_draw_and_open_game():
    assert GameRecord.from_wire({"xIsNext": True, "winner": None, "isDraw": True}).outcome == Draw()
    open_game = GameRecord.from_wire({"xIsNext": True, "winner": None, "winningLine": None, "isDraw": False})
    assert open_game.outcome is None
    assert open_game.turn is Player.X


def test_malformed_record_raises():
    with pytest.raises(ValidationError):
        GameRecord.from_wire({"turn": "Q"})
    with pytest.raises(ValidationError):
        GameRecord.from_wire({"board": 42})


def test_seat_lookup():
    slots = Slots(X="a", O="b")
    assert slots.seat_of("a") is Player.X
    assert slots.seat_of("c") is None
    assert slots.seat_of(None) is None
    assert slots.holder(Player.O) == "b"
    assert slots.full
    assert not Slots(X="a").full


def test_new_record_keeps_seats_only():
    record = new_record(Slots(X="a", O="b"))
    assert record.board == EMPTY_BOARD
    assert record.turn is Player.X
    assert record.outcome is None
    assert record.slots == Slots(X="a", O="b")
