"""Tests for offline play and the computer opponent."""

import random

import pytest

from errors import GameError, Reason
from local_game import CORNERS, LocalGame, find_best_move
from schemas import EMPTY_BOARD, Cell, Draw, Player, Win

X, O, E = Cell.X, Cell.O, Cell.EMPTY


def test_players_alternate():
    game = LocalGame()
    game.play(0)
    game.play(4)
    assert game.board[0] is X and game.board[4] is O
    assert game.turn is Player.X


def test_illegal_moves_raise_with_reason():
    game = LocalGame()
    game.play(0)
    with pytest.raises(GameError) as excinfo:
        game.play(0)
    assert excinfo.value.reason is Reason.CELL_OCCUPIED
    with pytest.raises(GameError) as excinfo:
        game.play(12)
    assert excinfo.value.reason is Reason.INVALID_CELL


def test_no_moves_after_a_win():
    game = LocalGame()
    for index in (0, 3, 1, 4):
        game.play(index)
    assert game.play(2) == Win(player=Player.X, line=(0, 1, 2))
    with pytest.raises(GameError) as excinfo:
        game.play(8)
    assert excinfo.value.reason is Reason.GAME_OVER


def test_reset_clears_board_and_turn():
    game = LocalGame()
    game.play(0)
    game.reset()
    assert game.board == EMPTY_BOARD
    assert game.turn is Player.X
    assert game.outcome is None


def test_computer_takes_the_win():
    board = (O, O, E, X, X, E, X, E, E)
    assert find_best_move(board, Player.O) == 2


def test_computer_blocks():
    board = (X, X, E, E, O, E, E, E, E)
    assert find_best_move(board, Player.O) == 2


def test_computer_prefers_center_then_corner():
    assert find_best_move((X, E, E, E, E, E, E, E, E), Player.O) == 4
    board = (E, E, E, E, X, E, E, E, E)
    assert find_best_move(board, Player.O, random.Random(1)) in CORNERS


def test_computer_on_full_board():
    assert find_best_move((X, O, X, X, O, O, O, X, X), Player.O) is None


def test_game_against_computer_finishes():
    game = LocalGame(computer=Player.O, rng=random.Random(7))
    human = random.Random(3)
    while game.outcome is None:
        if game.computer_to_move:
            assert game.computer_move() is not None
        else:
            with pytest.raises(GameError):
                game.play_human(-1)
            free = [i for i, cell in enumerate(game.board) if cell is E]
            game.play_human(human.choice(free))
    assert isinstance(game.outcome, (Win, Draw))
    assert game.computer_move() is None


def test_human_cannot_play_on_computer_turn():
    game = LocalGame(computer=Player.O)
    game.play_human(0)
    with pytest.raises(GameError) as excinfo:
        game.play_human(1)
    assert excinfo.value.reason is Reason.NOT_YOUR_TURN
    assert game.computer_move() == 4
    assert game.computer_move() is None
