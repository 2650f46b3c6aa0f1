"""
Online game synchronization.

Two clients share one game record in the store and mutate it with no arbiter
between them. The controller checks seat and turn rules against its local
view before every write, mirrors the record from the push subscription, and
reports every rejected action as an ActionResult carrying a Reason.

Writes are last-write-wins. Two clients claiming the O seat at the same time,
or both moving from a stale view, can overwrite each other; nothing here
guards against that beyond the turn check on the local view.
"""

import functools
import logging
import math
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional

import anyio
from anyio.abc import ObjectReceiveStream
from pydantic import ValidationError

from errors import MESSAGES, GameError, Reason
from identity import Session, random_token
from rules import evaluate
from schemas import BOARD_SIZE, Board, Cell, GameRecord, Outcome, Player, Slots, new_record, place
from store import SERVER_TIMESTAMP, GameRecordStore, Subscription

logger = logging.getLogger(__name__)

GAMES_PATH = "games"
GAME_ID_LENGTH = 7


def new_game_id() -> str:
    return random_token(GAME_ID_LENGTH)


class GamePhase(str, Enum):
    ABSENT = "absent"
    CREATED = "created"      # waiting for O
    ACTIVE = "active"
    FINISHED = "finished"
    LEFT = "left"            # local only, the record is untouched


def phase_of(record: Optional[GameRecord]) -> GamePhase:
    if record is None:
        return GamePhase.ABSENT
    if record.outcome is not None:
        return GamePhase.FINISHED
    if record.slots.O is None:
        return GamePhase.CREATED
    return GamePhase.ACTIVE


@dataclass(frozen=True)
class GameView:
    """What the client shows: the mirrored record and this client's seat."""

    game_id: Optional[str]
    phase: GamePhase
    record: Optional[GameRecord] = None
    seat: Optional[Player] = None
    reason: Optional[Reason] = None
    message: str = ""

    @property
    def board(self) -> Optional[Board]:
        return self.record.board if self.record is not None else None

    @property
    def turn(self) -> Optional[Player]:
        return self.record.turn if self.record is not None else None

    @property
    def outcome(self) -> Outcome:
        # Stored outcome is what the other client saw; fine for display
        return self.record.outcome if self.record is not None else None

    @property
    def my_turn(self) -> bool:
        return self.phase is GamePhase.ACTIVE and self.seat is not None and self.seat == self.turn


@dataclass(frozen=True)
class ActionResult:
    ok: bool
    reason: Optional[Reason] = None
    message: str = ""
    game_id: Optional[str] = None
    seat: Optional[Player] = None
    wrote: bool = False
    record: Optional[GameRecord] = field(default=None, repr=False)

    @classmethod
    def rejected(cls, error: GameError, game_id: Optional[str] = None) -> "ActionResult":
        return cls(ok=False, reason=error.reason, message=error.detail, game_id=game_id)


UpdateHandler = Callable[[GameView], Any]


def reported(op):
    """Turn GameError raised inside an operation into a rejected ActionResult."""

    @functools.wraps(op)
    async def wrapper(self: "SyncController", *args, **kwargs) -> ActionResult:
        try:
            return await op(self, *args, **kwargs)
        except GameError as exc:
            game_id = args[0] if args and isinstance(args[0], str) else self.game_id
            if exc.reason is Reason.STORE_UNAVAILABLE:
                logger.warning("%s(%s) failed: %s", op.__name__, game_id, exc.detail)
            else:
                logger.info("%s(%s) rejected: %s", op.__name__, game_id, exc.reason.value)
            return ActionResult.rejected(exc, game_id)

    return wrapper


class SyncController:
    """Drives one online game for one client.

    The controller follows at most one game at a time. create() and join()
    point it at a game, subscribe() mirrors the record, move() and reset()
    write full records, and leave() drops everything local.
    """

    def __init__(self, store: GameRecordStore, session: Session) -> None:
        self.store = store
        self.session = session
        self.game_id: Optional[str] = None
        self.record: Optional[GameRecord] = None
        self.seat: Optional[Player] = None
        self.phase = GamePhase.ABSENT
        self._subscription: Optional[Subscription] = None
        self._token: Optional[object] = None
        self._on_update: Optional[UpdateHandler] = None

    @staticmethod
    def path(game_id: str, *children: str) -> str:
        return "/".join((GAMES_PATH, game_id) + children)

    def view(self, reason: Optional[Reason] = None, message: str = "") -> GameView:
        return GameView(
            game_id=self.game_id,
            phase=self.phase,
            record=self.record,
            seat=self.seat,
            reason=reason,
            message=message,
        )

    # ---------------------------
    # Local state
    # ---------------------------

    def _release(self) -> None:
        self._token = None
        self._on_update = None
        if self._subscription is not None:
            self.session.release(self._subscription)
            self._subscription = None

    def _point_at(self, game_id: str, record: GameRecord, seat: Optional[Player]) -> None:
        if self.game_id is not None and self.game_id != game_id:
            self._release()
        self.game_id = game_id
        self.record = record
        self.seat = seat
        self.phase = phase_of(record)

    def _clear(self, phase: GamePhase) -> None:
        self._release()
        self.game_id = None
        self.record = None
        self.seat = None
        self.phase = phase

    @staticmethod
    def _decode(game_id: str, raw: Optional[Any]) -> Optional[GameRecord]:
        if raw is None:
            return None
        try:
            return GameRecord.from_wire(raw)
        except ValidationError as exc:
            logger.warning("Ignoring malformed record for game %s: %s", game_id, exc.errors()[:3])
            return None

    @property
    def subscribed(self) -> bool:
        return self._token is not None

    def _adopt(self, game_id: str, based_on: GameRecord, written: GameRecord) -> None:
        # A push may have landed while the write was in flight; keep the newer view
        if game_id != self.game_id:
            return
        if not self.subscribed or self.record is based_on:
            self.record = written
            self.phase = phase_of(written)

    async def _load(self, game_id: Optional[str]) -> GameRecord:
        if not game_id:
            raise GameError(Reason.NO_ACTIVE_GAME)
        # The mirror is only current while a subscription feeds it
        if game_id == self.game_id and self.subscribed and self.record is not None:
            return self.record
        record = self._decode(game_id, await self.store.read_once(self.path(game_id)))
        if record is None:
            raise GameError(Reason.GAME_NOT_FOUND)
        return record

    # ---------------------------
    # Operations
    # ---------------------------

    @reported
    async def create(self) -> ActionResult:
        me = self.session.identity
        game_id = new_game_id()
        record = new_record(Slots(X=me))
        # One full put, so a failed create leaves nothing behind
        await self.store.put(self.path(game_id), record.to_wire(created_at=SERVER_TIMESTAMP))
        self._point_at(game_id, record, Player.X)
        logger.info("Created game %s", game_id)
        return ActionResult(ok=True, game_id=game_id, seat=Player.X, wrote=True, record=record)

    @reported
    async def join(self, game_id: str) -> ActionResult:
        game_id = (game_id or "").strip()
        if not game_id:
            raise GameError(Reason.GAME_NOT_FOUND, "Please enter a game ID to join.")
        me = self.session.identity
        record = self._decode(game_id, await self.store.read_once(self.path(game_id)))
        if record is None:
            raise GameError(Reason.GAME_NOT_FOUND)

        seat = record.slots.seat_of(me)
        if seat is not None:
            self._point_at(game_id, record, seat)
            logger.info("Rejoined game %s as %s", game_id, seat.value)
            return ActionResult(ok=True, game_id=game_id, seat=seat, record=record)

        if record.slots.O is not None:
            raise GameError(Reason.GAME_FULL)

        # Last write wins: a concurrent joiner can overwrite this claim
        await self.store.put_child(self.path(game_id, "slots", "O"), me)
        record = record.model_copy(update={"slots": record.slots.model_copy(update={"O": me})})
        self._point_at(game_id, record, Player.O)
        logger.info("Joined game %s as O", game_id)
        return ActionResult(ok=True, game_id=game_id, seat=Player.O, wrote=True, record=record)

    @reported
    async def subscribe(self, game_id: str, on_update: UpdateHandler) -> ActionResult:
        """Mirror the record of game_id and call on_update with every new view.

        The first view arrives right away. If the record disappears or turns
        unreadable, the view comes with phase ABSENT and reason GAME_NOT_FOUND,
        and the controller lets go of the game.
        """
        me = self.session.identity
        self._release()
        if self.game_id != game_id:
            self.game_id, self.record, self.seat, self.phase = game_id, None, None, GamePhase.ABSENT
        token = self._token = object()
        self._on_update = on_update

        def _push(raw: Optional[Any]) -> None:
            self._handle_push(token, game_id, me, raw)

        def _failed(error: GameError) -> None:
            self._handle_failure(token, game_id, error)

        try:
            subscription = await self.store.subscribe(self.path(game_id), _push, on_error=_failed)
        except GameError:
            self._release()
            raise
        if token is not self._token:
            # Released while subscribing (the first push found no record)
            subscription.close()
            return ActionResult(ok=False, reason=Reason.GAME_NOT_FOUND,
                                message=MESSAGES[Reason.GAME_NOT_FOUND], game_id=game_id)
        self._subscription = self.session.track(subscription)
        logger.debug("Subscribed to game %s", game_id)
        return ActionResult(ok=True, game_id=game_id, seat=self.seat, record=self.record)

    def _notify(self, handler: Optional[UpdateHandler], view: GameView) -> None:
        if handler is not None:
            handler(view)

    def _handle_push(self, token: object, game_id: str, me: str, raw: Optional[Any]) -> None:
        if token is not self._token:
            return
        handler = self._on_update
        record = self._decode(game_id, raw)
        if record is None:
            logger.warning("Game %s vanished", game_id)
            self._clear(GamePhase.ABSENT)
            self._notify(handler, GameView(
                game_id=game_id,
                phase=GamePhase.ABSENT,
                reason=Reason.GAME_NOT_FOUND,
                message=MESSAGES[Reason.GAME_NOT_FOUND],
            ))
            return
        self.record = record
        self.seat = record.slots.seat_of(me)
        self.phase = phase_of(record)
        logger.debug("Game %s update: phase=%s turn=%s", game_id, self.phase.value, record.turn.value)
        self._notify(handler, self.view())

    def _handle_failure(self, token: object, game_id: str, error: GameError) -> None:
        if token is not self._token:
            return
        handler = self._on_update
        logger.warning("Lost subscription to game %s: %s", game_id, error.detail)
        self._release()
        self._notify(handler, self.view(error.reason, error.detail))

    def unsubscribe(self) -> None:
        self._release()

    @asynccontextmanager
    async def watch(self, game_id: str) -> AsyncIterator[ObjectReceiveStream]:
        """Subscribe for the duration of the block and stream GameViews.

        The subscription is released when the block exits, however it exits.
        The stream ends after a view that drops the game (vanished record or
        lost store connection).
        """
        send, receive = anyio.create_memory_object_stream(max_buffer_size=math.inf)

        def _forward(view: GameView) -> None:
            send.send_nowait(view)
            if view.phase is GamePhase.ABSENT or view.reason is not None:
                send.close()

        try:
            result = await self.subscribe(game_id, _forward)
            if not result.ok:
                if result.reason is not Reason.GAME_NOT_FOUND:
                    send.send_nowait(self.view(result.reason, result.message))
                send.close()
            yield receive
        finally:
            self._release()
            send.close()
            receive.close()

    @reported
    async def move(self, game_id: Optional[str], index: int) -> ActionResult:
        me = self.session.identity
        record = await self._load(game_id)

        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < BOARD_SIZE:
            raise GameError(Reason.INVALID_CELL)
        # Judge the board ourselves, not the stored outcome
        if evaluate(record.board) is not None:
            raise GameError(Reason.GAME_OVER)
        if record.board[index] != Cell.EMPTY:
            raise GameError(Reason.CELL_OCCUPIED)
        seat = record.slots.seat_of(me)
        if seat is None:
            raise GameError(Reason.NOT_SEATED)
        if record.turn != seat:
            raise GameError(Reason.NOT_YOUR_TURN)

        board = place(record.board, index, seat)
        updated = record.model_copy(update={
            "board": board,
            "turn": seat.opposite(),
            "outcome": evaluate(board),
        })
        await self.store.put(self.path(game_id), updated.to_wire())
        self._adopt(game_id, record, updated)
        logger.debug("Game %s: %s took %d", game_id, seat.value, index)
        return ActionResult(ok=True, game_id=game_id, seat=seat, wrote=True, record=updated)

    @reported
    async def reset(self, game_id: Optional[str]) -> ActionResult:
        me = self.session.identity
        record = await self._load(game_id)
        seat = record.slots.seat_of(me)
        if seat is not Player.X:
            raise GameError(Reason.NOT_PERMITTED)

        fresh = new_record(record.slots)
        await self.store.put(self.path(game_id), fresh.to_wire(created_at=SERVER_TIMESTAMP))
        self._adopt(game_id, record, fresh)
        logger.info("Reset game %s", game_id)
        return ActionResult(ok=True, game_id=game_id, seat=seat, wrote=True, record=fresh)

    def leave(self, game_id: Optional[str] = None) -> ActionResult:
        """Forget the game locally. The seat stays claimed in the record."""
        left = game_id or self.game_id
        self._clear(GamePhase.LEFT)
        logger.info("Left game %s", left)
        return ActionResult(ok=True, game_id=left)
