"""
MongoDB-backed game record store.

One document per game in a single collection; the document _id is the game
id and the remaining fields are the record. Store paths map onto it as:

- "games/<game_id>"          -> the whole document
- "games/<game_id>/slots/O"  -> the "slots.O" field

pymongo is blocking, so every call runs in a worker thread. Push
subscriptions tail a change stream filtered on the document and hand each
new version back to the event loop.
"""

import logging
import os
import time
from typing import Any, Dict, Optional, Set, Tuple

import anyio
import anyio.from_thread
import anyio.to_thread
from anyio.abc import TaskGroup
from bson import ObjectId
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from errors import StoreUnavailable
from store import ErrorCallback, Subscription, UpdateCallback, resolve_server_values, split_path

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME", "tictactoe")
GAMES_COLLECTION = os.getenv("TTT_GAMES_COLLECTION", "games")
# Path root the controller writes under, mapped onto the collection
GAMES_ROOT = "games"

# How long one change-stream poll blocks before re-checking for unsubscribe
WATCH_POLL_MS = 1000


def connect(url: Optional[str] = None, name: Optional[str] = None) -> Database:
    url = url or DATABASE_URL
    if not url:
        raise RuntimeError("DATABASE_URL is not set")
    client = MongoClient(url, serverSelectionTimeoutMS=5000)
    return client[name or DATABASE_NAME]


def serialize_doc(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    d = dict(doc)
    d.pop("_id", None)
    return d


# Client clock: replace_one takes no update operators, so SERVER_TIMESTAMP
# cannot be resolved by the server here
def _now_ms() -> int:
    return int(time.time() * 1000)


class MongoRecordStore:
    """Game record store over one MongoDB collection.

    Paths are rooted at "games" whatever the collection is called, so the
    collection name is free to come from configuration.

    Use as an async context manager: subscriptions run as tasks in the
    store's task group and are all released when the block exits.
    """

    def __init__(self, collection: Collection, poll_ms: int = WATCH_POLL_MS, root: str = GAMES_ROOT) -> None:
        self.collection = collection
        self.root = root
        self.poll_ms = poll_ms
        self._task_group: Optional[TaskGroup] = None
        self._subscriptions: Set[Subscription] = set()

    async def __aenter__(self) -> "MongoRecordStore":
        self._task_group = anyio.create_task_group()
        await self._task_group.__aenter__()
        return self

    async def __aexit__(self, *exc_info) -> Optional[bool]:
        for subscription in list(self._subscriptions):
            subscription.close()
        task_group, self._task_group = self._task_group, None
        return await task_group.__aexit__(*exc_info)

    # ---------------------------
    # Path mapping
    # ---------------------------

    def _locate(self, path: str) -> Tuple[str, Optional[str]]:
        parts = split_path(path)
        if parts[0] != self.root or len(parts) < 2:
            raise ValueError(f"Path {path!r} is not under {self.root!r}")
        field = ".".join(parts[2:]) or None
        return parts[1], field

    @staticmethod
    def _dig(doc: Optional[dict], field: Optional[str]) -> Optional[Any]:
        value: Any = serialize_doc(doc)
        if field is None:
            return value
        for part in field.split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(part)
        return value

    async def _run(self, func, *args) -> Any:
        try:
            return await anyio.to_thread.run_sync(func, *args)
        except PyMongoError as exc:
            logger.warning("MongoDB operation failed: %s", exc)
            raise StoreUnavailable(f"Game store error: {str(exc)[:80]}") from exc

    # ---------------------------
    # Store contract
    # ---------------------------

    async def put(self, path: str, value: Optional[Any]) -> None:
        game_id, field = self._locate(path)
        if field is not None:
            return await self.put_child(path, value)
        if value is None:
            await self._run(lambda: self.collection.delete_one({"_id": game_id}))
            return
        doc: Dict[str, Any] = resolve_server_values(dict(value), _now_ms())
        await self._run(lambda: self.collection.replace_one({"_id": game_id}, doc, upsert=True))

    async def put_child(self, path: str, value: Optional[Any]) -> None:
        game_id, field = self._locate(path)
        if field is None:
            return await self.put(path, value)
        if value is None:
            update = {"$unset": {field: ""}}
        else:
            update = {"$set": {field: resolve_server_values(value, _now_ms())}}
        await self._run(lambda: self.collection.update_one({"_id": game_id}, update, upsert=True))

    async def read_once(self, path: str) -> Optional[Any]:
        game_id, field = self._locate(path)
        doc = await self._run(lambda: self.collection.find_one({"_id": game_id}))
        return self._dig(doc, field)

    async def subscribe(
        self, path: str, callback: UpdateCallback, on_error: Optional[ErrorCallback] = None
    ) -> Subscription:
        if self._task_group is None:
            raise RuntimeError("MongoRecordStore must be entered with 'async with' before subscribing")
        game_id, field = self._locate(path)
        subscription = Subscription(path, on_close=lambda: self._subscriptions.discard(subscription))
        self._subscriptions.add(subscription)
        self._task_group.start_soon(self._watch, game_id, field, callback, on_error, subscription)
        return subscription

    def generate_id(self, collection: str) -> str:
        return str(ObjectId())

    # ---------------------------
    # Change stream pump
    # ---------------------------

    async def _watch(self, game_id, field, callback, on_error, subscription) -> None:
        try:
            await anyio.to_thread.run_sync(self._pump, game_id, field, callback, subscription)
        except StoreUnavailable as exc:
            subscription.close()
            if on_error is not None:
                on_error(exc)

    def _deliver(self, callback: UpdateCallback, subscription: Subscription, value: Optional[Any]) -> None:
        if not subscription.closed:
            callback(value)

    def _pump(self, game_id: str, field: Optional[str], callback: UpdateCallback, subscription: Subscription) -> None:
        # Runs in a worker thread
        pipeline = [{"$match": {"documentKey._id": game_id}}]
        try:
            # Open the stream before the first read so no change falls in between
            with self.collection.watch(pipeline, full_document="updateLookup", max_await_time_ms=self.poll_ms) as stream:
                current = self.collection.find_one({"_id": game_id})
                anyio.from_thread.run_sync(self._deliver, callback, subscription, self._dig(current, field))
                while not subscription.closed and stream.alive:
                    change = stream.try_next()
                    if change is None:
                        continue
                    operation = change.get("operationType")
                    if operation in ("delete", "drop", "invalidate"):
                        doc = None
                    else:
                        doc = change.get("fullDocument")
                    anyio.from_thread.run_sync(self._deliver, callback, subscription, self._dig(doc, field))
                    if operation == "invalidate":
                        break
        except PyMongoError as exc:
            logger.warning("Change stream for game %s failed: %s", game_id, exc)
            raise StoreUnavailable(f"Game store error: {str(exc)[:80]}") from exc
