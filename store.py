"""
Shared game record store.

The store is a tree of JSON-like values addressed by slash-separated paths
("games/<game_id>", "games/<game_id>/slots/O"). Writes fully replace the
value at their path (last write wins, no merge). Subscribers get the
current value once right away and again after every change under their path.

GameRecordStore is the contract the controller consumes. InMemoryRecordStore
is the reference implementation; database.MongoRecordStore is the shared one.
"""

import copy
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from errors import StoreUnavailable

logger = logging.getLogger(__name__)

# Replaced with the store's clock (ms) when written
SERVER_TIMESTAMP = {".sv": "timestamp"}

UpdateCallback = Callable[[Optional[Any]], None]
ErrorCallback = Callable[[StoreUnavailable], None]


def split_path(path: str) -> Tuple[str, ...]:
    parts = tuple(part for part in path.strip("/").split("/") if part)
    if not parts:
        raise ValueError("Store path must not be empty")
    return parts


class Subscription:
    """Handle for one push subscription. Closing it is idempotent."""

    def __init__(self, path: str, on_close: Optional[Callable[[], None]] = None) -> None:
        self.path = path
        self.closed = False
        self._on_close = on_close

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self._on_close is not None:
            self._on_close()

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"<Subscription {self.path} {'closed' if self.closed else 'open'}>"


class GameRecordStore(Protocol):
    async def put(self, path: str, value: Optional[Any]) -> None:
        """Atomically replace the value at path; None deletes it."""
        ...

    async def put_child(self, path: str, value: Optional[Any]) -> None:
        """Atomically replace one nested field, leaving its siblings alone."""
        ...

    async def read_once(self, path: str) -> Optional[Any]:
        ...

    async def subscribe(
        self, path: str, callback: UpdateCallback, on_error: Optional[ErrorCallback] = None
    ) -> Subscription:
        ...

    def generate_id(self, collection: str) -> str:
        ...


def resolve_server_values(value: Any, now: int) -> Any:
    if value == SERVER_TIMESTAMP:
        return now
    if isinstance(value, dict):
        return {k: resolve_server_values(v, now) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_server_values(v, now) for v in value]
    return value


def _prune(value: Any) -> Any:
    # Like the hosted stores: null fields and empty containers are not kept
    if isinstance(value, dict):
        pruned = {k: _prune(v) for k, v in value.items()}
        pruned = {k: v for k, v in pruned.items() if v is not None}
        return pruned or None
    return value


class InMemoryRecordStore:
    """Process-local store with the same semantics as the hosted one.

    Subscription callbacks run synchronously after each write, on the
    writer's task. go_offline() makes every operation fail with
    StoreUnavailable until go_online() is called.
    """

    def __init__(self) -> None:
        self._root: Dict[str, Any] = {}
        self._listeners: List[Tuple[Tuple[str, ...], UpdateCallback, Subscription]] = []
        self._clock = 0
        self.online = True

    async def __aenter__(self) -> "InMemoryRecordStore":
        return self

    async def __aexit__(self, *exc_info) -> None:
        for _, _, subscription in list(self._listeners):
            subscription.close()

    def go_offline(self) -> None:
        self.online = False

    def go_online(self) -> None:
        self.online = True

    def _check_online(self) -> None:
        if not self.online:
            raise StoreUnavailable("The game store is offline.")

    def _now(self) -> int:
        self._clock = max(self._clock + 1, int(time.time() * 1000))
        return self._clock

    def _get(self, parts: Tuple[str, ...]) -> Optional[Any]:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return None
            node = node[part]
        return copy.deepcopy(node)

    def _set(self, parts: Tuple[str, ...], value: Optional[Any]) -> None:
        node = self._root
        trail = []
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            trail.append((node, part))
            node = child
        if value is None:
            node.pop(parts[-1], None)
        else:
            node[parts[-1]] = value
        # drop parents left empty by a delete
        for parent, part in reversed(trail):
            if parent[part]:
                break
            del parent[part]

    def _write(self, path: str, value: Optional[Any]) -> None:
        self._check_online()
        parts = split_path(path)
        value = _prune(resolve_server_values(copy.deepcopy(value), self._now()))
        self._set(parts, value)
        logger.debug("put %s", path)
        self._notify(parts)

    def _notify(self, changed: Tuple[str, ...]) -> None:
        for parts, callback, subscription in list(self._listeners):
            if subscription.closed:
                continue
            related = changed[:len(parts)] == parts or parts[:len(changed)] == changed
            if related:
                callback(self._get(parts))

    async def put(self, path: str, value: Optional[Any]) -> None:
        self._write(path, value)

    async def put_child(self, path: str, value: Optional[Any]) -> None:
        self._write(path, value)

    async def read_once(self, path: str) -> Optional[Any]:
        self._check_online()
        return self._get(split_path(path))

    async def subscribe(
        self, path: str, callback: UpdateCallback, on_error: Optional[ErrorCallback] = None
    ) -> Subscription:
        self._check_online()
        parts = split_path(path)
        subscription = Subscription(path, on_close=lambda: self._unlisten(subscription))
        self._listeners.append((parts, callback, subscription))
        callback(self._get(parts))
        return subscription

    def generate_id(self, collection: str) -> str:
        return f"{self._now():x}{uuid.uuid4().hex[:8]}"

    def _unlisten(self, subscription: Subscription) -> None:
        self._listeners = [entry for entry in self._listeners if entry[2] is not subscription]

    @property
    def listener_count(self) -> int:
        return len(self._listeners)
