"""
Pytest configuration and fixtures for the game sync test suite.

Async tests run on asyncio through anyio's pytest plugin.
"""

import anyio
import pytest

from controller import SyncController
from identity import MemoryIdentityStore, Session
from store import InMemoryRecordStore


class CountingStore(InMemoryRecordStore):
    """In-memory store that remembers every write."""

    def __init__(self):
        super().__init__()
        self.writes = []

    async def put(self, path, value):
        self.writes.append(("put", path, value))
        await super().put(path, value)

    async def put_child(self, path, value):
        self.writes.append(("put_child", path, value))
        await super().put_child(path, value)


class LaggyStore(CountingStore):
    """Yields to other tasks between taking a snapshot and returning it."""

    async def read_once(self, path):
        value = await super().read_once(path)
        await anyio.sleep(0)
        return value


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def store():
    return CountingStore()


def make_session(identity):
    session = Session(MemoryIdentityStore(identity))
    session.get_or_create_identity()
    return session


@pytest.fixture
def laggy_store():
    return LaggyStore()


@pytest.fixture
def alice():
    return make_session("player_alice0001")


@pytest.fixture
def bob():
    return make_session("player_bob000002")


@pytest.fixture
def carol():
    return make_session("player_carol0003")


@pytest.fixture
def host(store, alice):
    return SyncController(store, alice)


@pytest.fixture
def guest(store, bob):
    return SyncController(store, bob)


@pytest.fixture
def outsider(store, carol):
    return SyncController(store, carol)
