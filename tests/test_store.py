"""Tests for the in-memory game record store."""

import pytest

from errors import StoreUnavailable
from store import SERVER_TIMESTAMP, InMemoryRecordStore, split_path

pytestmark = pytest.mark.anyio


async def test_put_and_read_once():
    store = InMemoryRecordStore()
    await store.put("games/g1", {"turn": "X", "slots": {"X": "a"}})
    assert await store.read_once("games/g1") == {"turn": "X", "slots": {"X": "a"}}
    assert await store.read_once("games/g1/slots/X") == "a"
    assert await store.read_once("games/missing") is None


async def test_put_replaces_the_whole_value():
    store = InMemoryRecordStore()
    await store.put("games/g1", {"turn": "X", "slots": {"X": "a"}})
    await store.put("games/g1", {"turn": "O"})
    assert await store.read_once("games/g1") == {"turn": "O"}


async def test_put_child_leaves_siblings():
    store = InMemoryRecordStore()
    await store.put("games/g1", {"turn": "X", "slots": {"X": "a"}})
    await store.put_child("games/g1/slots/O", "b")
    assert await store.read_once("games/g1") == {"turn": "X", "slots": {"X": "a", "O": "b"}}


async def test_null_fields_are_not_stored():
    store = InMemoryRecordStore()
    await store.put("games/g1", {"outcome": None, "slots": {"X": "a", "O": None}})
    assert await store.read_once("games/g1") == {"slots": {"X": "a"}}


async def test_server_timestamp_is_increasing():
    store = InMemoryRecordStore()
    await store.put("games/g1", {"createdAt": SERVER_TIMESTAMP})
    await store.put("games/g2", {"createdAt": SERVER_TIMESTAMP})
    first = await store.read_once("games/g1/createdAt")
    second = await store.read_once("games/g2/createdAt")
    assert isinstance(first, int)
    assert second > first


async def test_subscribe_fires_immediately_then_on_change():
    store = InMemoryRecordStore()
    seen = []
    subscription = await store.subscribe("games/g1", seen.append)
    assert seen == [None]

    await store.put("games/g1", {"turn": "X"})
    await store.put_child("games/g1/turn", "O")
    await store.put("games/other", {"turn": "X"})
    assert seen == [None, {"turn": "X"}, {"turn": "O"}]

    await store.put("games/g1", None)
    assert seen[-1] is None

    subscription.close()
    await store.put("games/g1", {"turn": "X"})
    assert len(seen) == 4
    assert store.listener_count == 0


async def test_subscriber_gets_a_copy():
    store = InMemoryRecordStore()
    await store.put("games/g1", {"slots": {"X": "a"}})
    seen = []
    await store.subscribe("games/g1", seen.append)
    seen[0]["slots"]["X"] = "mutated"
    assert await store.read_once("games/g1/slots/X") == "a"


async def test_offline_store_raises():
    store = InMemoryRecordStore()
    store.go_offline()
    with pytest.raises(StoreUnavailable):
        await store.put("games/g1", {"turn": "X"})
    with pytest.raises(StoreUnavailable):
        await store.read_once("games/g1")
    with pytest.raises(StoreUnavailable):
        await store.subscribe("games/g1", lambda value: None)
    store.go_online()
    await store.put("games/g1", {"turn": "X"})


async def test_closing_the_store_releases_subscriptions():
    async with InMemoryRecordStore() as store:
        subscription = await store.subscribe("games/g1", lambda value: None)
    assert subscription.closed


def test_generate_id_is_unique():
    store = InMemoryRecordStore()
    assert len({store.generate_id("games") for _ in range(50)}) == 50


def test_split_path():
    assert split_path("/games/g1/slots/O") == ("games", "g1", "slots", "O")
    with pytest.raises(ValueError):
        split_path("/")
