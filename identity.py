"""
Per-client player identity.

An identity is a self-issued random token, generated on first use, persisted
and reused across sessions. It is what a client writes into a seat of a game
record; nothing verifies it.
"""

import json
import logging
import os
import random
import string
from typing import Optional, Protocol, Set

from errors import IdentityMissing
from store import Subscription

logger = logging.getLogger(__name__)

IDENTITY_PATH = os.getenv(
    "TTT_IDENTITY_PATH",
    os.path.join(os.path.expanduser("~"), ".tictactoe", "identity.json"),
)
IDENTITY_KEY = "playerId"

BASE36 = string.ascii_lowercase + string.digits


def random_token(length: int) -> str:
    return "".join(random.choices(BASE36, k=length))


def generate_identity() -> str:
    return f"player_{random_token(9)}"


class IdentityStore(Protocol):
    def load(self) -> Optional[str]:
        ...

    def save(self, identity: str) -> None:
        ...


class MemoryIdentityStore:
    def __init__(self, identity: Optional[str] = None) -> None:
        self.identity = identity

    def load(self) -> Optional[str]:
        return self.identity

    def save(self, identity: str) -> None:
        self.identity = identity


class FileIdentityStore:
    """Keeps the identity in a small JSON file, by default in the home directory."""

    def __init__(self, path: str = IDENTITY_PATH) -> None:
        self.path = path

    def load(self) -> Optional[str]:
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as exc:
            logger.warning("Ignoring unreadable identity file %s: %s", self.path, exc)
            return None
        identity = data.get(IDENTITY_KEY) if isinstance(data, dict) else None
        return identity if isinstance(identity, str) and identity else None

    def save(self, identity: str) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as fh:
            json.dump({IDENTITY_KEY: identity}, fh)


class Session:
    """Client context: the persisted identity plus the live subscriptions.

    Construct one per client and pass it to the controller. Closing the
    session releases every subscription still open.
    """

    def __init__(self, identity_store: Optional[IdentityStore] = None) -> None:
        self.identity_store = identity_store if identity_store is not None else FileIdentityStore()
        self._identity: Optional[str] = None
        self._subscriptions: Set[Subscription] = set()

    def get_or_create_identity(self) -> str:
        if self._identity is None:
            identity = self.identity_store.load()
            if identity is None:
                identity = generate_identity()
                self.identity_store.save(identity)
                logger.info("Generated new player identity %s", identity)
            self._identity = identity
        return self._identity

    @property
    def identity(self) -> str:
        if self._identity is None:
            raise IdentityMissing()
        return self._identity

    # ---------------------------
    # Subscription bookkeeping
    # ---------------------------

    def track(self, subscription: Subscription) -> Subscription:
        self._subscriptions.add(subscription)
        return subscription

    def release(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)
        subscription.close()

    @property
    def open_subscriptions(self) -> int:
        return len(self._subscriptions)

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            self.release(subscription)

    def __enter__(self) -> "Session":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
