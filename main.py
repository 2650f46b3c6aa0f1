"""
Composition root: logging, store, session and controller built from the
environment.

    TTT_STORE            memory | mongo (mongo when DATABASE_URL is set)
    DATABASE_URL         MongoDB connection string
    DATABASE_NAME        database name (default "tictactoe")
    TTT_IDENTITY_PATH    where the player identity is kept
    TTT_LOG_LEVEL        logging level (default INFO)
    TTT_GAME_LINK_BASE   base URL for shareable game links
"""

import logging
import os
from typing import Optional, Union
from urllib.parse import parse_qs, urlencode, urlparse

from controller import SyncController
from database import DATABASE_URL, GAMES_COLLECTION, MongoRecordStore, connect
from identity import FileIdentityStore, IdentityStore, Session
from store import GameRecordStore, InMemoryRecordStore

logger = logging.getLogger(__name__)

STORE_BACKEND = os.getenv("TTT_STORE")
LOG_LEVEL = os.getenv("TTT_LOG_LEVEL", "INFO")
GAME_LINK_BASE = os.getenv("TTT_GAME_LINK_BASE", "http://localhost:3000/")
GAME_QUERY_PARAM = "game"


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_store(backend: Optional[str] = None, database_url: Optional[str] = None) -> Union[InMemoryRecordStore, MongoRecordStore]:
    """Build the record store. Misconfiguration fails here, not at first use."""
    database_url = database_url or DATABASE_URL
    backend = (backend or STORE_BACKEND or ("mongo" if database_url else "memory")).lower()
    if backend == "memory":
        logger.info("Using in-memory game store")
        return InMemoryRecordStore()
    if backend == "mongo":
        if not database_url:
            raise RuntimeError("TTT_STORE=mongo needs DATABASE_URL")
        db = connect(database_url)
        logger.info("Using MongoDB game store %s.%s", db.name, GAMES_COLLECTION)
        return MongoRecordStore(db[GAMES_COLLECTION])
    raise ValueError(f"Unknown game store backend: {backend!r}")


def create_session(identity_store: Optional[IdentityStore] = None) -> Session:
    session = Session(identity_store if identity_store is not None else FileIdentityStore())
    session.get_or_create_identity()
    return session


def create_controller(store: GameRecordStore, session: Optional[Session] = None) -> SyncController:
    return SyncController(store, session if session is not None else create_session())


def game_link(game_id: str, base: Optional[str] = None) -> str:
    base = base or GAME_LINK_BASE
    return f"{base}?{urlencode({GAME_QUERY_PARAM: game_id})}"


def game_id_from_link(link: str) -> Optional[str]:
    values = parse_qs(urlparse(link).query).get(GAME_QUERY_PARAM)
    if not values or not values[0].strip():
        return None
    return values[0].strip()
