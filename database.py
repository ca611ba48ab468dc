"""
Key-value storage for calendar state.

Every backend stores JSON-compatible dicts under string keys with an optional
time-to-live in seconds. Backend failures surface as ``StoreError`` so the
HTTP layer can answer 500 without knowing which backend is in use.
"""
from __future__ import annotations

import json
import logging
import secrets
import string
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

import redis
from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

from config import Settings, settings

logger = logging.getLogger(__name__)

ID_ALPHABET = string.ascii_letters + string.digits + "_-"
STATE_ID_SIZE = 12
LEGACY_ID_SIZE = 10


class StoreError(Exception):
    """Raised when the configured storage backend fails."""


def generate_id(size: int = STATE_ID_SIZE) -> str:
    """Random URL-safe identifier of ``size`` characters."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(size))


def unique_id(store: "StateStore", size: int = STATE_ID_SIZE, prefix: str = "") -> str:
    """Generate an identifier whose ``prefix + id`` key is not taken yet."""
    while True:
        candidate = generate_id(size)
        if not store.exists(prefix + candidate):
            return candidate
        logger.info("identifier collision, regenerating")


class StateStore:
    name = "base"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def ping(self) -> bool:
        return True


class MemoryStore(StateStore):
    """In-process store; expiry is checked lazily on read."""

    name = "memory"

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.time
        # key -> (value json, deadline or None)
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        raw, deadline = entry
        if deadline is not None and deadline <= self._clock():
            self._data.pop(key, None)
            return None
        # stored as json so callers never share mutable state with the store
        return json.loads(raw)

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        try:
            raw = json.dumps(value)
        except (TypeError, ValueError) as e:
            raise StoreError(f"value for {key} is not serialisable: {e}") from e
        deadline = self._clock() + ttl if ttl else None
        self._data[key] = (raw, deadline)

    def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    def __len__(self) -> int:
        return len(self._data)


class RedisStore(StateStore):
    """Redis backend; expiry is delegated to Redis ``EX``."""

    name = "redis"

    def __init__(self, url: Optional[str] = None, client: Any = None):
        if client is None:
            if not url:
                raise StoreError("REDIS_URL is required for the redis backend")
            client = redis.Redis.from_url(url, decode_responses=True)
        self._client = client

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            data = self._client.get(key)
        except redis.RedisError as e:
            logger.warning(f"Redis error reading {key}: {e}")
            raise StoreError(str(e)) from e
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError as e:
            raise StoreError(f"corrupt value under {key}: {e}") from e

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        try:
            self._client.set(key, json.dumps(value), ex=ttl)
        except (TypeError, ValueError) as e:
            raise StoreError(f"value for {key} is not serialisable: {e}") from e
        except redis.RedisError as e:
            logger.warning(f"Redis error writing {key}: {e}")
            raise StoreError(str(e)) from e

    def exists(self, key: str) -> bool:
        try:
            return bool(self._client.exists(key))
        except redis.RedisError as e:
            raise StoreError(str(e)) from e

    def delete(self, key: str) -> bool:
        try:
            return bool(self._client.delete(key))
        except redis.RedisError as e:
            raise StoreError(str(e)) from e

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False


def _to_utc(dt: datetime) -> datetime:
    # pymongo hands back naive datetimes unless the client is tz_aware
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class MongoStore(StateStore):
    """MongoDB backend.

    Documents look like ``{_id: key, value: {...}, expires_at: datetime|None}``.
    A TTL index removes expired documents, but the TTL monitor only runs about
    once a minute, so reads also compare ``expires_at`` themselves.
    """

    name = "mongo"

    def __init__(
        self,
        url: Optional[str] = None,
        name: str = "calendar",
        database: Any = None,
        collection: str = "calendar_state",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if database is None:
            if not url:
                raise StoreError("DATABASE_URL is required for the mongo backend")
            database = MongoClient(url, tz_aware=True)[name]
        self._db = database
        self._collection = database[collection]
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        try:
            self._collection.create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)
        except PyMongoError as e:
            # reads still honour expires_at without the index
            logger.warning(f"could not create TTL index: {e}")

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            doc = self._collection.find_one({"_id": key})
        except PyMongoError as e:
            logger.warning(f"Mongo error reading {key}: {e}")
            raise StoreError(str(e)) from e
        if not doc:
            return None
        expires_at = doc.get("expires_at")
        if expires_at is not None and _to_utc(expires_at) <= self._clock():
            return None
        return doc.get("value")

    def set(self, key: str, value: Dict[str, Any], ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + timedelta(seconds=ttl) if ttl else None
        try:
            self._collection.replace_one(
                {"_id": key},
                {"_id": key, "value": value, "expires_at": expires_at},
                upsert=True,
            )
        except PyMongoError as e:
            logger.warning(f"Mongo error writing {key}: {e}")
            raise StoreError(str(e)) from e

    def delete(self, key: str) -> bool:
        try:
            return self._collection.delete_one({"_id": key}).deleted_count > 0
        except PyMongoError as e:
            raise StoreError(str(e)) from e

    def ping(self) -> bool:
        try:
            self._db.command("ping")
            return True
        except PyMongoError:
            return False


def open_store(cfg: Settings = settings) -> StateStore:
    """Build the store named by ``STORE_BACKEND`` or implied by the URLs set."""
    backend = (cfg.STORE_BACKEND or "").lower()
    if not backend:
        if cfg.REDIS_URL:
            backend = "redis"
        elif cfg.DATABASE_URL:
            backend = "mongo"
        else:
            backend = "memory"

    if backend == "redis":
        store: StateStore = RedisStore(cfg.REDIS_URL)
    elif backend == "mongo":
        store = MongoStore(cfg.DATABASE_URL, cfg.DATABASE_NAME)
    elif backend == "memory":
        store = MemoryStore()
    else:
        raise StoreError(f"unknown store backend: {backend}")
    logger.info(f"State store using {store.name} backend")
    return store


db: Optional[StateStore] = None
_db_lock = threading.Lock()


def get_store() -> StateStore:
    """FastAPI dependency returning the process-wide store, opened on first use."""
    global db
    if db is None:
        # sync dependencies run in the threadpool
        with _db_lock:
            if db is None:
                db = open_store()
    return db
