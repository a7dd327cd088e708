"""Read-through caching for reviewindex.

Two kinds of payload go through the cache: raw documents from the content
store (short TTL) and whole rendered responses (per-route TTL). Both use the
same ``ReadThroughCache`` in front of a pluggable store.

Stores raise ``CacheStoreError`` when the backend misbehaves. The
read-through cache catches it, logs a warning and carries on as if the cache
did not exist, so a broken cache can slow requests down but never fail them.

Key classes:
- CacheEntry: Stored payload with its expiry.
- MemoryCacheStore: In-process dict store.
- SqliteCacheStore: aiosqlite-backed store shared across restarts.
- ReadThroughCache: ``get_or_produce`` on top of any store.

Key functions:
- cache_key: Deterministic key from arbitrary parts.
- request_cache_key: Key for a request path plus query string.
"""

from __future__ import annotations

import hashlib
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from urllib.parse import urlencode

import aiosqlite
import structlog

from .protocols import CacheStore

log = structlog.get_logger()

# Route TTLs
API_TTL = timedelta(minutes=5)
LISTING_TTL = timedelta(hours=3)
CONTENT_TTL = timedelta(seconds=15552000)  # 180 days
FEED_TTL = timedelta(hours=24)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CacheStoreError(Exception):
    """Raised by a cache store when its backend cannot be read or written."""


@dataclass(frozen=True)
class CacheEntry:
    """A cached payload.

    Attributes:
        key: Cache key.
        payload: Stored bytes.
        stored_at: When the entry was written.
        expires_at: First instant at which the entry is no longer served.
    """

    key: str
    payload: bytes
    stored_at: datetime
    expires_at: datetime

    def is_fresh(self, now: datetime) -> bool:
        return now < self.expires_at


def cache_key(*parts: str) -> str:
    """Build a deterministic key from string parts.

    Examples:
        >>> cache_key("doc", "reviews/widget-x") == cache_key("doc", "reviews/widget-x")
        True
    """
    digest = hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()
    return f"{parts[0]}:{digest}" if parts else digest


def request_cache_key(
    path: str, query: Mapping[str, str] | None = None, host: str = ""
) -> str:
    """Build the page cache key for a request.

    Query parameters are sorted so ``?a=1&b=2`` and ``?b=2&a=1`` share an
    entry. ``host`` is only needed when pages embed the request host.
    """
    query_string = urlencode(sorted((query or {}).items()))
    return cache_key("page", host, path, query_string)


class MemoryCacheStore:
    """Dict-backed store for a single process.

    Each ``set`` replaces the whole entry in one assignment, so readers see
    either the previous entry or the new one.
    """

    def __init__(self):
        self._entries: dict[str, CacheEntry] = {}

    async def get(self, key: str) -> CacheEntry | None:
        return self._entries.get(key)

    async def set(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> int:
        count = len(self._entries)
        self._entries.clear()
        return count

    async def close(self) -> None:
        return None

    def __len__(self) -> int:
        return len(self._entries)


_CREATE_TABLE = """
CREATE TABLE IF NOT EXISTS cache_entries (
    key         TEXT PRIMARY KEY,
    payload     BLOB NOT NULL,
    stored_at   TEXT NOT NULL,
    expires_at  TEXT NOT NULL
)
"""

_CREATE_INDEX = "CREATE INDEX IF NOT EXISTS idx_cache_expires ON cache_entries(expires_at)"


class SqliteCacheStore:
    """aiosqlite-backed store.

    Writes are single ``INSERT OR REPLACE`` statements committed immediately,
    so an interrupted write never leaves a partial row behind.

    Attributes:
        path: Database file path.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._db: aiosqlite.Connection | None = None

    async def init_db(self) -> None:
        """Open the database and create the table. Called once at startup."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._db = await aiosqlite.connect(self.path)
            await self._db.execute("PRAGMA journal_mode = WAL")
            await self._db.execute(_CREATE_TABLE)
            await self._db.execute(_CREATE_INDEX)
            await self._db.commit()
        except (aiosqlite.Error, OSError) as exc:
            raise CacheStoreError(f"cannot open cache database {self.path}: {exc}") from exc

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            raise CacheStoreError("cache database is not open")
        return self._db

    async def get(self, key: str) -> CacheEntry | None:
        db = self._conn()
        try:
            cursor = await db.execute(
                "SELECT key, payload, stored_at, expires_at FROM cache_entries WHERE key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise CacheStoreError(str(exc)) from exc
        if row is None:
            return None
        try:
            return CacheEntry(
                key=row[0],
                payload=bytes(row[1]),
                stored_at=datetime.fromisoformat(row[2]),
                expires_at=datetime.fromisoformat(row[3]),
            )
        except (TypeError, ValueError) as exc:
            raise CacheStoreError(f"corrupt cache row for {key}") from exc

    async def set(self, entry: CacheEntry) -> None:
        db = self._conn()
        try:
            await db.execute(
                "INSERT OR REPLACE INTO cache_entries (key, payload, stored_at, expires_at) "
                "VALUES (?, ?, ?, ?)",
                (
                    entry.key,
                    entry.payload,
                    entry.stored_at.isoformat(),
                    entry.expires_at.isoformat(),
                ),
            )
            await db.commit()
        except aiosqlite.Error as exc:
            raise CacheStoreError(str(exc)) from exc

    async def delete(self, key: str) -> None:
        db = self._conn()
        try:
            await db.execute("DELETE FROM cache_entries WHERE key = ?", (key,))
            await db.commit()
        except aiosqlite.Error as exc:
            raise CacheStoreError(str(exc)) from exc

    async def clear(self) -> int:
        db = self._conn()
        try:
            cursor = await db.execute("DELETE FROM cache_entries")
            await db.commit()
        except aiosqlite.Error as exc:
            raise CacheStoreError(str(exc)) from exc
        return max(cursor.rowcount, 0)

    async def cleanup_expired(self, now: datetime | None = None) -> int:
        """Delete expired rows. Returns the number removed."""
        db = self._conn()
        cutoff = (now or utcnow()).isoformat()
        try:
            cursor = await db.execute("DELETE FROM cache_entries WHERE expires_at < ?", (cutoff,))
            await db.commit()
        except aiosqlite.Error as exc:
            raise CacheStoreError(str(exc)) from exc
        log.info("cache_cleanup_complete", deleted=cursor.rowcount)
        return max(cursor.rowcount, 0)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            self._db = None


class ReadThroughCache:
    """Serve payloads from a store, producing and storing them on a miss.

    There is no locking: two concurrent misses on one key both run the
    producer and the later write wins.

    Attributes:
        store: Backing store (memory or SQLite).
    """

    def __init__(self, store: CacheStore, clock: Clock | None = None):
        self.store = store
        self._clock = clock or utcnow

    async def lookup(self, key: str) -> bytes | None:
        """Return a fresh payload, or None on miss, expiry or store failure."""
        try:
            entry = await self.store.get(key)
        except CacheStoreError:
            log.warning("cache_read_error", key=key, exc_info=True)
            return None
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            log.debug("cache_expired", key=key)
            return None
        return entry.payload

    async def store_payload(self, key: str, payload: bytes, ttl: timedelta) -> None:
        """Write a payload with a fixed TTL. Failures are logged and ignored."""
        now = self._clock()
        entry = CacheEntry(key=key, payload=payload, stored_at=now, expires_at=now + ttl)
        try:
            await self.store.set(entry)
        except CacheStoreError:
            log.warning("cache_write_error", key=key, exc_info=True)

    async def get_or_produce(
        self,
        key: str,
        producer: Callable[[], Awaitable[bytes | None]],
        ttl: timedelta,
    ) -> bytes | None:
        """Return the cached payload for ``key`` or produce and store it.

        Args:
            key: Cache key.
            producer: Coroutine function returning the payload, or None when
                there is nothing to cache (e.g. not found).
            ttl: Lifetime of a stored entry.

        Returns:
            The payload, or None when the producer returned None.

        Raises:
            Whatever the producer raises; nothing is stored in that case.
        """
        cached = await self.lookup(key)
        if cached is not None:
            log.debug("cache_hit", key=key)
            return cached
        log.debug("cache_miss", key=key)
        payload = await producer()
        if payload is not None:
            await self.store_payload(key, payload, ttl)
        return payload

    async def invalidate(self, key: str) -> None:
        try:
            await self.store.delete(key)
        except CacheStoreError:
            log.warning("cache_write_error", key=key, exc_info=True)


def create_store(backend: str, path: str | Path | None = None) -> CacheStore:
    """Build the configured store.

    Args:
        backend: ``memory`` or ``sqlite``.
        path: Database path for the SQLite backend.

    Raises:
        ValueError: For an unknown backend, or ``sqlite`` without a path.
    """
    if backend == "memory":
        return MemoryCacheStore()
    if backend == "sqlite":
        if not path:
            raise ValueError("sqlite cache backend needs a cache_path")
        return SqliteCacheStore(path)
    raise ValueError(f"unknown cache backend: {backend!r}")
