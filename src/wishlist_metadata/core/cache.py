from __future__ import annotations

import json
import logging
import sqlite3
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, replace
from pathlib import Path
from typing import AsyncIterator, Awaitable, Callable

import aiosqlite

from wishlist_metadata.core.config import ExtractionSettings
from wishlist_metadata.core.models import CacheEntry, ErrorCode, MetadataExtractionError, UrlMetadata
from wishlist_metadata.core.utils import sha256_text

logger = logging.getLogger(__name__)


DEFAULT_TTL_SECONDS = 7 * 24 * 60 * 60
DEFAULT_KEY_PREFIX = "metadata:"

Clock = Callable[[], float]


def make_cache_key(url: str, prefix: str = DEFAULT_KEY_PREFIX) -> str:
    return f"{prefix}{sha256_text(url.strip())}"


class MetadataCache:
    """Async key-value store for extraction results.

    Subclasses provide `get_entry`, `set`, `delete`, `clear` and
    `purge_expired`. An entry read after its expiry is reported as a miss and
    dropped; a `set` on an existing key replaces the entry wholesale.
    """

    def __init__(self, *, default_ttl: float = DEFAULT_TTL_SECONDS, clock: Clock | None = None) -> None:
        self._default_ttl = float(default_ttl)
        self._clock = clock or time.time

    def _new_entry(self, key: str, value: UrlMetadata, ttl: float | None) -> CacheEntry:
        now = self._clock()
        lifetime = self._default_ttl if ttl is None else float(ttl)
        return CacheEntry(
            key=key,
            url=value.url,
            metadata=replace(value, cached=False),
            created_at=now,
            expires_at=now + lifetime,
            hits=0,
        )

    async def get_entry(self, key: str) -> CacheEntry | None:
        raise NotImplementedError

    async def set(self, key: str, value: UrlMetadata, ttl: float | None = None) -> CacheEntry:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def clear(self) -> None:
        raise NotImplementedError

    async def purge_expired(self) -> int:
        raise NotImplementedError

    async def get(self, key: str) -> UrlMetadata | None:
        entry = await self.get_entry(key)
        return entry.metadata if entry is not None else None

    async def has(self, key: str) -> bool:
        return (await self.get_entry(key)) is not None

    async def get_or_fetch(
        self,
        key: str,
        producer: Callable[[], Awaitable[UrlMetadata]],
        ttl: float | None = None,
    ) -> UrlMetadata:
        cached = await self.get(key)
        if cached is not None:
            return cached
        value = await producer()
        await self.set(key, value, ttl)
        return value


class InMemoryMetadataCache(MetadataCache):
    def __init__(self, *, default_ttl: float = DEFAULT_TTL_SECONDS, clock: Clock | None = None) -> None:
        super().__init__(default_ttl=default_ttl, clock=clock)
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    async def get_entry(self, key: str) -> CacheEntry | None:
        # No awaits below: the read-modify-write is atomic on the event loop.
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            self._entries.pop(key, None)
            return None
        bumped = replace(entry, hits=entry.hits + 1)
        self._entries[key] = bumped
        return bumped

    async def set(self, key: str, value: UrlMetadata, ttl: float | None = None) -> CacheEntry:
        entry = self._new_entry(key, value, ttl)
        self._entries[key] = entry
        return entry

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def clear(self) -> None:
        self._entries.clear()

    async def purge_expired(self) -> int:
        now = self._clock()
        dead = [k for k, e in self._entries.items() if e.is_expired(now)]
        for k in dead:
            self._entries.pop(k, None)
        return len(dead)


SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA synchronous=NORMAL;

CREATE TABLE IF NOT EXISTS metadata_cache (
  key TEXT PRIMARY KEY,
  url TEXT NOT NULL,
  payload_json TEXT NOT NULL,
  created_at REAL NOT NULL,
  expires_at REAL NOT NULL,
  hits INTEGER NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_metadata_cache_expires_at ON metadata_cache(expires_at);
"""


class SqliteMetadataCache(MetadataCache):
    """Persistent cache backed by a local SQLite file.

    Every operation opens its own connection, so concurrent tasks never share a
    cursor; SQLite serializes the writes.
    """

    def __init__(self, path: Path, *, default_ttl: float = DEFAULT_TTL_SECONDS, clock: Clock | None = None) -> None:
        super().__init__(default_ttl=default_ttl, clock=clock)
        self.path = Path(path)

    def initialize_sync(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path)
        try:
            conn.executescript(SCHEMA_SQL)
            conn.commit()
        finally:
            conn.close()

    async def _connect(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self.path)
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        return conn

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[aiosqlite.Connection]:
        try:
            conn = await self._connect()
        except sqlite3.Error as e:
            raise MetadataExtractionError(ErrorCode.CACHE_ERROR, f"Cache unavailable: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise MetadataExtractionError(ErrorCode.CACHE_ERROR, f"Cache operation failed: {e}") from e
        finally:
            await conn.close()

    async def get_entry(self, key: str) -> CacheEntry | None:
        async with self._connection() as conn:
            async with conn.execute(
                "SELECT url, payload_json, created_at, expires_at, hits FROM metadata_cache WHERE key=?",
                (key,),
            ) as cur:
                row = await cur.fetchone()
            if not row:
                return None
            url, payload_json, created_at, expires_at, hits = row
            if self._clock() > float(expires_at):
                await conn.execute("DELETE FROM metadata_cache WHERE key=? AND created_at=?", (key, created_at))
                await conn.commit()
                return None
            await conn.execute(
                "UPDATE metadata_cache SET hits=hits+1 WHERE key=? AND created_at=?",
                (key, created_at),
            )
            await conn.commit()

        try:
            metadata = UrlMetadata.from_dict(json.loads(payload_json))
        except (TypeError, ValueError) as e:
            raise MetadataExtractionError(ErrorCode.CACHE_ERROR, f"Corrupt cache entry for {url}: {e}", url) from e
        return CacheEntry(
            key=key,
            url=str(url),
            metadata=metadata,
            created_at=float(created_at),
            expires_at=float(expires_at),
            hits=int(hits) + 1,
        )

    async def set(self, key: str, value: UrlMetadata, ttl: float | None = None) -> CacheEntry:
        entry = self._new_entry(key, value, ttl)
        payload = json.dumps(entry.metadata.to_dict(), sort_keys=True)
        async with self._connection() as conn:
            await conn.execute(
                "INSERT OR REPLACE INTO metadata_cache(key,url,payload_json,created_at,expires_at,hits) VALUES(?,?,?,?,?,0)",
                (entry.key, entry.url, payload, entry.created_at, entry.expires_at),
            )
            await conn.commit()
        return entry

    async def delete(self, key: str) -> None:
        async with self._connection() as conn:
            await conn.execute("DELETE FROM metadata_cache WHERE key=?", (key,))
            await conn.commit()

    async def clear(self) -> None:
        async with self._connection() as conn:
            await conn.execute("DELETE FROM metadata_cache")
            await conn.commit()

    async def purge_expired(self) -> int:
        async with self._connection() as conn:
            cur = await conn.execute("DELETE FROM metadata_cache WHERE expires_at < ?", (self._clock(),))
            removed = cur.rowcount
            await conn.commit()
        logger.info("Purged %s expired cache entries from %s", removed, self.path)
        return int(removed or 0)


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    errors: int = 0

    def record_hit(self) -> None:
        self.hits += 1

    def record_miss(self) -> None:
        self.misses += 1

    def record_error(self) -> None:
        self.errors += 1

    def snapshot(self) -> dict[str, float]:
        total = self.hits + self.misses
        return {
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "total": total,
            "hit_rate": (self.hits / total) * 100 if total > 0 else 0.0,
        }

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.errors = 0


def build_cache(settings: ExtractionSettings, *, db_path: Path | None = None) -> MetadataCache | None:
    if not settings.cache_enabled:
        return None
    backend = (settings.cache_backend or "memory").strip().lower()
    if backend == "sqlite":
        if db_path is None:
            raise ValueError("The sqlite cache backend needs a database path")
        cache = SqliteMetadataCache(db_path, default_ttl=settings.cache_ttl_seconds)
        cache.initialize_sync()
        return cache
    if backend != "memory":
        logger.warning("Unknown cache backend %r; using in-memory cache", settings.cache_backend)
    return InMemoryMetadataCache(default_ttl=settings.cache_ttl_seconds)


_default_cache: InMemoryMetadataCache | None = None


def get_default_cache() -> InMemoryMetadataCache:
    global _default_cache
    if _default_cache is None:
        _default_cache = InMemoryMetadataCache()
    return _default_cache
