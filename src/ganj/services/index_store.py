"""IndexStore - Redis persistence for search index snapshots.

Two kinds of snapshots are kept:

Snapshot Key Types:
    - ganj-search-index:main:main          - Complete index (written at the end of a build)
    - ganj-search-index:chunks:chunk-{n}   - Progress checkpoint n of a running build

Both hold the same JSON document::

    {"poets": [...], "categories": [...], "poems": [...],
     "timestamp": <epoch seconds>, "format_version": 4,
     "chunk_number": n, "total_chunks": m}   # chunk fields on chunks only

On load a snapshot is discarded when its format version differs from the
current one or when it is older than the freshness window. A chunk without
``total_chunks`` is treated as a torn write and discarded as well. Keys are
written with an expiry equal to the freshness window, so Redis cleans up
snapshots nobody reads anymore.
"""

import json
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import structlog
from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = structlog.get_logger(__name__)

KEY_PREFIX = "ganj-search-index"
MAIN_KEY = f"{KEY_PREFIX}:main:main"
CHUNK_KEY_PREFIX = f"{KEY_PREFIX}:chunks:chunk-"


@dataclass
class IndexSnapshot:
    """Serialized index content (records are plain dicts)."""

    poets: list[dict[str, Any]] = field(default_factory=list)
    categories: list[dict[str, Any]] = field(default_factory=list)
    poems: list[dict[str, Any]] = field(default_factory=list)
    timestamp: float = 0.0
    format_version: int = 0
    chunk_number: int | None = None
    total_chunks: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "poets": self.poets,
            "categories": self.categories,
            "poems": self.poems,
            "timestamp": self.timestamp,
            "format_version": self.format_version,
        }
        if self.chunk_number is not None:
            data["chunk_number"] = self.chunk_number
            data["total_chunks"] = self.total_chunks
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexSnapshot":
        return cls(
            poets=list(data.get("poets") or []),
            categories=list(data.get("categories") or []),
            poems=list(data.get("poems") or []),
            timestamp=float(data.get("timestamp") or 0),
            format_version=int(data.get("format_version") or 0),
            chunk_number=data.get("chunk_number"),
            total_chunks=data.get("total_chunks"),
        )


def chunk_key(chunk_number: int) -> str:
    """Key of chunk ``chunk_number`` (e.g. ``ganj-search-index:chunks:chunk-3``)."""
    return f"{CHUNK_KEY_PREFIX}{chunk_number}"


class IndexStore:
    """Save and load search index snapshots in Redis.

    ``save_*`` and ``clear`` raise on Redis errors; the caller decides
    whether a failed write matters. ``load_*`` never raise: an unreadable
    snapshot is the same as no snapshot.

    Usage:
        ```python
        store = IndexStore(redis, format_version=4, max_age_seconds=86400)
        await store.save_main(snapshot)
        snapshot = await store.load_main()
        ```
    """

    def __init__(
        self,
        redis: Redis,
        *,
        format_version: int,
        max_age_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the store.

        Args:
            redis: Async Redis client
            format_version: Current index format; other versions are discarded
            max_age_seconds: Freshness window for snapshots
            clock: Wall clock in epoch seconds
        """
        self.redis = redis
        self.format_version = format_version
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def stamp(self, snapshot: IndexSnapshot) -> IndexSnapshot:
        """Set the current time and format version on ``snapshot``."""
        snapshot.timestamp = self._clock()
        snapshot.format_version = self.format_version
        return snapshot

    def is_valid(self, snapshot: IndexSnapshot) -> bool:
        """True if ``snapshot`` has the current format and is still fresh."""
        if snapshot.format_version != self.format_version:
            return False
        return self._clock() - snapshot.timestamp <= self.max_age_seconds

    # -------------------------------------------------------------------------
    # Main snapshot
    # -------------------------------------------------------------------------

    async def save_main(self, snapshot: IndexSnapshot) -> None:
        await self._write(MAIN_KEY, self.stamp(snapshot))
        logger.info(
            "search_index_saved",
            poets=len(snapshot.poets),
            categories=len(snapshot.categories),
            poems=len(snapshot.poems),
        )

    async def load_main(self) -> IndexSnapshot | None:
        """The main snapshot, or None if missing, stale or unreadable."""
        snapshot = await self._read(MAIN_KEY)
        if snapshot is None:
            return None
        if not self.is_valid(snapshot):
            logger.info(
                "search_index_snapshot_discarded",
                key=MAIN_KEY,
                format_version=snapshot.format_version,
            )
            return None
        return snapshot

    # -------------------------------------------------------------------------
    # Chunks
    # -------------------------------------------------------------------------

    async def save_chunk(
        self, snapshot: IndexSnapshot, chunk_number: int, total_chunks: int
    ) -> None:
        snapshot.chunk_number = chunk_number
        snapshot.total_chunks = total_chunks
        await self._write(chunk_key(chunk_number), self.stamp(snapshot))
        logger.debug(
            "search_index_chunk_saved",
            chunk_number=chunk_number,
            total_chunks=total_chunks,
        )

    async def load_chunks(self) -> list[IndexSnapshot]:
        """Valid chunks ordered by chunk number."""
        chunks: list[IndexSnapshot] = []
        try:
            keys = [key async for key in self.redis.scan_iter(match=f"{CHUNK_KEY_PREFIX}*")]
        except RedisError as e:
            logger.warning("search_index_chunks_load_failed", error=str(e))
            return []

        for key in keys:
            snapshot = await self._read(key)
            if snapshot is None:
                continue
            if snapshot.chunk_number is None or not snapshot.total_chunks:
                logger.info("search_index_chunk_incomplete", key=str(key))
                continue
            if not self.is_valid(snapshot):
                continue
            chunks.append(snapshot)

        chunks.sort(key=lambda c: c.chunk_number or 0)
        return chunks

    async def clear(self) -> int:
        """Delete every snapshot. Returns the number of keys deleted."""
        count = 0
        async for key in self.redis.scan_iter(match=f"{KEY_PREFIX}:*"):
            await self.redis.delete(key)
            count += 1
        logger.debug("search_index_snapshots_cleared", count=count)
        return count

    # -------------------------------------------------------------------------
    # Encoding
    # -------------------------------------------------------------------------

    async def _write(self, key: str, snapshot: IndexSnapshot) -> None:
        payload = json.dumps(snapshot.to_dict(), ensure_ascii=False)
        await self.redis.set(key, payload, ex=max(1, int(self.max_age_seconds)))

    async def _read(self, key: str | bytes) -> IndexSnapshot | None:
        try:
            raw = await self.redis.get(key)
        except RedisError as e:
            logger.warning("search_index_load_failed", key=str(key), error=str(e))
            return None
        if not raw:
            return None
        try:
            return IndexSnapshot.from_dict(json.loads(raw))
        except (ValueError, TypeError, AttributeError) as e:
            logger.warning("search_index_snapshot_corrupt", key=str(key), error=str(e))
            return None
