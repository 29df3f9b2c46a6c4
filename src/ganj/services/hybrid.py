"""Hybrid poetry service - catalog first, Ganjoor API as fallback.

Strategy:
    1. Try the imported catalog (fast, but only covers imported poets)
    2. Treat a missing, empty or incomplete catalog answer as a miss
    3. Fall back to the Ganjoor API (complete, slower)

Catalog failures are logged and never reach the caller; only a Ganjoor
failure fails a request. Every call is timed and recorded in a bounded
buffer of the most recent requests for the metrics endpoint.
"""

import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

import structlog

from ganj.services.catalog import CatalogService
from ganj.services.entities import Category, ChapterDetail, Poem, Poet, PoetDetail
from ganj.services.ganjoor import GanjoorApiError, GanjoorService

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MAX_METRICS = 100

# Bounds of the search scans over the primary source
CATEGORY_SCAN_POETS = 20
PRIORITY_POET_IDS = tuple(range(1, 11))
EXTRA_SCAN_POETS = 20
EXTRA_SCAN_CATEGORIES = 5


def _contains(poem: Poem, needle: str) -> bool:
    return needle in poem.title.casefold() or any(
        needle in verse.casefold() for verse in poem.verses
    )


class DataSource(str, Enum):
    """Where a response came from."""

    CATALOG = "catalog"
    GANJOOR = "ganjoor"


@dataclass
class RequestMetric:
    """Timing of one dispatched call."""

    source: DataSource
    endpoint: str
    duration_ms: float
    success: bool
    is_fallback: bool
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["source"] = self.source.value
        return data


class HybridPoetryService:
    """Serve poetry reads from the catalog when it can, otherwise from Ganjoor.

    Usage:
        ```python
        hybrid = HybridPoetryService(ganjoor, catalog)
        detail = await hybrid.get_poet(2)
        stats = hybrid.get_performance_stats()
        ```
    """

    def __init__(
        self,
        ganjoor: GanjoorService,
        catalog: CatalogService | None = None,
        max_metrics: int = MAX_METRICS,
    ) -> None:
        """Initialize the service.

        Args:
            ganjoor: Primary (authoritative) data source
            catalog: Secondary data source, or None to always use Ganjoor
            max_metrics: Number of recent request metrics kept
        """
        self.ganjoor = ganjoor
        self.catalog = catalog
        self._metrics: deque[RequestMetric] = deque(maxlen=max_metrics)

    # -------------------------------------------------------------------------
    # Dispatched reads
    # -------------------------------------------------------------------------

    async def get_poets(self) -> list[Poet]:
        async def from_catalog() -> list[Poet] | None:
            poets = await self.catalog.get_poets()
            return poets or None

        return await self._dispatch("get_poets", from_catalog, self.ganjoor.get_poets)

    async def get_poet(self, poet_id: int) -> PoetDetail:
        """Poet detail. A catalog poet without categories counts as a miss."""

        async def from_catalog() -> PoetDetail | None:
            if not await self.catalog.has_poet(poet_id):
                return None
            detail = await self.catalog.get_poet(poet_id)
            if not detail.categories:
                logger.info("catalog_poet_incomplete", poet_id=poet_id)
                return None
            return detail

        return await self._dispatch(
            "get_poet", from_catalog, lambda: self.ganjoor.get_poet(poet_id)
        )

    async def get_category_poems(self, poet_id: int, category_id: int) -> list[Poem]:
        async def from_catalog() -> list[Poem] | None:
            poems = await self.catalog.get_category_poems(poet_id, category_id)
            return poems or None

        return await self._dispatch(
            "get_category_poems",
            from_catalog,
            lambda: self.ganjoor.get_category_poems(poet_id, category_id),
        )

    async def get_poem(self, poem_id: int) -> Poem:
        """A poem. A catalog poem without verses counts as a miss."""

        async def from_catalog() -> Poem | None:
            if not await self.catalog.has_poem(poem_id):
                return None
            poem = await self.catalog.get_poem(poem_id)
            return poem if poem.verses else None

        return await self._dispatch(
            "get_poem", from_catalog, lambda: self.ganjoor.get_poem(poem_id)
        )

    async def get_chapter(
        self, poet_id: int, category_id: int, chapter_id: int
    ) -> ChapterDetail:
        """Chapters are not imported; always served by Ganjoor."""
        return await self._primary(
            "get_chapter",
            lambda: self.ganjoor.get_chapter(poet_id, category_id, chapter_id),
        )

    async def get_random_poem(self) -> Poem:
        return await self._primary("get_random_poem", self.ganjoor.get_random_poem)

    async def search_poets(self, query: str, limit: int = 20) -> list[Poet]:
        """Poets whose name or description contains ``query``."""
        needle = query.strip().casefold()
        if not needle:
            return []
        poets = await self.get_poets()
        matches = [
            p
            for p in poets
            if needle in p.name.casefold()
            or (p.description and needle in p.description.casefold())
        ]
        return matches[:limit]

    async def search_categories(self, query: str, limit: int = 20) -> list[Category]:
        """Categories of the first 20 listed poets matching ``query``.

        Matches on title or description. Poets that fail to load are skipped.
        """
        needle = query.strip().casefold()
        if not needle:
            return []
        poets = await self.get_poets()
        matches: list[Category] = []
        for poet in poets[:CATEGORY_SCAN_POETS]:
            try:
                detail = await self.get_poet(poet.id)
            except GanjoorApiError as e:
                logger.warning("category_scan_failed", poet_id=poet.id, error=str(e))
                continue
            matches.extend(
                replace(c, poet_name=c.poet_name or poet.name)
                for c in detail.categories
                if needle in c.title.casefold() or needle in c.description.casefold()
            )
        return matches[:limit]

    async def search_poems(self, query: str, limit: int = 20) -> list[Poem]:
        """Poems whose title or a verse contains ``query``, title matches first.

        Every category of the priority poets (ids 1-10) is scanned. When that
        yields fewer than ``limit`` poems, the next 20 listed poets are
        scanned too (5 categories each), stopping at ``limit * 2`` matches.
        Poets and categories that fail to load are skipped.
        """
        needle = query.strip().casefold()
        if not needle:
            return []
        poets = await self.get_poets()
        listed = {p.id for p in poets}

        found: list[Poem] = []
        for poet_id in PRIORITY_POET_IDS:
            if poet_id in listed:
                await self._scan_poems(poet_id, needle, found)

        if len(found) < limit:
            stop_at = limit * 2
            start = len(PRIORITY_POET_IDS)
            for poet in poets[start : start + EXTRA_SCAN_POETS]:
                await self._scan_poems(
                    poet.id,
                    needle,
                    found,
                    max_categories=EXTRA_SCAN_CATEGORIES,
                    stop_at=stop_at,
                )
                if len(found) >= stop_at:
                    break

        found.sort(key=lambda p: needle not in p.title.casefold())
        return found[:limit]

    async def _scan_poems(
        self,
        poet_id: int,
        needle: str,
        found: list[Poem],
        *,
        max_categories: int | None = None,
        stop_at: int | None = None,
    ) -> None:
        try:
            detail = await self.get_poet(poet_id)
        except GanjoorApiError as e:
            logger.warning("poem_scan_failed", poet_id=poet_id, error=str(e))
            return
        for category in detail.categories[:max_categories]:
            try:
                poems = await self.get_category_poems(poet_id, category.id)
            except GanjoorApiError as e:
                logger.warning(
                    "poem_scan_failed",
                    poet_id=poet_id,
                    category_id=category.id,
                    error=str(e),
                )
                continue
            found.extend(p for p in poems if _contains(p, needle))
            if stop_at is not None and len(found) >= stop_at:
                return

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    @property
    def metrics(self) -> list[RequestMetric]:
        return list(self._metrics)

    def get_performance_stats(self) -> dict[str, Any] | None:
        """Aggregate the recorded metrics, or None before the first request.

        Per-source counts and average durations cover successful calls only.
        ``fallback_rate`` is the rounded percentage of calls that reached
        Ganjoor after trying the catalog.
        """
        if not self._metrics:
            return None

        total = len(self._metrics)
        stats: dict[str, Any] = {"total_requests": total}
        for source in DataSource:
            durations = [
                m.duration_ms for m in self._metrics if m.source is source and m.success
            ]
            stats[source.value] = {
                "count": len(durations),
                "avg_duration_ms": round(sum(durations) / len(durations))
                if durations
                else 0,
            }
        fallbacks = sum(1 for m in self._metrics if m.is_fallback)
        stats["fallback_rate"] = round(fallbacks / total * 100)
        return stats

    def _record(
        self,
        source: DataSource,
        endpoint: str,
        started: float,
        *,
        success: bool,
        is_fallback: bool,
    ) -> None:
        metric = RequestMetric(
            source=source,
            endpoint=endpoint,
            duration_ms=(time.perf_counter() - started) * 1000,
            success=success,
            is_fallback=is_fallback,
        )
        self._metrics.append(metric)
        logger.debug(
            "data_source_call",
            source=source.value,
            endpoint=endpoint,
            duration_ms=round(metric.duration_ms, 2),
            success=success,
            fallback=is_fallback,
        )

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def _dispatch(
        self,
        endpoint: str,
        from_catalog: Callable[[], Awaitable[T | None]],
        from_ganjoor: Callable[[], Awaitable[T]],
    ) -> T:
        if self.catalog is None:
            return await self._primary(endpoint, from_ganjoor)

        started = time.perf_counter()
        try:
            result = await from_catalog()
        except Exception as e:
            logger.warning("catalog_lookup_failed", endpoint=endpoint, error=str(e))
            result = None

        if result is not None:
            self._record(
                DataSource.CATALOG, endpoint, started, success=True, is_fallback=False
            )
            return result

        return await self._primary(endpoint, from_ganjoor, is_fallback=True)

    async def _primary(
        self,
        endpoint: str,
        from_ganjoor: Callable[[], Awaitable[T]],
        *,
        is_fallback: bool = False,
    ) -> T:
        started = time.perf_counter()
        try:
            result = await from_ganjoor()
        except Exception:
            self._record(
                DataSource.GANJOOR,
                endpoint,
                started,
                success=False,
                is_fallback=is_fallback,
            )
            raise
        self._record(
            DataSource.GANJOOR, endpoint, started, success=True, is_fallback=is_fallback
        )
        return result
