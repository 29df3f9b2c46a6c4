"""SearchIndex - incrementally built full-text index of poets, categories and poems.

The index becomes searchable long before it is complete:

    UNBUILT -> LOADING -> PARTIALLY_READY -> BUILDING -> READY

- LOADING: a saved snapshot is read from the ``IndexStore``. A valid main
  snapshot goes straight to READY; otherwise the newest progress chunk is
  loaded and the build resumes after the poets that chunk covers.
- PARTIALLY_READY: every poet plus the categories of the first
  ``search_index_poet_limit`` poets are indexed. ``initialize()`` returns here.
- BUILDING: a background task walks those poets one at a time. Famous poets
  get the full text of every poem in their top 3 categories (fetched in
  small batches), the rest get the titles from their top 2 categories. The
  text indexes are rebuilt after every batch, so searches see new poems as
  soon as they arrive. Progress chunks are saved every few poets.
- READY: the final chunk and the main snapshot are saved.

Per-item failures during the build are logged and skipped. Snapshot writes
are fire-and-forget; a failed write is reported to the ``on_error`` callback
and counted in ``get_stats()``.

Results are ranked by the text index, then entities of the configured
famous poets are moved ahead of the rest without reordering either group.
"""

import asyncio
import re
import time
from collections.abc import Callable, Coroutine, Iterable
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, TypeVar

import structlog

from ganj.config import Settings, get_settings
from ganj.services.entities import Category, Poem, Poet
from ganj.services.ganjoor import GanjoorService
from ganj.services.index_store import IndexSnapshot, IndexStore
from ganj.services.text_index import TextIndex

logger = structlog.get_logger(__name__)

MIN_RESULTS_BEFORE_RETRY = 5
POEM_CANDIDATES_FLOOR = 500
PREVIEW_LENGTH = 100
FAMOUS_CATEGORY_COUNT = 3
OTHER_CATEGORY_COUNT = 2

_WHITESPACE = re.compile(r"\s+")


class IndexState(str, Enum):
    UNBUILT = "unbuilt"
    LOADING = "loading"
    PARTIALLY_READY = "partially_ready"
    BUILDING = "building"
    READY = "ready"


SEARCHABLE_STATES = frozenset(
    {IndexState.PARTIALLY_READY, IndexState.BUILDING, IndexState.READY}
)


# -----------------------------------------------------------------------------
# Indexed records
# -----------------------------------------------------------------------------


@dataclass
class SearchablePoet:
    id: int
    name: str
    description: str | None = None

    @property
    def poet_id(self) -> int:
        return self.id

    @property
    def search_text(self) -> str:
        return f"{self.name} {self.description or ''}"

    def to_poet(self) -> Poet:
        return Poet(id=self.id, name=self.name, description=self.description)


@dataclass
class SearchableCategory:
    id: int
    title: str
    poet_id: int
    poet_name: str
    description: str = ""

    @property
    def search_text(self) -> str:
        return f"{self.title} {self.description} {self.poet_name}"

    def to_category(self) -> Category:
        return Category(
            id=self.id,
            title=self.title,
            poet_id=self.poet_id,
            description=self.description,
            poet_name=self.poet_name,
        )


@dataclass
class SearchablePoem:
    id: int
    title: str
    poet_id: int
    poet_name: str
    verses_text: str = ""
    category_id: int | None = None
    category_title: str = ""

    @property
    def search_text(self) -> str:
        verses = _WHITESPACE.sub(" ", self.verses_text).strip()
        return f"{self.title} {verses} {self.poet_name}".strip()

    def to_poem(self) -> Poem:
        """A poem whose only verse is a short preview of the indexed text."""
        preview = [self.verses_text[:PREVIEW_LENGTH] + "..."] if self.verses_text else []
        return Poem(
            id=self.id,
            title=self.title,
            verses=preview,
            poet_id=self.poet_id,
            poet_name=self.poet_name,
            category_id=self.category_id,
            category_title=self.category_title,
        )

    @classmethod
    def from_poem(cls, poem: Poem, poet_id: int, *, with_verses: bool) -> "SearchablePoem":
        verses_text = (
            " ".join(v for v in poem.verses if v and v.strip()) if with_verses else ""
        )
        return cls(
            id=poem.id,
            title=poem.title,
            poet_id=poet_id,
            poet_name=poem.poet_name,
            verses_text=verses_text,
            category_id=poem.category_id,
            category_title=poem.category_title,
        )


R = TypeVar("R", SearchablePoet, SearchableCategory, SearchablePoem)


@dataclass
class IndexProgress:
    current: int = 0
    total: int = 0


@dataclass
class SearchResults:
    poets: list[Poet] = field(default_factory=list)
    categories: list[Category] = field(default_factory=list)
    poems: list[Poem] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Search Index
# -----------------------------------------------------------------------------


class SearchIndex:
    """Prioritized full-text search over an incrementally indexed corpus.

    Usage:
        ```python
        index = SearchIndex(ganjoor, store)
        await index.initialize()         # returns once PARTIALLY_READY
        poets = index.search_poets("حافظ")
        await index.dispose()
        ```
    """

    def __init__(
        self,
        source: GanjoorService,
        store: IndexStore | None = None,
        settings: Settings | None = None,
        *,
        on_error: Callable[[str, Exception], None] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the index.

        Args:
            source: Data source the corpus is fetched from
            store: Snapshot persistence, or None to keep the index in memory only
            settings: Application settings (defaults to ``get_settings()``)
            on_error: Called with (operation, error) when a snapshot write fails
            clock: Wall clock in epoch seconds
        """
        self.source = source
        self.store = store
        self._settings = settings or get_settings()
        self._on_error = on_error or self._log_persistence_error
        self._clock = clock

        self.famous_poet_ids = frozenset(self._settings.search_index_famous_poet_ids)
        self.max_age_seconds = self._settings.search_index_ttl_hours * 3600

        self.state = IndexState.UNBUILT
        self.indexed_at: float = 0.0
        self.progress = IndexProgress()
        self.persistence_failures = 0
        self.last_error: str | None = None

        self._poets: dict[int, SearchablePoet] = {}
        self._categories: dict[int, SearchableCategory] = {}
        self._poems: dict[int, SearchablePoem] = {}
        self._poet_index = TextIndex()
        self._category_index = TextIndex()
        self._poem_index = TextIndex()

        self._build_task: asyncio.Task[None] | None = None
        self._background_task: asyncio.Task[None] | None = None
        self._save_tasks: set[asyncio.Task[None]] = set()

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_searchable(self) -> bool:
        return self.state in SEARCHABLE_STATES

    @property
    def is_building(self) -> bool:
        return self.state in (IndexState.LOADING, IndexState.BUILDING)

    def is_fresh(self) -> bool:
        """True if the index has content younger than the freshness window."""
        return (
            self.is_searchable
            and self._clock() - self.indexed_at < self.max_age_seconds
        )

    def initialize(self) -> "asyncio.Task[None]":
        """Start building the index unless a build is running or the index is fresh.

        Returns the build task; awaiting it waits until the index is
        searchable. Calling this again while a build runs returns the same
        task, so the corpus is fetched once.
        """
        task = self._build_task
        if task is None or (task.done() and not self.is_fresh()):
            task = self._start_build(use_snapshots=True)
        return task

    def rebuild(self) -> "asyncio.Task[None]":
        """Drop everything indexed so far and build again from the source.

        A running build is cancelled. Saved snapshots are ignored and
        overwritten as the new build progresses. Returns the new build task.
        """
        for task in (self._build_task, self._background_task):
            if task is not None and not task.done():
                task.cancel()
        self._background_task = None
        self._reset()
        return self._start_build(use_snapshots=False)

    def _start_build(self, *, use_snapshots: bool) -> "asyncio.Task[None]":
        task = asyncio.create_task(self._build(use_snapshots=use_snapshots))
        task.add_done_callback(self._report_build_failure)
        self._build_task = task
        return task

    @staticmethod
    def _report_build_failure(task: "asyncio.Task[None]") -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.debug("search_index_build_task_failed", error=str(task.exception()))

    async def dispose(self) -> None:
        """Cancel the build and wait for pending snapshot writes."""
        await self._cancel_build()
        if self._save_tasks:
            await asyncio.gather(*self._save_tasks, return_exceptions=True)

    async def wait_until_complete(self) -> None:
        """Wait for the build, background poem indexing included."""
        if self._build_task is not None:
            await self._build_task
        if self._background_task is not None:
            await self._background_task

    async def _cancel_build(self) -> None:
        for task in (self._build_task, self._background_task):
            if task is not None and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as e:
                    logger.debug("search_index_cancelled_build_failed", error=str(e))
        self._build_task = None
        self._background_task = None

    def _reset(self) -> None:
        self._poets.clear()
        self._categories.clear()
        self._poems.clear()
        self._rebuild_indexes()
        self.state = IndexState.UNBUILT
        self.indexed_at = 0.0
        self.progress = IndexProgress()
        self.last_error = None

    # -------------------------------------------------------------------------
    # Build
    # -------------------------------------------------------------------------

    async def _build(self, *, use_snapshots: bool) -> None:
        self.state = IndexState.LOADING
        resume_from = 0

        if use_snapshots and self.store is not None:
            main = await self.store.load_main()
            if main is not None:
                self._load_snapshot(main)
                self.state = IndexState.READY
                self.indexed_at = main.timestamp
                self.progress = IndexProgress(current=1, total=1)
                logger.info(
                    "search_index_restored",
                    poets=len(self._poets),
                    categories=len(self._categories),
                    poems=len(self._poems),
                )
                return

            chunks = await self.store.load_chunks()
            if chunks:
                latest = chunks[-1]
                self._load_snapshot(latest)
                resume_from = latest.chunk_number or 0
                self.state = IndexState.PARTIALLY_READY
                logger.info(
                    "search_index_chunk_restored",
                    chunk_number=latest.chunk_number,
                    total_chunks=latest.total_chunks,
                )

        try:
            poets = await self.source.get_poets()
        except Exception as e:
            self.last_error = str(e)
            if not self._poets:
                self.state = IndexState.UNBUILT
            elif self.state is IndexState.LOADING:
                self.state = IndexState.PARTIALLY_READY
            logger.error("search_index_build_failed", error=str(e))
            raise

        self._poets = {p.id: SearchablePoet(p.id, p.name, p.description) for p in poets}
        top = poets[: self._settings.search_index_poet_limit]

        details = await asyncio.gather(
            *(self.source.get_poet(p.id) for p in top), return_exceptions=True
        )
        for poet, detail in zip(top, details, strict=True):
            if isinstance(detail, BaseException):
                if not isinstance(detail, Exception):
                    raise detail
                logger.warning(
                    "search_index_poet_skipped", poet_id=poet.id, error=str(detail)
                )
                continue
            for category in detail.categories:
                self._categories[category.id] = SearchableCategory(
                    id=category.id,
                    title=category.title,
                    poet_id=poet.id,
                    poet_name=poet.name,
                    description=category.description,
                )

        self._rebuild_indexes()
        self.state = IndexState.PARTIALLY_READY
        self.indexed_at = self._clock()
        logger.info(
            "search_index_partially_ready",
            poets=len(self._poets),
            categories=len(self._categories),
        )

        self._background_task = asyncio.create_task(self._index_poems(top, resume_from))
        self._background_task.add_done_callback(self._report_build_failure)

    async def _index_poems(self, poets: list[Poet], resume_from: int) -> None:
        total = len(poets)
        self.progress = IndexProgress(current=min(resume_from, total), total=total)
        self.state = IndexState.BUILDING
        chunk_every = self._settings.search_index_chunk_every

        for number, poet in enumerate(poets, start=1):
            if number <= resume_from:
                continue
            try:
                detail = await self.source.get_poet(poet.id)
                if poet.id in self.famous_poet_ids:
                    await self._index_full_poems(
                        poet, detail.categories[:FAMOUS_CATEGORY_COUNT]
                    )
                else:
                    await self._index_poem_titles(
                        poet, detail.categories[:OTHER_CATEGORY_COUNT]
                    )
            except Exception as e:
                logger.warning("search_index_poet_skipped", poet_id=poet.id, error=str(e))

            if number % chunk_every == 0:
                self._save_chunk(number, total)
            self.progress.current = number

            if number < total:
                await asyncio.sleep(self._settings.search_index_poet_delay)

        self._save_chunk(total, total)
        self.state = IndexState.READY
        self.indexed_at = self._clock()
        self._save_main()

        with_verses = sum(1 for p in self._poems.values() if len(p.verses_text) > 50)
        logger.info(
            "search_index_ready",
            poets=len(self._poets),
            categories=len(self._categories),
            poems=len(self._poems),
            poems_with_verses=with_verses,
        )

    async def _index_full_poems(self, poet: Poet, categories: list[Category]) -> None:
        batch_size = self._settings.search_index_batch_size
        for category in categories:
            try:
                listed = await self.source.get_category_poems(poet.id, category.id)
            except Exception as e:
                logger.warning(
                    "search_index_category_skipped",
                    poet_id=poet.id,
                    category_id=category.id,
                    error=str(e),
                )
                continue

            fetched = 0
            for start in range(0, len(listed), batch_size):
                batch = listed[start : start + batch_size]
                records = await asyncio.gather(
                    *(self._fetch_full_poem(poet, p) for p in batch)
                )
                for record, has_verses in records:
                    self._poems[record.id] = record
                    fetched += has_verses
                self._rebuild_indexes()

                if start + batch_size < len(listed):
                    await asyncio.sleep(self._settings.search_index_batch_delay)

            logger.debug(
                "search_index_category_indexed",
                poet_id=poet.id,
                category_id=category.id,
                poems=len(listed),
                with_verses=fetched,
            )

    async def _fetch_full_poem(
        self, poet: Poet, listed: Poem
    ) -> tuple[SearchablePoem, bool]:
        """The poem with its verses, or only its title when the fetch fails."""
        try:
            poem = await self.source.get_poem(listed.id)
        except Exception as e:
            logger.debug("search_index_poem_title_only", poem_id=listed.id, error=str(e))
            return SearchablePoem.from_poem(listed, poet.id, with_verses=False), False
        return SearchablePoem.from_poem(poem, poet.id, with_verses=True), True

    async def _index_poem_titles(self, poet: Poet, categories: list[Category]) -> None:
        for category in categories:
            try:
                listed = await self.source.get_category_poems(poet.id, category.id)
            except Exception as e:
                logger.warning(
                    "search_index_category_skipped",
                    poet_id=poet.id,
                    category_id=category.id,
                    error=str(e),
                )
                continue
            for poem in listed:
                self._poems[poem.id] = SearchablePoem.from_poem(
                    poem, poet.id, with_verses=False
                )
            self._rebuild_indexes()

    def _rebuild_indexes(self) -> None:
        """Replace the three text indexes with fresh ones over the current records."""
        poet_index = TextIndex()
        poet_index.add_many((p.id, p.search_text) for p in self._poets.values())
        category_index = TextIndex()
        category_index.add_many((c.id, c.search_text) for c in self._categories.values())
        poem_index = TextIndex()
        poem_index.add_many(
            (p.id, text) for p in self._poems.values() if (text := p.search_text)
        )
        self._poet_index = poet_index
        self._category_index = category_index
        self._poem_index = poem_index

    # -------------------------------------------------------------------------
    # Search
    # -------------------------------------------------------------------------

    def search_poets(self, query: str, limit: int = 20) -> list[Poet]:
        if not self.is_searchable:
            return []
        records = self._lookup(self._poet_index, self._poets, query, limit * 2)
        return [r.to_poet() for r in self._famous_first(records)[:limit]]

    def search_categories(self, query: str, limit: int = 20) -> list[Category]:
        if not self.is_searchable:
            return []
        records = self._lookup(self._category_index, self._categories, query, limit * 2)
        return [r.to_category() for r in self._famous_first(records)[:limit]]

    def search_poems(self, query: str, limit: int = 20) -> list[Poem]:
        """Matching poems; each carries a preview of its text as its only verse."""
        if not self.is_searchable:
            return []
        candidates = max(limit * 10, POEM_CANDIDATES_FLOOR)
        records = self._lookup(self._poem_index, self._poems, query, candidates)
        return [r.to_poem() for r in self._famous_first(records)[:limit]]

    def search(self, query: str, limit: int = 20) -> SearchResults:
        return SearchResults(
            poets=self.search_poets(query, limit),
            categories=self.search_categories(query, limit),
            poems=self.search_poems(query, limit),
        )

    @staticmethod
    def _lookup(
        index: TextIndex, records: dict[int, R], query: str, candidates: int
    ) -> list[R]:
        ids = index.search(query, candidates)
        if len(ids) < MIN_RESULTS_BEFORE_RETRY:
            # Persian compounds are often written without the inner space
            compact = _WHITESPACE.sub("", query)
            if compact and compact != query:
                seen = set(ids)
                ids += [i for i in index.search(compact, candidates) if i not in seen]
        return [records[i] for i in ids if i in records]

    def _famous_first(self, records: Iterable[R]) -> list[R]:
        return sorted(records, key=lambda r: r.poet_id not in self.famous_poet_ids)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "is_indexed": self.is_searchable,
            "is_indexing": self.is_building,
            "indexed_at": self.indexed_at or None,
            "poets_count": len(self._poets),
            "categories_count": len(self._categories),
            "poems_count": len(self._poems),
            "persistence_failures": self.persistence_failures,
            "last_error": self.last_error,
        }

    def get_progress(self) -> dict[str, Any]:
        """Build progress for display: status, percent and a Persian message."""
        if self.state is IndexState.READY:
            return {"status": "ready", "progress": 100, "message": None}

        if self.state is IndexState.BUILDING or (
            self.state is IndexState.PARTIALLY_READY and self._background_task
        ):
            if self.progress.total > 0:
                percent = round(self.progress.current / self.progress.total * 100)
            else:
                percent = round(len(self._poems) / 5000 * 100)
            percent = min(95, percent)

            if percent < 20:
                message = "در حال بارگذاری شاعران..."
            elif percent < 50:
                message = "در حال بارگذاری مجموعه‌ها..."
            elif percent < 80:
                message = "در حال بارگذاری اشعار..."
            else:
                message = "در حال آماده‌سازی نهایی..."
            return {"status": "building", "progress": max(5, percent), "message": message}

        return {"status": "loading", "progress": 0, "message": None}

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _snapshot(self) -> IndexSnapshot:
        return IndexSnapshot(
            poets=[asdict(p) for p in self._poets.values()],
            categories=[asdict(c) for c in self._categories.values()],
            poems=[asdict(p) for p in self._poems.values()],
        )

    def _load_snapshot(self, snapshot: IndexSnapshot) -> None:
        self._poets = {d["id"]: SearchablePoet(**d) for d in snapshot.poets}
        self._categories = {d["id"]: SearchableCategory(**d) for d in snapshot.categories}
        self._poems = {d["id"]: SearchablePoem(**d) for d in snapshot.poems}
        self._rebuild_indexes()

    def _save_chunk(self, chunk_number: int, total_chunks: int) -> None:
        if self.store is None:
            return
        snapshot = self._snapshot()
        self._persist(
            "save_chunk", self.store.save_chunk(snapshot, chunk_number, total_chunks)
        )

    def _save_main(self) -> None:
        if self.store is None:
            return
        self._persist("save_main", self.store.save_main(self._snapshot()))

    def _persist(self, operation: str, write: Coroutine[Any, Any, None]) -> None:
        """Run a snapshot write in the background; failures go to ``on_error``."""

        async def run() -> None:
            try:
                await write
            except Exception as e:
                self.persistence_failures += 1
                self._on_error(operation, e)

        task = asyncio.create_task(run())
        self._save_tasks.add(task)
        task.add_done_callback(self._save_tasks.discard)

    @staticmethod
    def _log_persistence_error(operation: str, error: Exception) -> None:
        logger.warning("search_index_persist_failed", operation=operation, error=str(error))
