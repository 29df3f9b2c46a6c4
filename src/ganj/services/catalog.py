"""Catalog service - reads the pre-imported poetry tables.

The catalog holds a copy of part of the Ganjoor corpus (mainly famous poets)
in the relational database. It answers the same questions as the Ganjoor
client, faster, but may be incomplete; the hybrid dispatcher decides when to
trust it. Results are cached under ``catalog:`` keys in the shared
``ResponseCache``.
"""

import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ganj.models.catalog import CategoryRecord, PoemRecord, PoetRecord
from ganj.repositories.category import CategoryRepository
from ganj.repositories.poem import PoemRepository
from ganj.repositories.poet import PoetRepository
from ganj.services.cache import ResponseCache
from ganj.services.entities import Category, Poem, Poet, PoetDetail
from ganj.services.verses import normalize_lines

logger = structlog.get_logger(__name__)

NOT_FOUND_CODE = "NOT_FOUND"

# Catalog rows change only on re-import, so they live longer than API data
CATALOG_TTLS: dict[str, float] = {
    "poets": 600,
    "poet": 1800,
    "category": 1800,
    "poem": 3600,
}


class CatalogError(Exception):
    """A catalog query failed. ``code`` is the datastore error code."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.code = code


class CatalogNotFoundError(CatalogError):
    """The requested row is not in the catalog."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=NOT_FOUND_CODE)


def _normalize_title(value: str) -> str:
    return re.sub(r"\s+", " ", value.strip()).lower()


def filter_categories(categories: list[Category], poet_name: str) -> list[Category]:
    """Drop empty categories and the poet's own root category.

    A category is dropped when it has no poems, when its normalized title
    equals the poet name, or when it contains the poet name and differs
    from it by fewer than 5 characters.
    """
    name = _normalize_title(poet_name)
    kept: list[Category] = []
    for category in categories:
        if not category.poem_count:
            continue
        title = _normalize_title(category.title)
        if title == name:
            continue
        if abs(len(title) - len(name)) < 5 and name in title:
            continue
        kept.append(category)
    return kept


class CatalogService:
    """Read access to the imported poets, categories and poems.

    Usage:
        ```python
        catalog = CatalogService(get_session_factory(), cache)
        if await catalog.has_poet(2):
            detail = await catalog.get_poet(2)
        ```
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        cache: ResponseCache,
        ttls: dict[str, float] | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            session_factory: Factory for short-lived sessions, one per query
            cache: Shared response cache
            ttls: Override TTLs per resource (poets, poet, category, poem)
        """
        self._session_factory = session_factory
        self.cache = cache
        self._ttls = {**CATALOG_TTLS, **(ttls or {})}

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        """Open a session and translate datastore failures to ``CatalogError``."""
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error("catalog_query_failed", operation=operation, error=str(e))
            raise CatalogError(
                f"Catalog query failed: {operation}",
                code=getattr(e, "code", None) or type(e).__name__,
            ) from e

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def get_poets(self) -> list[Poet]:
        """All poets ordered by name."""

        async def fetch() -> list[Poet]:
            async with self._session("get_poets") as session:
                rows = await PoetRepository(session).list_by_name()
            return [self._to_poet(r) for r in rows]

        return await self.cache.get("catalog:/poets", fetch, self._ttls["poets"])

    async def get_poet(self, poet_id: int) -> PoetDetail:
        """A poet and their filtered categories.

        A failing category query yields an empty category list.

        Raises:
            CatalogNotFoundError: If the poet is not in the catalog
            CatalogError: If the poet query fails
        """

        async def fetch() -> PoetDetail:
            async with self._session("get_poet") as session:
                record = await PoetRepository(session).get_by_id(poet_id)
            if record is None:
                raise CatalogNotFoundError(f"Poet {poet_id} not found in catalog")
            poet = self._to_poet(record)

            try:
                async with self._session("get_poet_categories") as session:
                    rows = await CategoryRepository(session).get_by_poet(poet_id)
            except CatalogError:
                rows = []

            categories = filter_categories(
                [self._to_category(r) for r in rows], poet.name
            )
            for category in categories:
                category.poem_count = category.poem_count or 0
            return PoetDetail(poet=poet, categories=categories)

        return await self.cache.get(
            f"catalog:/poet/{poet_id}", fetch, self._ttls["poet"]
        )

    async def get_category_poems(self, poet_id: int, category_id: int) -> list[Poem]:
        """Poems of a category ordered by id."""

        async def fetch() -> list[Poem]:
            async with self._session("get_category_poems") as session:
                rows = await PoemRepository(session).get_by_category(
                    poet_id, category_id
                )
            return [self._to_poem(*row) for row in rows]

        return await self.cache.get(
            f"catalog:/cat/{category_id}", fetch, self._ttls["category"]
        )

    async def get_poem(self, poem_id: int) -> Poem:
        """A single poem.

        Raises:
            CatalogNotFoundError: If the poem is not in the catalog
        """

        async def fetch() -> Poem:
            async with self._session("get_poem") as session:
                row = await PoemRepository(session).get_with_names(poem_id)
            if row is None:
                raise CatalogNotFoundError(f"Poem {poem_id} not found in catalog")
            return self._to_poem(*row)

        return await self.cache.get(
            f"catalog:/poem/{poem_id}", fetch, self._ttls["poem"]
        )

    async def has_poet(self, poet_id: int) -> bool:
        """True if the poet is in the catalog. Never raises."""
        try:
            async with self._session("has_poet") as session:
                return await PoetRepository(session).exists(poet_id)
        except CatalogError:
            return False

    async def has_poem(self, poem_id: int) -> bool:
        """True if the poem is in the catalog. Never raises."""
        try:
            async with self._session("has_poem") as session:
                return await PoemRepository(session).exists(poem_id)
        except CatalogError:
            return False

    # -------------------------------------------------------------------------
    # Search (uncached)
    # -------------------------------------------------------------------------

    async def search_poets(
        self, query: str, *, offset: int = 0, limit: int = 20, count: bool = False
    ) -> tuple[list[Poet], int | None]:
        """Poets whose name or description contains ``query``.

        Returns:
            Tuple of (page of poets, total matches or None if not requested)
        """
        async with self._session("search_poets") as session:
            repo = PoetRepository(session)
            rows = await repo.search(query, offset=offset, limit=limit)
            total = await repo.count_matching(query) if count else None
        return [self._to_poet(r) for r in rows], total

    async def search_categories(
        self, query: str, *, offset: int = 0, limit: int = 20, count: bool = False
    ) -> tuple[list[Category], int | None]:
        """Categories whose title contains ``query``, with their poet name."""
        async with self._session("search_categories") as session:
            repo = CategoryRepository(session)
            rows = await repo.search(query, offset=offset, limit=limit)
            total = await repo.count_matching(query) if count else None

        categories = []
        for record, poet_name in rows:
            category = self._to_category(record)
            category.poem_count = category.poem_count or 0
            category.poet_name = poet_name or ""
            categories.append(category)
        return categories, total

    async def search_poems(
        self,
        query: str,
        *,
        poet_id: int | None = None,
        offset: int = 0,
        limit: int = 20,
        count: bool = False,
    ) -> tuple[list[Poem], int | None]:
        """Poems whose title or verses contain ``query``, newest first."""
        async with self._session("search_poems") as session:
            repo = PoemRepository(session)
            rows = await repo.search(query, poet_id=poet_id, offset=offset, limit=limit)
            total = await repo.count_matching(query, poet_id=poet_id) if count else None
        return [self._to_poem(*row) for row in rows], total

    async def get_stats(self) -> dict[str, Any]:
        """Row counts per table."""
        async with self._session("get_stats") as session:
            return {
                "poets": await PoetRepository(session).count(),
                "categories": await CategoryRepository(session).count(),
                "poems": await PoemRepository(session).count(),
            }

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    @staticmethod
    def _to_poet(record: PoetRecord) -> Poet:
        return Poet(
            id=record.id,
            name=record.name,
            slug=record.slug or "",
            description=record.description or None,
            birth_year=record.birth_year or None,
            death_year=record.death_year or None,
        )

    @staticmethod
    def _to_category(record: CategoryRecord) -> Category:
        return Category(
            id=record.id,
            title=record.title,
            poet_id=record.poet_id,
            poem_count=record.poem_count,
        )

    @staticmethod
    def _to_poem(
        record: PoemRecord, poet_name: str | None, category_title: str | None
    ) -> Poem:
        return Poem(
            id=record.id,
            title=record.title,
            verses=normalize_lines(record.verses_array or []),
            poet_id=record.poet_id,
            poet_name=poet_name or "",
            category_id=record.category_id,
            category_title=category_title or "",
        )
