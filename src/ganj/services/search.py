"""Unified search over the catalog, with a Ganjoor scan for uncatalogued poets.

Matching is a case-insensitive substring match:
- poets on name or description
- categories on title (the poet name is returned with each hit)
- poems on title or verses, newest id first

When the search is restricted to one poet who is not in the catalog, that
poet's categories are fetched from Ganjoor and filtered in memory instead.
The scan is bounded by a category limit and a client-side timeout.

A failing result type is logged and left out of the response; the other
types are still returned.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, TypeVar

import structlog

from ganj.config import Settings, get_settings
from ganj.core.exceptions import SearchQueryError, ServiceUnavailableError
from ganj.core.retry import with_timeout
from ganj.services.catalog import CatalogService
from ganj.services.entities import Category, Poem, Poet
from ganj.services.hybrid import HybridPoetryService

logger = structlog.get_logger(__name__)

T = TypeVar("T")

MIN_QUERY_LENGTH = 2
QUERY_TOO_SHORT = "Query too short"
MAX_SCANNED_CATEGORIES = 20


class SearchType(str, Enum):
    ALL = "all"
    POETS = "poets"
    CATEGORIES = "categories"
    POEMS = "poems"

    def includes(self, other: "SearchType") -> bool:
        return self is SearchType.ALL or self is other


@dataclass
class UnifiedSearchResult:
    """Per-type results. ``None`` means the type was not requested or failed."""

    poets: list[Poet] | None = None
    categories: list[Category] | None = None
    poems: list[Poem] | None = None
    total_poets: int | None = None
    total_categories: int | None = None
    total_poems: int | None = None
    message: str | None = None

    @classmethod
    def too_short(cls) -> "UnifiedSearchResult":
        return cls(poets=[], categories=[], poems=[], message=QUERY_TOO_SHORT)


def poem_matches(poem: Poem, query: str, words: list[str]) -> bool:
    """True if the title or verses contain the phrase, or the verses contain every word."""
    if query in poem.title.lower():
        return True
    if not poem.verses:
        return False
    text = " ".join(poem.verses).lower()
    if query in text:
        return True
    return bool(words) and all(word in text for word in words)


class UnifiedSearchService:
    """Search poets, categories and poems in one call.

    Usage:
        ```python
        search = UnifiedSearchService(catalog, hybrid)
        result = await search.search("عشق", type="poems", limit=10)
        ```
    """

    def __init__(
        self,
        catalog: CatalogService | None,
        hybrid: HybridPoetryService,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            catalog: Catalog to search, or None when the catalog is disabled
            hybrid: Dispatcher used for poets that are not in the catalog
            settings: Application settings (defaults to ``get_settings()``)
        """
        self.catalog = catalog
        self.hybrid = hybrid
        self._settings = settings or get_settings()

    async def search(
        self,
        q: str | None,
        *,
        type: str = "all",
        limit: int = 20,
        offset: int = 0,
        count: bool = False,
        poet_id: int | None = None,
    ) -> UnifiedSearchResult:
        """Run the search.

        Args:
            q: Query text; shorter than 2 characters after trimming gives an
                empty result with a message
            type: One of all, poets, categories, poems
            limit: Page size per type
            offset: Page offset per type
            count: Also return the total number of matches per type
            poet_id: Restrict poem results to one poet

        Raises:
            SearchQueryError: If ``type`` is unknown
            ServiceUnavailableError: If the catalog is disabled
        """
        try:
            search_type = SearchType(type)
        except ValueError:
            raise SearchQueryError(f"Unknown search type: {type}", field="type") from None

        query = (q or "").strip()
        if len(query) < MIN_QUERY_LENGTH:
            return UnifiedSearchResult.too_short()

        if self.catalog is None:
            raise ServiceUnavailableError("Search service not configured")
        catalog = self.catalog

        result = UnifiedSearchResult()
        page: dict[str, Any] = {"offset": offset, "limit": limit, "count": count}

        if search_type.includes(SearchType.POETS):
            found = await self._guard(
                "poets", lambda: catalog.search_poets(query, **page)
            )
            if found is not None:
                result.poets, result.total_poets = found

        if search_type.includes(SearchType.CATEGORIES):
            found = await self._guard(
                "categories", lambda: catalog.search_categories(query, **page)
            )
            if found is not None:
                result.categories, result.total_categories = found

        if search_type.includes(SearchType.POEMS):
            found = await self._guard(
                "poems",
                lambda: self._search_poems(catalog, query, poet_id=poet_id, **page),
            )
            if found is not None:
                result.poems, result.total_poems = found

        return result

    async def _search_poems(
        self,
        catalog: CatalogService,
        query: str,
        *,
        poet_id: int | None,
        offset: int,
        limit: int,
        count: bool,
    ) -> tuple[list[Poem], int | None]:
        if poet_id is None or await catalog.has_poet(poet_id):
            return await catalog.search_poems(
                query, poet_id=poet_id, offset=offset, limit=limit, count=count
            )

        matches = await with_timeout(
            self._scan_poet(poet_id, query, offset + limit),
            self._settings.client_timeout_seconds,
            [],
            operation="search_poet_scan",
        )
        return matches[offset : offset + limit], len(matches) if count else None

    async def _scan_poet(self, poet_id: int, query: str, wanted: int) -> list[Poem]:
        """Matching poems from the poet's categories, title matches first.

        Stops once twice ``wanted`` matches are collected. Failing categories
        are skipped; a failure to load the poet gives no results.
        """
        needle = query.lower()
        words = needle.split()
        try:
            detail = await self.hybrid.get_poet(poet_id)
        except Exception as e:
            logger.warning("search_poet_scan_failed", poet_id=poet_id, error=str(e))
            return []

        matches: list[Poem] = []
        for category in detail.categories[:MAX_SCANNED_CATEGORIES]:
            try:
                poems = await self.hybrid.get_category_poems(poet_id, category.id)
            except Exception as e:
                logger.debug(
                    "search_category_skipped", category_id=category.id, error=str(e)
                )
                continue
            for poem in poems:
                if poem_matches(poem, needle, words):
                    matches.append(
                        replace(
                            poem,
                            poet_name=poem.poet_name or detail.poet.name,
                            category_title=poem.category_title or category.title,
                        )
                    )
            if len(matches) >= wanted * 2:
                break

        matches.sort(key=lambda p: needle not in p.title.lower())
        return matches

    @staticmethod
    async def _guard(kind: str, run: Callable[[], Awaitable[T]]) -> T | None:
        try:
            return await run()
        except Exception as e:
            logger.error("search_failed", result_type=kind, error=str(e))
            return None
