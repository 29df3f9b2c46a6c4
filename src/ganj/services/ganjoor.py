"""Ganjoor API client service.

Async access to the public Ganjoor REST API, the authoritative source for
poets, categories, chapters and poems. Every request is retried with
exponential backoff and every public operation is served through the shared
``ResponseCache``. Responses are mapped to the canonical entities in
``ganj.services.entities``.

See: https://api.ganjoor.net/index.html
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any

import httpx
import structlog

from ganj.config import Settings, get_settings
from ganj.core.retry import (
    RetryOptions,
    is_rate_limited,
    is_transient_error,
    with_rate_limit_retry,
    with_retry,
)
from ganj.services.cache import ResponseCache
from ganj.services.entities import (
    Category,
    Chapter,
    ChapterDetail,
    Poem,
    Poet,
    PoetDetail,
)
from ganj.services.verses import extract_verses

logger = structlog.get_logger(__name__)

HAFEZ_POET_ID = 2
HAFEZ_POET_NAME = "حافظ"


# -----------------------------------------------------------------------------
# Errors
# -----------------------------------------------------------------------------


class GanjoorApiError(Exception):
    """Ganjoor API request failed. ``status`` is the HTTP status, if any."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def is_not_found(self) -> bool:
        return self.status == 404


class GanjoorNetworkError(GanjoorApiError):
    """The request never produced an HTTP response."""


# -----------------------------------------------------------------------------
# Category tree walk
# -----------------------------------------------------------------------------


@dataclass
class CategoryTree:
    """Result of walking one category (or chapter) subtree."""

    id: int
    title: str
    poet_name: str
    poem_count: int
    chapters: list[Chapter] = field(default_factory=list)
    poems: list[Poem] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Ganjoor Service
# -----------------------------------------------------------------------------


class GanjoorService:
    """Async client for the Ganjoor API.

    Usage:
        ```python
        service = GanjoorService(cache)
        detail = await service.get_poet(2)
        poems = await service.get_category_poems(2, 24)
        ```
    """

    def __init__(
        self,
        cache: ResponseCache,
        settings: Settings | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            cache: Shared response cache
            settings: Application settings (defaults to ``get_settings()``)
            rng: Random source for ``get_random_poem``
        """
        self.cache = cache
        self._settings = settings or get_settings()
        self._rng = rng or random.Random()
        self._client: httpx.AsyncClient | None = None
        self._semaphore = asyncio.Semaphore(self._settings.ganjoor_max_concurrency)
        self._retry = RetryOptions(
            max_retries=self._settings.retry_max_retries,
            base_delay=self._settings.retry_base_delay,
            max_delay=self._settings.retry_max_delay,
            backoff_multiplier=self._settings.retry_backoff_multiplier,
            retry_condition=is_transient_error,
        )

    @property
    def _user_agent(self) -> str:
        """User-Agent header sent with every request."""
        return f"{self._settings.app_name}/{self._settings.app_version}"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._settings.ganjoor_base_url,
                timeout=self._settings.ganjoor_timeout,
                headers={
                    "Accept": "application/json",
                    "User-Agent": self._user_agent,
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    # -------------------------------------------------------------------------
    # Public operations
    # -------------------------------------------------------------------------

    async def get_poets(self) -> list[Poet]:
        """List every poet in the corpus."""

        async def fetch() -> list[Poet]:
            data = await self._fetch_json("/poets")
            return [self._parse_poet(p) for p in data or []]

        return await self.cache.get("/poets", fetch)

    async def get_poet(self, poet_id: int) -> PoetDetail:
        """Get a poet with their categories.

        Each category's poem count and chapter tree come from walking the
        category. A category that cannot be walked is kept with a count of
        zero and no chapters.

        Raises:
            GanjoorApiError: If the poet itself cannot be fetched
        """

        async def fetch() -> PoetDetail:
            data = await self._fetch_json(f"/poet/{poet_id}")
            raw_poet = data.get("poet") if isinstance(data, dict) else None
            if not isinstance(raw_poet, dict) or "id" not in raw_poet:
                logger.error("ganjoor_malformed_payload", path=f"/poet/{poet_id}")
                raise GanjoorApiError(f"Malformed poet payload for /poet/{poet_id}")
            poet = self._parse_poet(raw_poet)
            children = (data.get("cat") or {}).get("children") or []
            categories = await asyncio.gather(
                *(self._build_category(poet_id, child) for child in children)
            )
            return PoetDetail(poet=poet, categories=list(categories))

        return await self.cache.get(f"/poet/{poet_id}", fetch)

    async def get_category_poems(self, poet_id: int, category_id: int) -> list[Poem]:
        """All poems of a category, chapters included, in reading order.

        Poems inside a chapter carry the nearest enclosing chapter. Every
        poem carries the id and title of ``category_id``.
        """

        async def fetch() -> list[Poem]:
            tree = await self._walk(poet_id, category_id)
            return tree.poems

        return await self.cache.get(f"/cat/{category_id}/poems", fetch)

    async def get_chapter(
        self, poet_id: int, category_id: int, chapter_id: int
    ) -> ChapterDetail:
        """A chapter with the poems of its whole subtree."""

        async def fetch() -> ChapterDetail:
            category_title = await self._category_title(category_id)
            root = Chapter(id=chapter_id, title="", category_id=category_id)
            tree = await self._walk(
                poet_id,
                chapter_id,
                root_chapter=root,
                category_id=category_id,
                category_title=category_title,
            )
            root.title = tree.title
            for poem in tree.poems:
                if poem.chapter_id == chapter_id:
                    poem.chapter_title = tree.title
            return ChapterDetail(
                chapter=root, poems=tree.poems, category_title=category_title
            )

        return await self.cache.get(f"/cat/{chapter_id}/chapter", fetch)

    async def get_poem(self, poem_id: int) -> Poem:
        """Get a single poem with its verses.

        Raises:
            GanjoorApiError: ``status == 404`` when the poem does not exist
        """

        async def fetch() -> Poem:
            data = await self._fetch_json(f"/poem/{poem_id}")
            return self._parse_poem(data)

        return await self.cache.get(f"/poem/{poem_id}", fetch)

    async def get_random_poem(self) -> Poem:
        """Draw a poem by sampling poet, then category, then poem.

        Each level is sampled uniformly, so poets with few poems are
        over-represented compared with sampling all poems uniformly. Any
        failure or empty level yields the configured fallback poem.
        """
        fallback_id = self._settings.random_fallback_poem_id
        try:
            poets = await self.get_poets()
            if not poets:
                return await self.get_poem(fallback_id)
            poet = self._rng.choice(poets)

            detail = await self.get_poet(poet.id)
            if not detail.categories:
                return await self.get_poem(fallback_id)
            category = self._rng.choice(detail.categories)

            poems = await self.get_category_poems(poet.id, category.id)
            if not poems:
                return await self.get_poem(fallback_id)
            picked = self._rng.choice(poems)

            poem = await self.get_poem(picked.id)
            return replace(poem, poet_id=poet.id, poet_name=poet.name)

        except GanjoorApiError as e:
            logger.warning("random_poem_failed", error=str(e), fallback=fallback_id)
            poem = await self.get_poem(fallback_id)
            return replace(poem, poet_id=HAFEZ_POET_ID, poet_name=HAFEZ_POET_NAME)

    # -------------------------------------------------------------------------
    # Private Methods - Tree walking
    # -------------------------------------------------------------------------

    async def _build_category(self, poet_id: int, child: dict[str, Any]) -> Category:
        """Category summary for one child of a poet's root category."""
        category = Category(
            id=child["id"],
            title=child.get("title") or "",
            poet_id=poet_id,
            description=child.get("description") or "",
        )
        try:
            tree = await self._walk(poet_id, category.id)
        except GanjoorApiError as e:
            logger.warning(
                "category_count_failed", category_id=category.id, error=str(e)
            )
            category.poem_count = 0
            return category

        category.poem_count = tree.poem_count
        category.chapters = tree.chapters
        category.has_chapters = bool(tree.chapters)
        return category

    async def _category_title(self, category_id: int) -> str:
        try:
            node = await self._fetch_category_node(category_id)
        except GanjoorApiError as e:
            logger.warning(
                "category_title_failed", category_id=category_id, error=str(e)
            )
            return ""
        return (node.get("cat") or {}).get("title") or ""

    async def _walk(
        self,
        poet_id: int,
        root_id: int,
        *,
        root_chapter: Chapter | None = None,
        category_id: int | None = None,
        category_title: str | None = None,
    ) -> CategoryTree:
        """Walk the subtree under ``root_id`` depth-first.

        Uses an explicit worklist with a visited set and a depth limit.
        Children of a node are fetched concurrently; a child that fails is
        logged and skipped with its subtree. Poem counts are summed bottom-up.

        Raises:
            GanjoorApiError: If the root node cannot be fetched
        """
        root = await self._fetch_category_node(root_id)
        root_cat = root.get("cat") or {}
        title = root_cat.get("title") or ""
        poet_name = (root.get("poet") or {}).get("name") or ""
        owner_id = root_id if category_id is None else category_id
        owner_title = title if category_title is None else category_title
        max_depth = self._settings.category_tree_max_depth

        poems: list[Poem] = []
        top_chapters: list[Chapter] = []
        root_direct = 0
        visited = {root_id}
        # (chapter, parent) in visiting order, for the bottom-up count pass
        ordered: list[tuple[Chapter, Chapter | None]] = []
        stack: list[tuple[Chapter | None, dict[str, Any], int]] = [
            (root_chapter, root_cat, 0)
        ]

        while stack:
            chapter, node, depth = stack.pop()

            listed = node.get("poems") or []
            for raw in listed:
                poems.append(
                    self._parse_listed_poem(
                        raw, poet_id, poet_name, owner_id, owner_title, chapter
                    )
                )
            if chapter is None:
                root_direct = len(listed)
            else:
                chapter.poem_count = len(listed)

            children = [
                c
                for c in node.get("children") or []
                if c.get("id") is not None and c["id"] not in visited
            ]
            if not children:
                continue
            if depth >= max_depth:
                logger.warning(
                    "category_tree_depth_limit", root_id=root_id, depth=depth
                )
                continue

            visited.update(c["id"] for c in children)
            payloads = await asyncio.gather(
                *(self._fetch_category_node(c["id"]) for c in children),
                return_exceptions=True,
            )

            frames: list[tuple[Chapter | None, dict[str, Any], int]] = []
            for child, payload in zip(children, payloads):
                if isinstance(payload, GanjoorApiError):
                    logger.warning(
                        "chapter_fetch_failed", chapter_id=child["id"], error=str(payload)
                    )
                    continue
                if isinstance(payload, BaseException):
                    raise payload

                child_cat = payload.get("cat") or {}
                child_chapter = Chapter(
                    id=child["id"],
                    title=child.get("title") or child_cat.get("title") or "",
                    category_id=owner_id,
                )
                if chapter is None:
                    top_chapters.append(child_chapter)
                else:
                    chapter.children.append(child_chapter)
                ordered.append((child_chapter, chapter))
                frames.append((child_chapter, child_cat, depth + 1))

            stack.extend(reversed(frames))

        for child_chapter, parent in reversed(ordered):
            if parent is not None:
                parent.poem_count += child_chapter.poem_count

        if root_chapter is not None:
            total = root_chapter.poem_count
            top_chapters = root_chapter.children
        else:
            total = root_direct + sum(c.poem_count for c in top_chapters)

        return CategoryTree(
            id=root_id,
            title=title,
            poet_name=poet_name,
            poem_count=total,
            chapters=top_chapters,
            poems=poems,
        )

    async def _fetch_category_node(self, category_id: int) -> dict[str, Any]:
        """Raw ``/cat/{id}`` payload, cached."""
        return await self.cache.get(
            f"/cat/{category_id}",
            lambda: self._fetch_json(f"/cat/{category_id}"),
        )

    # -------------------------------------------------------------------------
    # Private Methods - API Fetching
    # -------------------------------------------------------------------------

    async def _fetch_json(self, path: str) -> Any:
        """GET ``path`` with retries and return the decoded JSON body.

        Raises:
            GanjoorApiError: On a non-2xx response (after retries)
            GanjoorNetworkError: When no response could be obtained
        """

        async def attempt() -> Any:
            client = await self._get_client()
            async with self._semaphore:
                response = await client.get(path)
            response.raise_for_status()
            return response.json()

        try:
            return await self._with_retries(path, attempt)
        except httpx.HTTPStatusError as e:
            logger.error(
                "ganjoor_request_failed",
                status_code=e.response.status_code,
                path=path,
            )
            raise GanjoorApiError(
                f"API request failed: {e.response.status_code}",
                status=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            logger.error("ganjoor_network_error", error=str(e), path=path)
            raise GanjoorNetworkError(f"Network error: {e}") from e

    async def _with_retries(
        self, path: str, attempt: Callable[[], Awaitable[Any]]
    ) -> Any:
        """Back off on transient failures. A 429 switches to the slower backoff."""
        try:
            return await with_retry(attempt, self._retry)
        except httpx.HTTPStatusError as e:
            if not is_rate_limited(e):
                raise

        logger.warning("ganjoor_rate_limited", path=path)
        return await with_rate_limit_retry(
            attempt,
            max_retries=self._settings.retry_rate_limit_max_retries,
            base_delay=self._settings.retry_rate_limit_base_delay,
            max_delay=self._settings.retry_rate_limit_max_delay,
        )

    # -------------------------------------------------------------------------
    # Private Methods - Response Parsing
    # -------------------------------------------------------------------------

    @staticmethod
    def _parse_poet(data: dict[str, Any]) -> Poet:
        full_url = data.get("fullUrl") or ""
        return Poet(
            id=data["id"],
            name=data.get("name") or "",
            slug=full_url.replace("/", "", 1),
            description=data.get("description"),
            birth_year=data.get("birthYearInLHijri"),
            death_year=data.get("deathYearInLHijri"),
        )

    @staticmethod
    def _parse_listed_poem(
        raw: dict[str, Any],
        poet_id: int,
        poet_name: str,
        category_id: int,
        category_title: str,
        chapter: Chapter | None,
    ) -> Poem:
        return Poem(
            id=raw["id"],
            title=raw.get("title") or "",
            verses=extract_verses(raw),
            poet_id=poet_id,
            poet_name=poet_name,
            category_id=category_id,
            category_title=category_title,
            chapter_id=chapter.id if chapter else None,
            chapter_title=chapter.title if chapter else None,
        )

    @staticmethod
    def _parse_poem(data: dict[str, Any]) -> Poem:
        category = data.get("category") or {}
        poet = category.get("poet") or {}
        cat = category.get("cat") or {}
        return Poem(
            id=data["id"],
            title=data.get("title") or "",
            verses=extract_verses(data),
            poet_id=poet.get("id", 0),
            poet_name=poet.get("name") or "",
            category_id=cat.get("id"),
            category_title=cat.get("title") or "",
        )
