"""Tests for GanjoorService.

Tests the Ganjoor API client with mocked HTTP responses.
"""

import random
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from ganj.config import Settings
from ganj.core.retry import with_rate_limit_retry
from ganj.services.cache import ResponseCache
from ganj.services.ganjoor import (
    GanjoorApiError,
    GanjoorNetworkError,
    GanjoorService,
)

# =============================================================================
# Mock Response Data
# =============================================================================

HAFEZ = {
    "id": 2,
    "name": "حافظ",
    "fullUrl": "/hafez",
    "birthYearInLHijri": 727,
    "deathYearInLHijri": 792,
}

PAYLOADS: dict[str, Any] = {
    "/poets": [HAFEZ, {"id": 3, "name": "سعدی", "fullUrl": "/saadi"}],
    "/poet/2": {
        "poet": HAFEZ,
        "cat": {"id": 1, "children": [{"id": 24, "title": "غزلیات"}]},
    },
    "/cat/24": {
        "poet": HAFEZ,
        "cat": {
            "id": 24,
            "title": "غزلیات",
            "poems": [{"id": 2133, "title": "غزل شمارهٔ ۱"}],
            "children": [{"id": 100, "title": "بخش دوم"}],
        },
    },
    "/cat/100": {
        "poet": HAFEZ,
        "cat": {
            "id": 100,
            "title": "بخش دوم",
            "poems": [{"id": 2134, "title": "غزل شمارهٔ ۲"}],
            "children": [],
        },
    },
    "/poem/2133": {
        "id": 2133,
        "title": "غزل شمارهٔ ۱",
        "verses": [{"text": "الا یا ایها الساقی"}, {"text": "که عشق آسان نمود اول"}],
        "category": {"poet": HAFEZ, "cat": {"id": 24, "title": "غزلیات"}},
    },
    "/poem/2134": {
        "id": 2134,
        "title": "غزل شمارهٔ ۲",
        "htmlText": "<p>صلاح کار کجا</p><p>و من خراب کجا</p>",
        "category": {"poet": HAFEZ, "cat": {"id": 100, "title": "بخش دوم"}},
    },
}


def fake_api(payloads: dict[str, Any]) -> AsyncMock:
    """``_fetch_json`` replacement serving ``payloads``; other paths are 404."""

    async def fetch(path: str) -> Any:
        if path not in payloads:
            raise GanjoorApiError("API request failed: 404", status=404)
        return payloads[path]

    return AsyncMock(side_effect=fetch)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def service(
    response_cache: ResponseCache, test_settings: Settings
) -> GanjoorService:
    return GanjoorService(response_cache, test_settings, rng=random.Random(7))


@pytest.fixture
def api(service: GanjoorService) -> AsyncMock:
    mock = fake_api(PAYLOADS)
    service._fetch_json = mock  # type: ignore[method-assign]
    return mock


# =============================================================================
# Public Operations
# =============================================================================


class TestGetPoets:
    """Tests for get_poets."""

    @pytest.mark.asyncio
    async def test_maps_poets(self, service: GanjoorService, api: AsyncMock) -> None:
        poets = await service.get_poets()

        assert [p.id for p in poets] == [2, 3]
        assert poets[0].slug == "hafez"
        assert poets[0].birth_year == 727
        assert poets[1].death_year is None

    @pytest.mark.asyncio
    async def test_cached(self, service: GanjoorService, api: AsyncMock) -> None:
        await service.get_poets()
        await service.get_poets()

        assert api.await_count == 1


class TestGetPoet:
    """Tests for get_poet."""

    @pytest.mark.asyncio
    async def test_categories_carry_tree_counts(
        self, service: GanjoorService, api: AsyncMock
    ) -> None:
        detail = await service.get_poet(2)

        assert detail.poet.name == "حافظ"
        assert len(detail.categories) == 1
        category = detail.categories[0]
        assert category.id == 24
        assert category.poem_count == 2
        assert category.has_chapters
        assert [c.id for c in category.chapters] == [100]
        assert category.chapters[0].poem_count == 1

    @pytest.mark.asyncio
    async def test_unwalkable_category_counts_zero(
        self, service: GanjoorService
    ) -> None:
        payloads = dict(PAYLOADS)
        payloads["/poet/2"] = {
            "poet": HAFEZ,
            "cat": {"children": [{"id": 24, "title": "غزلیات"}, {"id": 999}]},
        }
        service._fetch_json = fake_api(payloads)  # type: ignore[method-assign]

        detail = await service.get_poet(2)

        missing = next(c for c in detail.categories if c.id == 999)
        assert missing.poem_count == 0
        assert missing.chapters == []

    @pytest.mark.asyncio
    async def test_unknown_poet(self, service: GanjoorService, api: AsyncMock) -> None:
        with pytest.raises(GanjoorApiError) as exc_info:
            await service.get_poet(404)

        assert exc_info.value.is_not_found

    @pytest.mark.parametrize(
        "payload", [{"cat": {"children": []}}, {"poet": {"name": "حافظ"}}, []]
    )
    @pytest.mark.asyncio
    async def test_malformed_poet_payload(
        self, service: GanjoorService, payload: Any
    ) -> None:
        service._fetch_json = fake_api({"/poet/2": payload})  # type: ignore[method-assign]

        with pytest.raises(GanjoorApiError) as exc_info:
            await service.get_poet(2)

        assert "Malformed" in str(exc_info.value)
        assert not exc_info.value.is_not_found


class TestGetChapter:
    """Tests for get_chapter."""

    @pytest.mark.asyncio
    async def test_chapter_with_poems(
        self, service: GanjoorService, api: AsyncMock
    ) -> None:
        detail = await service.get_chapter(2, 24, 100)

        assert detail.chapter.id == 100
        assert detail.chapter.title == "بخش دوم"
        assert detail.chapter.poem_count == 1
        assert detail.category_title == "غزلیات"
        assert [p.id for p in detail.poems] == [2134]
        assert detail.poems[0].chapter_id == 100
        assert detail.poems[0].chapter_title == "بخش دوم"
        assert detail.poems[0].category_id == 24


class TestGetPoem:
    """Tests for get_poem."""

    @pytest.mark.asyncio
    async def test_structured_verses(
        self, service: GanjoorService, api: AsyncMock
    ) -> None:
        poem = await service.get_poem(2133)

        assert poem.verses == ["الا یا ایها الساقی", "که عشق آسان نمود اول"]
        assert poem.poet_id == 2
        assert poem.poet_name == "حافظ"
        assert poem.category_id == 24
        assert poem.category_title == "غزلیات"

    @pytest.mark.asyncio
    async def test_html_verses(self, service: GanjoorService, api: AsyncMock) -> None:
        poem = await service.get_poem(2134)

        assert poem.verses == ["صلاح کار کجا", "و من خراب کجا"]


class TestGetRandomPoem:
    """Tests for get_random_poem."""

    @pytest.mark.asyncio
    async def test_samples_poet_category_poem(
        self, service: GanjoorService
    ) -> None:
        payloads = dict(PAYLOADS)
        payloads["/poets"] = [HAFEZ]
        service._fetch_json = fake_api(payloads)  # type: ignore[method-assign]

        poem = await service.get_random_poem()

        assert poem.id in (2133, 2134)
        assert poem.poet_id == 2
        assert poem.verses

    @pytest.mark.asyncio
    async def test_failure_returns_fallback_as_hafez(
        self, service: GanjoorService
    ) -> None:
        payloads = {k: v for k, v in PAYLOADS.items() if k != "/poets"}
        payloads["/poem/2133"] = {
            **PAYLOADS["/poem/2133"],
            "category": {"poet": {"id": 99, "name": "?"}, "cat": {"id": 24}},
        }
        service._fetch_json = fake_api(payloads)  # type: ignore[method-assign]

        poem = await service.get_random_poem()

        assert poem.id == 2133
        assert poem.poet_id == 2
        assert poem.poet_name == "حافظ"

    @pytest.mark.asyncio
    async def test_empty_level_returns_fallback(self, service: GanjoorService) -> None:
        payloads = dict(PAYLOADS)
        payloads["/poets"] = []
        service._fetch_json = fake_api(payloads)  # type: ignore[method-assign]

        poem = await service.get_random_poem()

        assert poem.id == 2133


# =============================================================================
# HTTP Layer
# =============================================================================


def _response(status: int, json: Any = None) -> httpx.Response:
    request = httpx.Request("GET", "https://api.ganjoor.net/api/ganjoor/poets")
    return httpx.Response(status, json=json, request=request)


class TestFetchJson:
    """Tests for the HTTP layer with retries."""

    @pytest.mark.asyncio
    async def test_success(self, service: GanjoorService) -> None:
        mock_client = MagicMock()
        mock_client.get = AsyncMock(return_value=_response(200, [HAFEZ]))

        with patch.object(service, "_get_client", AsyncMock(return_value=mock_client)):
            poets = await service.get_poets()

        assert poets[0].id == 2
        mock_client.get.assert_awaited_once_with("/poets")

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, service: GanjoorService) -> None:
        mock_client = MagicMock()
        mock_client.get = AsyncMock(return_value=_response(404))

        with patch.object(service, "_get_client", AsyncMock(return_value=mock_client)):
            with pytest.raises(GanjoorApiError) as exc_info:
                await service.get_poem(1)

        assert exc_info.value.status == 404
        assert mock_client.get.await_count == 1

    @pytest.mark.asyncio
    async def test_server_error_is_retried(
        self, service: GanjoorService, test_settings: Settings
    ) -> None:
        mock_client = MagicMock()
        mock_client.get = AsyncMock(return_value=_response(503))

        with patch.object(service, "_get_client", AsyncMock(return_value=mock_client)):
            with pytest.raises(GanjoorApiError) as exc_info:
                await service.get_poets()

        assert exc_info.value.status == 503
        assert mock_client.get.await_count == test_settings.retry_max_retries + 1

    @pytest.mark.asyncio
    async def test_rate_limit_switches_to_slow_backoff(
        self, service: GanjoorService
    ) -> None:
        mock_client = MagicMock()
        mock_client.get = AsyncMock(
            side_effect=[_response(429), _response(429), _response(200, [HAFEZ])]
        )

        with patch.object(service, "_get_client", AsyncMock(return_value=mock_client)):
            with patch(
                "ganj.services.ganjoor.with_rate_limit_retry",
                wraps=with_rate_limit_retry,
            ) as rate_limited:
                poets = await service.get_poets()

        assert poets[0].id == 2
        assert mock_client.get.await_count == 3
        rate_limited.assert_called_once()

    @pytest.mark.asyncio
    async def test_persistent_rate_limit_gives_up(
        self, service: GanjoorService, test_settings: Settings
    ) -> None:
        mock_client = MagicMock()
        mock_client.get = AsyncMock(return_value=_response(429))

        with patch.object(service, "_get_client", AsyncMock(return_value=mock_client)):
            with pytest.raises(GanjoorApiError) as exc_info:
                await service.get_poets()

        assert exc_info.value.status == 429
        assert (
            mock_client.get.await_count == test_settings.retry_rate_limit_max_retries + 2
        )

    @pytest.mark.asyncio
    async def test_network_error(self, service: GanjoorService) -> None:
        mock_client = MagicMock()
        mock_client.get = AsyncMock(side_effect=httpx.ConnectError("refused"))

        with patch.object(service, "_get_client", AsyncMock(return_value=mock_client)):
            with pytest.raises(GanjoorNetworkError):
                await service.get_poets()

    @pytest.mark.asyncio
    async def test_close(self, service: GanjoorService) -> None:
        client = await service._get_client()

        await service.close()

        assert client.is_closed
