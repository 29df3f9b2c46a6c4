"""Tests for UnifiedSearchService."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from ganj.config import Settings
from ganj.core.exceptions import SearchQueryError, ServiceUnavailableError
from ganj.services.catalog import CatalogError
from ganj.services.entities import Category, Poem, Poet, PoetDetail
from ganj.services.ganjoor import GanjoorApiError
from ganj.services.search import (
    QUERY_TOO_SHORT,
    UnifiedSearchService,
    poem_matches,
)


@pytest.fixture
def catalog(hafez: Poet, sample_poem: Poem) -> MagicMock:
    catalog = MagicMock()
    catalog.search_poets = AsyncMock(return_value=([hafez], None))
    catalog.search_categories = AsyncMock(
        return_value=([Category(id=24, title="غزلیات", poet_id=2, poet_name="حافظ")], None)
    )
    catalog.search_poems = AsyncMock(return_value=([sample_poem], None))
    catalog.has_poet = AsyncMock(return_value=True)
    return catalog


@pytest.fixture
def hybrid() -> MagicMock:
    return MagicMock()


@pytest.fixture
def search(catalog: MagicMock, hybrid: MagicMock, test_settings: Settings) -> UnifiedSearchService:
    return UnifiedSearchService(catalog, hybrid, test_settings)


# =============================================================================
# Query Handling
# =============================================================================


class TestQueryHandling:
    """Tests for query validation."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("q", [None, "", " ", "ع", "  ع  "])
    async def test_short_query(
        self, search: UnifiedSearchService, catalog: MagicMock, q
    ) -> None:
        result = await search.search(q)

        assert result.poets == []
        assert result.categories == []
        assert result.poems == []
        assert result.message == QUERY_TOO_SHORT
        catalog.search_poets.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_type(self, search: UnifiedSearchService) -> None:
        with pytest.raises(SearchQueryError) as exc_info:
            await search.search("عشق", type="verses")

        assert exc_info.value.details == {"field": "type"}

    @pytest.mark.asyncio
    async def test_catalog_disabled(
        self, hybrid: MagicMock, test_settings: Settings
    ) -> None:
        search = UnifiedSearchService(None, hybrid, test_settings)

        with pytest.raises(ServiceUnavailableError):
            await search.search("عشق")

    @pytest.mark.asyncio
    async def test_query_is_trimmed(
        self, search: UnifiedSearchService, catalog: MagicMock
    ) -> None:
        await search.search("  حافظ  ", type="poets")

        assert catalog.search_poets.await_args.args == ("حافظ",)


# =============================================================================
# Result Types
# =============================================================================


class TestResultTypes:
    """Tests for per-type dispatch."""

    @pytest.mark.asyncio
    async def test_all_types(self, search: UnifiedSearchService) -> None:
        result = await search.search("حافظ")

        assert [p.id for p in result.poets] == [2]
        assert [c.id for c in result.categories] == [24]
        assert [p.id for p in result.poems] == [2133]
        assert result.message is None

    @pytest.mark.asyncio
    async def test_single_type(
        self, search: UnifiedSearchService, catalog: MagicMock
    ) -> None:
        result = await search.search("غزل", type="categories")

        assert result.poets is None
        assert result.poems is None
        assert [c.id for c in result.categories] == [24]
        catalog.search_poems.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_paging_and_counts_passed_through(
        self, search: UnifiedSearchService, catalog: MagicMock, hafez: Poet
    ) -> None:
        catalog.search_poets.return_value = ([hafez], 41)

        result = await search.search("حافظ", type="poets", limit=5, offset=10, count=True)

        catalog.search_poets.assert_awaited_once_with(
            "حافظ", offset=10, limit=5, count=True
        )
        assert result.total_poets == 41

    @pytest.mark.asyncio
    async def test_failing_type_is_left_out(
        self, search: UnifiedSearchService, catalog: MagicMock
    ) -> None:
        catalog.search_categories.side_effect = CatalogError("timeout", code="57014")

        result = await search.search("حافظ")

        assert result.categories is None
        assert result.poets is not None
        assert result.poems is not None

    @pytest.mark.asyncio
    async def test_catalogued_poet_filter(
        self, search: UnifiedSearchService, catalog: MagicMock, hybrid: MagicMock
    ) -> None:
        await search.search("عشق", type="poems", poet_id=2)

        catalog.search_poems.assert_awaited_once_with(
            "عشق", poet_id=2, offset=0, limit=20, count=False
        )
        hybrid.get_poet.assert_not_called()


# =============================================================================
# Uncatalogued Poet Scan
# =============================================================================


def scanned_poem(poem_id: int, title: str, verses: list[str]) -> Poem:
    return Poem(id=poem_id, title=title, verses=verses, poet_id=7, poet_name="")


class TestPoetScan:
    """Tests for the Ganjoor scan of a poet missing from the catalog."""

    @pytest.fixture
    def scan_hybrid(self, hybrid: MagicMock) -> MagicMock:
        poems = {
            70: [
                scanned_poem(1, "حکایت", ["دل عاشق به پیغام بسازد"]),
                scanned_poem(2, "باب اول", ["عشق آمد و شد چو خونم اندر رگ و پوست"]),
            ],
            71: [scanned_poem(3, "در عشق", ["بنی آدم اعضای یکدیگرند"])],
        }
        hybrid.get_poet = AsyncMock(
            return_value=PoetDetail(
                poet=Poet(id=7, name="سعدی"),
                categories=[
                    Category(id=70, title="گلستان", poet_id=7),
                    Category(id=71, title="بوستان", poet_id=7),
                    Category(id=72, title="قصاید", poet_id=7),
                ],
            )
        )

        async def get_category_poems(poet_id: int, category_id: int) -> list[Poem]:
            if category_id not in poems:
                raise GanjoorApiError("API request failed: 500", status=500)
            return poems[category_id]

        hybrid.get_category_poems = AsyncMock(side_effect=get_category_poems)
        return hybrid

    @pytest.mark.asyncio
    async def test_scans_categories(
        self, search: UnifiedSearchService, catalog: MagicMock, scan_hybrid: MagicMock
    ) -> None:
        catalog.has_poet.return_value = False

        result = await search.search("عشق", type="poems", poet_id=7, count=True)

        assert [p.id for p in result.poems] == [3, 2]
        assert result.total_poems == 2
        assert result.poems[0].poet_name == "سعدی"
        assert result.poems[0].category_title == "بوستان"
        assert result.poems[1].category_title == "گلستان"
        catalog.search_poems.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_verse_match(
        self, search: UnifiedSearchService, catalog: MagicMock, scan_hybrid: MagicMock
    ) -> None:
        catalog.has_poet.return_value = False

        result = await search.search("دل", type="poems", poet_id=7)

        assert [p.id for p in result.poems] == [1]

    @pytest.mark.asyncio
    async def test_scan_paging(
        self, search: UnifiedSearchService, catalog: MagicMock, scan_hybrid: MagicMock
    ) -> None:
        catalog.has_poet.return_value = False

        result = await search.search("عشق", type="poems", poet_id=7, limit=1, offset=1)

        assert [p.id for p in result.poems] == [2]
        assert result.total_poems is None

    @pytest.mark.asyncio
    async def test_unknown_poet_gives_no_results(
        self, search: UnifiedSearchService, catalog: MagicMock, hybrid: MagicMock
    ) -> None:
        catalog.has_poet.return_value = False
        hybrid.get_poet = AsyncMock(side_effect=GanjoorApiError("missing", status=404))

        result = await search.search("عشق", type="poems", poet_id=999)

        assert result.poems == []

    @pytest.mark.asyncio
    async def test_scan_timeout(
        self, catalog: MagicMock, hybrid: MagicMock, test_settings: Settings
    ) -> None:
        async def slow_poet(poet_id: int) -> PoetDetail:
            await asyncio.sleep(1)
            raise AssertionError("should have timed out")

        catalog.has_poet.return_value = False
        hybrid.get_poet = AsyncMock(side_effect=slow_poet)
        settings = test_settings.model_copy(update={"client_timeout_seconds": 0.01})
        search = UnifiedSearchService(catalog, hybrid, settings)

        result = await search.search("عشق", type="poems", poet_id=7)

        assert result.poems == []


class TestPoemMatches:
    """Tests for the in-memory poem matcher."""

    def test_title_phrase(self) -> None:
        assert poem_matches(scanned_poem(1, "در عشق", []), "عشق", ["عشق"])

    def test_verse_phrase(self) -> None:
        poem = scanned_poem(1, "باب", ["عشق آمد و شد"])
        assert poem_matches(poem, "آمد و شد", ["آمد", "و", "شد"])

    def test_all_words_across_verses(self) -> None:
        poem = scanned_poem(1, "باب", ["عشق آمد", "چو خونم اندر رگ"])
        assert poem_matches(poem, "عشق خونم", ["عشق", "خونم"])

    def test_no_verses(self) -> None:
        assert not poem_matches(scanned_poem(1, "باب", []), "عشق", ["عشق"])
