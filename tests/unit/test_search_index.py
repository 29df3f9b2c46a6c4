"""Tests for the incrementally built SearchIndex."""

from dataclasses import asdict
from unittest.mock import ANY, AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ganj.config import Settings
from ganj.services.entities import Category, Poem, Poet, PoetDetail
from ganj.services.ganjoor import GanjoorApiError
from ganj.services.index_store import MAIN_KEY, IndexSnapshot, IndexStore, chunk_key
from ganj.services.search_index import (
    IndexProgress,
    IndexState,
    SearchableCategory,
    SearchablePoem,
    SearchIndex,
)

# =============================================================================
# Mock Corpus
# =============================================================================

POETS = [
    Poet(id=30, name="حافظ ابرو"),
    Poet(id=2, name="حافظ", description="لسان الغیب"),
    Poet(id=7, name="سعدی"),
]

DETAILS = {
    30: PoetDetail(poet=POETS[0], categories=[Category(id=300, title="تاریخ", poet_id=30)]),
    2: PoetDetail(
        poet=POETS[1],
        categories=[
            Category(id=24, title="غزلیات", poet_id=2),
            Category(id=25, title="قطعات", poet_id=2),
        ],
    ),
    7: PoetDetail(poet=POETS[2], categories=[Category(id=70, title="گلستان", poet_id=7)]),
}


def listed(poem_id: int, title: str, poet: Poet, category_id: int) -> Poem:
    return Poem(
        id=poem_id,
        title=title,
        verses=[],
        poet_id=poet.id,
        poet_name=poet.name,
        category_id=category_id,
    )


CATEGORY_POEMS = {
    (30, 300): [listed(3001, "غزل تاریخی", POETS[0], 300)],
    (2, 24): [
        listed(2133, "غزل ۱", POETS[1], 24),
        listed(2134, "غزل ۲", POETS[1], 24),
    ],
    (2, 25): [listed(2200, "قطعه", POETS[1], 25)],
    (7, 70): [listed(7001, "حکایت", POETS[2], 70)],
}

VERSES = {
    2133: ["الا یا ایها الساقی ادر کاسا و ناولها", "که عشق آسان نمود اول"],
    2134: ["می\u200cروم به میخانه", "ساغر بیاور"],
}


def make_source() -> MagicMock:
    async def get_poet(poet_id: int) -> PoetDetail:
        return DETAILS[poet_id]

    async def get_category_poems(poet_id: int, category_id: int) -> list[Poem]:
        return CATEGORY_POEMS[(poet_id, category_id)]

    async def get_poem(poem_id: int) -> Poem:
        if poem_id not in VERSES:
            raise GanjoorApiError("API request failed: 500", status=500)
        return Poem(
            id=poem_id,
            title=f"غزل {poem_id}",
            verses=VERSES[poem_id],
            poet_id=2,
            poet_name="حافظ",
            category_id=24,
            category_title="غزلیات",
        )

    source = MagicMock()
    source.get_poets = AsyncMock(return_value=POETS)
    source.get_poet = AsyncMock(side_effect=get_poet)
    source.get_category_poems = AsyncMock(side_effect=get_category_poems)
    source.get_poem = AsyncMock(side_effect=get_poem)
    return source


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def source() -> MagicMock:
    return make_source()


@pytest.fixture
def store(fake_redis) -> IndexStore:
    return IndexStore(fake_redis, format_version=4, max_age_seconds=86400)


@pytest.fixture
def index(source: MagicMock, test_settings: Settings) -> SearchIndex:
    return SearchIndex(source, None, test_settings)


@pytest.fixture
async def ready_index(index: SearchIndex) -> SearchIndex:
    await index.initialize()
    await index.wait_until_complete()
    return index


# =============================================================================
# Build
# =============================================================================


class TestBuild:
    """Tests for the staged build."""

    def test_not_searchable_before_build(self, index: SearchIndex) -> None:
        assert index.state is IndexState.UNBUILT
        assert index.search_poets("حافظ") == []
        assert index.get_progress() == {"status": "loading", "progress": 0, "message": None}

    @pytest.mark.asyncio
    async def test_initialize_is_shared(
        self, index: SearchIndex, source: MagicMock
    ) -> None:
        first = index.initialize()
        second = index.initialize()

        assert first is second
        await first
        assert source.get_poets.await_count == 1
        assert index.is_searchable
        await index.dispose()

    @pytest.mark.asyncio
    async def test_partially_ready_has_poets_and_categories(
        self, index: SearchIndex
    ) -> None:
        await index.initialize()

        assert index.is_searchable
        assert [p.id for p in index.search_poets("سعدی")] == [7]
        assert [c.id for c in index.search_categories("گلستان")] == [70]
        await index.dispose()

    @pytest.mark.asyncio
    async def test_completes_ready(self, ready_index: SearchIndex) -> None:
        stats = ready_index.get_stats()

        assert ready_index.state is IndexState.READY
        assert stats["is_indexed"]
        assert not stats["is_indexing"]
        assert stats["poets_count"] == 3
        assert stats["categories_count"] == 4
        assert stats["poems_count"] == 5
        assert stats["indexed_at"] is not None
        assert ready_index.get_progress() == {
            "status": "ready",
            "progress": 100,
            "message": None,
        }

    @pytest.mark.asyncio
    async def test_full_text_only_for_famous_poets(
        self, ready_index: SearchIndex, source: MagicMock
    ) -> None:
        fetched = {call.args[0] for call in source.get_poem.await_args_list}

        assert fetched == {2133, 2134, 2200}
        assert [p.id for p in ready_index.search_poems("کاسا")] == [2133]

    @pytest.mark.asyncio
    async def test_failed_poem_fetch_keeps_title(self, ready_index: SearchIndex) -> None:
        poems = ready_index.search_poems("قطعه")

        assert [p.id for p in poems] == [2200]
        assert poems[0].verses == []

    @pytest.mark.asyncio
    async def test_poet_list_failure(self, index: SearchIndex, source: MagicMock) -> None:
        source.get_poets.side_effect = GanjoorApiError("down", status=503)

        with pytest.raises(GanjoorApiError):
            await index.initialize()

        assert index.state is IndexState.UNBUILT
        assert index.last_error == "down"
        assert not index.is_searchable

    @pytest.mark.asyncio
    async def test_skips_poet_that_fails(
        self, index: SearchIndex, source: MagicMock
    ) -> None:
        async def get_poet(poet_id: int) -> PoetDetail:
            if poet_id == 7:
                raise GanjoorApiError("missing", status=404)
            return DETAILS[poet_id]

        source.get_poet.side_effect = get_poet

        await index.initialize()
        await index.wait_until_complete()

        assert index.state is IndexState.READY
        assert index.search_categories("گلستان") == []
        assert [p.id for p in index.search_poets("سعدی")] == [7]

    @pytest.mark.asyncio
    async def test_initialize_when_fresh_returns_finished_task(
        self, ready_index: SearchIndex, source: MagicMock
    ) -> None:
        task = ready_index.initialize()

        assert task.done()
        assert source.get_poets.await_count == 1

    @pytest.mark.asyncio
    async def test_rebuild(self, ready_index: SearchIndex, source: MagicMock) -> None:
        await ready_index.rebuild()
        await ready_index.wait_until_complete()

        assert source.get_poets.await_count == 2
        assert ready_index.state is IndexState.READY
        assert ready_index.get_stats()["poems_count"] == 5


# =============================================================================
# Search
# =============================================================================


class TestSearch:
    """Tests for ranking and result shapes."""

    @pytest.mark.asyncio
    async def test_famous_poet_first(self, ready_index: SearchIndex) -> None:
        poets = ready_index.search_poets("حافظ")

        assert [p.id for p in poets] == [2, 30]

    @pytest.mark.asyncio
    async def test_famous_poems_first(self, ready_index: SearchIndex) -> None:
        poems = ready_index.search_poems("غزل")

        assert [p.id for p in poems] == [2133, 2134, 3001]

    @pytest.mark.asyncio
    async def test_poem_preview(self, ready_index: SearchIndex) -> None:
        poem = ready_index.search_poems("کاسا")[0]

        assert len(poem.verses) == 1
        assert poem.verses[0].startswith("الا یا ایها الساقی")
        assert poem.verses[0].endswith("...")
        assert poem.poet_name == "حافظ"

    @pytest.mark.asyncio
    async def test_category_carries_poet_name(self, ready_index: SearchIndex) -> None:
        categories = ready_index.search_categories("غزلیات")

        assert [c.id for c in categories] == [24]
        assert categories[0].poet_name == "حافظ"

    @pytest.mark.asyncio
    async def test_spaced_compound_matches_joined_form(
        self, ready_index: SearchIndex
    ) -> None:
        assert [p.id for p in ready_index.search_poems("می روم")] == [2134]

    @pytest.mark.asyncio
    async def test_limit(self, ready_index: SearchIndex) -> None:
        assert len(ready_index.search_poems("غزل", limit=2)) == 2

    @pytest.mark.asyncio
    async def test_search_all(self, ready_index: SearchIndex) -> None:
        results = ready_index.search("حافظ")

        assert [p.id for p in results.poets] == [2, 30]
        assert {c.poet_id for c in results.categories} == {2, 30}
        assert results.poems


# =============================================================================
# Progress
# =============================================================================


class TestProgress:
    """Tests for progress reporting."""

    def test_building_percent(self, index: SearchIndex) -> None:
        index.state = IndexState.BUILDING
        index.progress = IndexProgress(current=1, total=4)

        progress = index.get_progress()

        assert progress["status"] == "building"
        assert progress["progress"] == 25
        assert progress["message"]

    def test_building_percent_is_capped(self, index: SearchIndex) -> None:
        index.state = IndexState.BUILDING
        index.progress = IndexProgress(current=4, total=4)

        assert index.get_progress()["progress"] == 95

    def test_building_percent_has_floor(self, index: SearchIndex) -> None:
        index.state = IndexState.BUILDING
        index.progress = IndexProgress(current=0, total=20)

        assert index.get_progress()["progress"] == 5


# =============================================================================
# Persistence
# =============================================================================


class TestPersistence:
    """Tests for snapshot save and restore."""

    @pytest.mark.asyncio
    async def test_saves_chunks_and_main(
        self, source: MagicMock, store: IndexStore, fake_redis, test_settings: Settings
    ) -> None:
        index = SearchIndex(source, store, test_settings)

        await index.initialize()
        await index.wait_until_complete()
        await index.dispose()

        assert MAIN_KEY in fake_redis.data
        assert {chunk_key(n) for n in (1, 2, 3)} <= set(fake_redis.data)
        assert index.persistence_failures == 0

    @pytest.mark.asyncio
    async def test_restores_from_main_snapshot(
        self, source: MagicMock, store: IndexStore, test_settings: Settings
    ) -> None:
        first = SearchIndex(source, store, test_settings)
        await first.initialize()
        await first.wait_until_complete()
        await first.dispose()

        fresh_source = make_source()
        restored = SearchIndex(fresh_source, store, test_settings)
        await restored.initialize()

        assert restored.state is IndexState.READY
        fresh_source.get_poets.assert_not_awaited()
        assert [p.id for p in restored.search_poems("کاسا")] == [2133]
        assert [p.id for p in restored.search_poets("حافظ")] == [2, 30]

    @pytest.mark.asyncio
    async def test_resumes_after_latest_chunk(
        self, source: MagicMock, store: IndexStore, test_settings: Settings
    ) -> None:
        chunk = IndexSnapshot(
            poets=[{"id": 30, "name": "حافظ ابرو", "description": None}],
            categories=[
                asdict(SearchableCategory(300, "تاریخ", 30, "حافظ ابرو")),
            ],
            poems=[
                asdict(SearchablePoem(3001, "غزل تاریخی", 30, "حافظ ابرو", "", 300)),
            ],
        )
        await store.save_chunk(chunk, 1, 3)

        index = SearchIndex(source, store, test_settings)
        await index.initialize()
        await index.wait_until_complete()
        await index.dispose()

        walked = {call.args[0] for call in source.get_category_poems.await_args_list}
        assert walked == {2, 7}
        assert index.state is IndexState.READY
        assert [p.id for p in index.search_poems("تاریخی")] == [3001]

    @pytest.mark.asyncio
    async def test_rebuild_ignores_snapshots(
        self, source: MagicMock, store: IndexStore, test_settings: Settings
    ) -> None:
        first = SearchIndex(source, store, test_settings)
        await first.initialize()
        await first.wait_until_complete()
        await first.dispose()

        fresh_source = make_source()
        index = SearchIndex(fresh_source, store, test_settings)
        await index.rebuild()
        await index.wait_until_complete()
        await index.dispose()

        fresh_source.get_poets.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_writes_are_reported(
        self, source: MagicMock, test_settings: Settings
    ) -> None:
        store = MagicMock()
        store.load_main = AsyncMock(return_value=None)
        store.load_chunks = AsyncMock(return_value=[])
        store.save_chunk = AsyncMock(side_effect=RedisConnectionError("down"))
        store.save_main = AsyncMock(side_effect=RedisConnectionError("down"))
        on_error = MagicMock()
        index = SearchIndex(source, store, test_settings, on_error=on_error)

        await index.initialize()
        await index.wait_until_complete()
        await index.dispose()

        assert index.state is IndexState.READY
        assert index.persistence_failures == 5
        on_error.assert_any_call("save_main", ANY)
        assert index.get_stats()["persistence_failures"] == 5
