"""Pytest configuration and fixtures for Ganj tests.

This module provides reusable fixtures for:
- Settings overrides (no retry or indexing delays)
- Async test client
- Test database (in-memory SQLite)
- Sample poetry entities
"""

from collections.abc import AsyncGenerator, AsyncIterator
from fnmatch import fnmatch

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ganj.config import Settings
from ganj.core.database import (
    create_engine_from_settings,
    create_session_factory,
    create_tables,
)
from ganj.main import create_app
from ganj.services.cache import ResponseCache
from ganj.services.entities import Category, Poem, Poet, PoetDetail

# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Create test-specific settings.

    Retries and indexing pauses are zeroed so tests never sleep.
    """
    return Settings(
        app_env="development",  # type: ignore[arg-type]
        debug=False,
        log_level="DEBUG",  # type: ignore[arg-type]
        log_format="console",  # type: ignore[arg-type]
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="redis://localhost:6379/15",  # Use DB 15 for tests
        retry_base_delay=0,
        retry_max_delay=0,
        retry_rate_limit_base_delay=0,
        retry_rate_limit_max_delay=0,
        search_index_famous_poet_ids=[2],
        search_index_poet_limit=5,
        search_index_batch_size=2,
        search_index_batch_delay=0,
        search_index_poet_delay=0,
        search_index_chunk_every=1,
        search_index_warmup=False,
    )


# =============================================================================
# Application Fixtures
# =============================================================================


@pytest.fixture
def app(test_settings: Settings) -> FastAPI:
    """Create a test FastAPI application with test settings."""
    return create_app(settings=test_settings)


@pytest.fixture
async def async_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client for testing.

    This client makes requests to the test app without starting a server
    (the lifespan does not run).
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with all tables created."""
    engine = create_engine_from_settings(test_settings)
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def response_cache() -> ResponseCache:
    return ResponseCache()


# =============================================================================
# Sample Data
# =============================================================================


@pytest.fixture
def hafez() -> Poet:
    return Poet(id=2, name="حافظ", slug="hafez", birth_year=727, death_year=792)


@pytest.fixture
def hafez_detail(hafez: Poet) -> PoetDetail:
    return PoetDetail(
        poet=hafez,
        categories=[
            Category(id=24, title="غزلیات", poet_id=2, poem_count=495),
            Category(id=25, title="قطعات", poet_id=2, poem_count=42),
        ],
    )


@pytest.fixture
def sample_poem() -> Poem:
    return Poem(
        id=2133,
        title="غزل شمارهٔ ۱",
        verses=[
            "الا یا ایها الساقی ادر کاسا و ناولها",
            "که عشق آسان نمود اول ولی افتاد مشکل‌ها",
        ],
        poet_id=2,
        poet_name="حافظ",
        category_id=24,
        category_title="غزلیات",
    )


# =============================================================================
# Redis
# =============================================================================


class FakeRedis:
    """In-memory stand-in for the few ``redis.asyncio.Redis`` calls used."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.expiry: dict[str, int | None] = {}

    async def get(self, key: str) -> str | None:
        return self.data.get(key)

    async def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.data[key] = value
        self.expiry[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
        return removed

    async def scan_iter(self, match: str = "*") -> AsyncIterator[str]:
        for key in list(self.data):
            if fnmatch(key, match):
                yield key

    async def ping(self) -> bool:
        return True


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
