"""Async SQLAlchemy engine and sessions for the catalog and contact tables.

The engine is created once at startup by ``init_db`` and disposed by
``close_db``. Services receive the session factory and open one short
session per operation:

    async with get_session_factory()() as session:
        poet = await PoetRepository(session).get_by_id(2)

SQL statement logging goes through the ``sqlalchemy.engine`` logger, which
``configure_logging`` enables in debug mode.
"""

from typing import Any

from sqlalchemy import make_url, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from ganj.config import Settings
from ganj.core.logging import get_logger

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """Raises RuntimeError before ``init_db``."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Raises RuntimeError before ``init_db``."""
    if _async_session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _async_session_factory


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Build the engine for ``settings.database_url``.

    SQLite (local runs and tests) uses a single shared connection so an
    in-memory database survives between sessions. Server databases get a
    pre-pinged pool sized by ``database_pool_min``/``database_pool_max``.
    """
    url = make_url(settings.database_url)
    engine_kwargs: dict[str, Any] = {}

    if url.get_backend_name() == "sqlite":
        engine_kwargs["poolclass"] = StaticPool
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        engine_kwargs["pool_size"] = settings.database_pool_min
        engine_kwargs["max_overflow"] = (
            settings.database_pool_max - settings.database_pool_min
        )
        engine_kwargs["pool_pre_ping"] = True

    return create_async_engine(url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create missing tables. Production schemas are managed outside the app."""
    from ganj.models import Base

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database_tables_created", tables=sorted(Base.metadata.tables))


async def init_db(settings: Settings) -> None:
    global _engine, _async_session_factory

    _engine = create_engine_from_settings(settings)
    _async_session_factory = create_session_factory(_engine)

    logger.info(
        "database_initialized",
        database_url=_engine.url.render_as_string(hide_password=True),
    )


async def close_db() -> None:
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        logger.info("database_closed")
    _engine = None
    _async_session_factory = None


async def check_db_connection() -> bool:
    """``SELECT 1`` against the engine. False when unreachable or not initialized."""
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("database_health_check_failed", error=str(e))
        return False
