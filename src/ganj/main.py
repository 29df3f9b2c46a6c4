"""Ganj application factory.

``create_app`` wires middleware, error handlers and routers. The lifespan
builds the long-lived services (database, Redis, response cache, data
sources, search index) once and keeps them on ``app.state`` where the
dependencies in ``ganj.dependencies`` find them.
"""

import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.asyncio import Redis

from ganj.config import Settings, get_settings
from ganj.core.exceptions import GanjError
from ganj.core.logging import (
    clear_correlation_id,
    configure_logging,
    get_logger,
    set_correlation_id,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Start services in dependency order and stop them in reverse."""
    from ganj.core.database import close_db, create_tables, get_session_factory, init_db
    from ganj.services.cache import ResponseCache
    from ganj.services.catalog import CatalogService
    from ganj.services.contact import ContactService
    from ganj.services.ganjoor import GanjoorService
    from ganj.services.hybrid import HybridPoetryService
    from ganj.services.index_store import IndexStore
    from ganj.services.search import UnifiedSearchService
    from ganj.services.search_index import SearchIndex

    settings: Settings = getattr(app.state, "settings", None) or get_settings()
    configure_logging(settings)
    log = get_logger(__name__)

    await init_db(settings)
    if settings.is_development:
        await create_tables()
    session_factory = get_session_factory()

    redis = Redis.from_url(settings.redis_url, decode_responses=True)
    cache = ResponseCache(ttls=settings.cache_ttls, default_ttl=settings.cache_ttl_default)
    await cache.init()

    ganjoor = GanjoorService(cache, settings)
    catalog = (
        CatalogService(session_factory, cache) if settings.catalog_enabled else None
    )
    hybrid = HybridPoetryService(ganjoor, catalog)
    store = IndexStore(
        redis,
        format_version=settings.search_index_format_version,
        max_age_seconds=settings.search_index_ttl_hours * 3600,
    )
    index = SearchIndex(ganjoor, store, settings)
    contact = ContactService(session_factory, settings)

    app.state.settings = settings
    app.state.redis = redis
    app.state.cache = cache
    app.state.ganjoor = ganjoor
    app.state.catalog = catalog
    app.state.hybrid = hybrid
    app.state.search_index = index
    app.state.unified_search = UnifiedSearchService(catalog, hybrid, settings)
    app.state.contact = contact

    if settings.search_index_warmup:
        index.initialize()

    log.info(
        "application_started",
        version=settings.app_version,
        environment=settings.app_env.value,
        catalog_enabled=settings.catalog_enabled,
        index_warmup=settings.search_index_warmup,
    )

    yield

    await index.dispose()
    await ganjoor.close()
    await contact.close()
    await cache.dispose()
    await redis.aclose()
    await close_db()
    log.info("application_stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the application. Tests pass their own ``settings``."""
    if settings is None:
        settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description=(
            "Persian poetry API. Browse poets, collections and poems from the "
            "Ganjoor library, with catalog-first reads and full-text search."
        ),
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.settings = settings

    configure_middleware(app, settings)
    configure_exception_handlers(app)
    configure_routes(app)
    return app


def configure_middleware(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    request_logger = get_logger("ganj.request")

    @app.middleware("http")
    async def request_context(request: Request, call_next: Any) -> Any:
        """Tag logs with the request id and echo it on the response."""
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id
        set_correlation_id(request_id)
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            request_logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                error=str(exc),
            )
            raise
        else:
            request_logger.info(
                "request_completed",
                method=request.method,
                path=request.url.path,
                query=str(request.query_params) or None,
                status_code=response.status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            clear_correlation_id()


def configure_exception_handlers(app: FastAPI) -> None:
    error_logger = get_logger("ganj.errors")

    @app.exception_handler(GanjError)
    async def handle_ganj_error(request: Request, exc: GanjError) -> JSONResponse:
        log = error_logger.error if exc.status_code >= 500 else error_logger.warning
        log(
            "request_error",
            error_code=exc.code,
            status_code=exc.status_code,
            path=request.url.path,
            details=exc.details or None,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(request_id=getattr(request.state, "request_id", None)),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
        error_logger.exception(
            "unhandled_exception",
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": {
                    "code": "INTERNAL_SERVER_ERROR",
                    "message": "An unexpected error occurred",
                    "request_id": getattr(request.state, "request_id", None),
                }
            },
        )


def configure_routes(app: FastAPI) -> None:
    from ganj.api.health import router as health_router
    from ganj.api.v1.router import router as v1_router

    app.include_router(health_router)
    app.include_router(v1_router, prefix="/api/v1")


app = create_app()


def cli() -> None:
    """Run the API with uvicorn (``ganj`` console script)."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "ganj.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.value.lower(),
    )


if __name__ == "__main__":
    cli()
