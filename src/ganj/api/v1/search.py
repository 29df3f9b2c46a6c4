"""Search endpoints.

``/search`` runs the unified catalog search. ``/search/index`` queries the
in-memory search index and, until the index is searchable, falls back to
the data sources directly while kicking off a build.
"""

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from ganj.config import Settings
from ganj.core.exceptions import PoetrySourceError
from ganj.core.logging import get_logger
from ganj.core.retry import with_timeout
from ganj.dependencies import (
    get_app_settings,
    get_cache,
    get_catalog_service,
    get_hybrid_service,
    get_search_index,
    get_unified_search,
)
from ganj.schemas.common import ErrorResponse
from ganj.schemas.poetry import CategoryResponse, PoemResponse, PoetResponse
from ganj.schemas.search import (
    IndexProgressResponse,
    IndexSearchResponse,
    IndexStatusResponse,
    UnifiedSearchResponse,
)
from ganj.services.cache import ResponseCache
from ganj.services.catalog import CatalogService
from ganj.services.ganjoor import GanjoorApiError
from ganj.services.hybrid import HybridPoetryService
from ganj.services.search import MIN_QUERY_LENGTH, UnifiedSearchService
from ganj.services.search_index import SearchIndex, SearchResults

logger = get_logger(__name__)

router = APIRouter()

IndexDep = Annotated[SearchIndex, Depends(get_search_index)]


# =============================================================================
# Unified Search
# =============================================================================


@router.get(
    "",
    response_model=UnifiedSearchResponse,
    response_model_exclude_none=True,
    status_code=status.HTTP_200_OK,
    summary="Search poets, categories and poems",
    description=(
        "Case-insensitive substring search against the catalog. "
        "Queries shorter than 2 characters return empty results with a message."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Unknown search type"},
        503: {"model": ErrorResponse, "description": "Catalog not configured"},
    },
)
async def unified_search(
    search: Annotated[UnifiedSearchService, Depends(get_unified_search)],
    q: Annotated[str | None, Query(description="Search text")] = None,
    type: Annotated[str, Query(description="all, poets, categories or poems")] = "all",
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    offset: Annotated[int, Query(ge=0)] = 0,
    count: Annotated[bool, Query(description="Include total match counts")] = False,
    poet_id: Annotated[int | None, Query(description="Restrict poems to a poet")] = None,
) -> UnifiedSearchResponse:
    result = await search.search(
        q,
        type=type,
        limit=limit,
        offset=offset,
        count=count,
        poet_id=poet_id,
    )
    return UnifiedSearchResponse.model_validate(result, from_attributes=True)


# =============================================================================
# Search Index
# =============================================================================


@router.get(
    "/index",
    response_model=IndexSearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Search the search index",
    description=(
        "Prefix search with famous poets ranked first. While the index is "
        "still loading, results come from the data sources directly."
    ),
    responses={502: {"model": ErrorResponse, "description": "Data source error"}},
)
async def index_search(
    index: IndexDep,
    hybrid: Annotated[HybridPoetryService, Depends(get_hybrid_service)],
    catalog: Annotated[CatalogService | None, Depends(get_catalog_service)],
    search: Annotated[UnifiedSearchService, Depends(get_unified_search)],
    settings: Annotated[Settings, Depends(get_app_settings)],
    q: Annotated[str, Query(description="Search text")] = "",
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> IndexSearchResponse:
    query = q.strip()

    if index.is_searchable:
        results = index.search(query, limit) if query else SearchResults()
        return IndexSearchResponse(
            poets=[PoetResponse.model_validate(p) for p in results.poets],
            categories=[CategoryResponse.model_validate(c) for c in results.categories],
            poems=[PoemResponse.model_validate(p) for p in results.poems],
            source="index",
            progress=IndexProgressResponse(**index.get_progress()),
        )

    index.initialize()
    logger.info("search_index_not_ready", state=index.state.value, query=query)

    response = IndexSearchResponse(
        source="fallback", progress=IndexProgressResponse(**index.get_progress())
    )
    if len(query) < MIN_QUERY_LENGTH:
        return response

    try:
        poets = await hybrid.search_poets(query, limit)
    except GanjoorApiError as e:
        logger.error("fallback_search_failed", query=query, error=str(e))
        raise PoetrySourceError(details={"provider": "ganjoor", "error": str(e)}) from e
    response.poets = [PoetResponse.model_validate(p) for p in poets]

    if catalog is not None:
        result = await search.search(query, type="all", limit=limit)
        response.categories = [
            CategoryResponse.model_validate(c) for c in result.categories or []
        ]
        response.poems = [PoemResponse.model_validate(p) for p in result.poems or []]
        return response

    # No catalog: scan the primary source, bounded by the client timeout
    timeout = settings.client_timeout_seconds
    categories, poems = await asyncio.gather(
        with_timeout(
            hybrid.search_categories(query, limit), timeout, [], operation="category_scan"
        ),
        with_timeout(hybrid.search_poems(query, limit), timeout, [], operation="poem_scan"),
    )
    response.categories = [CategoryResponse.model_validate(c) for c in categories]
    response.poems = [PoemResponse.model_validate(p) for p in poems]
    return response


@router.get(
    "/index/status",
    response_model=IndexStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Search index status",
)
async def index_status(index: IndexDep) -> IndexStatusResponse:
    return IndexStatusResponse(
        **index.get_stats(), progress=IndexProgressResponse(**index.get_progress())
    )


@router.post(
    "/index/rebuild",
    response_model=IndexStatusResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Rebuild the search index",
    description="Discards the index and rebuilds it from the source, ignoring snapshots.",
)
async def rebuild_index(
    index: IndexDep, cache: Annotated[ResponseCache, Depends(get_cache)]
) -> IndexStatusResponse:
    # Listings are refetched so new poems reach the index; poem bodies stay cached
    cleared = cache.clear_pattern("/poet") + cache.clear_pattern("/cat/")
    index.rebuild()
    logger.info("search_index_rebuild_requested", cache_entries_cleared=cleared)
    return IndexStatusResponse(
        **index.get_stats(), progress=IndexProgressResponse(**index.get_progress())
    )
