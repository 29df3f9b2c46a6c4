"""Data source metrics endpoint."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from ganj.core.logging import get_logger
from ganj.dependencies import get_cache, get_catalog_service, get_hybrid_service
from ganj.schemas.metrics import DataSourceMetricsResponse
from ganj.services.cache import ResponseCache
from ganj.services.catalog import CatalogService
from ganj.services.hybrid import HybridPoetryService

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/data-sources",
    response_model=DataSourceMetricsResponse,
    status_code=status.HTTP_200_OK,
    summary="Data source performance",
    description=(
        "Catalog and Ganjoor call counts, average latency and fallback rate over "
        "the most recent requests, plus response cache contents."
    ),
)
async def data_source_metrics(
    hybrid: Annotated[HybridPoetryService, Depends(get_hybrid_service)],
    cache: Annotated[ResponseCache, Depends(get_cache)],
    catalog: Annotated[CatalogService | None, Depends(get_catalog_service)],
) -> DataSourceMetricsResponse:
    catalog_stats: dict[str, Any] | None = None
    if catalog is not None:
        try:
            catalog_stats = await catalog.get_stats()
        except Exception as e:
            logger.warning("catalog_stats_failed", error=str(e))

    return DataSourceMetricsResponse(
        stats=hybrid.get_performance_stats(),
        recent=[m.to_dict() for m in hybrid.metrics],
        cache=cache.get_stats(),
        catalog=catalog_stats,
    )
