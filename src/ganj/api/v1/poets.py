"""Poet browsing endpoints.

Poets, their categories, category poem lists and chapters, all served
through the hybrid dispatcher (catalog first, Ganjoor as fallback).
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from ganj.core.exceptions import (
    CategoryNotFoundError,
    GanjError,
    PoetNotFoundError,
    PoetrySourceError,
)
from ganj.core.logging import get_logger
from ganj.dependencies import get_hybrid_service
from ganj.schemas.common import ErrorResponse
from ganj.schemas.poetry import (
    ChapterDetailResponse,
    PoemListResponse,
    PoemResponse,
    PoetDetailResponse,
    PoetListResponse,
    PoetResponse,
)
from ganj.services.ganjoor import GanjoorApiError
from ganj.services.hybrid import HybridPoetryService

logger = get_logger(__name__)

router = APIRouter()

HybridDep = Annotated[HybridPoetryService, Depends(get_hybrid_service)]


def source_error(error: GanjoorApiError, not_found: GanjError) -> GanjError:
    """Map a Ganjoor failure to the API error: 404 stays a 404, the rest is a 502."""
    if error.is_not_found:
        return not_found
    return PoetrySourceError(details={"provider": "ganjoor", "error": str(error)})


# =============================================================================
# Poet Endpoints
# =============================================================================


@router.get(
    "",
    response_model=PoetListResponse,
    status_code=status.HTTP_200_OK,
    summary="List poets",
    responses={502: {"model": ErrorResponse, "description": "Data source error"}},
)
async def list_poets(hybrid: HybridDep) -> PoetListResponse:
    try:
        poets = await hybrid.get_poets()
    except GanjoorApiError as e:
        logger.error("list_poets_failed", error=str(e))
        raise source_error(e, PoetrySourceError()) from e

    return PoetListResponse(poets=[PoetResponse.model_validate(p) for p in poets])


@router.get(
    "/{poet_id}",
    response_model=PoetDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a poet",
    description="A poet with their categories (collections such as divan or masnavi).",
    responses={
        404: {"model": ErrorResponse, "description": "Poet not found"},
        502: {"model": ErrorResponse, "description": "Data source error"},
    },
)
async def get_poet(poet_id: int, hybrid: HybridDep) -> PoetDetailResponse:
    try:
        detail = await hybrid.get_poet(poet_id)
    except GanjoorApiError as e:
        logger.error("get_poet_failed", poet_id=poet_id, error=str(e))
        raise source_error(e, PoetNotFoundError(poet_id)) from e

    return PoetDetailResponse.model_validate(detail)


@router.get(
    "/{poet_id}/categories/{category_id}/poems",
    response_model=PoemListResponse,
    status_code=status.HTTP_200_OK,
    summary="List poems of a category",
    description="Every poem of the category, nested chapters included.",
    responses={
        404: {"model": ErrorResponse, "description": "Category not found"},
        502: {"model": ErrorResponse, "description": "Data source error"},
    },
)
async def list_category_poems(
    poet_id: int, category_id: int, hybrid: HybridDep
) -> PoemListResponse:
    try:
        poems = await hybrid.get_category_poems(poet_id, category_id)
    except GanjoorApiError as e:
        logger.error(
            "list_category_poems_failed",
            poet_id=poet_id,
            category_id=category_id,
            error=str(e),
        )
        raise source_error(e, CategoryNotFoundError(category_id, poet_id)) from e

    return PoemListResponse(poems=[PoemResponse.model_validate(p) for p in poems])


@router.get(
    "/{poet_id}/categories/{category_id}/chapters/{chapter_id}",
    response_model=ChapterDetailResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a chapter",
    responses={
        404: {"model": ErrorResponse, "description": "Chapter not found"},
        502: {"model": ErrorResponse, "description": "Data source error"},
    },
)
async def get_chapter(
    poet_id: int, category_id: int, chapter_id: int, hybrid: HybridDep
) -> ChapterDetailResponse:
    try:
        detail = await hybrid.get_chapter(poet_id, category_id, chapter_id)
    except GanjoorApiError as e:
        logger.error(
            "get_chapter_failed",
            poet_id=poet_id,
            chapter_id=chapter_id,
            error=str(e),
        )
        raise source_error(e, CategoryNotFoundError(chapter_id, poet_id)) from e

    return ChapterDetailResponse.model_validate(detail)
