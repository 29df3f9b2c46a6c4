"""Poem endpoints."""

from fastapi import APIRouter, status

from ganj.api.v1.poets import HybridDep, source_error
from ganj.core.exceptions import PoemNotFoundError, PoetrySourceError
from ganj.core.logging import get_logger
from ganj.schemas.common import ErrorResponse
from ganj.schemas.poetry import PoemResponse
from ganj.services.ganjoor import GanjoorApiError

logger = get_logger(__name__)

router = APIRouter()


@router.get(
    "/random",
    response_model=PoemResponse,
    status_code=status.HTTP_200_OK,
    summary="Random poem",
    description=(
        "Picks a random poet, category and poem. Falls back to a fixed poem "
        "by Hafez when a level is empty or the source fails."
    ),
    responses={502: {"model": ErrorResponse, "description": "Data source error"}},
)
async def random_poem(hybrid: HybridDep) -> PoemResponse:
    try:
        poem = await hybrid.get_random_poem()
    except GanjoorApiError as e:
        logger.error("random_poem_failed", error=str(e))
        raise PoetrySourceError(details={"provider": "ganjoor", "error": str(e)}) from e

    return PoemResponse.model_validate(poem)


@router.get(
    "/{poem_id}",
    response_model=PoemResponse,
    status_code=status.HTTP_200_OK,
    summary="Get a poem",
    responses={
        404: {"model": ErrorResponse, "description": "Poem not found"},
        502: {"model": ErrorResponse, "description": "Data source error"},
    },
)
async def get_poem(poem_id: int, hybrid: HybridDep) -> PoemResponse:
    try:
        poem = await hybrid.get_poem(poem_id)
    except GanjoorApiError as e:
        logger.error("get_poem_failed", poem_id=poem_id, error=str(e))
        raise source_error(e, PoemNotFoundError(poem_id)) from e

    logger.debug("get_poem_success", poem_id=poem_id, verses=len(poem.verses))
    return PoemResponse.model_validate(poem)
