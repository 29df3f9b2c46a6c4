"""Search API schemas.

Response models for the unified catalog search and for the search index
(queries, status and rebuild).
"""

from pydantic import BaseModel, ConfigDict, Field

from ganj.schemas.poetry import CategoryResponse, PoemResponse, PoetResponse

# =============================================================================
# Unified Search
# =============================================================================


class UnifiedSearchResponse(BaseModel):
    """Per-type search results.

    A type that was not requested, or whose search failed, is left out.
    Totals are present only when ``count=true`` was requested.
    """

    poets: list[PoetResponse] | None = None
    categories: list[CategoryResponse] | None = None
    poems: list[PoemResponse] | None = None
    total_poets: int | None = None
    total_categories: int | None = None
    total_poems: int | None = None
    message: str | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "poets": [{"id": 2, "name": "حافظ", "slug": "hafez"}],
                "categories": [],
                "poems": [],
                "total_poets": 1,
            }
        }
    )


# =============================================================================
# Search Index
# =============================================================================


class IndexProgressResponse(BaseModel):
    """Build progress for display."""

    status: str = Field(..., pattern="^(ready|loading|building)$")
    progress: int = Field(..., ge=0, le=100, description="Percent complete")
    message: str | None = Field(None, description="Localized progress message")


class IndexStatusResponse(BaseModel):
    """Search index state and counters."""

    state: str = Field(..., description="Build state")
    is_indexed: bool = Field(..., description="Index can answer queries")
    is_indexing: bool = Field(..., description="A build is running")
    indexed_at: float | None = Field(None, description="Epoch seconds of last build")
    poets_count: int = 0
    categories_count: int = 0
    poems_count: int = 0
    persistence_failures: int = Field(0, description="Failed snapshot writes")
    last_error: str | None = None
    progress: IndexProgressResponse

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "state": "building",
                "is_indexed": True,
                "is_indexing": True,
                "indexed_at": 1760000000.0,
                "poets_count": 210,
                "categories_count": 412,
                "poems_count": 1830,
                "persistence_failures": 0,
                "last_error": None,
                "progress": {
                    "status": "building",
                    "progress": 35,
                    "message": "در حال بارگذاری مجموعه‌ها...",
                },
            }
        }
    )


class IndexSearchResponse(BaseModel):
    """Search index results.

    ``source`` is ``index`` when the index answered, ``fallback`` when the
    index was not searchable yet and the data sources were queried directly.
    """

    poets: list[PoetResponse] = Field(default_factory=list)
    categories: list[CategoryResponse] = Field(default_factory=list)
    poems: list[PoemResponse] = Field(default_factory=list)
    source: str = Field(..., pattern="^(index|fallback)$")
    progress: IndexProgressResponse
