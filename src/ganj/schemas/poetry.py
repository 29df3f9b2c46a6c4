"""Poetry API schemas.

Response models for poets, categories, chapters and poems. They are built
directly from the service entities (``from_attributes``).
"""

from pydantic import BaseModel, ConfigDict, Field

from ganj.schemas.common import BaseSchema

# =============================================================================
# Poets
# =============================================================================


class PoetResponse(BaseSchema):
    """A poet. Years are lunar Hijri."""

    id: int = Field(..., description="Ganjoor poet id")
    name: str = Field(..., description="Poet name")
    slug: str = Field("", description="URL slug")
    description: str | None = Field(None, description="Short biography")
    birth_year: int | None = Field(None, description="Birth year")
    death_year: int | None = Field(None, description="Death year")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": 2,
                "name": "حافظ",
                "slug": "hafez",
                "description": None,
                "birth_year": 727,
                "death_year": 792,
            }
        }
    )


class PoetListResponse(BaseModel):
    poets: list[PoetResponse]


# =============================================================================
# Categories & Chapters
# =============================================================================


class ChapterResponse(BaseSchema):
    """A chapter inside a category; ``poem_count`` covers its subtree."""

    id: int
    title: str
    category_id: int
    poem_count: int = 0
    children: list["ChapterResponse"] = Field(default_factory=list)


class CategoryResponse(BaseSchema):
    id: int
    title: str
    poet_id: int
    poet_name: str = ""
    description: str = ""
    poem_count: int | None = None
    has_chapters: bool = False
    chapters: list[ChapterResponse] = Field(default_factory=list)


class PoetDetailResponse(BaseSchema):
    """A poet with their categories."""

    poet: PoetResponse
    categories: list[CategoryResponse]


# =============================================================================
# Poems
# =============================================================================


class PoemResponse(BaseSchema):
    """A poem; consecutive pairs of ``verses`` form couplets."""

    id: int
    title: str
    verses: list[str] = Field(default_factory=list)
    poet_id: int
    poet_name: str
    category_id: int | None = None
    category_title: str = ""
    chapter_id: int | None = None
    chapter_title: str | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": 2133,
                "title": "غزل شمارهٔ ۱",
                "verses": [
                    "الا یا ایها الساقی ادر کاسا و ناولها",
                    "که عشق آسان نمود اول ولی افتاد مشکل‌ها",
                ],
                "poet_id": 2,
                "poet_name": "حافظ",
                "category_id": 24,
                "category_title": "غزلیات",
                "chapter_id": None,
                "chapter_title": None,
            }
        }
    )


class PoemListResponse(BaseModel):
    poems: list[PoemResponse]


class ChapterDetailResponse(BaseSchema):
    """A chapter, the title of its category and every poem in its subtree."""

    chapter: ChapterResponse
    category_title: str = ""
    poems: list[PoemResponse]
