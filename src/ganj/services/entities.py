"""Canonical poetry entities shared by every data source.

Both the Ganjoor API client and the catalog client map their responses to
these dataclasses, so the dispatcher, search index and routes never see a
source-specific shape. API schemas are built from them with
``from_attributes``.
"""

from dataclasses import dataclass, field


@dataclass
class Poet:
    """A poet with optional life dates (lunar Hijri years)."""

    id: int
    name: str
    slug: str = ""
    description: str | None = None
    birth_year: int | None = None
    death_year: int | None = None


@dataclass
class Chapter:
    """A nested section inside a category. ``poem_count`` covers the subtree."""

    id: int
    title: str
    category_id: int
    poem_count: int = 0
    children: list["Chapter"] = field(default_factory=list)


@dataclass
class Category:
    """A book or top-level collection of a poet."""

    id: int
    title: str
    poet_id: int
    description: str = ""
    poem_count: int | None = None
    has_chapters: bool = False
    chapters: list[Chapter] = field(default_factory=list)
    poet_name: str = ""


@dataclass
class Poem:
    """A poem with its verses in reading order.

    A couplet is two consecutive entries of ``verses``. ``chapter_id`` is set
    only for poems that live inside a chapter of their category.
    """

    id: int
    title: str
    verses: list[str]
    poet_id: int
    poet_name: str
    category_id: int | None = None
    category_title: str = ""
    chapter_id: int | None = None
    chapter_title: str | None = None


@dataclass
class PoetDetail:
    """A poet together with their filtered category list."""

    poet: Poet
    categories: list[Category]


@dataclass
class ChapterDetail:
    """A chapter with the poems of its subtree."""

    chapter: Chapter
    poems: list[Poem]
    category_title: str = ""
