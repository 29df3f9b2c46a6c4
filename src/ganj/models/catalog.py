"""Catalog models - the pre-imported copy of the Ganjoor corpus.

Poet -> Category (nested through parent_id) -> Poem

Rows keep their Ganjoor ids so catalog and API results are interchangeable.
Poems store their verses twice: joined into ``verses`` for substring search
and as ``verses_array`` for display.
"""

from __future__ import annotations

from sqlalchemy import JSON, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from ganj.models.base import Base, TimestampMixin


class PoetRecord(TimestampMixin, Base):
    """A poet row.

    Attributes:
        name: Display name
        slug: URL slug from Ganjoor (may be empty)
        birth_year: Lunar Hijri birth year
        death_year: Lunar Hijri death year
    """

    __tablename__ = "poets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    slug: Mapped[str] = mapped_column(Text, nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    birth_year: Mapped[int | None] = mapped_column(nullable=True)
    death_year: Mapped[int | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<PoetRecord(id={self.id}, name='{self.name}')>"


class CategoryRecord(TimestampMixin, Base):
    """A category or chapter row. Chapters have a ``parent_id``."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    poet_id: Mapped[int] = mapped_column(
        ForeignKey("poets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    parent_id: Mapped[int | None] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    url_slug: Mapped[str | None] = mapped_column(String(500), nullable=True)
    poem_count: Mapped[int | None] = mapped_column(nullable=True, default=0)

    def __repr__(self) -> str:
        return f"<CategoryRecord(id={self.id}, title='{self.title}')>"


class PoemRecord(TimestampMixin, Base):
    """A poem row with its verses."""

    __tablename__ = "poems"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    poet_id: Mapped[int] = mapped_column(
        ForeignKey("poets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    category_id: Mapped[int | None] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL"), nullable=True, index=True
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    verses: Mapped[str] = mapped_column(Text, nullable=False, default="")
    verses_array: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<PoemRecord(id={self.id}, title='{self.title}')>"
