"""PoemRepository for managing PoemRecord entities.

Poem reads join the poet name and category title so callers can build a
complete poem without further queries.
"""

from sqlalchemy import Select, or_, select

from ganj.models.catalog import CategoryRecord, PoemRecord, PoetRecord
from ganj.repositories.base import BaseRepository

PoemRow = tuple[PoemRecord, str | None, str | None]


class PoemRepository(BaseRepository[PoemRecord]):
    """Repository for PoemRecord entities."""

    @staticmethod
    def _with_names() -> Select:
        return (
            select(PoemRecord, PoetRecord.name, CategoryRecord.title)
            .outerjoin(PoetRecord, PoemRecord.poet_id == PoetRecord.id)
            .outerjoin(CategoryRecord, PoemRecord.category_id == CategoryRecord.id)
        )

    async def get_with_names(self, poem_id: int) -> PoemRow | None:
        """A poem with its poet name and category title."""
        result = await self.session.execute(
            self._with_names().where(PoemRecord.id == poem_id)
        )
        row = result.first()
        return (row[0], row[1], row[2]) if row else None

    async def get_by_category(self, poet_id: int, category_id: int) -> list[PoemRow]:
        """Poems of one category of one poet, ordered by id."""
        result = await self.session.execute(
            self._with_names()
            .where(PoemRecord.category_id == category_id)
            .where(PoemRecord.poet_id == poet_id)
            .order_by(PoemRecord.id)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def search(
        self,
        query: str,
        *,
        poet_id: int | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> list[PoemRow]:
        """Poems whose title or verses contain ``query``, newest id first.

        Args:
            query: Substring to look for (case-insensitive)
            poet_id: Restrict to one poet
            offset: Pagination offset
            limit: Maximum results
        """
        stmt = self._with_names().where(self._matches(query))
        if poet_id is not None:
            stmt = stmt.where(PoemRecord.poet_id == poet_id)
        result = await self.session.execute(
            stmt.order_by(PoemRecord.id.desc()).offset(offset).limit(limit)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def count_matching(self, query: str, *, poet_id: int | None = None) -> int:
        """Number of poems ``search`` would match without pagination."""
        criteria = [self._matches(query)]
        if poet_id is not None:
            criteria.append(PoemRecord.poet_id == poet_id)
        return await self._count_where(*criteria)

    @staticmethod
    def _matches(query: str):
        return or_(
            PoemRecord.title.icontains(query, autoescape=True),
            PoemRecord.verses.icontains(query, autoescape=True),
        )
