"""CategoryRepository for managing CategoryRecord entities."""

from sqlalchemy import select

from ganj.models.catalog import CategoryRecord, PoetRecord
from ganj.repositories.base import BaseRepository


class CategoryRepository(BaseRepository[CategoryRecord]):
    """Repository for CategoryRecord entities."""

    async def get_by_poet(self, poet_id: int) -> list[CategoryRecord]:
        """All categories of a poet ordered by id.

        Args:
            poet_id: Poet id

        Returns:
            List of categories (chapters included)
        """
        result = await self.session.execute(
            select(CategoryRecord)
            .where(CategoryRecord.poet_id == poet_id)
            .order_by(CategoryRecord.id)
        )
        return list(result.scalars().all())

    async def search(
        self,
        query: str,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> list[tuple[CategoryRecord, str | None]]:
        """Categories whose title contains ``query``, with the poet name.

        Returns:
            List of ``(category, poet_name)`` ordered by category id
        """
        result = await self.session.execute(
            select(CategoryRecord, PoetRecord.name)
            .outerjoin(PoetRecord, CategoryRecord.poet_id == PoetRecord.id)
            .where(CategoryRecord.title.icontains(query, autoescape=True))
            .order_by(CategoryRecord.id)
            .offset(offset)
            .limit(limit)
        )
        return [(row[0], row[1]) for row in result.all()]

    async def count_matching(self, query: str) -> int:
        """Number of categories ``search`` would match without pagination."""
        return await self._count_where(
            CategoryRecord.title.icontains(query, autoescape=True)
        )
