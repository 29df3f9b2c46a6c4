"""PoetRepository for managing PoetRecord entities."""

from sqlalchemy import or_, select

from ganj.models.catalog import PoetRecord
from ganj.repositories.base import BaseRepository


class PoetRepository(BaseRepository[PoetRecord]):
    """Repository for PoetRecord entities."""

    async def list_by_name(self) -> list[PoetRecord]:
        """All poets ordered by name."""
        result = await self.session.execute(
            select(PoetRecord).order_by(PoetRecord.name.asc())
        )
        return list(result.scalars().all())

    async def search(
        self,
        query: str,
        *,
        offset: int = 0,
        limit: int = 20,
    ) -> list[PoetRecord]:
        """Poets whose name or description contains ``query`` (case-insensitive).

        Args:
            query: Substring to look for
            offset: Pagination offset
            limit: Maximum results

        Returns:
            Matching poets ordered by id
        """
        result = await self.session.execute(
            select(PoetRecord)
            .where(self._matches(query))
            .order_by(PoetRecord.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_matching(self, query: str) -> int:
        """Number of poets ``search`` would match without pagination."""
        return await self._count_where(self._matches(query))

    @staticmethod
    def _matches(query: str):
        return or_(
            PoetRecord.name.icontains(query, autoescape=True),
            PoetRecord.description.icontains(query, autoescape=True),
        )
