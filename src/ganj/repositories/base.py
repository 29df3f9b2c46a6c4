"""Base repository for the catalog and contact tables.

Repositories wrap one ``AsyncSession`` and never commit; the calling
service owns the transaction. Catalog rows are keyed by their Ganjoor
integer ids:

    async with session_factory() as session:
        poet = await PoetRepository(session).get_by_id(2)
"""

from typing import Any, Generic, TypeVar

from sqlalchemy import ColumnElement, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ganj.models.base import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Lookups shared by every table with an integer ``id`` column.

    Subclasses declare their model through the generic parameter, e.g.
    ``class PoemRepository(BaseRepository[PoemRecord])``.
    """

    model_class: type[T]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        for base in cls.__orig_bases__:  # type: ignore[attr-defined]
            if hasattr(base, "__args__"):
                cls.model_class = base.__args__[0]
                break

    async def get_by_id(self, id: int) -> T | None:
        return await self.session.get(self.model_class, id)

    async def exists(self, id: int) -> bool:
        result = await self.session.execute(
            select(self.model_class.id).where(self.model_class.id == id).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def count(self) -> int:
        return await self._count_where()

    async def _count_where(self, *criteria: ColumnElement[bool]) -> int:
        """Row count of the table, optionally filtered."""
        stmt = select(func.count()).select_from(self.model_class)
        for criterion in criteria:
            stmt = stmt.where(criterion)
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def create(self, entity: T) -> T:
        """Insert a row and reload it with its server-side defaults.

        Returns:
            The row with its id and timestamps populated
        """
        self.session.add(entity)
        await self.session.flush()
        await self.session.refresh(entity)
        return entity

    async def create_many(self, entities: list[T]) -> list[T]:
        """Insert rows in one flush (no refresh)."""
        self.session.add_all(entities)
        await self.session.flush()
        return entities
