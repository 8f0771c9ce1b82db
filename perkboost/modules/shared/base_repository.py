"""
Generic async data access over one mapped model.

Repositories run statements on a session they are handed and never open,
commit or roll back transactions themselves.

- ``for_update=True`` adds ``SELECT ... FOR UPDATE``; SQLite drops the clause
  and relies on its database write lock.
- ``update_where`` is a single guarded ``UPDATE`` returning the affected row
  count, which lets callers detect a lost race without a row lock.
- Relationships are mapped ``lazy="raise"``; anything a caller will touch
  is listed in ``eager_load`` and fetched with ``selectinload``.

    repo = BaseRepository[PlayerPerk](PlayerPerk, self.log)
    row = await repo.find_one_where(
        session,
        PlayerPerk.player_id == player_id,
        PlayerPerk.perk_id == perk_id,
        for_update=True,
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, List, Optional, Sequence, Type, TypeVar

from sqlalchemy import Select, func, select, update
from sqlalchemy.orm import selectinload

if TYPE_CHECKING:
    from logging import Logger

    from sqlalchemy import ColumnElement
    from sqlalchemy.ext.asyncio import AsyncSession
    from sqlalchemy.orm import InstrumentedAttribute

T = TypeVar("T")


class BaseRepository(Generic[T]):
    def __init__(self, model_class: Type[T], logger: Logger) -> None:
        self.model_class = model_class
        self.log = logger

    @property
    def model_name(self) -> str:
        return self.model_class.__name__

    def _select(
        self,
        conditions: Sequence[ColumnElement[bool]],
        *,
        eager_load: Optional[List[InstrumentedAttribute]],
        for_update: bool,
        order_by: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ) -> Select:
        stmt = select(self.model_class).where(*conditions)
        if order_by:
            stmt = stmt.order_by(*order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        if for_update:
            stmt = stmt.with_for_update()
        for relationship in eager_load or ():
            stmt = stmt.options(selectinload(relationship))
        return stmt

    async def get(
        self,
        session: AsyncSession,
        id_value: Any,
        eager_load: Optional[List[InstrumentedAttribute]] = None,
        for_update: bool = False,
    ) -> Optional[T]:
        """Row whose ``id`` column equals ``id_value``, or None."""
        return await self.find_one_where(
            session,
            self.model_class.id == id_value,  # type: ignore[attr-defined]
            eager_load=eager_load,
            for_update=for_update,
        )

    async def find_one_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        eager_load: Optional[List[InstrumentedAttribute]] = None,
        for_update: bool = False,
    ) -> Optional[T]:
        stmt = self._select(conditions, eager_load=eager_load, for_update=for_update)
        instance = (await session.execute(stmt)).scalar_one_or_none()
        self.log.debug(
            f"{self.model_name} lookup",
            extra={"model": self.model_name, "found": instance is not None, "locked": for_update},
        )
        return instance

    async def find_many_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        eager_load: Optional[List[InstrumentedAttribute]] = None,
        for_update: bool = False,
        order_by: Optional[Sequence[Any]] = None,
        limit: Optional[int] = None,
    ) -> List[T]:
        stmt = self._select(
            conditions,
            eager_load=eager_load,
            for_update=for_update,
            order_by=order_by,
            limit=limit,
        )
        instances = list((await session.execute(stmt)).scalars().all())
        self.log.debug(
            f"{self.model_name} query",
            extra={"model": self.model_name, "found_count": len(instances), "locked": for_update},
        )
        return instances

    async def count(self, session: AsyncSession, *conditions: ColumnElement[bool]) -> int:
        stmt = select(func.count()).select_from(self.model_class).where(*conditions)
        return int((await session.execute(stmt)).scalar_one())

    async def update_where(
        self,
        session: AsyncSession,
        *conditions: ColumnElement[bool],
        values: dict[str, Any],
    ) -> int:
        """
        One ``UPDATE`` over every row matching ``conditions``.

        Already-loaded instances keep their old attribute values; refresh
        them before reading. Returns the row count the database reports.
        """
        stmt = (
            update(self.model_class)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        rowcount = (await session.execute(stmt)).rowcount or 0
        self.log.debug(
            f"{self.model_name} bulk update",
            extra={"model": self.model_name, "rowcount": rowcount},
        )
        return rowcount

    def add(self, session: AsyncSession, instance: T) -> T:
        session.add(instance)
        return instance

    async def refresh(
        self,
        session: AsyncSession,
        instance: T,
        attribute_names: Optional[List[str]] = None,
    ) -> T:
        await session.refresh(instance, attribute_names=attribute_names)
        return instance
