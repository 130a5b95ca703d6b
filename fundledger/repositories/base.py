"""
Shared data access for the ledger's SQLModel tables.

``BaseRepository[T]`` wraps an ``AsyncSession`` and routes every statement
through ``db_circuit_breaker``.  It has two kinds of writes:

- ``create`` / ``update`` commit on their own and back the
  single-row endpoints (accounts, portfolios, plain cash flows);
- ``add`` / ``remove`` only flush, for the ledger services running inside
  ``unit_of_work`` where a holding, its transaction and its cash flow must
  commit together.

``IntegrityError`` propagates to the service, which knows what it means.  An
``OperationalError`` during commit rolls the session back before re-raising.
"""

import logging
from typing import Any, Generic, List, Optional, Type, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlmodel import SQLModel

from fundledger.core.resilience import db_circuit_breaker

logger = logging.getLogger(__name__)

ModelType = TypeVar("ModelType", bound=SQLModel)


class BaseRepository(Generic[ModelType]):
    """CRUD for one table, bound to the request's session."""

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    # ── Internal helpers ──

    async def _execute_with_circuit_breaker(
        self, func: Any, *args: Any, **kwargs: Any
    ) -> Any:
        return await db_circuit_breaker.call(func, *args, **kwargs)

    async def _commit(self, action: str) -> None:
        try:
            await self.db.commit()
        except OperationalError:
            await self.db.rollback()
            logger.error("OperationalError during %s for %s", action, self.model.__name__)
            raise

    async def _scalars(self, stmt: Any) -> List[Any]:
        async def _run() -> List[Any]:
            result = await self.db.execute(stmt)
            return list(result.scalars().all())

        return await self._execute_with_circuit_breaker(_run)

    async def _scalar(self, stmt: Any) -> Any:
        async def _run() -> Any:
            result = await self.db.execute(stmt)
            return result.scalar_one()

        return await self._execute_with_circuit_breaker(_run)

    # ── Reads ──

    async def get(self, id: Any) -> Optional[ModelType]:
        """Fetch a single entity by primary key.  Returns ``None`` if not found."""

        async def _get() -> Optional[ModelType]:
            return await self.db.get(self.model, id)

        return await self._execute_with_circuit_breaker(_get)

    async def get_all(self, skip: int = 0, limit: int = 100) -> List[ModelType]:
        """
        Return a paginated list of entities, ordered by primary key so pages
        stay stable between requests.
        """
        pk_columns = self.model.__table__.primary_key.columns
        stmt = select(self.model).order_by(*pk_columns).offset(skip).limit(limit)
        return await self._scalars(stmt)

    # ── Committing writes ──

    async def create(self, obj_in: ModelType) -> ModelType:
        """Insert a new entity, commit, and return the refreshed instance."""

        async def _create() -> ModelType:
            self.db.add(obj_in)
            await self._commit("create")
            await self.db.refresh(obj_in)
            return obj_in

        return await self._execute_with_circuit_breaker(_create)

    async def update(self, entity: ModelType) -> ModelType:
        """
        Persist changes to an already-tracked entity.

        The caller mutates the entity's attributes first; we merge, commit,
        then refresh so the returned object reflects DB-side values.
        """

        async def _update() -> ModelType:
            merged = await self.db.merge(entity)
            await self._commit("update")
            await self.db.refresh(merged)
            return merged

        return await self._execute_with_circuit_breaker(_update)

    # ── Flush-only writes (caller owns the transaction) ──

    async def add(self, obj_in: ModelType) -> ModelType:
        """Stage an insert or change and flush it without committing."""

        async def _add() -> ModelType:
            self.db.add(obj_in)
            await self.db.flush()
            return obj_in

        return await self._execute_with_circuit_breaker(_add)

    async def remove(self, entity: ModelType) -> None:
        """Stage a delete and flush it without committing."""

        async def _remove() -> None:
            await self.db.delete(entity)
            await self.db.flush()

        await self._execute_with_circuit_breaker(_remove)

    async def reload(self, entity: ModelType) -> ModelType:
        """Re-read ``entity`` from the database, discarding in-memory state."""

        async def _reload() -> ModelType:
            await self.db.refresh(entity)
            return entity

        return await self._execute_with_circuit_breaker(_reload)
