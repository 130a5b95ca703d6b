"""
Fund unit transaction repository: data-access layer for the unit ledger.

Replay queries return rows in ``(transaction_date, created_at, id)`` order.
The ledger re-sorts after normalizing timestamps, so the SQL order only has
to be close.
"""

from datetime import date
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func
from sqlalchemy.future import select

from fundledger.models.fund_unit_transaction import FundUnitTransaction
from fundledger.repositories.base import BaseRepository


class TransactionRepository(BaseRepository[FundUnitTransaction]):
    """Concrete repository for :class:`FundUnitTransaction` entities."""

    def _ordered(self, *criteria):
        return (
            select(self.model)
            .where(*criteria)
            .order_by(
                self.model.transaction_date,
                self.model.created_at,
                self.model.id,
            )
        )

    async def list_by_fund(self, fund_id: UUID) -> List[FundUnitTransaction]:
        return await self._scalars(self._ordered(self.model.portfolio_id == fund_id))

    async def list_by_holding(self, holding_id: UUID) -> List[FundUnitTransaction]:
        return await self._scalars(self._ordered(self.model.holding_id == holding_id))

    async def latest_transaction_date(self, fund_id: UUID) -> Optional[date]:
        """The latest ``transaction_date`` in the fund, or ``None`` if it has none."""
        stmt = select(func.max(self.model.transaction_date)).where(
            self.model.portfolio_id == fund_id
        )
        return await self._scalar(stmt)

    async def count_by_fund(self, fund_id: UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(self.model.portfolio_id == fund_id)
        )
        return await self._scalar(stmt)

    async def delete_by_fund(self, fund_id: UUID) -> int:
        """Bulk-delete every ledger entry in the fund without committing."""

        async def _delete() -> int:
            stmt = delete(self.model).where(self.model.portfolio_id == fund_id)
            result = await self.db.execute(stmt)
            return result.rowcount or 0

        return await self._execute_with_circuit_breaker(_delete)
