"""
Investor holding repository: data-access layer for ``investor_holdings``.
"""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func
from sqlalchemy.future import select

from fundledger.models.investor_holding import InvestorHolding
from fundledger.repositories.base import BaseRepository


class HoldingRepository(BaseRepository[InvestorHolding]):
    """Concrete repository for :class:`InvestorHolding` entities."""

    async def get_by_account_and_fund(
        self, account_id: UUID, fund_id: UUID
    ) -> Optional[InvestorHolding]:
        stmt = select(self.model).where(
            self.model.account_id == account_id,
            self.model.portfolio_id == fund_id,
        )
        rows = await self._scalars(stmt)
        return rows[0] if rows else None

    async def list_by_fund(
        self, fund_id: UUID, skip: int = 0, limit: Optional[int] = None
    ) -> List[InvestorHolding]:
        """
        Holdings in a fund, largest position first.

        Ties are broken by id so the order is stable across calls.
        """
        stmt = (
            select(self.model)
            .where(self.model.portfolio_id == fund_id)
            .order_by(self.model.total_units.desc(), self.model.id)
            .offset(skip)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return await self._scalars(stmt)

    async def list_by_account(self, account_id: UUID) -> List[InvestorHolding]:
        stmt = (
            select(self.model)
            .where(self.model.account_id == account_id)
            .order_by(self.model.created_at, self.model.id)
        )
        return await self._scalars(stmt)

    async def count_active_by_fund(self, fund_id: UUID) -> int:
        """Number of holdings in the fund with a non-zero unit balance."""
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(self.model.portfolio_id == fund_id, self.model.total_units > 0)
        )
        return await self._scalar(stmt)

    async def sum_units_by_fund(self, fund_id: UUID) -> Decimal:
        stmt = select(func.coalesce(func.sum(self.model.total_units), 0)).where(
            self.model.portfolio_id == fund_id
        )
        return Decimal(str(await self._scalar(stmt)))

    async def delete_by_fund(self, fund_id: UUID) -> int:
        """Bulk-delete every holding in the fund without committing."""

        async def _delete() -> int:
            stmt = delete(self.model).where(self.model.portfolio_id == fund_id)
            result = await self.db.execute(stmt)
            return result.rowcount or 0

        return await self._execute_with_circuit_breaker(_delete)
