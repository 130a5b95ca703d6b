"""
Cash flow repository: data-access layer for the ``cash_flows`` table.

Only COMPLETED flows count towards a portfolio's cash balance.
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import delete, func
from sqlalchemy.future import select

from fundledger.models.cash_flow import FUND_FLOW_TYPES, CashFlow, CashFlowStatus
from fundledger.repositories.base import BaseRepository


class CashFlowRepository(BaseRepository[CashFlow]):
    """Concrete repository for :class:`CashFlow` entities."""

    async def completed_balance(
        self, portfolio_id: UUID, as_of: Optional[date] = None
    ) -> Decimal:
        """
        Sum of completed flows for the portfolio, optionally only those dated
        on or before ``as_of``.
        """
        criteria = [
            self.model.portfolio_id == portfolio_id,
            self.model.status == CashFlowStatus.COMPLETED,
        ]
        if as_of is not None:
            criteria.append(self.model.flow_date <= as_of)
        stmt = select(func.coalesce(func.sum(self.model.amount), 0)).where(*criteria)
        return Decimal(str(await self._scalar(stmt)))

    async def list_by_portfolio(
        self, portfolio_id: UUID, skip: int = 0, limit: int = 100
    ) -> List[CashFlow]:
        stmt = (
            select(self.model)
            .where(self.model.portfolio_id == portfolio_id)
            .order_by(self.model.flow_date, self.model.created_at, self.model.id)
            .offset(skip)
            .limit(limit)
        )
        return await self._scalars(stmt)

    async def count_fund_flows(self, portfolio_id: UUID) -> int:
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(
                self.model.portfolio_id == portfolio_id,
                self.model.flow_type.in_(FUND_FLOW_TYPES),
            )
        )
        return await self._scalar(stmt)

    async def delete_fund_flows(self, portfolio_id: UUID) -> int:
        """
        Bulk-delete the subscription and redemption flows of a portfolio
        without committing.  Plain deposits and withdrawals are kept.
        """

        async def _delete() -> int:
            stmt = delete(self.model).where(
                self.model.portfolio_id == portfolio_id,
                self.model.flow_type.in_(FUND_FLOW_TYPES),
            )
            result = await self.db.execute(stmt)
            return result.rowcount or 0

        return await self._execute_with_circuit_breaker(_delete)
