"""
Portfolio repository: data-access layer for the ``portfolios`` table.

Funds are portfolios with ``is_fund`` set, so this repository serves both.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.future import select

from fundledger.models.portfolio import Portfolio
from fundledger.repositories.base import BaseRepository


class PortfolioRepository(BaseRepository[Portfolio]):
    """Concrete repository for :class:`Portfolio` entities."""

    async def get_for_update(self, portfolio_id: UUID) -> Optional[Portfolio]:
        """
        Load a portfolio and take a row lock on it until the transaction ends.

        ``populate_existing`` makes the returned instance reflect the locked
        row even if an older copy is already in the identity map.  SQLite
        ignores ``FOR UPDATE``; there the per-fund asyncio lock is the only
        serialization.
        """
        stmt = (
            select(self.model)
            .where(self.model.id == portfolio_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        rows = await self._scalars(stmt)
        return rows[0] if rows else None

