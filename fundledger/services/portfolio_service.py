"""
Portfolio service: portfolios, their market value and plain cash flows.

A fund's cash balance is part of its aggregate, so recording a deposit or
withdrawal takes the same per-fund write lock as a subscription and rewrites
the balance in the same unit of work.

Caching:
    ``get_all_portfolios`` and ``get_portfolio`` are cache-backed under
    ``portfolios:``; every write here invalidates the ledger prefixes.
"""

import logging
from typing import List
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from fundledger.core.cache import PORTFOLIOS_PREFIX, cache
from fundledger.core.exceptions import BusinessRuleViolation, NotFoundException
from fundledger.core.locks import FundLockManager, fund_locks
from fundledger.db.session import unit_of_work
from fundledger.models.cash_flow import CashFlow, CashFlowType
from fundledger.models.portfolio import Portfolio
from fundledger.repositories.cash_flow_repo import CashFlowRepository
from fundledger.repositories.portfolio_repo import PortfolioRepository
from fundledger.schemas.portfolio import CashFlowCreate, MarketValueUpdate, PortfolioCreate
from fundledger.services.ledger import quantize
from fundledger.services.unit_processor import utc_today

logger = logging.getLogger(__name__)


class PortfolioService:
    """Encapsulates CRUD + cash flows for :class:`Portfolio`."""

    CACHE_PREFIX = PORTFOLIOS_PREFIX

    def __init__(
        self,
        portfolio_repo: PortfolioRepository,
        cash_flow_repo: CashFlowRepository,
        locks: FundLockManager = fund_locks,
    ):
        self._repo = portfolio_repo
        self._cash_flow_repo = cash_flow_repo
        self._locks = locks

    # ── Queries ──

    async def get_all_portfolios(self, skip: int = 0, limit: int = 100) -> List[Portfolio]:
        cache_key = f"{self.CACHE_PREFIX}list:{skip}:{limit}"
        cached = cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit for %s", cache_key)
            return cached

        portfolios = await self._repo.get_all(skip=skip, limit=limit)
        cache.set(cache_key, portfolios)
        return portfolios

    async def get_portfolio(self, portfolio_id: UUID) -> Portfolio:
        cache_key = f"{self.CACHE_PREFIX}{portfolio_id}"
        cached = cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit for %s", cache_key)
            return cached

        portfolio = await self._repo.get(portfolio_id)
        if portfolio is None:
            raise NotFoundException("Portfolio", portfolio_id)
        cache.set(cache_key, portfolio)
        return portfolio

    async def get_cash_flows(
        self, portfolio_id: UUID, skip: int = 0, limit: int = 100
    ) -> List[CashFlow]:
        if await self._repo.get(portfolio_id) is None:
            raise NotFoundException("Portfolio", portfolio_id)
        return await self._cash_flow_repo.list_by_portfolio(portfolio_id, skip=skip, limit=limit)

    # ── Commands ──

    async def create_portfolio(self, portfolio_in: PortfolioCreate) -> Portfolio:
        portfolio = Portfolio(
            name=portfolio_in.name,
            base_currency=portfolio_in.base_currency,
            market_value=quantize(portfolio_in.market_value),
        )
        try:
            created = await self._repo.create(portfolio)
        except IntegrityError as exc:
            await self._repo.db.rollback()
            logger.warning("IntegrityError creating portfolio: %s", exc)
            raise BusinessRuleViolation(
                "Portfolio data violates a database constraint. Check all fields."
            )
        cache.invalidate(self.CACHE_PREFIX)
        logger.info("Created portfolio %s (%s)", created.id, created.name)
        return created

    async def update_market_value(self, portfolio_id: UUID, update: MarketValueUpdate) -> Portfolio:
        """
        Record the price feed's latest market value.

        The stored NAV does not move; it changes on the next NAV
        recalculation.
        """
        portfolio = await self._repo.get(portfolio_id)
        if portfolio is None:
            raise NotFoundException("Portfolio", portfolio_id)
        portfolio.market_value = quantize(update.market_value)
        updated = await self._repo.update(portfolio)
        cache.invalidate_ledger()
        logger.info(
            "Market value of portfolio %s set to %s",
            portfolio_id,
            updated.market_value,
            extra={"fund_id": str(portfolio_id)},
        )
        return updated

    async def record_cash_flow(self, portfolio_id: UUID, flow_in: CashFlowCreate) -> CashFlow:
        """Record a deposit (+) or withdrawal (-) and rewrite the cash balance."""
        amount = quantize(flow_in.amount)
        signed = amount if flow_in.flow_type == CashFlowType.DEPOSIT else -amount

        async with self._locks.writer(portfolio_id):
            async with unit_of_work(self._repo.db):
                portfolio = await self._repo.get_for_update(portfolio_id)
                if portfolio is None:
                    raise NotFoundException("Portfolio", portfolio_id)
                cash_flow = await self._cash_flow_repo.add(
                    CashFlow(
                        portfolio_id=portfolio_id,
                        flow_type=flow_in.flow_type,
                        amount=signed,
                        flow_date=flow_in.flow_date or utc_today(),
                        description=flow_in.description,
                        funding_source=flow_in.funding_source,
                        status=flow_in.status,
                    )
                )
                portfolio.cash_balance = await self._cash_flow_repo.completed_balance(portfolio_id)
                await self._repo.add(portfolio)

        cache.invalidate_ledger()
        logger.info(
            "Recorded %s of %s on portfolio %s; cash balance now %s",
            flow_in.flow_type.value,
            amount,
            portfolio_id,
            portfolio.cash_balance,
            extra={"fund_id": str(portfolio_id)},
        )
        return cash_flow
