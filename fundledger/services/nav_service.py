"""
NAV service: computes, persists and serves a fund's NAV per unit.

``nav = total_value / total_outstanding_units`` while units are outstanding,
otherwise the fund's seed NAV.  The stored NAV only changes through an
explicit recalculation (this service or the recalculation engine); a
subscription or redemption never moves it.

Caching:
    ``get_nav`` is served from the TTL cache under ``funds:{id}:nav``.  Every
    ledger write drops the ``funds:`` prefix.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

from fundledger.core.cache import FUNDS_PREFIX, cache
from fundledger.core.config import settings
from fundledger.core.exceptions import BusinessRuleViolation, InvalidValuationError, NotFoundException
from fundledger.core.locks import FundLockManager, fund_locks
from fundledger.db.session import unit_of_work
from fundledger.models.investor_holding import InvestorHolding
from fundledger.models.portfolio import Portfolio
from fundledger.repositories.holding_repo import HoldingRepository
from fundledger.repositories.portfolio_repo import PortfolioRepository
from fundledger.services.ledger import ZERO, Position, as_utc, quantize
from fundledger.services.valuation import ValuationSource, fetch_fund_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NavResult:
    fund_id: UUID
    nav_per_unit: Decimal
    total_outstanding_units: Decimal
    total_value: Optional[Decimal]
    as_of: Optional[datetime]
    refreshed: bool = False


# ── Holding marks ──


def write_position(holding: InvestorHolding, position: Position, nav_per_unit: Decimal) -> None:
    """Copy a projected position onto its holding row and mark it at ``nav_per_unit``."""
    holding.total_units = position.units
    holding.avg_cost_per_unit = position.avg_cost_per_unit
    holding.total_investment = position.total_investment
    mark_holding(holding, nav_per_unit)


def mark_holding(holding: InvestorHolding, nav_per_unit: Decimal) -> None:
    holding.current_value = quantize(Decimal(holding.total_units) * Decimal(nav_per_unit))
    holding.unrealized_pnl = quantize(holding.current_value - Decimal(holding.total_investment))
    holding.updated_at = datetime.now(timezone.utc)


def require_fund(fund: Optional[Portfolio], fund_id: UUID) -> Portfolio:
    if fund is None:
        raise NotFoundException("Portfolio", fund_id)
    if not fund.is_fund:
        raise BusinessRuleViolation(f"Portfolio '{fund.name}' is not a fund")
    return fund


class NavService:
    """Encapsulates NAV computation and the manual NAV actions."""

    CACHE_PREFIX = FUNDS_PREFIX

    def __init__(
        self,
        portfolio_repo: PortfolioRepository,
        holding_repo: HoldingRepository,
        valuation: ValuationSource,
        locks: FundLockManager = fund_locks,
    ):
        self._portfolio_repo = portfolio_repo
        self._holding_repo = holding_repo
        self._valuation = valuation
        self._locks = locks

    # ── Computation ──

    async def compute_nav_for(
        self, fund: Portfolio, total_units: Optional[Decimal] = None
    ) -> NavResult:
        """
        Work out the NAV of ``fund`` right now without persisting anything.

        ``total_units`` overrides the stored outstanding units; the
        recalculation engine passes the replayed total before writing it.
        """
        units = Decimal(fund.total_outstanding_units if total_units is None else total_units)
        now = datetime.now(timezone.utc)
        if units <= ZERO:
            seed = Decimal(fund.initial_nav_per_unit)
            if seed <= ZERO:
                raise InvalidValuationError(fund.id, "fund has no seed NAV")
            return NavResult(fund.id, quantize(seed), ZERO, None, now)

        total_value = await fetch_fund_value(self._valuation, fund.id)
        nav = quantize(total_value / units)
        if nav <= ZERO:
            raise InvalidValuationError(fund.id, f"value {total_value} gives a zero NAV")
        return NavResult(fund.id, nav, quantize(units), quantize(total_value), now)

    async def compute_nav(self, fund_id: UUID) -> NavResult:
        fund = require_fund(await self._portfolio_repo.get(fund_id), fund_id)
        return await self.compute_nav_for(fund)

    def apply_nav(
        self, fund: Portfolio, result: NavResult, holdings: Iterable[InvestorHolding]
    ) -> int:
        """Store ``result`` on the fund and re-mark ``holdings``.  Returns the count marked."""
        fund.nav_per_unit = result.nav_per_unit
        fund.last_nav_date = result.as_of
        marked = 0
        for holding in holdings:
            mark_holding(holding, result.nav_per_unit)
            marked += 1
        return marked

    # ── Commands ──

    async def recalculate_nav(self, fund_id: UUID) -> NavResult:
        """
        Recompute the NAV, persist it and re-mark every holding of the fund.

        A valuation failure raises before anything is written, so the stored
        NAV is left as it was.
        """
        async with self._locks.writer(fund_id):
            async with unit_of_work(self._portfolio_repo.db):
                fund = require_fund(await self._portfolio_repo.get_for_update(fund_id), fund_id)
                result = await self.compute_nav_for(fund)
                holdings = await self._holding_repo.list_by_fund(fund_id)
                marked = self.apply_nav(fund, result, holdings)
                await self._portfolio_repo.add(fund)

        cache.invalidate_ledger()
        logger.info(
            "Recalculated NAV for fund %s: %s per unit over %s units (%d holdings re-marked)",
            fund_id,
            result.nav_per_unit,
            result.total_outstanding_units,
            marked,
            extra={"fund_id": str(fund_id)},
        )
        return NavResult(
            result.fund_id,
            result.nav_per_unit,
            result.total_outstanding_units,
            result.total_value,
            result.as_of,
            refreshed=True,
        )

    def is_stale(self, fund: Portfolio, now: Optional[datetime] = None) -> bool:
        if Decimal(fund.nav_per_unit) <= ZERO or fund.last_nav_date is None:
            return True
        now = now or datetime.now(timezone.utc)
        age = now - as_utc(fund.last_nav_date)
        return age > timedelta(hours=settings.NAV_STALE_AFTER_HOURS)

    async def refresh_nav(self, fund_id: UUID, force: bool = False) -> NavResult:
        """
        Recalculate the NAV only when the stored one is invalid or stale, or
        when ``force`` is set.  Otherwise return the stored NAV unchanged.
        """
        fund = require_fund(await self._portfolio_repo.get(fund_id), fund_id)
        if force or self.is_stale(fund):
            return await self.recalculate_nav(fund_id)
        logger.debug("NAV for fund %s is fresh; not refreshing", fund_id)
        return self._stored(fund)

    # ── Queries ──

    def _stored(self, fund: Portfolio) -> NavResult:
        return NavResult(
            fund_id=fund.id,
            nav_per_unit=Decimal(fund.nav_per_unit),
            total_outstanding_units=Decimal(fund.total_outstanding_units),
            total_value=None,
            as_of=fund.last_nav_date,
        )

    async def get_nav(self, fund_id: UUID) -> NavResult:
        """Stored NAV, read without the fund lock.  May be briefly stale."""

        async def _load() -> NavResult:
            fund = require_fund(await self._portfolio_repo.get(fund_id), fund_id)
            return self._stored(fund)

        return await cache.get_or_load(f"{self.CACHE_PREFIX}{fund_id}:nav", _load)
