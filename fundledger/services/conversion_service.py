"""
Conversion manager: turns a portfolio into a fund and back.

Portfolio → fund seeds the NAV from the portfolio's value:
``seed_nav = value / FUND_SEED_UNITS``, or ``DEFAULT_INITIAL_NAV`` when the
portfolio is worth nothing.  No units are outstanding until the first
subscription.

Fund → portfolio is destructive.  It requires an explicit confirmation,
builds a :class:`TeardownPlan` listing what will go, and executes the plan in
one transaction: ledger entries first (they reference holdings and cash
flows), then the subscription/redemption cash flows, then the holdings.
Plain deposits and withdrawals survive and the cash balance is recomputed
from them.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

from fundledger.core.cache import cache
from fundledger.core.config import settings
from fundledger.core.exceptions import (
    BusinessRuleViolation,
    ConflictException,
    NotFoundException,
    ValidationError,
)
from fundledger.core.locks import FundLockManager, fund_locks
from fundledger.db.session import unit_of_work
from fundledger.models.portfolio import Portfolio
from fundledger.repositories.cash_flow_repo import CashFlowRepository
from fundledger.repositories.holding_repo import HoldingRepository
from fundledger.repositories.portfolio_repo import PortfolioRepository
from fundledger.repositories.transaction_repo import TransactionRepository
from fundledger.schemas.portfolio import ConvertToFundRequest
from fundledger.services.ledger import ZERO, quantize
from fundledger.services.valuation import ValuationSource, fetch_fund_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TeardownPlan:
    """What reverting a fund to a plain portfolio will delete."""

    portfolio_id: UUID
    holdings_deleted: int
    transactions_deleted: int
    cash_flows_deleted: int


class ConversionService:
    """Switches a portfolio in and out of fund mode."""

    def __init__(
        self,
        portfolio_repo: PortfolioRepository,
        holding_repo: HoldingRepository,
        transaction_repo: TransactionRepository,
        cash_flow_repo: CashFlowRepository,
        valuation: ValuationSource,
        locks: FundLockManager = fund_locks,
    ):
        self._portfolio_repo = portfolio_repo
        self._holding_repo = holding_repo
        self._transaction_repo = transaction_repo
        self._cash_flow_repo = cash_flow_repo
        self._valuation = valuation
        self._locks = locks

    @property
    def db(self):
        return self._portfolio_repo.db

    async def _lock_portfolio(self, portfolio_id: UUID) -> Portfolio:
        portfolio = await self._portfolio_repo.get_for_update(portfolio_id)
        if portfolio is None:
            raise NotFoundException("Portfolio", portfolio_id)
        return portfolio

    # ── Portfolio → fund ──

    @staticmethod
    def seed_nav(value: Decimal, seed_units: Optional[Decimal] = None) -> Decimal:
        seed_units = settings.FUND_SEED_UNITS if seed_units is None else seed_units
        if value <= ZERO:
            return quantize(settings.DEFAULT_INITIAL_NAV)
        return quantize(value / seed_units)

    async def convert_to_fund(
        self, portfolio_id: UUID, request: Optional[ConvertToFundRequest] = None
    ) -> Portfolio:
        snapshot_date = request.snapshot_date if request is not None else None

        async with self._locks.writer(portfolio_id):
            async with unit_of_work(self.db):
                portfolio = await self._lock_portfolio(portfolio_id)
                if portfolio.is_fund:
                    raise ConflictException(f"Portfolio '{portfolio.name}' is already a fund")

                value = await fetch_fund_value(self._valuation, portfolio_id, as_of=snapshot_date)
                nav = self.seed_nav(value)

                portfolio.is_fund = True
                portfolio.nav_per_unit = nav
                portfolio.initial_nav_per_unit = nav
                portfolio.total_outstanding_units = ZERO
                portfolio.number_of_investors = 0
                portfolio.last_nav_date = datetime.now(timezone.utc)
                await self._portfolio_repo.add(portfolio)

        cache.invalidate_ledger()
        logger.info(
            "Converted portfolio %s to a fund: value %s, seed NAV %s",
            portfolio_id,
            value,
            nav,
            extra={"fund_id": str(portfolio_id)},
        )
        return portfolio

    # ── Fund → portfolio ──

    async def plan_teardown(self, portfolio_id: UUID) -> TeardownPlan:
        return TeardownPlan(
            portfolio_id=portfolio_id,
            holdings_deleted=len(await self._holding_repo.list_by_fund(portfolio_id)),
            transactions_deleted=await self._transaction_repo.count_by_fund(portfolio_id),
            cash_flows_deleted=await self._cash_flow_repo.count_fund_flows(portfolio_id),
        )

    async def convert_to_portfolio(
        self, portfolio_id: UUID, confirm: bool = False
    ) -> Tuple[Portfolio, TeardownPlan]:
        if not confirm:
            raise ValidationError(
                "Reverting a fund deletes all of its holdings, unit transactions and "
                "subscription/redemption cash flows; resend with confirm=true",
            )

        async with self._locks.writer(portfolio_id):
            async with unit_of_work(self.db):
                portfolio = await self._lock_portfolio(portfolio_id)
                if not portfolio.is_fund:
                    raise BusinessRuleViolation(f"Portfolio '{portfolio.name}' is not a fund")

                plan = await self.plan_teardown(portfolio_id)
                await self._transaction_repo.delete_by_fund(portfolio_id)
                await self._cash_flow_repo.delete_fund_flows(portfolio_id)
                await self._holding_repo.delete_by_fund(portfolio_id)

                portfolio.is_fund = False
                portfolio.nav_per_unit = ZERO
                portfolio.initial_nav_per_unit = ZERO
                portfolio.total_outstanding_units = ZERO
                portfolio.number_of_investors = 0
                portfolio.last_nav_date = None
                portfolio.cash_balance = await self._cash_flow_repo.completed_balance(portfolio_id)
                await self._portfolio_repo.add(portfolio)

        cache.invalidate_ledger()
        logger.info(
            "Reverted fund %s to a portfolio: deleted %d holdings, %d transactions, %d cash flows",
            portfolio_id,
            plan.holdings_deleted,
            plan.transactions_deleted,
            plan.cash_flows_deleted,
            extra={"fund_id": str(portfolio_id)},
        )
        return portfolio, plan
