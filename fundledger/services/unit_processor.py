"""
Shared plumbing for the subscription and redemption processors.

Both processors follow the same shape inside the fund's write lock and one
unit of work:

1. load and check the account (must exist and be an investor) and the fund
   (must exist, be a fund and have a usable NAV), taking the row lock;
2. work out the entry with the pure functions in :mod:`fundledger.services.ledger`;
3. append the transaction with its cash flow;
4. either apply the entry to the holding and the fund aggregate directly, or,
   when the effective date lies before the fund's latest transaction, hand
   the fund to the recalculation engine to replay from that date.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

from fundledger.core.exceptions import BusinessRuleViolation, ValidationError
from fundledger.core.locks import FundLockManager, fund_locks
from fundledger.models.account import Account
from fundledger.models.cash_flow import CashFlow, CashFlowStatus, CashFlowType
from fundledger.models.fund_unit_transaction import FundUnitTransaction, HoldingType
from fundledger.models.investor_holding import InvestorHolding
from fundledger.models.portfolio import Portfolio
from fundledger.repositories.account_repo import AccountRepository
from fundledger.repositories.cash_flow_repo import CashFlowRepository
from fundledger.repositories.holding_repo import HoldingRepository
from fundledger.repositories.portfolio_repo import PortfolioRepository
from fundledger.repositories.transaction_repo import TransactionRepository
from fundledger.services.ledger import ZERO, Position, quantize
from fundledger.services.nav_service import require_fund, write_position
from fundledger.services.recalculation_service import RecalculationService

logger = logging.getLogger(__name__)


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


class UnitProcessor:
    """Base class for :class:`SubscriptionService` and :class:`RedemptionService`."""

    def __init__(
        self,
        portfolio_repo: PortfolioRepository,
        account_repo: AccountRepository,
        holding_repo: HoldingRepository,
        transaction_repo: TransactionRepository,
        cash_flow_repo: CashFlowRepository,
        recalculation: RecalculationService,
        locks: FundLockManager = fund_locks,
    ):
        self._portfolio_repo = portfolio_repo
        self._account_repo = account_repo
        self._holding_repo = holding_repo
        self._transaction_repo = transaction_repo
        self._cash_flow_repo = cash_flow_repo
        self._recalculation = recalculation
        self._locks = locks

    @property
    def db(self):
        return self._portfolio_repo.db

    # ── Preconditions ──

    async def _require_investor(self, account_id: UUID) -> Account:
        account = await self._account_repo.get(account_id)
        if account is None:
            raise ValidationError(
                f"Account '{account_id}' does not exist",
                details={"account_id": str(account_id)},
            )
        if not account.is_investor:
            raise ValidationError(
                f"Account '{account.name}' is not an investor account",
                details={"account_id": str(account_id)},
            )
        return account

    async def _lock_fund(self, fund_id: UUID) -> Portfolio:
        return require_fund(await self._portfolio_repo.get_for_update(fund_id), fund_id)

    @staticmethod
    def _dealing_nav(fund: Portfolio, override: Optional[Decimal]) -> Decimal:
        nav = quantize(override) if override is not None else Decimal(fund.nav_per_unit)
        if nav <= ZERO:
            raise BusinessRuleViolation(
                f"Fund '{fund.name}' has no valid NAV per unit; recalculate the NAV first"
            )
        return nav

    async def _is_backdated(self, fund_id: UUID, effective_date: date) -> bool:
        latest = await self._transaction_repo.latest_transaction_date(fund_id)
        return latest is not None and effective_date < latest

    # ── Writes ──

    async def _open_holding(self, fund: Portfolio, account: Account) -> InvestorHolding:
        holding = await self._holding_repo.get_by_account_and_fund(account.id, fund.id)
        if holding is None:
            holding = await self._holding_repo.add(
                InvestorHolding(account_id=account.id, portfolio_id=fund.id)
            )
            logger.debug("Opened holding %s for account %s in fund %s", holding.id, account.id, fund.id)
        return holding

    async def _append(
        self,
        fund: Portfolio,
        holding: InvestorHolding,
        holding_type: HoldingType,
        units: Decimal,
        nav_per_unit: Decimal,
        amount: Decimal,
        effective_date: date,
        description: Optional[str],
    ) -> Tuple[FundUnitTransaction, CashFlow]:
        """
        Append a ledger entry and the cash flow it owns.

        The cash flow is flushed first because the transaction references it.
        """
        transaction_id = uuid.uuid4()
        subscribing = holding_type == HoldingType.SUBSCRIBE
        verb = "subscription" if subscribing else "redemption"
        note = f"Fund {verb} - {units} units at {nav_per_unit} per unit"
        if description:
            note = f"{note}. {description}"

        cash_flow = await self._cash_flow_repo.add(
            CashFlow(
                portfolio_id=fund.id,
                flow_type=CashFlowType.FUND_SUBSCRIPTION if subscribing else CashFlowType.FUND_REDEMPTION,
                amount=amount if subscribing else -amount,
                flow_date=effective_date,
                description=note,
                funding_source=str(holding.account_id),
                reference_id=str(transaction_id),
                status=CashFlowStatus.COMPLETED,
            )
        )
        transaction = await self._transaction_repo.add(
            FundUnitTransaction(
                id=transaction_id,
                holding_id=holding.id,
                account_id=holding.account_id,
                portfolio_id=fund.id,
                holding_type=holding_type,
                units=units,
                nav_per_unit=nav_per_unit,
                amount=amount,
                transaction_date=effective_date,
                description=description,
                cash_flow_id=cash_flow.id,
            )
        )
        return transaction, cash_flow

    async def _apply_live(
        self,
        fund: Portfolio,
        holding: InvestorHolding,
        position: Position,
        units_delta: Decimal,
    ) -> None:
        """Write the new position and move the fund aggregate by ``units_delta``."""
        mark_nav = Decimal(fund.nav_per_unit)
        write_position(holding, position, mark_nav)
        await self._holding_repo.add(holding)

        fund.total_outstanding_units = quantize(Decimal(fund.total_outstanding_units) + units_delta)
        fund.cash_balance = await self._cash_flow_repo.completed_balance(fund.id)
        fund.number_of_investors = await self._holding_repo.count_active_by_fund(fund.id)
        await self._portfolio_repo.add(fund)

    async def _replay_backdated(self, fund: Portfolio, effective_date: date) -> None:
        with self._locks.recalculating(fund.id):
            await self._recalculation.replay_locked(fund, from_date=effective_date)

    @staticmethod
    def _position_of(holding: InvestorHolding) -> Position:
        return Position(
            units=Decimal(holding.total_units),
            avg_cost_per_unit=Decimal(holding.avg_cost_per_unit),
            total_investment=Decimal(holding.total_investment),
        )
