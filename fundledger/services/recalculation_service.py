"""
Recalculation engine: rebuilds a fund's holdings by replaying its ledger.

Used for the manual "recalculate all holdings" action, for edits and
deletions of historical ledger entries, and by the processors when a new
entry is backdated.

Algorithm (``replay_locked``):

1. load the fund's ledger, ordered by ``(transaction_date, created_at)``;
2. fold every entry before the earliest affected date into a snapshot and
   replay the rest on top, with the same per-entry functions the live
   processors use;
3. compute the fund's NAV as of now from the replayed unit total;
4. only then write every holding, the fund's units, cash balance, investor
   count and NAV.

Steps 1-3 touch nothing, and the caller's unit of work rolls back anything
flushed before a failure, so a replay either lands completely or not at all.
Each entry keeps the NAV recorded on it.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

from fundledger.core.cache import cache
from fundledger.core.exceptions import NotFoundException, ValidationError
from fundledger.core.locks import FundLockManager, fund_locks
from fundledger.db.session import unit_of_work
from fundledger.models.fund_unit_transaction import FundUnitTransaction, HoldingType
from fundledger.models.portfolio import Portfolio
from fundledger.repositories.cash_flow_repo import CashFlowRepository
from fundledger.repositories.holding_repo import HoldingRepository
from fundledger.repositories.portfolio_repo import PortfolioRepository
from fundledger.repositories.transaction_repo import TransactionRepository
from fundledger.schemas.fund_unit import FundTransactionUpdate
from fundledger.services.ledger import (
    LedgerEntry,
    Position,
    active_investors,
    project,
    quantize,
    replay_from,
    total_units,
)
from fundledger.services.nav_service import NavService, require_fund, write_position

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecalculationResult:
    fund_id: UUID
    from_date: Optional[date]
    transactions_replayed: int
    holdings_updated: int
    total_outstanding_units: Decimal
    nav_per_unit: Decimal
    number_of_investors: int


class RecalculationService:
    """Replays a fund's unit ledger and persists the result atomically."""

    def __init__(
        self,
        portfolio_repo: PortfolioRepository,
        holding_repo: HoldingRepository,
        transaction_repo: TransactionRepository,
        cash_flow_repo: CashFlowRepository,
        nav_service: NavService,
        locks: FundLockManager = fund_locks,
    ):
        self._portfolio_repo = portfolio_repo
        self._holding_repo = holding_repo
        self._transaction_repo = transaction_repo
        self._cash_flow_repo = cash_flow_repo
        self._nav_service = nav_service
        self._locks = locks

    @property
    def db(self):
        return self._portfolio_repo.db

    # ── Core replay ──

    async def replay_locked(
        self, fund: Portfolio, from_date: Optional[date] = None
    ) -> RecalculationResult:
        """
        Replay ``fund``'s ledger from ``from_date`` (or from the start).

        The caller must hold the fund's lock, have it marked RECALCULATING,
        and run this inside a unit of work.
        """
        transactions = await self._transaction_repo.list_by_fund(fund.id)
        entries = [LedgerEntry.from_transaction(tx) for tx in transactions]
        if from_date is None:
            positions = project(entries)
            replayed = len(entries)
        else:
            positions = replay_from(entries, from_date)
            replayed = sum(1 for entry in entries if entry.transaction_date >= from_date)

        units = total_units(positions)
        nav = await self._nav_service.compute_nav_for(fund, total_units=units)

        # Nothing has been written yet; from here on every step is a plain write.
        holdings = await self._holding_repo.list_by_fund(fund.id)
        for holding in holdings:
            write_position(holding, positions.get(holding.account_id, Position()), nav.nav_per_unit)
            await self._holding_repo.add(holding)

        fund.total_outstanding_units = units
        fund.cash_balance = await self._cash_flow_repo.completed_balance(fund.id)
        fund.number_of_investors = active_investors(positions)
        fund.nav_per_unit = nav.nav_per_unit
        fund.last_nav_date = nav.as_of
        await self._portfolio_repo.add(fund)

        result = RecalculationResult(
            fund_id=fund.id,
            from_date=from_date,
            transactions_replayed=replayed,
            holdings_updated=len(holdings),
            total_outstanding_units=units,
            nav_per_unit=nav.nav_per_unit,
            number_of_investors=fund.number_of_investors,
        )
        logger.info(
            "Replayed %d of %d entries for fund %s from %s: %s units, NAV %s, %d investors",
            replayed,
            len(entries),
            fund.id,
            from_date or "inception",
            units,
            nav.nav_per_unit,
            result.number_of_investors,
            extra={"fund_id": str(fund.id)},
        )
        return result

    async def _lock_fund(self, fund_id: UUID) -> Portfolio:
        return require_fund(await self._portfolio_repo.get_for_update(fund_id), fund_id)

    # ── Commands ──

    async def recalculate_all_holdings(self, fund_id: UUID) -> RecalculationResult:
        """Rebuild every holding of the fund from its full ledger."""
        async with self._locks.recalculation(fund_id):
            async with unit_of_work(self.db):
                fund = await self._lock_fund(fund_id)
                result = await self.replay_locked(fund)
        cache.invalidate_ledger()
        return result

    async def _get_transaction(self, transaction_id: UUID) -> FundUnitTransaction:
        transaction = await self._transaction_repo.get(transaction_id)
        if transaction is None:
            raise NotFoundException("Fund transaction", transaction_id)
        return transaction

    async def update_holding_transaction(
        self, transaction_id: UUID, changes: FundTransactionUpdate
    ) -> Tuple[FundUnitTransaction, RecalculationResult]:
        """
        Edit a ledger entry and replay the fund from the earlier of its old
        and new dates.

        When ``units`` or ``amount`` changes, the entry's NAV becomes
        ``amount / units``.  The owning cash flow follows the entry.
        """
        transaction = await self._get_transaction(transaction_id)
        fund_id = transaction.portfolio_id

        async with self._locks.recalculation(fund_id):
            async with unit_of_work(self.db):
                fund = await self._lock_fund(fund_id)
                transaction = await self._transaction_repo.reload(transaction)
                old_date = transaction.transaction_date

                if changes.units is not None or changes.amount is not None:
                    units = quantize(changes.units if changes.units is not None else transaction.units)
                    amount = quantize(changes.amount if changes.amount is not None else transaction.amount)
                    if units <= 0 or amount <= 0:
                        raise ValidationError("units and amount must round to a positive value")
                    nav = quantize(amount / units)
                    if nav <= 0:
                        raise ValidationError(
                            f"amount {amount} over {units} units gives a zero NAV per unit"
                        )
                    transaction.units = units
                    transaction.amount = amount
                    transaction.nav_per_unit = nav
                if "description" in changes.model_fields_set:
                    transaction.description = changes.description
                if changes.effective_date is not None:
                    transaction.transaction_date = changes.effective_date
                transaction.updated_at = datetime.now(timezone.utc)
                await self._transaction_repo.add(transaction)

                if transaction.cash_flow_id is not None:
                    cash_flow = await self._cash_flow_repo.get(transaction.cash_flow_id)
                    if cash_flow is not None:
                        amount = Decimal(transaction.amount)
                        cash_flow.amount = amount if transaction.holding_type == HoldingType.SUBSCRIBE else -amount
                        cash_flow.flow_date = transaction.transaction_date
                        await self._cash_flow_repo.add(cash_flow)

                from_date = min(old_date, transaction.transaction_date)
                result = await self.replay_locked(fund, from_date=from_date)

        cache.invalidate_ledger()
        logger.info(
            "Updated fund transaction %s (%s units at %s); fund %s replayed from %s",
            transaction.id,
            transaction.units,
            transaction.nav_per_unit,
            fund_id,
            result.from_date,
            extra={"fund_id": str(fund_id), "transaction_id": str(transaction.id)},
        )
        return transaction, result

    async def delete_holding_transaction(self, transaction_id: UUID) -> RecalculationResult:
        """Delete a ledger entry and its cash flow, then replay from its date."""
        transaction = await self._get_transaction(transaction_id)
        fund_id = transaction.portfolio_id

        async with self._locks.recalculation(fund_id):
            async with unit_of_work(self.db):
                fund = await self._lock_fund(fund_id)
                transaction = await self._transaction_repo.reload(transaction)
                from_date = transaction.transaction_date
                cash_flow_id = transaction.cash_flow_id
                await self._transaction_repo.remove(transaction)
                if cash_flow_id is not None:
                    cash_flow = await self._cash_flow_repo.get(cash_flow_id)
                    if cash_flow is not None:
                        await self._cash_flow_repo.remove(cash_flow)
                result = await self.replay_locked(fund, from_date=from_date)

        cache.invalidate_ledger()
        logger.info(
            "Deleted fund transaction %s; fund %s replayed from %s",
            transaction_id,
            fund_id,
            from_date,
            extra={"fund_id": str(fund_id), "transaction_id": str(transaction_id)},
        )
        return result
