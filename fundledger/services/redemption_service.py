"""
Redemption processor: cancels fund units for cash.

``amount = round(units * nav, 3)``.  The average cost of the remaining units
is unchanged; the realized P&L ``units * (nav - avg_cost)`` is reported on the
result and not stored on the holding.  Redeeming more than is held is an
error, never clamped.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from fundledger.core.cache import cache
from fundledger.core.exceptions import InsufficientUnitsError, ReplayInconsistencyError, ValidationError
from fundledger.db.session import unit_of_work
from fundledger.models.cash_flow import CashFlow
from fundledger.models.fund_unit_transaction import FundUnitTransaction, HoldingType
from fundledger.models.investor_holding import InvestorHolding
from fundledger.schemas.fund_unit import RedemptionCreate
from fundledger.services.ledger import (
    ZERO,
    amount_for_units,
    apply_redemption,
    quantize,
    realized_pnl,
)
from fundledger.services.unit_processor import UnitProcessor, utc_today

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedemptionResult:
    transaction: FundUnitTransaction
    holding: InvestorHolding
    cash_flow: CashFlow
    units_redeemed: Decimal
    amount_received: Decimal
    realized_pnl: Decimal
    nav_per_unit: Decimal
    backdated: bool


class RedemptionService(UnitProcessor):
    """Records REDEEM entries against a fund."""

    async def redeem(self, fund_id: UUID, order: RedemptionCreate) -> RedemptionResult:
        """
        Redeem ``order.units`` from ``order.account_id``'s holding.

        A backdated redemption is checked twice: against today's balance up
        front, then against the balance held on its effective date during the
        replay.  Either shortfall surfaces as :class:`InsufficientUnitsError`.
        """
        units = quantize(order.units)
        if units <= ZERO:
            raise ValidationError("Redemption units must be positive")
        effective_date = order.effective_date or utc_today()

        async with self._locks.writer(fund_id):
            async with unit_of_work(self.db):
                account = await self._require_investor(order.account_id)
                fund = await self._lock_fund(fund_id)
                nav = self._dealing_nav(fund, order.nav_per_unit)

                holding = await self._holding_repo.get_by_account_and_fund(account.id, fund_id)
                available = Decimal(holding.total_units) if holding is not None else ZERO
                if holding is None or units > available:
                    logger.warning(
                        "Rejected redemption of %s units from fund %s: account %s holds %s",
                        units,
                        fund_id,
                        account.id,
                        available,
                        extra={"fund_id": str(fund_id), "account_id": str(account.id)},
                    )
                    raise InsufficientUnitsError(available=available, requested=units)

                amount = amount_for_units(units, nav)
                avg_cost = Decimal(holding.avg_cost_per_unit)
                pnl = realized_pnl(units, nav, avg_cost)
                backdated = await self._is_backdated(fund_id, effective_date)

                transaction, cash_flow = await self._append(
                    fund,
                    holding,
                    HoldingType.REDEEM,
                    units,
                    nav,
                    amount,
                    effective_date,
                    order.description,
                )

                if backdated:
                    try:
                        await self._replay_backdated(fund, effective_date)
                    except ReplayInconsistencyError as exc:
                        if exc.transaction_id != transaction.id:
                            raise
                        raise InsufficientUnitsError(
                            available=Decimal(exc.details["available"]), requested=units
                        ) from exc
                else:
                    position = apply_redemption(self._position_of(holding), units)
                    await self._apply_live(fund, holding, position, -units)

        cache.invalidate_ledger()
        logger.info(
            "Fund redemption: account %s redeemed %s units of fund %s at %s (amount %s, realized %s%s)",
            account.id,
            units,
            fund_id,
            nav,
            amount,
            pnl,
            ", backdated" if backdated else "",
            extra={
                "fund_id": str(fund_id),
                "account_id": str(account.id),
                "transaction_id": str(transaction.id),
            },
        )
        return RedemptionResult(
            transaction=transaction,
            holding=holding,
            cash_flow=cash_flow,
            units_redeemed=units,
            amount_received=amount,
            realized_pnl=pnl,
            nav_per_unit=nav,
            backdated=backdated,
        )
