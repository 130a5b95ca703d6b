"""
Subscription processor: issues fund units against cash.

``units = round(amount / nav, 3)``; an amount that rounds to zero units is
rejected rather than recorded.  The holding's average cost is re-weighted:
``(old_units * old_avg + amount) / new_units``.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from fundledger.core.cache import cache
from fundledger.core.exceptions import ValidationError
from fundledger.db.session import unit_of_work
from fundledger.models.cash_flow import CashFlow
from fundledger.models.fund_unit_transaction import FundUnitTransaction, HoldingType
from fundledger.models.investor_holding import InvestorHolding
from fundledger.schemas.fund_unit import SubscriptionCreate
from fundledger.services.ledger import ZERO, apply_subscription, quantize, units_for_amount
from fundledger.services.unit_processor import UnitProcessor, utc_today

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionResult:
    transaction: FundUnitTransaction
    holding: InvestorHolding
    cash_flow: CashFlow
    units_issued: Decimal
    nav_per_unit: Decimal
    backdated: bool


class SubscriptionService(UnitProcessor):
    """Records SUBSCRIBE entries against a fund."""

    async def subscribe(self, fund_id: UUID, order: SubscriptionCreate) -> SubscriptionResult:
        """
        Subscribe ``order.amount`` into the fund for ``order.account_id``.

        Validation sequence:
        1. amount positive after rounding → 400 otherwise;
        2. account exists and is an investor → 400 otherwise;
        3. fund exists (404), is a fund (422) and has a NAV (422);
        4. the amount buys at least 0.001 units → 422 otherwise.
        """
        amount = quantize(order.amount)
        if amount <= ZERO:
            raise ValidationError("Subscription amount must be positive")
        effective_date = order.effective_date or utc_today()

        async with self._locks.writer(fund_id):
            async with unit_of_work(self.db):
                account = await self._require_investor(order.account_id)
                fund = await self._lock_fund(fund_id)
                nav = self._dealing_nav(fund, order.nav_per_unit)
                units = units_for_amount(amount, nav)
                backdated = await self._is_backdated(fund_id, effective_date)

                holding = await self._open_holding(fund, account)
                transaction, cash_flow = await self._append(
                    fund,
                    holding,
                    HoldingType.SUBSCRIBE,
                    units,
                    nav,
                    amount,
                    effective_date,
                    order.description,
                )

                if backdated:
                    await self._replay_backdated(fund, effective_date)
                else:
                    position = apply_subscription(self._position_of(holding), units, amount)
                    await self._apply_live(fund, holding, position, units)

        cache.invalidate_ledger()
        logger.info(
            "Fund subscription: account %s bought %s units of fund %s at %s (amount %s%s)",
            account.id,
            units,
            fund_id,
            nav,
            amount,
            ", backdated" if backdated else "",
            extra={
                "fund_id": str(fund_id),
                "account_id": str(account.id),
                "transaction_id": str(transaction.id),
            },
        )
        return SubscriptionResult(
            transaction=transaction,
            holding=holding,
            cash_flow=cash_flow,
            units_issued=units,
            nav_per_unit=nav,
            backdated=backdated,
        )
