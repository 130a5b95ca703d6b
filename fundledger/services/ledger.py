"""
Holdings projection: a pure fold over the fund unit ledger.

Nothing in this module touches the database.  The subscription and
redemption services call the per-entry functions to work out the effect of a
new entry; the recalculation service feeds the whole ordered ledger through
the same functions to rebuild every holding.  Because both paths share the
arithmetic, a live write and a replay of the same history always agree.

All quantities are ``Decimal`` quantized to three places with ROUND_HALF_UP.
"""

from dataclasses import dataclass, replace
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from fundledger.core.exceptions import (
    InsufficientPrecisionError,
    InsufficientUnitsError,
    ReplayInconsistencyError,
)
from fundledger.models.fund_unit_transaction import FundUnitTransaction, HoldingType

PRECISION = Decimal("0.001")
ZERO = Decimal("0")

# Two unit totals closer than this are considered equal.
UNIT_TOLERANCE = PRECISION


def quantize(value) -> Decimal:
    """Round to three decimal places, halves away from zero."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(PRECISION, rounding=ROUND_HALF_UP)


def as_utc(moment: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def units_for_amount(amount: Decimal, nav_per_unit: Decimal) -> Decimal:
    units = quantize(Decimal(amount) / Decimal(nav_per_unit))
    if units <= ZERO:
        raise InsufficientPrecisionError(amount, nav_per_unit)
    return units


def amount_for_units(units: Decimal, nav_per_unit: Decimal) -> Decimal:
    return quantize(Decimal(units) * Decimal(nav_per_unit))


def realized_pnl(units: Decimal, nav_per_unit: Decimal, avg_cost_per_unit: Decimal) -> Decimal:
    return quantize(Decimal(units) * (Decimal(nav_per_unit) - Decimal(avg_cost_per_unit)))


# ── Ledger entries ──


@dataclass(frozen=True)
class LedgerEntry:
    """Immutable view of one fund unit transaction, as the fold sees it."""

    id: UUID
    account_id: UUID
    holding_type: HoldingType
    units: Decimal
    nav_per_unit: Decimal
    amount: Decimal
    transaction_date: date
    created_at: datetime

    @classmethod
    def from_transaction(cls, tx: FundUnitTransaction) -> "LedgerEntry":
        return cls(
            id=tx.id,
            account_id=tx.account_id,
            holding_type=HoldingType(tx.holding_type),
            units=Decimal(tx.units),
            nav_per_unit=Decimal(tx.nav_per_unit),
            amount=Decimal(tx.amount),
            transaction_date=tx.transaction_date,
            created_at=tx.created_at,
        )

    @property
    def sort_key(self) -> Tuple[date, datetime, str]:
        # Same-day entries replay in creation order; id breaks exact ties.
        return (self.transaction_date, as_utc(self.created_at), str(self.id))


def order_entries(entries: Iterable[LedgerEntry]) -> List[LedgerEntry]:
    return sorted(entries, key=lambda entry: entry.sort_key)


# ── Positions ──


@dataclass(frozen=True)
class Position:
    """An account's holding in a fund at some point of the ledger."""

    units: Decimal = ZERO
    avg_cost_per_unit: Decimal = ZERO
    total_investment: Decimal = ZERO

    def market_value(self, nav_per_unit: Decimal) -> Decimal:
        return quantize(self.units * Decimal(nav_per_unit))

    def unrealized_pnl(self, nav_per_unit: Decimal) -> Decimal:
        return quantize(self.market_value(nav_per_unit) - self.total_investment)


def apply_subscription(position: Position, units: Decimal, amount: Decimal) -> Position:
    """
    Add ``units`` bought for ``amount`` and re-weight the average cost:
    ``(old_units * old_avg + amount) / new_units``.
    """
    new_units = quantize(position.units + units)
    total_investment = quantize(position.total_investment + amount)
    return Position(
        units=new_units,
        avg_cost_per_unit=quantize(total_investment / new_units),
        total_investment=total_investment,
    )


def apply_redemption(position: Position, units: Decimal) -> Position:
    """
    Remove ``units`` from the position.  The average cost is unchanged and
    the remaining cost basis is ``remaining_units * avg_cost``.
    """
    if units > position.units:
        raise InsufficientUnitsError(available=position.units, requested=units)
    remaining = quantize(position.units - units)
    if remaining == ZERO:
        # Closed positions keep their last average cost for reporting.
        return replace(position, units=ZERO, total_investment=ZERO)
    return replace(
        position,
        units=remaining,
        total_investment=quantize(remaining * position.avg_cost_per_unit),
    )


def apply_entry(position: Position, entry: LedgerEntry) -> Position:
    if entry.holding_type == HoldingType.SUBSCRIBE:
        return apply_subscription(position, entry.units, entry.amount)
    try:
        return apply_redemption(position, entry.units)
    except InsufficientUnitsError:
        raise ReplayInconsistencyError(
            transaction_id=entry.id,
            account_id=entry.account_id,
            available=position.units,
            requested=entry.units,
        )


# ── Folding ──


def project(
    entries: Iterable[LedgerEntry],
    snapshot: Optional[Mapping[UUID, Position]] = None,
) -> Dict[UUID, Position]:
    """
    Fold ``entries`` in ledger order on top of ``snapshot``.

    Returns one position per account that appears in either input.
    """
    positions: Dict[UUID, Position] = dict(snapshot or {})
    for entry in order_entries(entries):
        current = positions.get(entry.account_id, Position())
        positions[entry.account_id] = apply_entry(current, entry)
    return positions


def replay_from(entries: Iterable[LedgerEntry], from_date: date) -> Dict[UUID, Position]:
    """
    Rebuild positions by folding entries dated before ``from_date`` into a
    snapshot and then replaying everything on or after it.
    """
    ordered = order_entries(entries)
    before = [entry for entry in ordered if entry.transaction_date < from_date]
    after = [entry for entry in ordered if entry.transaction_date >= from_date]
    return project(after, project(before))


def total_units(positions: Mapping[UUID, Position]) -> Decimal:
    return quantize(sum((position.units for position in positions.values()), ZERO))


def active_investors(positions: Mapping[UUID, Position]) -> int:
    return sum(1 for position in positions.values() if position.units > ZERO)


# ── Holding summary ──


@dataclass(frozen=True)
class HoldingSummary:
    """Lifetime figures for one holding, derived from its ledger entries."""

    total_subscriptions: int
    total_redemptions: int
    total_units_subscribed: Decimal
    total_units_redeemed: Decimal
    total_amount_subscribed: Decimal
    total_amount_redeemed: Decimal
    realized_pnl: Decimal
    unrealized_pnl: Decimal
    total_pnl: Decimal
    return_percentage: Decimal


def summarize(entries: Iterable[LedgerEntry], nav_per_unit: Decimal) -> HoldingSummary:
    """
    Replay one account's entries and total them up.

    Realized P&L is the sum over redemptions of
    ``units * (redemption_nav - avg_cost_at_that_point)``.  The return
    percentage is total P&L over the cost basis still invested, or zero when
    nothing is invested.
    """
    position = Position()
    subscriptions = redemptions = 0
    units_in = units_out = amount_in = amount_out = realized = ZERO

    for entry in order_entries(entries):
        if entry.holding_type == HoldingType.SUBSCRIBE:
            subscriptions += 1
            units_in += entry.units
            amount_in += entry.amount
        else:
            redemptions += 1
            units_out += entry.units
            amount_out += entry.amount
            realized += realized_pnl(entry.units, entry.nav_per_unit, position.avg_cost_per_unit)
        position = apply_entry(position, entry)

    unrealized = position.unrealized_pnl(nav_per_unit)
    total = quantize(realized + unrealized)
    if position.total_investment > ZERO:
        return_pct = quantize(total / position.total_investment * 100)
    else:
        return_pct = ZERO
    return HoldingSummary(
        total_subscriptions=subscriptions,
        total_redemptions=redemptions,
        total_units_subscribed=quantize(units_in),
        total_units_redeemed=quantize(units_out),
        total_amount_subscribed=quantize(amount_in),
        total_amount_redeemed=quantize(amount_out),
        realized_pnl=quantize(realized),
        unrealized_pnl=unrealized,
        total_pnl=total,
        return_percentage=return_pct,
    )
