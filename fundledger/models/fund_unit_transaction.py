"""
Fund unit transaction domain model (the unit ledger).

Rows are appended by the subscription and redemption processors and only
changed through the recalculation engine's edit/delete path, which replays
every holding downstream of the change.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Index
from sqlmodel import Field, SQLModel


class HoldingType(str, Enum):
    """Direction of a ledger entry."""

    SUBSCRIBE = "SUBSCRIBE"
    REDEEM = "REDEEM"


class FundUnitTransaction(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for fund unit transactions.

    - ``nav_per_unit`` is the NAV in effect for this entry.  Later NAV
      recalculations never rewrite it.
    - ``amount`` is unsigned; the direction comes from ``holding_type`` and
      the owning cash flow carries the signed figure.
    - The composite index covers the replay query: one fund's entries in
      ``(transaction_date, created_at)`` order.
    """

    __tablename__ = "fund_unit_transactions"  # type: ignore[assignment]

    __table_args__ = (
        Index("ix_fund_tx_fund_date_created", "portfolio_id", "transaction_date", "created_at"),
        CheckConstraint("units > 0", name="ck_fund_tx_units_positive"),
        CheckConstraint("nav_per_unit > 0", name="ck_fund_tx_nav_positive"),
        CheckConstraint("amount > 0", name="ck_fund_tx_amount_positive"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    holding_id: uuid.UUID = Field(
        foreign_key="investor_holdings.id", index=True, ondelete="RESTRICT"
    )
    account_id: uuid.UUID = Field(foreign_key="accounts.id", index=True, ondelete="RESTRICT")
    portfolio_id: uuid.UUID = Field(foreign_key="portfolios.id", index=True, ondelete="RESTRICT")
    holding_type: HoldingType
    units: Decimal = Field(max_digits=24, decimal_places=3)
    nav_per_unit: Decimal = Field(max_digits=24, decimal_places=3)
    amount: Decimal = Field(max_digits=24, decimal_places=3)
    transaction_date: date = Field(index=True)
    description: Optional[str] = Field(default=None, max_length=1000)
    cash_flow_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="cash_flows.id", ondelete="RESTRICT"
    )
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    def __repr__(self) -> str:
        return (
            f"<FundUnitTransaction id={self.id} {self.holding_type.value} "
            f"units={self.units} nav={self.nav_per_unit} date={self.transaction_date}>"
        )
