"""
Investor holding domain model.

One row per (fund, account): the materialized projection of that account's
SUBSCRIBE/REDEEM history in the fund.  Every field can be rebuilt from the
ledger; the row exists so reads do not have to replay.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, DateTime, UniqueConstraint
from sqlmodel import Field, SQLModel


class InvestorHolding(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for investor holdings.

    A holding whose ``total_units`` reaches zero is closed but kept, because
    its transactions reference it.
    """

    __tablename__ = "investor_holdings"  # type: ignore[assignment]

    __table_args__ = (
        UniqueConstraint("portfolio_id", "account_id", name="uq_holdings_fund_account"),
        CheckConstraint("total_units >= 0", name="ck_holdings_units_non_negative"),
        CheckConstraint("avg_cost_per_unit >= 0", name="ck_holdings_avg_cost_non_negative"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    account_id: uuid.UUID = Field(foreign_key="accounts.id", index=True, ondelete="RESTRICT")
    portfolio_id: uuid.UUID = Field(foreign_key="portfolios.id", index=True, ondelete="RESTRICT")

    total_units: Decimal = Field(default=Decimal("0"), max_digits=24, decimal_places=3)
    avg_cost_per_unit: Decimal = Field(default=Decimal("0"), max_digits=24, decimal_places=3)
    total_investment: Decimal = Field(default=Decimal("0"), max_digits=24, decimal_places=3)
    current_value: Decimal = Field(default=Decimal("0"), max_digits=24, decimal_places=3)
    unrealized_pnl: Decimal = Field(default=Decimal("0"), max_digits=24, decimal_places=3)

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

    @property
    def is_closed(self) -> bool:
        return self.total_units == 0

    def __repr__(self) -> str:
        return (
            f"<InvestorHolding id={self.id} fund={self.portfolio_id} "
            f"account={self.account_id} units={self.total_units}>"
        )
