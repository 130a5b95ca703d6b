"""
Portfolio domain model.

A portfolio becomes a *fund* when fund mode is enabled: it then issues units
to investor accounts against a NAV per unit.  The fund fields live on the
same row so the conversion in either direction is a single-row update plus
the ledger teardown.
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel


class Portfolio(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for portfolios (and funds).

    - ``market_value`` is the non-cash holdings' market value as last written
      by the external price feed.
    - ``cash_balance`` is derived from completed cash flows and rewritten in
      the same transaction as any flow that changes it.
    - ``total_outstanding_units`` always equals the sum of the fund's
      holdings' ``total_units``.
    - ``initial_nav_per_unit`` is the seed NAV used while no units are
      outstanding.
    """

    __tablename__ = "portfolios"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("length(name) > 0", name="ck_portfolios_name_not_empty"),
        CheckConstraint("length(base_currency) = 3", name="ck_portfolios_currency_iso"),
        CheckConstraint("market_value >= 0", name="ck_portfolios_market_value_non_negative"),
        CheckConstraint("nav_per_unit >= 0", name="ck_portfolios_nav_non_negative"),
        CheckConstraint(
            "total_outstanding_units >= 0", name="ck_portfolios_units_non_negative"
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True, max_length=255)
    base_currency: str = Field(default="USD", max_length=3)
    market_value: Decimal = Field(default=Decimal("0"), max_digits=24, decimal_places=3)
    cash_balance: Decimal = Field(default=Decimal("0"), max_digits=24, decimal_places=3)

    # ── Fund mode ──
    is_fund: bool = Field(default=False, index=True)
    nav_per_unit: Decimal = Field(default=Decimal("0"), max_digits=24, decimal_places=3)
    initial_nav_per_unit: Decimal = Field(
        default=Decimal("0"), max_digits=24, decimal_places=3
    )
    total_outstanding_units: Decimal = Field(
        default=Decimal("0"), max_digits=24, decimal_places=3
    )
    last_nav_date: Optional[datetime] = Field(
        default=None,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )
    number_of_investors: int = Field(default=0)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
        index=True,
    )

    def __repr__(self) -> str:
        mode = "fund" if self.is_fund else "portfolio"
        return f"<Portfolio id={self.id} name='{self.name}' mode={mode} nav={self.nav_per_unit}>"
