"""
Cash flow domain model.

Every fund unit transaction owns exactly one cash flow (subscription inflow or
redemption outflow).  Plain deposits and withdrawals belong to the portfolio
itself and survive a fund → portfolio conversion.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, Index
from sqlmodel import Field, SQLModel


class CashFlowType(str, Enum):
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    FUND_SUBSCRIPTION = "FUND_SUBSCRIPTION"
    FUND_REDEMPTION = "FUND_REDEMPTION"


FUND_FLOW_TYPES = (CashFlowType.FUND_SUBSCRIPTION, CashFlowType.FUND_REDEMPTION)


class CashFlowStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class CashFlow(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for cash flows.

    ``amount`` is signed: positive for money entering the portfolio, negative
    for money leaving it.  Only COMPLETED flows count towards the cash balance.
    """

    __tablename__ = "cash_flows"  # type: ignore[assignment]

    __table_args__ = (Index("ix_cash_flows_portfolio_date", "portfolio_id", "flow_date"),)

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    portfolio_id: uuid.UUID = Field(foreign_key="portfolios.id", index=True, ondelete="RESTRICT")
    flow_type: CashFlowType
    amount: Decimal = Field(max_digits=24, decimal_places=3)
    flow_date: date
    description: Optional[str] = Field(default=None, max_length=1000)
    funding_source: Optional[str] = Field(default=None, max_length=255)
    reference_id: Optional[str] = Field(default=None, index=True, max_length=64)
    status: CashFlowStatus = Field(default=CashFlowStatus.COMPLETED)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
    )

    def __repr__(self) -> str:
        return f"<CashFlow id={self.id} {self.flow_type.value} amount={self.amount}>"
