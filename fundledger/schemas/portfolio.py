"""
Pydantic schemas for portfolios, their cash flows and fund conversion.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from fundledger.models.cash_flow import CashFlowStatus, CashFlowType
from fundledger.schemas.common import decimal_to_number

# ── Portfolios ──


class PortfolioCreate(BaseModel):
    """Schema for ``POST /portfolios``."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Human-readable portfolio name",
        examples=["Global Balanced"],
    )
    base_currency: str = Field(
        default="USD",
        description="ISO-4217 currency code, fixed at creation",
        examples=["USD"],
    )
    market_value: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Market value of the non-cash holdings",
        examples=[1_000_000],
    )

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()

    @field_validator("base_currency")
    @classmethod
    def validate_currency_code(cls, v: str) -> str:
        code = v.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("base_currency must be a three-letter ISO-4217 code")
        return code


class MarketValueUpdate(BaseModel):
    """Schema for ``PUT /portfolios/{id}/market-value`` (written by the price feed)."""

    market_value: Decimal = Field(..., ge=0, examples=[1_200_000])


class PortfolioResponse(BaseModel):
    id: UUID
    name: str
    base_currency: str
    market_value: Decimal
    cash_balance: Decimal
    is_fund: bool
    nav_per_unit: Decimal
    initial_nav_per_unit: Decimal
    total_outstanding_units: Decimal
    last_nav_date: Optional[datetime]
    number_of_investors: int
    created_at: datetime

    @field_serializer(
        "market_value",
        "cash_balance",
        "nav_per_unit",
        "initial_nav_per_unit",
        "total_outstanding_units",
    )
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return decimal_to_number(v)

    model_config = ConfigDict(from_attributes=True)


# ── Cash flows ──


class CashFlowCreate(BaseModel):
    """
    Schema for ``POST /portfolios/{id}/cash-flows``.

    ``amount`` is unsigned; the sign follows ``flow_type``.  Subscription and
    redemption flows are created by the fund endpoints, never here.
    """

    flow_type: CashFlowType = Field(..., examples=[CashFlowType.DEPOSIT])
    amount: Decimal = Field(..., gt=0, examples=[250_000])
    flow_date: Optional[date] = Field(
        default=None, description="Defaults to today (UTC)"
    )
    description: Optional[str] = Field(default=None, max_length=1000)
    funding_source: Optional[str] = Field(default=None, max_length=255)
    status: CashFlowStatus = Field(default=CashFlowStatus.COMPLETED)

    @field_validator("flow_type")
    @classmethod
    def validate_plain_flow(cls, v: CashFlowType) -> CashFlowType:
        if v not in (CashFlowType.DEPOSIT, CashFlowType.WITHDRAWAL):
            raise ValueError("only DEPOSIT and WITHDRAWAL flows can be recorded directly")
        return v


class CashFlowResponse(BaseModel):
    id: UUID
    portfolio_id: UUID
    flow_type: CashFlowType
    amount: Decimal
    flow_date: date
    description: Optional[str]
    funding_source: Optional[str]
    reference_id: Optional[str]
    status: CashFlowStatus
    created_at: datetime

    @field_serializer("amount")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return decimal_to_number(v)

    model_config = ConfigDict(from_attributes=True)


# ── Conversion ──


class ConvertToFundRequest(BaseModel):
    snapshot_date: Optional[date] = Field(
        default=None,
        description="Value the portfolio as of this date to seed the NAV; defaults to now",
    )


class ConvertToPortfolioRequest(BaseModel):
    confirm: bool = Field(
        default=False,
        description=(
            "Must be true. Reverting deletes every holding, unit transaction "
            "and subscription/redemption cash flow of the fund."
        ),
    )


class TeardownResponse(BaseModel):
    holdings_deleted: int
    transactions_deleted: int
    cash_flows_deleted: int


class ConvertToPortfolioResponse(BaseModel):
    portfolio: PortfolioResponse
    teardown: TeardownResponse
