"""
Pydantic schemas for fund unit operations: subscriptions, redemptions,
ledger edits, NAV and recalculation results.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator

from fundledger.schemas.common import decimal_to_number
from fundledger.schemas.holding import FundTransactionResponse, HoldingResponse
from fundledger.schemas.portfolio import CashFlowResponse

# ── Requests ──


class _FundOperationBase(BaseModel):
    account_id: UUID = Field(..., description="Investor account placing the order")
    effective_date: Optional[date] = Field(
        default=None,
        description=(
            "Date the transaction takes effect; defaults to today (UTC). A date "
            "before the fund's latest transaction replays the ledger from it."
        ),
    )
    description: Optional[str] = Field(default=None, max_length=1000)
    nav_per_unit: Optional[Decimal] = Field(
        default=None,
        gt=0,
        description="Dealing NAV for this order; defaults to the fund's stored NAV",
    )


class SubscriptionCreate(_FundOperationBase):
    """Schema for ``POST /funds/{id}/subscriptions``."""

    amount: Decimal = Field(..., gt=0, examples=[1_000_000])


class RedemptionCreate(_FundOperationBase):
    """Schema for ``POST /funds/{id}/redemptions``."""

    units: Decimal = Field(..., gt=0, examples=[40])


class FundTransactionUpdate(BaseModel):
    """
    Schema for ``PUT /fund-transactions/{id}``.

    Changing ``units`` or ``amount`` re-derives the entry's NAV as
    ``amount / units``.
    """

    units: Optional[Decimal] = Field(default=None, gt=0)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    description: Optional[str] = Field(default=None, max_length=1000)
    effective_date: Optional[date] = None

    @model_validator(mode="after")
    def require_a_change(self) -> "FundTransactionUpdate":
        if not self.model_fields_set:
            raise ValueError("at least one field must be supplied")
        return self


# ── Responses ──


class SubscriptionResponse(BaseModel):
    transaction: FundTransactionResponse
    holding: HoldingResponse
    cash_flow: CashFlowResponse
    units_issued: Decimal
    nav_per_unit: Decimal
    backdated: bool

    @field_serializer("units_issued", "nav_per_unit")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return decimal_to_number(v)

    model_config = ConfigDict(from_attributes=True)


class RedemptionResponse(BaseModel):
    transaction: FundTransactionResponse
    holding: HoldingResponse
    cash_flow: CashFlowResponse
    units_redeemed: Decimal
    amount_received: Decimal
    realized_pnl: Decimal
    nav_per_unit: Decimal
    backdated: bool

    @field_serializer("units_redeemed", "amount_received", "realized_pnl", "nav_per_unit")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return decimal_to_number(v)

    model_config = ConfigDict(from_attributes=True)


class NavResponse(BaseModel):
    fund_id: UUID
    nav_per_unit: Decimal
    total_outstanding_units: Decimal
    total_value: Optional[Decimal]
    as_of: Optional[datetime]
    refreshed: bool

    @field_serializer("nav_per_unit", "total_outstanding_units", "total_value")
    @classmethod
    def serialize_decimal_as_number(cls, v: Optional[Decimal]) -> Optional[float]:
        return decimal_to_number(v)

    model_config = ConfigDict(from_attributes=True)


class RecalculationResponse(BaseModel):
    fund_id: UUID
    from_date: Optional[date]
    transactions_replayed: int
    holdings_updated: int
    total_outstanding_units: Decimal
    nav_per_unit: Decimal
    number_of_investors: int

    @field_serializer("total_outstanding_units", "nav_per_unit")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return decimal_to_number(v)

    model_config = ConfigDict(from_attributes=True)


class FundTransactionUpdateResponse(BaseModel):
    transaction: FundTransactionResponse
    recalculation: RecalculationResponse

    model_config = ConfigDict(from_attributes=True)
