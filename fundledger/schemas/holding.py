"""
Pydantic schemas for investor holdings and their transaction history.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_serializer

from fundledger.models.fund_unit_transaction import HoldingType
from fundledger.schemas.common import decimal_to_number
from fundledger.schemas.portfolio import CashFlowResponse

if TYPE_CHECKING:
    from fundledger.services.holding_service import HoldingDetail, HoldingTransaction


class HoldingResponse(BaseModel):
    id: UUID
    account_id: UUID
    portfolio_id: UUID
    total_units: Decimal
    avg_cost_per_unit: Decimal
    total_investment: Decimal
    current_value: Decimal
    unrealized_pnl: Decimal
    created_at: datetime
    updated_at: datetime

    @field_serializer(
        "total_units",
        "avg_cost_per_unit",
        "total_investment",
        "current_value",
        "unrealized_pnl",
    )
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return decimal_to_number(v)

    model_config = ConfigDict(from_attributes=True)


class FundTransactionResponse(BaseModel):
    id: UUID
    holding_id: UUID
    account_id: UUID
    portfolio_id: UUID
    holding_type: HoldingType
    units: Decimal
    nav_per_unit: Decimal
    amount: Decimal
    transaction_date: date
    description: Optional[str]
    cash_flow_id: Optional[UUID]
    created_at: datetime
    updated_at: datetime

    @field_serializer("units", "nav_per_unit", "amount")
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return decimal_to_number(v)

    model_config = ConfigDict(from_attributes=True)


class HoldingTransactionResponse(FundTransactionResponse):
    """A ledger entry together with the cash flow it owns."""

    cash_flow: Optional[CashFlowResponse] = None

    @classmethod
    def from_entry(cls, entry: "HoldingTransaction") -> "HoldingTransactionResponse":
        """Flatten the transaction's columns and nest its cash flow."""
        fields = {name: getattr(entry.transaction, name) for name in FundTransactionResponse.model_fields}
        cash_flow = None
        if entry.cash_flow is not None:
            cash_flow = CashFlowResponse.model_validate(entry.cash_flow)
        return cls(**fields, cash_flow=cash_flow)


class HoldingSummaryResponse(BaseModel):
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

    @field_serializer(
        "total_units_subscribed",
        "total_units_redeemed",
        "total_amount_subscribed",
        "total_amount_redeemed",
        "realized_pnl",
        "unrealized_pnl",
        "total_pnl",
        "return_percentage",
    )
    @classmethod
    def serialize_decimal_as_number(cls, v: Decimal) -> float:
        return decimal_to_number(v)

    model_config = ConfigDict(from_attributes=True)


class HoldingDetailResponse(BaseModel):
    """Schema for ``GET /holdings/{id}``."""

    holding: HoldingResponse
    summary: HoldingSummaryResponse
    transactions: List[HoldingTransactionResponse]

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_detail(cls, detail: "HoldingDetail") -> "HoldingDetailResponse":
        return cls(
            holding=HoldingResponse.model_validate(detail.holding),
            summary=HoldingSummaryResponse.model_validate(detail.summary),
            transactions=[HoldingTransactionResponse.from_entry(row) for row in detail.transactions],
        )
