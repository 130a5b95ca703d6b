"""SQLModel table models. Import here so metadata is populated."""

from fundledger.models.account import Account  # noqa: F401
from fundledger.models.cash_flow import CashFlow, CashFlowStatus, CashFlowType  # noqa: F401
from fundledger.models.fund_unit_transaction import (  # noqa: F401
    FundUnitTransaction,
    HoldingType,
)
from fundledger.models.investor_holding import InvestorHolding  # noqa: F401
from fundledger.models.portfolio import Portfolio  # noqa: F401
