"""
Database model registry.

Importing this module ensures all table models are registered with
SQLModel's metadata, which is required before calling ``create_all()``.
Tables are listed parent-first so the FK order is obvious at a glance.
"""

from fundledger.models.account import Account  # noqa: F401
from fundledger.models.portfolio import Portfolio  # noqa: F401
from fundledger.models.investor_holding import InvestorHolding  # noqa: F401
from fundledger.models.cash_flow import CashFlow  # noqa: F401
from fundledger.models.fund_unit_transaction import FundUnitTransaction  # noqa: F401
