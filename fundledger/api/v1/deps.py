"""
Service wiring shared by the endpoint modules.

Every service is built per request around the request's DB session.  The
valuation source is its own dependency so deployments (and tests) can swap
in a real price feed with ``app.dependency_overrides[get_valuation_source]``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.db.session import get_db
from fundledger.models.account import Account
from fundledger.models.cash_flow import CashFlow
from fundledger.models.fund_unit_transaction import FundUnitTransaction
from fundledger.models.investor_holding import InvestorHolding
from fundledger.models.portfolio import Portfolio
from fundledger.repositories.account_repo import AccountRepository
from fundledger.repositories.cash_flow_repo import CashFlowRepository
from fundledger.repositories.holding_repo import HoldingRepository
from fundledger.repositories.portfolio_repo import PortfolioRepository
from fundledger.repositories.transaction_repo import TransactionRepository
from fundledger.services.nav_service import NavService
from fundledger.services.recalculation_service import RecalculationService
from fundledger.services.valuation import StoredValuationSource, ValuationSource


def get_valuation_source(db: AsyncSession = Depends(get_db)) -> ValuationSource:
    return StoredValuationSource(PortfolioRepository(Portfolio, db), CashFlowRepository(CashFlow, db))


class Repositories:
    """The five ledger repositories bound to one session."""

    def __init__(self, db: AsyncSession):
        self.portfolios = PortfolioRepository(Portfolio, db)
        self.accounts = AccountRepository(Account, db)
        self.holdings = HoldingRepository(InvestorHolding, db)
        self.transactions = TransactionRepository(FundUnitTransaction, db)
        self.cash_flows = CashFlowRepository(CashFlow, db)


def build_nav_service(repos: Repositories, valuation: ValuationSource) -> NavService:
    return NavService(repos.portfolios, repos.holdings, valuation)


def build_recalculation_service(repos: Repositories, valuation: ValuationSource) -> RecalculationService:
    return RecalculationService(
        portfolio_repo=repos.portfolios,
        holding_repo=repos.holdings,
        transaction_repo=repos.transactions,
        cash_flow_repo=repos.cash_flows,
        nav_service=build_nav_service(repos, valuation),
    )
