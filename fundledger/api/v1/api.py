"""
V1 API router aggregation.

All versioned endpoint routers are mounted here under a common prefix.
The top-level ``main.py`` mounts this router at ``/api/v1``.
"""

from fastapi import APIRouter

from fundledger.api.v1.endpoints import accounts, fund_transactions, funds, holdings, portfolios

api_router = APIRouter()

api_router.include_router(accounts.router, prefix="/accounts", tags=["Accounts"])
api_router.include_router(portfolios.router, prefix="/portfolios", tags=["Portfolios"])
api_router.include_router(funds.router, prefix="/funds", tags=["Funds"])
api_router.include_router(holdings.router, prefix="/holdings", tags=["Holdings"])
api_router.include_router(
    fund_transactions.router, prefix="/fund-transactions", tags=["Fund transactions"]
)
