"""
Account API endpoints.

- GET   /accounts                  List accounts
- POST  /accounts                  Create an account
- GET   /accounts/{id}/holdings    Fund holdings of an account
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.api.v1.deps import Repositories
from fundledger.db.session import get_db
from fundledger.schemas.account import AccountCreate, AccountResponse
from fundledger.schemas.common import ErrorResponse, ValidationErrorResponse
from fundledger.schemas.holding import HoldingResponse
from fundledger.services.account_service import AccountService
from fundledger.services.holding_service import HoldingService

router = APIRouter()


# ── Dependency injection ──


def _get_account_service(db: AsyncSession = Depends(get_db)) -> AccountService:
    return AccountService(Repositories(db).accounts)


def _get_holding_service(db: AsyncSession = Depends(get_db)) -> HoldingService:
    repos = Repositories(db)
    return HoldingService(
        holding_repo=repos.holdings,
        transaction_repo=repos.transactions,
        cash_flow_repo=repos.cash_flows,
        portfolio_repo=repos.portfolios,
        account_repo=repos.accounts,
    )


# ── Endpoints ──


@router.get(
    "",
    response_model=List[AccountResponse],
    summary="List all accounts",
)
async def list_accounts(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: AccountService = Depends(_get_account_service),
) -> List[AccountResponse]:
    return await service.get_all_accounts(skip=skip, limit=limit)


@router.post(
    "",
    response_model=AccountResponse,
    status_code=201,
    summary="Create a new account",
    description="Email addresses are unique. Only investor accounts may buy fund units.",
    responses={
        409: {"model": ErrorResponse, "description": "Email already registered"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def create_account(
    account: AccountCreate,
    service: AccountService = Depends(_get_account_service),
) -> AccountResponse:
    return await service.create_account(account)


@router.get(
    "/{account_id}/holdings",
    response_model=List[HoldingResponse],
    summary="List an account's fund holdings",
    description="Closed (zero-unit) holdings are included.",
    responses={404: {"model": ErrorResponse, "description": "Account not found"}},
)
async def list_account_holdings(
    account_id: UUID,
    service: HoldingService = Depends(_get_holding_service),
) -> List[HoldingResponse]:
    return await service.get_account_holdings(account_id)
