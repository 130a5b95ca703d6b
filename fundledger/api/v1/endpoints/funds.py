"""
Fund API endpoints.

- POST  /funds/{id}/subscriptions            Buy units
- POST  /funds/{id}/redemptions              Sell units
- GET   /funds/{id}/nav                      Stored NAV per unit
- POST  /funds/{id}/nav/recalculate          Recompute and persist the NAV
- POST  /funds/{id}/nav/refresh              Recompute only if stale
- POST  /funds/{id}/holdings/recalculate     Replay the whole ledger
- GET   /funds/{id}/investors                Holdings, largest first
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.api.v1.deps import (
    Repositories,
    build_nav_service,
    build_recalculation_service,
    get_valuation_source,
)
from fundledger.api.v1.endpoints.accounts import _get_holding_service
from fundledger.db.session import get_db
from fundledger.schemas.common import ErrorResponse, ValidationErrorResponse
from fundledger.schemas.fund_unit import (
    NavResponse,
    RecalculationResponse,
    RedemptionCreate,
    RedemptionResponse,
    SubscriptionCreate,
    SubscriptionResponse,
)
from fundledger.schemas.holding import HoldingResponse
from fundledger.services.holding_service import HoldingService
from fundledger.services.nav_service import NavService
from fundledger.services.recalculation_service import RecalculationService
from fundledger.services.redemption_service import RedemptionService
from fundledger.services.subscription_service import SubscriptionService
from fundledger.services.valuation import ValuationSource

router = APIRouter()

_LEDGER_ERRORS = {
    400: {"model": ErrorResponse, "description": "Bad input or ineligible account"},
    404: {"model": ErrorResponse, "description": "Fund not found"},
    409: {"model": ErrorResponse, "description": "Recalculation in progress"},
    422: {"model": ValidationErrorResponse, "description": "Business rule violation"},
    503: {"model": ErrorResponse, "description": "Valuation or database unavailable"},
}


# ── Dependency injection ──


def _get_nav_service(
    db: AsyncSession = Depends(get_db),
    valuation: ValuationSource = Depends(get_valuation_source),
) -> NavService:
    return build_nav_service(Repositories(db), valuation)


def _get_recalculation_service(
    db: AsyncSession = Depends(get_db),
    valuation: ValuationSource = Depends(get_valuation_source),
) -> RecalculationService:
    return build_recalculation_service(Repositories(db), valuation)


def _processor_kwargs(db: AsyncSession, valuation: ValuationSource) -> dict:
    repos = Repositories(db)
    return dict(
        portfolio_repo=repos.portfolios,
        account_repo=repos.accounts,
        holding_repo=repos.holdings,
        transaction_repo=repos.transactions,
        cash_flow_repo=repos.cash_flows,
        recalculation=build_recalculation_service(repos, valuation),
    )


def _get_subscription_service(
    db: AsyncSession = Depends(get_db),
    valuation: ValuationSource = Depends(get_valuation_source),
) -> SubscriptionService:
    return SubscriptionService(**_processor_kwargs(db, valuation))


def _get_redemption_service(
    db: AsyncSession = Depends(get_db),
    valuation: ValuationSource = Depends(get_valuation_source),
) -> RedemptionService:
    return RedemptionService(**_processor_kwargs(db, valuation))


# ── Unit operations ──


@router.post(
    "/{fund_id}/subscriptions",
    response_model=SubscriptionResponse,
    status_code=201,
    summary="Subscribe to a fund",
    description=(
        "Issues ``round(amount / nav, 3)`` units at the fund's stored NAV (or the "
        "supplied dealing NAV). A backdated ``effective_date`` replays the ledger."
    ),
    responses=_LEDGER_ERRORS,
)
async def subscribe(
    fund_id: UUID,
    order: SubscriptionCreate,
    service: SubscriptionService = Depends(_get_subscription_service),
) -> SubscriptionResponse:
    result = await service.subscribe(fund_id, order)
    return SubscriptionResponse.model_validate(result)


@router.post(
    "/{fund_id}/redemptions",
    response_model=RedemptionResponse,
    status_code=201,
    summary="Redeem units from a fund",
    description="Pays out ``round(units * nav, 3)``. Redeeming more than is held is rejected.",
    responses=_LEDGER_ERRORS,
)
async def redeem(
    fund_id: UUID,
    order: RedemptionCreate,
    service: RedemptionService = Depends(_get_redemption_service),
) -> RedemptionResponse:
    result = await service.redeem(fund_id, order)
    return RedemptionResponse.model_validate(result)


# ── NAV ──


@router.get(
    "/{fund_id}/nav",
    response_model=NavResponse,
    summary="Get the stored NAV per unit",
    responses={404: {"model": ErrorResponse, "description": "Fund not found"}},
)
async def get_nav(
    fund_id: UUID,
    service: NavService = Depends(_get_nav_service),
) -> NavResponse:
    return await service.get_nav(fund_id)


@router.post(
    "/{fund_id}/nav/recalculate",
    response_model=NavResponse,
    summary="Recalculate the NAV per unit",
    description="Values the fund now, stores the NAV and re-marks every holding.",
    responses=_LEDGER_ERRORS,
)
async def recalculate_nav(
    fund_id: UUID,
    service: NavService = Depends(_get_nav_service),
) -> NavResponse:
    return await service.recalculate_nav(fund_id)


@router.post(
    "/{fund_id}/nav/refresh",
    response_model=NavResponse,
    summary="Refresh the NAV if it is stale",
    responses=_LEDGER_ERRORS,
)
async def refresh_nav(
    fund_id: UUID,
    force: bool = Query(False, description="Recalculate even if the stored NAV is fresh"),
    service: NavService = Depends(_get_nav_service),
) -> NavResponse:
    return await service.refresh_nav(fund_id, force=force)


# ── Holdings ──


@router.post(
    "/{fund_id}/holdings/recalculate",
    response_model=RecalculationResponse,
    summary="Rebuild every holding from the ledger",
    responses=_LEDGER_ERRORS,
)
async def recalculate_holdings(
    fund_id: UUID,
    service: RecalculationService = Depends(_get_recalculation_service),
) -> RecalculationResponse:
    return await service.recalculate_all_holdings(fund_id)


@router.get(
    "/{fund_id}/investors",
    response_model=List[HoldingResponse],
    summary="List a fund's investors",
    description="Holdings ordered by units held, largest first.",
    responses={404: {"model": ErrorResponse, "description": "Fund not found"}},
)
async def list_investors(
    fund_id: UUID,
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: HoldingService = Depends(_get_holding_service),
) -> List[HoldingResponse]:
    return await service.get_fund_investors(fund_id, skip=skip, limit=limit)
