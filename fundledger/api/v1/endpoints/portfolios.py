"""
Portfolio API endpoints.

- GET   /portfolios                            List portfolios (and funds)
- POST  /portfolios                            Create a portfolio
- GET   /portfolios/{id}                       Retrieve a portfolio
- PUT   /portfolios/{id}/market-value          Record the price feed's market value
- GET   /portfolios/{id}/cash-flows            List cash flows
- POST  /portfolios/{id}/cash-flows            Record a deposit or withdrawal
- POST  /portfolios/{id}/convert-to-fund       Enable fund mode
- POST  /portfolios/{id}/convert-to-portfolio  Disable fund mode (destructive)
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from fundledger.api.v1.deps import Repositories, get_valuation_source
from fundledger.db.session import get_db
from fundledger.schemas.common import ErrorResponse, ValidationErrorResponse
from fundledger.schemas.portfolio import (
    CashFlowCreate,
    CashFlowResponse,
    ConvertToFundRequest,
    ConvertToPortfolioRequest,
    ConvertToPortfolioResponse,
    MarketValueUpdate,
    PortfolioCreate,
    PortfolioResponse,
    TeardownResponse,
)
from fundledger.services.conversion_service import ConversionService
from fundledger.services.portfolio_service import PortfolioService
from fundledger.services.valuation import ValuationSource

router = APIRouter()


# ── Dependency injection ──


def _get_portfolio_service(db: AsyncSession = Depends(get_db)) -> PortfolioService:
    repos = Repositories(db)
    return PortfolioService(repos.portfolios, repos.cash_flows)


def _get_conversion_service(
    db: AsyncSession = Depends(get_db),
    valuation: ValuationSource = Depends(get_valuation_source),
) -> ConversionService:
    repos = Repositories(db)
    return ConversionService(
        portfolio_repo=repos.portfolios,
        holding_repo=repos.holdings,
        transaction_repo=repos.transactions,
        cash_flow_repo=repos.cash_flows,
        valuation=valuation,
    )


# ── Portfolios ──


@router.get(
    "",
    response_model=List[PortfolioResponse],
    summary="List all portfolios",
)
async def list_portfolios(
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: PortfolioService = Depends(_get_portfolio_service),
) -> List[PortfolioResponse]:
    return await service.get_all_portfolios(skip=skip, limit=limit)


@router.post(
    "",
    response_model=PortfolioResponse,
    status_code=201,
    summary="Create a new portfolio",
    responses={422: {"model": ValidationErrorResponse, "description": "Validation error"}},
)
async def create_portfolio(
    portfolio: PortfolioCreate,
    service: PortfolioService = Depends(_get_portfolio_service),
) -> PortfolioResponse:
    return await service.create_portfolio(portfolio)


@router.get(
    "/{portfolio_id}",
    response_model=PortfolioResponse,
    summary="Get a portfolio by ID",
    responses={404: {"model": ErrorResponse, "description": "Portfolio not found"}},
)
async def get_portfolio(
    portfolio_id: UUID,
    service: PortfolioService = Depends(_get_portfolio_service),
) -> PortfolioResponse:
    return await service.get_portfolio(portfolio_id)


@router.put(
    "/{portfolio_id}/market-value",
    response_model=PortfolioResponse,
    summary="Record the market value of the portfolio's holdings",
    description="The stored NAV is not changed; recalculate the NAV to apply it.",
    responses={404: {"model": ErrorResponse, "description": "Portfolio not found"}},
)
async def update_market_value(
    portfolio_id: UUID,
    update: MarketValueUpdate,
    service: PortfolioService = Depends(_get_portfolio_service),
) -> PortfolioResponse:
    return await service.update_market_value(portfolio_id, update)


# ── Cash flows ──


@router.get(
    "/{portfolio_id}/cash-flows",
    response_model=List[CashFlowResponse],
    summary="List a portfolio's cash flows",
    responses={404: {"model": ErrorResponse, "description": "Portfolio not found"}},
)
async def list_cash_flows(
    portfolio_id: UUID,
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(100, ge=1, le=1000, description="Max records to return"),
    service: PortfolioService = Depends(_get_portfolio_service),
) -> List[CashFlowResponse]:
    return await service.get_cash_flows(portfolio_id, skip=skip, limit=limit)


@router.post(
    "/{portfolio_id}/cash-flows",
    response_model=CashFlowResponse,
    status_code=201,
    summary="Record a deposit or withdrawal",
    responses={
        404: {"model": ErrorResponse, "description": "Portfolio not found"},
        409: {"model": ErrorResponse, "description": "Fund recalculation in progress"},
        422: {"model": ValidationErrorResponse, "description": "Validation error"},
    },
)
async def create_cash_flow(
    portfolio_id: UUID,
    flow: CashFlowCreate,
    service: PortfolioService = Depends(_get_portfolio_service),
) -> CashFlowResponse:
    return await service.record_cash_flow(portfolio_id, flow)


# ── Fund mode ──


@router.post(
    "/{portfolio_id}/convert-to-fund",
    response_model=PortfolioResponse,
    summary="Convert a portfolio into a fund",
    description=(
        "Seeds the NAV per unit from the portfolio's value (market value plus cash). "
        "A portfolio with no value starts at the default initial NAV."
    ),
    responses={
        404: {"model": ErrorResponse, "description": "Portfolio not found"},
        409: {"model": ErrorResponse, "description": "Already a fund"},
        503: {"model": ErrorResponse, "description": "Valuation unavailable"},
    },
)
async def convert_to_fund(
    portfolio_id: UUID,
    request: Optional[ConvertToFundRequest] = Body(default=None),
    service: ConversionService = Depends(_get_conversion_service),
) -> PortfolioResponse:
    return await service.convert_to_fund(portfolio_id, request)


@router.post(
    "/{portfolio_id}/convert-to-portfolio",
    response_model=ConvertToPortfolioResponse,
    summary="Convert a fund back into a plain portfolio",
    description=(
        "Deletes every holding, unit transaction and subscription/redemption "
        "cash flow of the fund. Requires ``{\"confirm\": true}``."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Confirmation missing"},
        404: {"model": ErrorResponse, "description": "Portfolio not found"},
        422: {"model": ErrorResponse, "description": "Not a fund"},
    },
)
async def convert_to_portfolio(
    portfolio_id: UUID,
    request: ConvertToPortfolioRequest,
    service: ConversionService = Depends(_get_conversion_service),
) -> ConvertToPortfolioResponse:
    portfolio, plan = await service.convert_to_portfolio(portfolio_id, confirm=request.confirm)
    return ConvertToPortfolioResponse(
        portfolio=PortfolioResponse.model_validate(portfolio),
        teardown=TeardownResponse(
            holdings_deleted=plan.holdings_deleted,
            transactions_deleted=plan.transactions_deleted,
            cash_flows_deleted=plan.cash_flows_deleted,
        ),
    )
