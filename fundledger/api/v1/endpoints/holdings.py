"""
Holding API endpoints.

- GET  /holdings/{id}  Holding detail: summary plus transactions and cash flows
"""

from uuid import UUID

from fastapi import APIRouter, Depends

from fundledger.api.v1.endpoints.accounts import _get_holding_service
from fundledger.schemas.common import ErrorResponse
from fundledger.schemas.holding import HoldingDetailResponse
from fundledger.services.holding_service import HoldingService

router = APIRouter()


@router.get(
    "/{holding_id}",
    response_model=HoldingDetailResponse,
    summary="Get a holding in detail",
    description=(
        "Returns the holding, a lifetime summary (units and amounts in and out, "
        "realized and unrealized P&L, return percentage) and every ledger entry "
        "with its cash flow, in ledger order."
    ),
    responses={404: {"model": ErrorResponse, "description": "Holding not found"}},
)
async def get_holding(
    holding_id: UUID,
    service: HoldingService = Depends(_get_holding_service),
) -> HoldingDetailResponse:
    detail = await service.get_holding_detail(holding_id)
    return HoldingDetailResponse.from_detail(detail)
