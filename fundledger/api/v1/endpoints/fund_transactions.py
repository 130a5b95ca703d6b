"""
Fund transaction API endpoints.

Historical ledger entries can only change through the recalculation engine,
so both routes replay the fund.

- PUT     /fund-transactions/{id}  Edit units, amount, description or date
- DELETE  /fund-transactions/{id}  Remove an entry and its cash flow
"""

from uuid import UUID

from fastapi import APIRouter, Depends

from fundledger.api.v1.endpoints.funds import _get_recalculation_service
from fundledger.schemas.common import ErrorResponse, ValidationErrorResponse
from fundledger.schemas.fund_unit import (
    FundTransactionUpdate,
    FundTransactionUpdateResponse,
    RecalculationResponse,
)
from fundledger.services.recalculation_service import RecalculationService

router = APIRouter()

_EDIT_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid edit"},
    404: {"model": ErrorResponse, "description": "Transaction not found"},
    409: {"model": ErrorResponse, "description": "Recalculation in progress"},
    422: {"model": ValidationErrorResponse, "description": "Replay inconsistency"},
    503: {"model": ErrorResponse, "description": "Valuation unavailable"},
}


@router.put(
    "/{transaction_id}",
    response_model=FundTransactionUpdateResponse,
    summary="Edit a fund transaction",
    description=(
        "Changing units or amount re-derives the entry's NAV as amount / units. "
        "The fund is replayed from the earlier of the old and new dates."
    ),
    responses=_EDIT_ERRORS,
)
async def update_fund_transaction(
    transaction_id: UUID,
    changes: FundTransactionUpdate,
    service: RecalculationService = Depends(_get_recalculation_service),
) -> FundTransactionUpdateResponse:
    transaction, result = await service.update_holding_transaction(transaction_id, changes)
    return FundTransactionUpdateResponse.model_validate(
        {"transaction": transaction, "recalculation": result}, from_attributes=True
    )


@router.delete(
    "/{transaction_id}",
    response_model=RecalculationResponse,
    summary="Delete a fund transaction",
    responses=_EDIT_ERRORS,
)
async def delete_fund_transaction(
    transaction_id: UUID,
    service: RecalculationService = Depends(_get_recalculation_service),
) -> RecalculationResponse:
    return await service.delete_holding_transaction(transaction_id)
