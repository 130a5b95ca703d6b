"""
Ledger errors and the HTTP envelope they are rendered into.

Services raise the exceptions below and never touch FastAPI, so the same
code runs under the seed script and the tests.  ``add_exception_handlers``
turns them, and anything else that escapes a route, into::

    {"error": true, "message": "...", "details": ...}

where ``details`` appears only when there is something structured to report
(units available vs. requested, the offending transaction, field errors).
"""

import logging
from decimal import Decimal
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from fundledger.core.resilience import CircuitBreakerError

logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────────────────
# Ledger errors
# ────────────────────────────────────────────────────────────────────────────


class AppException(Exception):
    """Carries the HTTP status and envelope fields for a ledger error."""

    def __init__(self, status_code: int, message: str, details: Any = None):
        self.status_code = status_code
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(AppException):
    """Bad input rejected before any ledger write (400)."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(status_code=400, message=message, details=details)


class NotFoundException(AppException):
    """Resource not found (404)."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            status_code=404,
            message=f"{resource} with id '{identifier}' not found",
        )


class ConflictException(AppException):
    """Resource already exists / state conflict (409)."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(status_code=409, message=message, details=details)


class BusinessRuleViolation(AppException):
    """Business rule was violated (422)."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(status_code=422, message=message, details=details)


class InsufficientUnitsError(BusinessRuleViolation):
    """A redemption asks for more units than the holding owns."""

    def __init__(self, available: Decimal, requested: Decimal):
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient units to redeem. Available: {available}, "
            f"Requested: {requested}",
            details={"available": str(available), "requested": str(requested)},
        )


class InsufficientPrecisionError(BusinessRuleViolation):
    """A subscription amount rounds to zero units at the current NAV."""

    def __init__(self, amount: Decimal, nav_per_unit: Decimal):
        super().__init__(
            f"Subscription amount {amount} is too small to issue any units "
            f"at NAV {nav_per_unit} per unit",
            details={"amount": str(amount), "nav_per_unit": str(nav_per_unit)},
        )


class ReplayInconsistencyError(BusinessRuleViolation):
    """Replaying the ledger hit a redemption larger than the units held then."""

    def __init__(
        self,
        transaction_id: Any,
        account_id: Any,
        available: Decimal,
        requested: Decimal,
    ):
        self.transaction_id = transaction_id
        self.account_id = account_id
        super().__init__(
            f"Ledger replay failed: redemption {transaction_id} requests "
            f"{requested} units but account {account_id} held only {available} "
            f"at that point. The edit was not applied.",
            details={
                "transaction_id": str(transaction_id),
                "account_id": str(account_id),
                "available": str(available),
                "requested": str(requested),
            },
        )


class ConcurrentRecalculationError(ConflictException):
    """Another recalculation is already running for the fund."""

    def __init__(self, fund_id: Any):
        self.fund_id = fund_id
        super().__init__(
            f"A recalculation is already in progress for fund '{fund_id}'. "
            f"Retry once it completes."
        )


class InvalidValuationError(AppException):
    """The valuation source could not supply a fund value (503)."""

    def __init__(self, fund_id: Any, reason: str):
        self.fund_id = fund_id
        super().__init__(
            status_code=503,
            message=f"Valuation unavailable for fund '{fund_id}': {reason}",
        )


# ────────────────────────────────────────────────────────────────────────────
# Handlers
# ────────────────────────────────────────────────────────────────────────────


def _error_response(
    status_code: int,
    message: str,
    details: Any = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    content: dict[str, Any] = {"error": True, "message": message}
    if details is not None:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def add_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return _error_response(exc.status_code, exc.message, exc.details)

    @app.exception_handler(CircuitBreakerError)
    async def circuit_open_handler(request: Request, exc: CircuitBreakerError) -> JSONResponse:
        # Round up so clients never come back before the probe window opens.
        logger.warning("Circuit '%s' open on %s %s", exc.name, request.method, request.url.path)
        return _error_response(
            503,
            "Service temporarily unavailable. Please retry shortly.",
            headers={"Retry-After": str(int(exc.retry_after) + 1)},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error_response(exc.status_code, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        """422 listing each offending field as ``body -> amount`` with its message."""
        fields = [
            {"field": " -> ".join(map(str, err["loc"])), "message": err["msg"]}
            for err in exc.errors()
        ]
        return _error_response(422, "Validation failed", fields)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
        return _error_response(500, "Internal Server Error. Please contact support.")
