"""
Common / shared Pydantic schemas used across multiple endpoints.

Defines the error envelopes so the OpenAPI documentation shows the error
contract, plus the Decimal-to-number helper every response schema uses.
"""

from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field


def decimal_to_number(v: Optional[Decimal]) -> Optional[float]:
    """
    Serialize Decimal as a JSON number rather than a string.

    Pydantic v2 defaults to string serialization for Decimal; clients of the
    ledger expect numeric units, NAVs and amounts.  Values are already
    quantized to three places before they reach a response.
    """
    return None if v is None else float(v)


class ErrorResponse(BaseModel):
    """Standard error envelope returned by all non-validation error handlers."""

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(
        ...,
        description="Human-readable error description",
        examples=["Insufficient units to redeem. Available: 60.000, Requested: 75.000"],
    )
    details: Optional[Any] = Field(
        default=None, description="Structured context, when the error carries any"
    )


class ValidationErrorDetail(BaseModel):
    """Single field-level validation failure."""

    field: str = Field(
        ...,
        description="Dot-separated path to the invalid field",
        examples=["body -> amount"],
    )
    message: str = Field(
        ...,
        description="Explanation of the validation failure",
        examples=["Input should be greater than 0"],
    )


class ValidationErrorResponse(BaseModel):
    """
    Response body for 422 Unprocessable Entity (request validation failure).

    Includes a ``details`` array so clients can map errors to fields.
    """

    error: bool = Field(default=True, description="Always ``true`` for errors")
    message: str = Field(
        default="Validation failed",
        description="Summary message",
    )
    details: List[ValidationErrorDetail] = Field(..., description="Per-field validation failures")
