"""
Pydantic schemas for Account API request / response serialisation.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


class AccountBase(BaseModel):
    name: str = Field(
        ...,
        min_length=1,
        max_length=255,
        description="Account holder's name",
        examples=["Harbour Family Office"],
    )
    email: EmailStr = Field(
        ...,
        description="Contact email address (must be unique across accounts)",
        examples=["ops@harbour-fo.com"],
    )
    is_investor: bool = Field(
        default=True,
        description="Only investor accounts may subscribe to or redeem from funds",
    )

    @field_validator("name")
    @classmethod
    def validate_name_not_blank(cls, v: str) -> str:
        """Reject whitespace-only names."""
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()


class AccountCreate(AccountBase):
    """Schema for ``POST /accounts``."""

    pass


class AccountResponse(AccountBase):
    id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
