"""
Account domain model.

An account subscribes to and redeems from funds.  Only accounts flagged as
investors may transact.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, DateTime
from sqlmodel import Field, SQLModel


class Account(SQLModel, table=True):
    """
    SQLModel / SQLAlchemy table definition for accounts.

    - ``email`` has a unique index, so duplicate registrations are rejected at DB level.
    """

    __tablename__ = "accounts"  # type: ignore[assignment]

    __table_args__ = (
        CheckConstraint("length(name) > 0", name="ck_accounts_name_not_empty"),
        CheckConstraint("length(email) > 0", name="ck_accounts_email_not_empty"),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True, max_length=255)
    email: str = Field(unique=True, index=True, max_length=320)
    is_investor: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
        sa_type=DateTime(timezone=True),  # type: ignore[arg-type]
        index=True,
    )

    def __repr__(self) -> str:
        return f"<Account id={self.id} name='{self.name}' investor={self.is_investor}>"
