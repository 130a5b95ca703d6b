"""
Account repository: data-access layer for the ``accounts`` table.

Extends generic CRUD with an email look-up used during duplicate
detection in the service layer.
"""

from typing import Optional

from sqlalchemy.future import select

from fundledger.models.account import Account
from fundledger.repositories.base import BaseRepository


class AccountRepository(BaseRepository[Account]):
    """Concrete repository for :class:`Account` entities."""

    async def get_by_email(self, email: str) -> Optional[Account]:
        """Return the account registered under ``email``, or ``None``."""
        stmt = select(self.model).where(self.model.email == email)
        rows = await self._scalars(stmt)
        return rows[0] if rows else None
