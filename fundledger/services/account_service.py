"""
Account service: business logic layer for account operations.

Duplicate emails are caught by a pre-check for a friendly message; the unique
constraint remains the real guard, and its ``IntegrityError`` (two requests
racing past the pre-check) is translated to the same 409.

Caching:
    ``get_all_accounts`` is cache-backed under ``accounts:``; creation
    invalidates the prefix.
"""

import logging
from typing import List
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from fundledger.core.cache import ACCOUNTS_PREFIX, cache
from fundledger.core.exceptions import ConflictException, NotFoundException
from fundledger.models.account import Account
from fundledger.repositories.account_repo import AccountRepository
from fundledger.schemas.account import AccountCreate

logger = logging.getLogger(__name__)


class AccountService:
    """Encapsulates CRUD + business rules for :class:`Account`."""

    CACHE_PREFIX = ACCOUNTS_PREFIX

    def __init__(self, account_repo: AccountRepository):
        self._repo = account_repo

    # ── Queries ──

    async def get_all_accounts(self, skip: int = 0, limit: int = 100) -> List[Account]:
        cache_key = f"{self.CACHE_PREFIX}list:{skip}:{limit}"
        cached = cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit for %s", cache_key)
            return cached

        accounts = await self._repo.get_all(skip=skip, limit=limit)
        cache.set(cache_key, accounts)
        return accounts

    async def get_account(self, account_id: UUID) -> Account:
        account = await self._repo.get(account_id)
        if account is None:
            raise NotFoundException("Account", account_id)
        return account

    # ── Commands ──

    async def create_account(self, account_in: AccountCreate) -> Account:
        """Create an account; 409 if the email is already registered."""
        email = str(account_in.email)
        if await self._repo.get_by_email(email):
            raise ConflictException(f"An account with email '{email}' already exists")

        account = Account(name=account_in.name, email=email, is_investor=account_in.is_investor)
        try:
            created = await self._repo.create(account)
        except IntegrityError:
            await self._repo.db.rollback()
            logger.warning("IntegrityError on duplicate account email '%s'", email)
            raise ConflictException(f"An account with email '{email}' already exists")

        cache.invalidate(self.CACHE_PREFIX)
        logger.info(
            "Created account %s (%s, investor=%s)",
            created.id,
            created.name,
            created.is_investor,
            extra={"account_id": str(created.id)},
        )
        return created
