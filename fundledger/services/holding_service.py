"""
Holding queries: one holding in detail, an account's holdings, a fund's
investors.

Caching:
    All three reads are served from the TTL cache under ``holdings:`` and
    ``funds:`` keys, which every ledger write invalidates.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fundledger.core.cache import FUNDS_PREFIX, HOLDINGS_PREFIX, cache
from fundledger.core.exceptions import NotFoundException
from fundledger.models.cash_flow import CashFlow
from fundledger.models.fund_unit_transaction import FundUnitTransaction
from fundledger.models.investor_holding import InvestorHolding
from fundledger.repositories.account_repo import AccountRepository
from fundledger.repositories.cash_flow_repo import CashFlowRepository
from fundledger.repositories.holding_repo import HoldingRepository
from fundledger.repositories.portfolio_repo import PortfolioRepository
from fundledger.repositories.transaction_repo import TransactionRepository
from fundledger.services.ledger import HoldingSummary, LedgerEntry, summarize
from fundledger.services.nav_service import require_fund

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HoldingTransaction:
    """A ledger entry paired with the cash flow it owns, if any."""

    transaction: FundUnitTransaction
    cash_flow: Optional[CashFlow]


@dataclass(frozen=True)
class HoldingDetail:
    holding: InvestorHolding
    summary: HoldingSummary
    transactions: List[HoldingTransaction]


class HoldingService:
    """Read side of the investor holdings."""

    def __init__(
        self,
        holding_repo: HoldingRepository,
        transaction_repo: TransactionRepository,
        cash_flow_repo: CashFlowRepository,
        portfolio_repo: PortfolioRepository,
        account_repo: AccountRepository,
    ):
        self._holding_repo = holding_repo
        self._transaction_repo = transaction_repo
        self._cash_flow_repo = cash_flow_repo
        self._portfolio_repo = portfolio_repo
        self._account_repo = account_repo

    async def get_holding_detail(self, holding_id: UUID) -> HoldingDetail:
        """
        The holding, a lifetime summary derived by replaying its entries at
        the fund's current NAV, and its entries in ledger order.
        """
        holding = await self._holding_repo.get(holding_id)
        if holding is None:
            raise NotFoundException("Holding", holding_id)

        cache_key = f"{HOLDINGS_PREFIX}{holding_id}:detail"
        cached = cache.get(cache_key)
        if cached is not None:
            logger.debug("Cache hit for %s", cache_key)
            return cached

        fund = await self._portfolio_repo.get(holding.portfolio_id)
        nav = Decimal(fund.nav_per_unit) if fund is not None else Decimal("0")
        transactions = await self._transaction_repo.list_by_holding(holding_id)
        summary = summarize([LedgerEntry.from_transaction(tx) for tx in transactions], nav)

        rows = []
        for tx in transactions:
            cash_flow = None
            if tx.cash_flow_id is not None:
                cash_flow = await self._cash_flow_repo.get(tx.cash_flow_id)
            rows.append(HoldingTransaction(transaction=tx, cash_flow=cash_flow))

        detail = HoldingDetail(holding=holding, summary=summary, transactions=rows)
        cache.set(cache_key, detail)
        return detail

    async def get_account_holdings(self, account_id: UUID) -> List[InvestorHolding]:
        account = await self._account_repo.get(account_id)
        if account is None:
            raise NotFoundException("Account", account_id)

        cache_key = f"{HOLDINGS_PREFIX}account:{account_id}"
        cached = cache.get(cache_key)
        if cached is not None:
            return cached
        holdings = await self._holding_repo.list_by_account(account_id)
        cache.set(cache_key, holdings)
        return holdings

    async def get_fund_investors(
        self, fund_id: UUID, skip: int = 0, limit: int = 100
    ) -> List[InvestorHolding]:
        """Holdings in the fund, largest position first."""
        require_fund(await self._portfolio_repo.get(fund_id), fund_id)

        cache_key = f"{FUNDS_PREFIX}{fund_id}:investors:{skip}:{limit}"
        cached = cache.get(cache_key)
        if cached is not None:
            return cached
        holdings = await self._holding_repo.list_by_fund(fund_id, skip=skip, limit=limit)
        cache.set(cache_key, holdings)
        return holdings
