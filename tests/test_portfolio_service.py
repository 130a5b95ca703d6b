"""
Tests for PortfolioService.

Queries and single-row writes run against mocked repositories; cash flows
run against the in-memory database because the balance is a SQL sum.
"""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import IntegrityError

from fundledger.core.cache import cache
from fundledger.core.exceptions import (
    BusinessRuleViolation,
    ConcurrentRecalculationError,
    NotFoundException,
)
from fundledger.core.locks import FundLockManager
from fundledger.models.cash_flow import CashFlowStatus, CashFlowType
from fundledger.models.portfolio import Portfolio
from fundledger.schemas.portfolio import CashFlowCreate, MarketValueUpdate, PortfolioCreate
from fundledger.services.portfolio_service import PortfolioService

from .conftest import PORTFOLIO_ID, make_portfolio

# ────────────────────────────────────────────────────────────────────────────
# Fixtures
# ────────────────────────────────────────────────────────────────────────────


@pytest.fixture()
def portfolio_repo():
    repo = AsyncMock()
    repo.db = AsyncMock()
    return repo


@pytest.fixture()
def cash_flow_repo():
    return AsyncMock()


@pytest.fixture()
def portfolio_service(portfolio_repo, cash_flow_repo):
    return PortfolioService(portfolio_repo, cash_flow_repo, locks=FundLockManager())


# ────────────────────────────────────────────────────────────────────────────
# Queries
# ────────────────────────────────────────────────────────────────────────────


class TestGetPortfolios:
    @pytest.mark.asyncio
    async def test_list_is_cached(self, portfolio_service, portfolio_repo):
        portfolio_repo.get_all.return_value = [make_portfolio()]

        await portfolio_service.get_all_portfolios()
        await portfolio_service.get_all_portfolios()

        portfolio_repo.get_all.assert_awaited_once_with(skip=0, limit=100)

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, portfolio_service, portfolio_repo):
        portfolio_repo.get.return_value = None
        with pytest.raises(NotFoundException):
            await portfolio_service.get_portfolio(PORTFOLIO_ID)

    @pytest.mark.asyncio
    async def test_get_is_cached(self, portfolio_service, portfolio_repo):
        portfolio_repo.get.return_value = make_portfolio()

        first = await portfolio_service.get_portfolio(PORTFOLIO_ID)
        second = await portfolio_service.get_portfolio(PORTFOLIO_ID)

        assert first is second
        portfolio_repo.get.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cash_flows_of_missing_portfolio(self, portfolio_service, portfolio_repo, cash_flow_repo):
        portfolio_repo.get.return_value = None
        with pytest.raises(NotFoundException):
            await portfolio_service.get_cash_flows(PORTFOLIO_ID)
        cash_flow_repo.list_by_portfolio.assert_not_awaited()


# ────────────────────────────────────────────────────────────────────────────
# Single-row writes
# ────────────────────────────────────────────────────────────────────────────


class TestCreatePortfolio:
    @pytest.mark.asyncio
    async def test_creates_with_quantized_value(self, portfolio_service, portfolio_repo):
        portfolio_repo.create.side_effect = lambda p: p

        result = await portfolio_service.create_portfolio(
            PortfolioCreate(name="Global Balanced", base_currency="eur", market_value=Decimal("1000.12345"))
        )

        assert result.base_currency == "EUR"
        assert result.market_value == Decimal("1000.123")
        assert result.is_fund is False

    @pytest.mark.asyncio
    async def test_integrity_error_becomes_business_rule(self, portfolio_service, portfolio_repo):
        portfolio_repo.create.side_effect = IntegrityError("INSERT", {}, Exception("check"))

        with pytest.raises(BusinessRuleViolation):
            await portfolio_service.create_portfolio(PortfolioCreate(name="Bad"))

        portfolio_repo.db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_create_invalidates_list(self, portfolio_service, portfolio_repo):
        cache.set("portfolios:list:0:100", [])
        portfolio_repo.create.side_effect = lambda p: p

        await portfolio_service.create_portfolio(PortfolioCreate(name="New"))

        assert cache.get("portfolios:list:0:100") is None


class TestUpdateMarketValue:
    @pytest.mark.asyncio
    async def test_updates_value_only(self, portfolio_service, portfolio_repo):
        portfolio = make_portfolio()
        portfolio.nav_per_unit = Decimal("10000")
        portfolio_repo.get.return_value = portfolio
        portfolio_repo.update.side_effect = lambda p: p

        result = await portfolio_service.update_market_value(
            PORTFOLIO_ID, MarketValueUpdate(market_value=Decimal("1200000"))
        )

        assert result.market_value == Decimal("1200000.000")
        assert result.nav_per_unit == Decimal("10000")

    @pytest.mark.asyncio
    async def test_missing_portfolio(self, portfolio_service, portfolio_repo):
        portfolio_repo.get.return_value = None
        with pytest.raises(NotFoundException):
            await portfolio_service.update_market_value(PORTFOLIO_ID, MarketValueUpdate(market_value=1))


# ────────────────────────────────────────────────────────────────────────────
# Cash flows (in-memory database)
# ────────────────────────────────────────────────────────────────────────────


class TestRecordCashFlow:
    @pytest.mark.asyncio
    async def test_deposit_and_withdrawal_are_signed(self, ledger):
        portfolio = await ledger.repos.portfolios.create(Portfolio(name="Treasury"))

        deposit = await ledger.portfolios.record_cash_flow(
            portfolio.id,
            CashFlowCreate(flow_type=CashFlowType.DEPOSIT, amount=Decimal("150000"), flow_date=date(2024, 1, 5)),
        )
        withdrawal = await ledger.portfolios.record_cash_flow(
            portfolio.id,
            CashFlowCreate(flow_type=CashFlowType.WITHDRAWAL, amount=Decimal("50000"), flow_date=date(2024, 1, 6)),
        )

        assert deposit.amount == Decimal("150000.000")
        assert withdrawal.amount == Decimal("-50000.000")
        portfolio = await ledger.fresh(portfolio)
        assert portfolio.cash_balance == Decimal("100000.000")

    @pytest.mark.asyncio
    async def test_pending_flow_does_not_move_balance(self, ledger):
        portfolio = await ledger.repos.portfolios.create(Portfolio(name="Treasury"))

        await ledger.portfolios.record_cash_flow(
            portfolio.id,
            CashFlowCreate(
                flow_type=CashFlowType.DEPOSIT,
                amount=Decimal("1000"),
                status=CashFlowStatus.PENDING,
            ),
        )

        portfolio = await ledger.fresh(portfolio)
        assert portfolio.cash_balance == Decimal("0")
        flows = await ledger.portfolios.get_cash_flows(portfolio.id)
        assert len(flows) == 1
        assert flows[0].flow_date is not None

    @pytest.mark.asyncio
    async def test_missing_portfolio(self, ledger):
        with pytest.raises(NotFoundException):
            await ledger.portfolios.record_cash_flow(
                PORTFOLIO_ID, CashFlowCreate(flow_type=CashFlowType.DEPOSIT, amount=Decimal("1"))
            )

    @pytest.mark.asyncio
    async def test_rejected_while_fund_recalculates(self, ledger):
        fund = await ledger.add_fund()

        async with ledger.locks.recalculation(fund.id):
            with pytest.raises(ConcurrentRecalculationError):
                await ledger.portfolios.record_cash_flow(
                    fund.id, CashFlowCreate(flow_type=CashFlowType.DEPOSIT, amount=Decimal("1"))
                )
