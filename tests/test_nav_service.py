"""
Tests for NavService against an in-memory database.

Covers:
- the seed NAV while no units are outstanding
- recalculation from the valuation source, re-marking every holding
- the stored NAV surviving a failed valuation
- refresh only when stale (or forced), and the cached read path
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from fundledger.core.cache import cache
from fundledger.core.exceptions import (
    BusinessRuleViolation,
    ConcurrentRecalculationError,
    InvalidValuationError,
    NotFoundException,
)
from fundledger.models.portfolio import Portfolio

from .conftest import FUND_ID, make_fund


@pytest_asyncio.fixture()
async def funded(ledger):
    fund = await ledger.add_fund(nav=Decimal("10000"))
    investor = await ledger.add_account("Harbour")
    await ledger.subscribe(fund, investor, "1000000", on=date(2024, 3, 1))
    return fund, investor


class TestComputeNav:
    @pytest.mark.asyncio
    async def test_seed_nav_without_units(self, ledger):
        fund = await ledger.add_fund(nav=Decimal("10000"))

        result = await ledger.nav.compute_nav(fund.id)

        assert result.nav_per_unit == Decimal("10000.000")
        assert result.total_outstanding_units == Decimal("0")
        assert result.total_value is None
        assert ledger.valuation.calls == []

    @pytest.mark.asyncio
    async def test_value_over_units(self, ledger, funded):
        fund, _ = funded
        ledger.valuation.value = Decimal("1234567.891")

        result = await ledger.nav.compute_nav(fund.id)

        assert result.nav_per_unit == Decimal("12345.679")
        assert result.total_value == Decimal("1234567.891")

    @pytest.mark.asyncio
    async def test_zero_value_is_invalid(self, ledger, funded):
        fund, _ = funded
        ledger.valuation.value = Decimal("0")

        with pytest.raises(InvalidValuationError):
            await ledger.nav.compute_nav(fund.id)

    @pytest.mark.asyncio
    async def test_missing_fund(self, ledger):
        with pytest.raises(NotFoundException):
            await ledger.nav.compute_nav(FUND_ID)

    @pytest.mark.asyncio
    async def test_plain_portfolio(self, ledger):
        portfolio = await ledger.repos.portfolios.create(Portfolio(name="Plain"))
        with pytest.raises(BusinessRuleViolation):
            await ledger.nav.compute_nav(portfolio.id)


class TestRecalculateNav:
    @pytest.mark.asyncio
    async def test_persists_and_remarks_holdings(self, ledger, funded):
        fund, investor = funded
        ledger.valuation.value = Decimal("1200000")

        result = await ledger.nav.recalculate_nav(fund.id)

        assert result.refreshed is True
        assert result.nav_per_unit == Decimal("12000.000")
        fund = await ledger.fresh(fund)
        assert fund.nav_per_unit == Decimal("12000.000")
        holding = await ledger.holding_of(fund, investor)
        assert holding.current_value == Decimal("1200000.000")
        assert holding.unrealized_pnl == Decimal("200000.000")
        # cost basis is untouched by a re-mark
        assert holding.total_investment == Decimal("1000000.000")

    @pytest.mark.asyncio
    async def test_failed_valuation_keeps_stored_nav(self, ledger, funded):
        fund, _ = funded
        fund_id = fund.id
        ledger.valuation.error = TimeoutError()

        with pytest.raises(InvalidValuationError):
            await ledger.nav.recalculate_nav(fund_id)

        fund = await ledger.fresh(fund)
        assert fund.nav_per_unit == Decimal("10000.000")

    @pytest.mark.asyncio
    async def test_rejected_while_recalculating(self, ledger, funded):
        fund, _ = funded
        async with ledger.locks.recalculation(fund.id):
            with pytest.raises(ConcurrentRecalculationError):
                await ledger.nav.recalculate_nav(fund.id)


class TestRefreshNav:
    @pytest.mark.asyncio
    async def test_fresh_nav_is_returned_as_stored(self, ledger, funded):
        fund, _ = funded

        result = await ledger.nav.refresh_nav(fund.id)

        assert result.refreshed is False
        assert result.nav_per_unit == Decimal("10000.000")
        assert ledger.valuation.calls == []

    @pytest.mark.asyncio
    async def test_stale_nav_is_recalculated(self, ledger, funded):
        fund, _ = funded
        fund.last_nav_date = datetime.now(timezone.utc) - timedelta(days=3)
        await ledger.repos.portfolios.update(fund)
        ledger.valuation.value = Decimal("1100000")

        result = await ledger.nav.refresh_nav(fund.id)

        assert result.refreshed is True
        assert result.nav_per_unit == Decimal("11000.000")

    @pytest.mark.asyncio
    async def test_force(self, ledger, funded):
        fund, _ = funded
        ledger.valuation.value = Decimal("900000")

        result = await ledger.nav.refresh_nav(fund.id, force=True)

        assert result.refreshed is True
        assert result.nav_per_unit == Decimal("9000.000")


class TestIsStale:
    def test_zero_nav_is_stale(self, ledger):
        assert ledger.nav.is_stale(make_fund(nav_per_unit=Decimal("0"))) is True

    def test_missing_date_is_stale(self, ledger):
        fund = make_fund()
        fund.last_nav_date = None
        assert ledger.nav.is_stale(fund) is True

    def test_recent_nav_is_fresh(self, ledger):
        assert ledger.nav.is_stale(make_fund()) is False

    def test_naive_timestamps_are_treated_as_utc(self, ledger):
        old = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(hours=25)
        assert ledger.nav.is_stale(make_fund(last_nav_date=old)) is True


class TestGetNav:
    @pytest.mark.asyncio
    async def test_cached_until_a_ledger_write(self, ledger, funded):
        fund, _ = funded
        first = await ledger.nav.get_nav(fund.id)
        assert first.nav_per_unit == Decimal("10000.000")

        fund.nav_per_unit = Decimal("15000")
        await ledger.repos.portfolios.update(fund)
        assert (await ledger.nav.get_nav(fund.id)).nav_per_unit == Decimal("10000.000")

        cache.invalidate_ledger()
        assert (await ledger.nav.get_nav(fund.id)).nav_per_unit == Decimal("15000.000")

    @pytest.mark.asyncio
    async def test_missing_fund(self, ledger):
        with pytest.raises(NotFoundException):
            await ledger.nav.get_nav(FUND_ID)
