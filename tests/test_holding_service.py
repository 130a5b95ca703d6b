"""
Tests for HoldingService against an in-memory database.
"""

from datetime import date
from decimal import Decimal

import pytest

from fundledger.core.exceptions import BusinessRuleViolation, NotFoundException
from fundledger.models.cash_flow import CashFlowType
from fundledger.models.fund_unit_transaction import HoldingType
from fundledger.models.portfolio import Portfolio
from fundledger.schemas.holding import HoldingDetailResponse, HoldingTransactionResponse
from fundledger.services.holding_service import HoldingTransaction

from .conftest import ACCOUNT_ID, FUND_ID, HOLDING_ID


class TestHoldingDetail:
    @pytest.mark.asyncio
    async def test_summary_and_history(self, ledger):
        fund = await ledger.add_fund(nav=Decimal("10000"))
        investor = await ledger.add_account("Harbour")
        subscription = await ledger.subscribe(fund, investor, "1000000", on=date(2024, 3, 1))
        redemption = await ledger.redeem(fund, investor, "40", on=date(2024, 5, 15), nav="12000")
        ledger.valuation.value = Decimal("780000")
        await ledger.nav.recalculate_nav(fund.id)

        detail = await ledger.holdings.get_holding_detail(subscription.holding.id)

        summary = detail.summary
        assert summary.total_subscriptions == 1
        assert summary.total_redemptions == 1
        assert summary.total_units_subscribed == Decimal("100.000")
        assert summary.total_units_redeemed == Decimal("40.000")
        assert summary.total_amount_subscribed == Decimal("1000000.000")
        assert summary.total_amount_redeemed == Decimal("480000.000")
        assert summary.realized_pnl == Decimal("80000.000")
        assert summary.unrealized_pnl == Decimal("180000.000")
        assert summary.total_pnl == Decimal("260000.000")
        assert summary.return_percentage == Decimal("43.333")

        assert [row.transaction.holding_type for row in detail.transactions] == [
            HoldingType.SUBSCRIBE,
            HoldingType.REDEEM,
        ]
        assert detail.transactions[0].transaction.id == subscription.transaction.id
        assert detail.transactions[1].cash_flow.id == redemption.cash_flow.id
        assert detail.transactions[1].cash_flow.flow_type == CashFlowType.FUND_REDEMPTION

    @pytest.mark.asyncio
    async def test_validates_into_response_schema(self, ledger):
        fund = await ledger.add_fund()
        investor = await ledger.add_account()
        result = await ledger.subscribe(fund, investor, "250000", on=date(2024, 3, 1))

        detail = await ledger.holdings.get_holding_detail(result.holding.id)
        body = HoldingDetailResponse.from_detail(detail).model_dump(mode="json")

        assert body["holding"]["total_units"] == 25
        assert body["summary"]["total_amount_subscribed"] == 250000
        assert body["transactions"][0]["cash_flow"]["amount"] == 250000
        assert body["transactions"][0]["holding_type"] == "SUBSCRIBE"

    @pytest.mark.asyncio
    async def test_response_rows_copy_transaction_columns(self, ledger):
        fund = await ledger.add_fund()
        investor = await ledger.add_account()
        result = await ledger.subscribe(fund, investor, "250000", on=date(2024, 3, 1))
        detail = await ledger.holdings.get_holding_detail(result.holding.id)
        entry = detail.transactions[0]

        row = HoldingTransactionResponse.from_entry(entry)
        assert row.id == entry.transaction.id
        assert row.holding_id == result.holding.id
        assert row.units == entry.transaction.units
        assert row.cash_flow_id == entry.cash_flow.id
        assert row.cash_flow.id == entry.cash_flow.id

        bare = HoldingTransactionResponse.from_entry(
            HoldingTransaction(transaction=entry.transaction, cash_flow=None)
        )
        assert bare.cash_flow is None
        assert bare.nav_per_unit == entry.transaction.nav_per_unit
        assert not hasattr(entry, "units")

    @pytest.mark.asyncio
    async def test_cached_until_a_ledger_write(self, ledger):
        fund = await ledger.add_fund()
        investor = await ledger.add_account()
        result = await ledger.subscribe(fund, investor, "100000", on=date(2024, 3, 1))
        holding_id = result.holding.id

        first = await ledger.holdings.get_holding_detail(holding_id)
        assert await ledger.holdings.get_holding_detail(holding_id) is first

        await ledger.subscribe(fund, investor, "100000", on=date(2024, 3, 2))
        refreshed = await ledger.holdings.get_holding_detail(holding_id)

        assert refreshed is not first
        assert refreshed.summary.total_subscriptions == 2

    @pytest.mark.asyncio
    async def test_missing_holding(self, ledger):
        with pytest.raises(NotFoundException, match="Holding"):
            await ledger.holdings.get_holding_detail(HOLDING_ID)


class TestAccountHoldings:
    @pytest.mark.asyncio
    async def test_includes_closed_positions(self, ledger):
        growth = await ledger.add_fund("Growth Fund")
        income = await ledger.add_fund("Income Fund")
        investor = await ledger.add_account()
        await ledger.subscribe(growth, investor, "100000", on=date(2024, 3, 1))
        await ledger.subscribe(income, investor, "100000", on=date(2024, 3, 1))
        await ledger.redeem(income, investor, "10", on=date(2024, 4, 1))

        holdings = await ledger.holdings.get_account_holdings(investor.id)

        assert {h.portfolio_id for h in holdings} == {growth.id, income.id}
        units = {h.portfolio_id: h.total_units for h in holdings}
        assert units[income.id] == Decimal("0")

    @pytest.mark.asyncio
    async def test_missing_account(self, ledger):
        with pytest.raises(NotFoundException):
            await ledger.holdings.get_account_holdings(ACCOUNT_ID)


class TestFundInvestors:
    @pytest.mark.asyncio
    async def test_largest_position_first(self, ledger):
        fund = await ledger.add_fund()
        small = await ledger.add_account("Small")
        large = await ledger.add_account("Large")
        await ledger.subscribe(fund, small, "1000000", on=date(2024, 3, 1))
        await ledger.subscribe(fund, large, "1500000", on=date(2024, 3, 1))

        investors = await ledger.holdings.get_fund_investors(fund.id)

        assert [h.account_id for h in investors] == [large.id, small.id]

    @pytest.mark.asyncio
    async def test_plain_portfolio(self, ledger):
        portfolio = await ledger.repos.portfolios.create(Portfolio(name="Plain"))
        with pytest.raises(BusinessRuleViolation):
            await ledger.holdings.get_fund_investors(portfolio.id)

    @pytest.mark.asyncio
    async def test_missing_fund(self, ledger):
        with pytest.raises(NotFoundException):
            await ledger.holdings.get_fund_investors(FUND_ID)
