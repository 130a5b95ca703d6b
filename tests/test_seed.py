"""
Tests for the development seed script against a private in-memory database.
"""

from decimal import Decimal

import pytest

from fundledger.api.v1.deps import Repositories
from fundledger.seed import GROWTH_FUND_ID, HARBOUR_ID, NORTHWIND_ID, TREASURY_ID, seed


class TestSeed:
    @pytest.mark.asyncio
    async def test_seeds_a_consistent_fund(self, session_factory, db_engine):
        assert await seed(session_factory=session_factory, bind=db_engine) is True

        async with session_factory() as session:
            repos = Repositories(session)
            fund = await repos.portfolios.get(GROWTH_FUND_ID)
            assert fund.is_fund is True
            assert fund.initial_nav_per_unit == Decimal("10000.000")
            assert fund.total_outstanding_units == Decimal("101.667")
            assert fund.number_of_investors == 2
            assert fund.cash_balance == Decimal("1020000")
            assert fund.nav_per_unit > 0
            assert await repos.holdings.sum_units_by_fund(GROWTH_FUND_ID) == Decimal("101.667")

            harbour = await repos.holdings.get_by_account_and_fund(HARBOUR_ID, GROWTH_FUND_ID)
            assert harbour.total_units == Decimal("60.000")
            assert harbour.avg_cost_per_unit == Decimal("10000.000")
            northwind = await repos.holdings.get_by_account_and_fund(NORTHWIND_ID, GROWTH_FUND_ID)
            assert northwind.total_units == Decimal("41.667")

            assert await repos.transactions.count_by_fund(GROWTH_FUND_ID) == 3
            treasury = await repos.portfolios.get(TREASURY_ID)
            assert treasury.is_fund is False
            assert treasury.cash_balance == Decimal("150000")

    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(self, session_factory, db_engine):
        await seed(session_factory=session_factory, bind=db_engine)

        assert await seed(session_factory=session_factory, bind=db_engine) is False

        async with session_factory() as session:
            assert len(await Repositories(session).accounts.get_all()) == 3
