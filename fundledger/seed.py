"""
Seed script: populates the database with sample data for development / demo.

Usage:
    python -m fundledger.seed

Accounts and portfolios are inserted directly; everything on the fund side
(conversion, subscriptions, a backdated redemption) goes through the services
so the seeded ledger, holdings and NAV are consistent by construction.

The script is idempotent: it does nothing if any account exists.
"""

import asyncio
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel

import fundledger.db.base  # noqa: F401
from fundledger.api.v1.deps import Repositories, build_recalculation_service
from fundledger.db.session import AsyncSessionLocal, engine
from fundledger.models.account import Account
from fundledger.models.cash_flow import CashFlowType
from fundledger.models.portfolio import Portfolio
from fundledger.schemas.fund_unit import RedemptionCreate, SubscriptionCreate
from fundledger.schemas.portfolio import CashFlowCreate
from fundledger.services.conversion_service import ConversionService
from fundledger.services.portfolio_service import PortfolioService
from fundledger.services.redemption_service import RedemptionService
from fundledger.services.subscription_service import SubscriptionService
from fundledger.services.valuation import StoredValuationSource

logger = logging.getLogger(__name__)

# ── Sample data ──

HARBOUR_ID = uuid.UUID("550e8400-e29b-41d4-a716-446655440000")
NORTHWIND_ID = uuid.UUID("660e8400-e29b-41d4-a716-446655440001")
GROWTH_FUND_ID = uuid.UUID("770e8400-e29b-41d4-a716-446655440002")
TREASURY_ID = uuid.UUID("880e8400-e29b-41d4-a716-446655440003")

ACCOUNTS = [
    dict(
        id=HARBOUR_ID,
        name="Harbour Family Office",
        email="ops@harbour-fo.com",
        created_at=datetime(2024, 1, 15, 10, 30, 0, tzinfo=timezone.utc),
    ),
    dict(
        id=NORTHWIND_ID,
        name="Northwind Pension Trust",
        email="investments@northwind-pt.org",
        created_at=datetime(2024, 2, 10, 9, 15, 0, tzinfo=timezone.utc),
    ),
    dict(
        id=uuid.UUID("990e8400-e29b-41d4-a716-446655440004"),
        name="Back Office Operations",
        email="backoffice@fundledger.dev",
        is_investor=False,
        created_at=datetime(2024, 2, 11, 8, 0, 0, tzinfo=timezone.utc),
    ),
]

PORTFOLIOS = [
    dict(
        id=GROWTH_FUND_ID,
        name="Global Growth",
        base_currency="USD",
        market_value=Decimal("0"),
        created_at=datetime(2024, 1, 2, 9, 0, 0, tzinfo=timezone.utc),
    ),
    dict(
        id=TREASURY_ID,
        name="Treasury Reserve",
        base_currency="EUR",
        market_value=Decimal("2500000"),
        created_at=datetime(2024, 1, 3, 9, 0, 0, tzinfo=timezone.utc),
    ),
]


async def seed(
    session_factory: async_sessionmaker = AsyncSessionLocal,
    bind: AsyncEngine = engine,
) -> bool:
    """
    Create tables and insert sample data if the database is empty.

    Returns ``True`` when data was inserted.
    """
    async with bind.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    async with session_factory() as session:
        result = await session.execute(select(Account).limit(1))
        if result.scalars().first() is not None:
            logger.info("Database already contains data, skipping seed.")
            return False

        session.add_all([Account(**row) for row in ACCOUNTS])
        session.add_all([Portfolio(**row) for row in PORTFOLIOS])
        await session.commit()

        await _seed_growth_fund(session)

    logger.info("Seeded %d accounts and %d portfolios", len(ACCOUNTS), len(PORTFOLIOS))
    return True


async def _seed_growth_fund(session: AsyncSession) -> None:
    """Turn Global Growth into a fund and trade a few units in and out."""
    repos = Repositories(session)
    valuation = StoredValuationSource(repos.portfolios, repos.cash_flows)
    recalculation = build_recalculation_service(repos, valuation)
    processor_repos = dict(
        portfolio_repo=repos.portfolios,
        account_repo=repos.accounts,
        holding_repo=repos.holdings,
        transaction_repo=repos.transactions,
        cash_flow_repo=repos.cash_flows,
        recalculation=recalculation,
    )
    subscriptions = SubscriptionService(**processor_repos)
    redemptions = RedemptionService(**processor_repos)

    await PortfolioService(repos.portfolios, repos.cash_flows).record_cash_flow(
        TREASURY_ID,
        CashFlowCreate(
            flow_type=CashFlowType.DEPOSIT,
            amount=Decimal("150000"),
            flow_date=date(2024, 1, 5),
            description="Opening deposit",
        ),
    )

    await ConversionService(
        repos.portfolios, repos.holdings, repos.transactions, repos.cash_flows, valuation
    ).convert_to_fund(GROWTH_FUND_ID)

    await subscriptions.subscribe(
        GROWTH_FUND_ID,
        SubscriptionCreate(
            account_id=HARBOUR_ID,
            amount=Decimal("1000000"),
            effective_date=date(2024, 3, 1),
            description="Initial allocation",
        ),
    )
    await subscriptions.subscribe(
        GROWTH_FUND_ID,
        SubscriptionCreate(
            account_id=NORTHWIND_ID,
            amount=Decimal("500000"),
            effective_date=date(2024, 6, 3),
            nav_per_unit=Decimal("12000"),
        ),
    )
    await redemptions.redeem(
        GROWTH_FUND_ID,
        RedemptionCreate(
            account_id=HARBOUR_ID,
            units=Decimal("40"),
            effective_date=date(2024, 5, 15),
            nav_per_unit=Decimal("12000"),
            description="Partial redemption",
        ),
    )


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s | %(levelname)s | %(message)s")
    asyncio.run(seed())
