"""
Shared pytest fixtures.

Unit tests run against mocked repositories.  The ledger tests that need real
SQL (row ordering, bulk deletes, sums) get a private in-memory SQLite
database per test, so they stay fast, deterministic and isolated.
"""

import os

os.environ.setdefault("USE_SQLITE", "true")

import uuid  # noqa: E402
from datetime import date, datetime, timezone  # noqa: E402
from decimal import Decimal  # noqa: E402
from typing import Optional  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import fundledger.db.base  # noqa: E402,F401
from fundledger.api.v1.deps import Repositories  # noqa: E402
from fundledger.core.cache import TTLCache  # noqa: E402
from fundledger.core.locks import FundLockManager  # noqa: E402
from fundledger.models.account import Account  # noqa: E402
from fundledger.models.cash_flow import CashFlow, CashFlowStatus, CashFlowType  # noqa: E402
from fundledger.models.fund_unit_transaction import FundUnitTransaction, HoldingType  # noqa: E402
from fundledger.models.investor_holding import InvestorHolding  # noqa: E402
from fundledger.models.portfolio import Portfolio  # noqa: E402
from fundledger.schemas.fund_unit import RedemptionCreate, SubscriptionCreate  # noqa: E402
from fundledger.services.account_service import AccountService  # noqa: E402
from fundledger.services.conversion_service import ConversionService  # noqa: E402
from fundledger.services.holding_service import HoldingService  # noqa: E402
from fundledger.services.nav_service import NavService  # noqa: E402
from fundledger.services.portfolio_service import PortfolioService  # noqa: E402
from fundledger.services.recalculation_service import RecalculationService  # noqa: E402
from fundledger.services.redemption_service import RedemptionService  # noqa: E402
from fundledger.services.subscription_service import SubscriptionService  # noqa: E402

# ────────────────────────────────────────────────────────────────────────────
# Factory helpers: domain objects with sensible defaults
# ────────────────────────────────────────────────────────────────────────────

FUND_ID = uuid.UUID("11111111-1111-1111-1111-111111111111")
ACCOUNT_ID = uuid.UUID("22222222-2222-2222-2222-222222222222")
HOLDING_ID = uuid.UUID("33333333-3333-3333-3333-333333333333")
PORTFOLIO_ID = uuid.UUID("44444444-4444-4444-4444-444444444444")
ACCOUNT_ID_2 = uuid.UUID("55555555-5555-5555-5555-555555555555")
TRANSACTION_ID = uuid.UUID("66666666-6666-6666-6666-666666666666")
CASH_FLOW_ID = uuid.UUID("77777777-7777-7777-7777-777777777777")


def make_portfolio(
    *,
    id: uuid.UUID = PORTFOLIO_ID,
    name: str = "Test Portfolio",
    base_currency: str = "USD",
    market_value: Decimal = Decimal("1000000.000"),
    cash_balance: Decimal = Decimal("0"),
    created_at: Optional[datetime] = None,
) -> Portfolio:
    """Create a plain (non-fund) Portfolio with sensible test defaults."""
    return Portfolio(
        id=id,
        name=name,
        base_currency=base_currency,
        market_value=market_value,
        cash_balance=cash_balance,
        created_at=created_at or datetime.now(timezone.utc),
    )


def make_fund(
    *,
    id: uuid.UUID = FUND_ID,
    name: str = "Test Fund",
    market_value: Decimal = Decimal("0"),
    nav_per_unit: Decimal = Decimal("10000.000"),
    total_outstanding_units: Decimal = Decimal("0"),
    number_of_investors: int = 0,
    last_nav_date: Optional[datetime] = None,
) -> Portfolio:
    """Create a Portfolio in fund mode, seeded at ``nav_per_unit``."""
    return Portfolio(
        id=id,
        name=name,
        base_currency="USD",
        market_value=market_value,
        is_fund=True,
        nav_per_unit=nav_per_unit,
        initial_nav_per_unit=nav_per_unit,
        total_outstanding_units=total_outstanding_units,
        number_of_investors=number_of_investors,
        last_nav_date=last_nav_date or datetime.now(timezone.utc),
        created_at=datetime.now(timezone.utc),
    )


def make_account(
    *,
    id: uuid.UUID = ACCOUNT_ID,
    name: str = "Test Investor",
    email: str = "test@example.com",
    is_investor: bool = True,
    created_at: Optional[datetime] = None,
) -> Account:
    """Create an Account with sensible test defaults."""
    return Account(
        id=id,
        name=name,
        email=email,
        is_investor=is_investor,
        created_at=created_at or datetime.now(timezone.utc),
    )


def make_holding(
    *,
    id: uuid.UUID = HOLDING_ID,
    account_id: uuid.UUID = ACCOUNT_ID,
    portfolio_id: uuid.UUID = FUND_ID,
    total_units: Decimal = Decimal("100.000"),
    avg_cost_per_unit: Decimal = Decimal("10000.000"),
    total_investment: Decimal = Decimal("1000000.000"),
) -> InvestorHolding:
    """Create an InvestorHolding with sensible test defaults."""
    return InvestorHolding(
        id=id,
        account_id=account_id,
        portfolio_id=portfolio_id,
        total_units=total_units,
        avg_cost_per_unit=avg_cost_per_unit,
        total_investment=total_investment,
        current_value=total_investment,
        unrealized_pnl=Decimal("0"),
    )


def make_transaction(
    *,
    id: uuid.UUID = TRANSACTION_ID,
    holding_id: uuid.UUID = HOLDING_ID,
    account_id: uuid.UUID = ACCOUNT_ID,
    portfolio_id: uuid.UUID = FUND_ID,
    holding_type: HoldingType = HoldingType.SUBSCRIBE,
    units: Decimal = Decimal("100.000"),
    nav_per_unit: Decimal = Decimal("10000.000"),
    amount: Decimal = Decimal("1000000.000"),
    transaction_date: date = date(2024, 3, 1),
    created_at: Optional[datetime] = None,
    cash_flow_id: Optional[uuid.UUID] = None,
) -> FundUnitTransaction:
    """Create a FundUnitTransaction with sensible test defaults."""
    return FundUnitTransaction(
        id=id,
        holding_id=holding_id,
        account_id=account_id,
        portfolio_id=portfolio_id,
        holding_type=holding_type,
        units=units,
        nav_per_unit=nav_per_unit,
        amount=amount,
        transaction_date=transaction_date,
        cash_flow_id=cash_flow_id,
        created_at=created_at or datetime.now(timezone.utc),
    )


def make_cash_flow(
    *,
    id: uuid.UUID = CASH_FLOW_ID,
    portfolio_id: uuid.UUID = PORTFOLIO_ID,
    flow_type: CashFlowType = CashFlowType.DEPOSIT,
    amount: Decimal = Decimal("250000.000"),
    flow_date: date = date(2024, 1, 5),
    status: CashFlowStatus = CashFlowStatus.COMPLETED,
) -> CashFlow:
    """Create a CashFlow with sensible test defaults."""
    return CashFlow(
        id=id,
        portfolio_id=portfolio_id,
        flow_type=flow_type,
        amount=amount,
        flow_date=flow_date,
        status=status,
        created_at=datetime.now(timezone.utc),
    )


# ────────────────────────────────────────────────────────────────────────────
# Valuation stub and ledger harness
# ────────────────────────────────────────────────────────────────────────────


class StubValuation:
    """Valuation source returning a settable total value."""

    def __init__(self, value: Decimal = Decimal("0")):
        self.value = value
        self.error: Optional[BaseException] = None
        self.calls = []

    async def get_fund_total_value(self, fund_id, as_of=None):
        self.calls.append((fund_id, as_of))
        if self.error is not None:
            raise self.error
        return self.value


def _id_of(entity_or_id) -> uuid.UUID:
    return entity_or_id if isinstance(entity_or_id, uuid.UUID) else entity_or_id.id


class Ledger:
    """Every ledger service wired around one session, valuation and lock manager."""

    def __init__(self, session: AsyncSession, valuation: StubValuation, locks: FundLockManager):
        self.session = session
        self.valuation = valuation
        self.locks = locks
        self.repos = repos = Repositories(session)

        self.nav = NavService(repos.portfolios, repos.holdings, valuation, locks=locks)
        self.recalculation = RecalculationService(
            portfolio_repo=repos.portfolios,
            holding_repo=repos.holdings,
            transaction_repo=repos.transactions,
            cash_flow_repo=repos.cash_flows,
            nav_service=self.nav,
            locks=locks,
        )
        processor_kwargs = dict(
            portfolio_repo=repos.portfolios,
            account_repo=repos.accounts,
            holding_repo=repos.holdings,
            transaction_repo=repos.transactions,
            cash_flow_repo=repos.cash_flows,
            recalculation=self.recalculation,
            locks=locks,
        )
        self.subscriptions = SubscriptionService(**processor_kwargs)
        self.redemptions = RedemptionService(**processor_kwargs)
        self.conversion = ConversionService(
            repos.portfolios, repos.holdings, repos.transactions, repos.cash_flows, valuation, locks=locks
        )
        self.portfolios = PortfolioService(repos.portfolios, repos.cash_flows, locks=locks)
        self.holdings = HoldingService(
            holding_repo=repos.holdings,
            transaction_repo=repos.transactions,
            cash_flow_repo=repos.cash_flows,
            portfolio_repo=repos.portfolios,
            account_repo=repos.accounts,
        )
        self.accounts = AccountService(repos.accounts)

    async def add_account(self, name: str = "Investor", is_investor: bool = True) -> Account:
        slug = name.lower().replace(" ", "-")
        return await self.repos.accounts.create(
            Account(name=name, email=f"{slug}-{uuid.uuid4().hex[:8]}@example.com", is_investor=is_investor)
        )

    async def add_fund(
        self,
        name: str = "Growth Fund",
        nav: Decimal = Decimal("10000"),
        market_value: Decimal = Decimal("0"),
    ) -> Portfolio:
        return await self.repos.portfolios.create(
            Portfolio(
                name=name,
                market_value=market_value,
                is_fund=True,
                nav_per_unit=nav,
                initial_nav_per_unit=nav,
                last_nav_date=datetime.now(timezone.utc),
            )
        )

    async def subscribe(self, fund, account, amount, on: Optional[date] = None, nav=None):
        return await self.subscriptions.subscribe(
            _id_of(fund),
            SubscriptionCreate(
                account_id=_id_of(account),
                amount=Decimal(str(amount)),
                effective_date=on,
                nav_per_unit=None if nav is None else Decimal(str(nav)),
            ),
        )

    async def redeem(self, fund, account, units, on: Optional[date] = None, nav=None):
        return await self.redemptions.redeem(
            _id_of(fund),
            RedemptionCreate(
                account_id=_id_of(account),
                units=Decimal(str(units)),
                effective_date=on,
                nav_per_unit=None if nav is None else Decimal(str(nav)),
            ),
        )

    async def holding_of(self, fund, account) -> Optional[InvestorHolding]:
        """Accepts entities or ids; after a rollback only ids are safe to read."""
        holding = await self.repos.holdings.get_by_account_and_fund(_id_of(account), _id_of(fund))
        if holding is not None:
            await self.session.refresh(holding)
        return holding

    async def fresh(self, entity):
        await self.session.refresh(entity)
        return entity

    async def assert_units_balance(self, fund) -> None:
        """The fund's outstanding units equal the sum of its holdings."""
        await self.session.refresh(fund)
        held = await self.repos.holdings.sum_units_by_fund(fund.id)
        assert Decimal(fund.total_outstanding_units) == held


# ────────────────────────────────────────────────────────────────────────────
# Pytest fixtures
# ────────────────────────────────────────────────────────────────────────────


@pytest.fixture()
def mock_db():
    """A mocked AsyncSession that tracks add/commit/refresh/rollback calls."""
    session = AsyncMock()
    session.add = MagicMock()
    session.commit = AsyncMock()
    session.refresh = AsyncMock()
    session.rollback = AsyncMock()
    session.flush = AsyncMock()
    session.execute = AsyncMock()
    session.get = AsyncMock()
    session.merge = AsyncMock()
    session.delete = AsyncMock()
    return session


@pytest.fixture()
def test_cache():
    """A fresh TTL cache instance for test isolation."""
    return TTLCache(ttl=30.0, max_size=100, enabled=True)


@pytest.fixture()
def disabled_cache():
    """A disabled TTL cache: all operations are no-ops."""
    return TTLCache(ttl=30.0, max_size=100, enabled=False)


@pytest.fixture(autouse=True)
def _clear_global_cache():
    """Clear the global cache around every test to prevent cross-test pollution."""
    from fundledger.core.cache import cache

    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def _reset_circuit_breakers():
    """A test that trips a breaker must not fail the tests after it."""
    from fundledger.core.resilience import db_circuit_breaker, valuation_circuit_breaker

    db_circuit_breaker.reset()
    valuation_circuit_breaker.reset()
    yield
    db_circuit_breaker.reset()
    valuation_circuit_breaker.reset()


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@pytest_asyncio.fixture()
async def db_engine():
    """A private in-memory SQLite database with every table created."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
def session_factory(db_engine):
    return async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture()
def valuation():
    return StubValuation()


@pytest.fixture()
def locks():
    """A lock manager private to the test."""
    return FundLockManager()


@pytest.fixture()
def ledger(db_session, valuation, locks):
    return Ledger(db_session, valuation, locks)
