"""
Database session management.

Provides an async SQLAlchemy engine, a dependency-injectable session factory
for use across the application via FastAPI's ``Depends()`` mechanism, and the
``unit_of_work`` helper the ledger services use to make a multi-row write
atomic.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fundledger.core.config import settings

logger = logging.getLogger(__name__)

# ── Engine creation (PostgreSQL or SQLite) ──
if settings.USE_SQLITE:
    # StaticPool forces every connection to share the SAME in-memory database;
    # without it each async connection would get its own empty database.
    from sqlalchemy.pool import StaticPool

    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # SQLite does not enforce FK constraints by default. aiosqlite delegates
    # to a sync connection, so listen on the sync engine.
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

else:
    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.DEBUG,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
        pool_pre_ping=True,
    )

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    # Attribute access after commit() must not trigger a lazy load.
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that yields an async database session.

    The session is closed when the request finishes.
    """
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncGenerator[AsyncSession, None]:
    """
    Run the enclosed block as one database transaction.

    Everything flushed inside the block is committed together on normal exit
    and rolled back if the block raises.  Once the block has finished, the
    commit itself is shielded: a caller cancelled mid-commit still waits for
    the commit to land, so a half-applied ledger write is never left behind.
    """
    try:
        yield session
    except BaseException:
        await session.rollback()
        raise

    commit = asyncio.ensure_future(session.commit())
    try:
        await asyncio.shield(commit)
    except asyncio.CancelledError:
        logger.warning("Cancelled during commit; waiting for the commit to finish")
        await commit
        raise
    except Exception:
        await session.rollback()
        raise
