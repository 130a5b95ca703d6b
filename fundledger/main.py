"""
Fund Ledger API: application entry-point.

Initializes the FastAPI application, registers middleware, exception handlers,
routers, and manages the application lifecycle (DB table creation on startup).
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.openapi.docs import get_redoc_html
from sqlalchemy import text
from sqlmodel import SQLModel

from fundledger.api.v1.api import api_router
from fundledger.core.cache import cache
from fundledger.core.config import settings
from fundledger.core.exceptions import add_exception_handlers
from fundledger.core.logging import setup_logging
from fundledger.core.resilience import (
    db_circuit_breaker,
    retry_with_backoff,
    valuation_circuit_breaker,
)
from fundledger.db.session import AsyncSessionLocal, engine
from fundledger.middleware import RequestIDMiddleware, RequestTimingMiddleware

setup_logging()
logger = logging.getLogger(__name__)

VERSION = "1.0.0"


# ────────────────────────────────────────────────────────────────────────────
# Application lifespan
# ────────────────────────────────────────────────────────────────────────────


@retry_with_backoff(max_retries=4, base_delay=2.0, max_delay=30.0)
async def create_tables() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: register the table models and create missing tables, retrying
    while the database comes up.  If it never does, start in degraded mode
    (``/health`` reports ``database: false``).

    Shutdown: dispose of the connection pool.
    """
    import fundledger.db.base  # noqa: F401

    try:
        await create_tables()
        logger.info("Database tables ready")
    except (ConnectionError, OSError, TimeoutError) as exc:
        logger.error(
            "Could not reach the database; starting in DEGRADED mode. Last error: %s",
            exc,
        )

    yield

    logger.info("Shutting down, disposing connection pool")
    await engine.dispose()


# ────────────────────────────────────────────────────────────────────────────
# FastAPI application instance
# ────────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=VERSION,
    description=(
        "Portfolio and fund unit ledger: convert portfolios into funds, issue and "
        "redeem units against a NAV per unit, and keep every holding consistent "
        "with the ledger, including backdated and edited transactions."
    ),
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    redoc_url=None,
    lifespan=lifespan,
)


# The default ReDoc CDN is blocked by Chrome ORB; serve it from unpkg.
@app.get("/redoc", include_in_schema=False)
async def custom_redoc_html():
    return get_redoc_html(
        openapi_url=app.openapi_url or f"{settings.API_V1_STR}/openapi.json",
        title=f"{settings.PROJECT_NAME} ReDoc",
        redoc_js_url="https://unpkg.com/redoc@latest/bundles/redoc.standalone.js",
    )


# ── Middleware (outermost first) ──
app.add_middleware(GZipMiddleware, minimum_size=500)
app.add_middleware(RequestIDMiddleware)
app.add_middleware(RequestTimingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Global error handlers ──
add_exception_handlers(app)

# ── API routers ──
app.include_router(api_router, prefix=settings.API_V1_STR)


# ── Health check ──


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Liveness / readiness probe.

    Runs ``SELECT 1`` against the database and reports both circuit breakers
    and the cache statistics.
    """
    db_healthy = True
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check could not reach the database", exc_info=True)
        db_healthy = False

    return {
        "status": "ok" if db_healthy else "degraded",
        "version": VERSION,
        "database": db_healthy,
        "circuit_breakers": {
            "database": db_circuit_breaker.get_status(),
            "valuation": valuation_circuit_breaker.get_status(),
        },
        "cache": cache.get_stats(),
    }
