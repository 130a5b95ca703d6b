"""
Runtime settings, read from the environment or a ``.env`` file via
pydantic-settings.

Two storage modes exist.  ``USE_SQLITE=true`` runs against an in-memory
SQLite database (tests, local demos); otherwise the PostgreSQL credentials
must all be present and the service refuses to start without them.
"""

from decimal import Decimal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_PG_REQUIRED = ("POSTGRES_USER", "POSTGRES_PASSWORD", "POSTGRES_SERVER", "POSTGRES_DB")


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    PROJECT_NAME: str = "Fund Ledger API"
    API_V1_STR: str = "/api/v1"
    DEBUG: bool = False
    # Comma-separated origins; "*" allows any.
    CORS_ORIGINS: str = "*"

    # ── Fund ledger ──
    # Seconds a valuation source gets before the NAV operation is abandoned.
    VALUATION_TIMEOUT_SECONDS: float = 10.0
    # POST /funds/{id}/nav/refresh revalues only when the NAV is older than this.
    NAV_STALE_AFTER_HOURS: int = 24
    # Units the portfolio value is divided by when it becomes a fund.
    FUND_SEED_UNITS: Decimal = Decimal("1")
    # Seed NAV when the converted portfolio is worth nothing.
    DEFAULT_INITIAL_NAV: Decimal = Decimal("10000")

    # ── Storage ──
    USE_SQLITE: bool = False
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_SERVER: str = ""
    POSTGRES_DB: str = ""
    POSTGRES_PORT: int = 5432
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # ── Logging ──
    LOG_LEVEL: str = "INFO"
    LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024
    LOG_FILE_BACKUP_COUNT: int = 5

    # ── Read cache ──
    CACHE_ENABLED: bool = True
    CACHE_TTL: float = 30.0
    CACHE_MAX_SIZE: int = 1000

    # ── Circuit breakers ──
    CB_FAILURE_THRESHOLD: int = 5
    CB_RECOVERY_TIMEOUT: float = 30.0

    @model_validator(mode="after")
    def _postgres_needs_credentials(self) -> "Settings":
        if self.USE_SQLITE:
            return self
        missing = [name for name in _PG_REQUIRED if not getattr(self, name)]
        if missing:
            raise ValueError(
                "Missing PostgreSQL settings: "
                + ", ".join(missing)
                + ". Export them (or put them in .env), or run without PostgreSQL:\n"
                "    USE_SQLITE=true uvicorn fundledger.main:app"
            )
        return self

    @property
    def DATABASE_URL(self) -> str:
        """Async DSN: in-memory aiosqlite, or asyncpg built from the POSTGRES_* settings."""
        if self.USE_SQLITE:
            return "sqlite+aiosqlite://"
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
