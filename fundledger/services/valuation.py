"""
Valuation source: where a fund's total value comes from.

The ledger only needs one number per fund, so the external price feed is
consumed through the :class:`ValuationSource` protocol.  The bundled
:class:`StoredValuationSource` answers from the database (the price feed
writes ``market_value``; cash comes from completed cash flows).

Every call goes through :func:`fetch_fund_value`, which adds the timeout and
the valuation circuit breaker and turns any failure into
:class:`InvalidValuationError`.  Valuation calls are never retried here.
"""

import asyncio
import logging
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional, Protocol
from uuid import UUID

from fundledger.core.config import settings
from fundledger.core.exceptions import InvalidValuationError
from fundledger.core.resilience import CircuitBreakerError, valuation_circuit_breaker
from fundledger.repositories.cash_flow_repo import CashFlowRepository
from fundledger.repositories.portfolio_repo import PortfolioRepository

logger = logging.getLogger(__name__)


class ValuationSource(Protocol):
    """Supplies the total value (holdings plus cash) of a fund."""

    async def get_fund_total_value(
        self, fund_id: UUID, as_of: Optional[date] = None
    ) -> Decimal: ...


class StoredValuationSource:
    """
    Values a fund as ``market_value + cash balance``.

    ``market_value`` carries no history, so ``as_of`` only limits which cash
    flows are counted.
    """

    def __init__(self, portfolio_repo: PortfolioRepository, cash_flow_repo: CashFlowRepository):
        self._portfolio_repo = portfolio_repo
        self._cash_flow_repo = cash_flow_repo

    async def get_fund_total_value(
        self, fund_id: UUID, as_of: Optional[date] = None
    ) -> Decimal:
        portfolio = await self._portfolio_repo.get(fund_id)
        if portfolio is None:
            raise LookupError(f"portfolio {fund_id} does not exist")
        cash = await self._cash_flow_repo.completed_balance(fund_id, as_of=as_of)
        return Decimal(portfolio.market_value) + cash


async def fetch_fund_value(
    source: ValuationSource,
    fund_id: UUID,
    as_of: Optional[date] = None,
    timeout: Optional[float] = None,
) -> Decimal:
    """
    Ask ``source`` for the fund's total value.

    Raises :class:`InvalidValuationError` when the source raises, exceeds
    ``timeout`` seconds (default ``VALUATION_TIMEOUT_SECONDS``), returns a
    negative or non-numeric value, or when the valuation circuit is open.
    """
    timeout = settings.VALUATION_TIMEOUT_SECONDS if timeout is None else timeout

    async def _fetch() -> Decimal:
        return await asyncio.wait_for(source.get_fund_total_value(fund_id, as_of), timeout)

    try:
        raw = await valuation_circuit_breaker.call(_fetch)
    except CircuitBreakerError as exc:
        logger.warning("Valuation circuit open for fund %s", fund_id, extra={"fund_id": str(fund_id)})
        raise InvalidValuationError(fund_id, "valuation source unavailable (circuit open)") from exc
    except asyncio.TimeoutError as exc:
        logger.warning(
            "Valuation for fund %s timed out after %.1fs",
            fund_id,
            timeout,
            extra={"fund_id": str(fund_id)},
        )
        raise InvalidValuationError(fund_id, f"timed out after {timeout}s") from exc
    except Exception as exc:
        logger.warning(
            "Valuation for fund %s failed: %s",
            fund_id,
            exc,
            extra={"fund_id": str(fund_id)},
        )
        raise InvalidValuationError(fund_id, str(exc) or type(exc).__name__) from exc

    try:
        value = Decimal(str(raw))
    except (InvalidOperation, ValueError) as exc:
        raise InvalidValuationError(fund_id, f"non-numeric value {raw!r}") from exc
    if not value.is_finite() or value < 0:
        raise InvalidValuationError(fund_id, f"invalid value {value}")
    return value
