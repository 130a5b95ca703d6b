"""
Per-fund write serialization.

Every ledger mutation (subscribe, redeem, NAV recalculation, ledger
recalculation, conversion) runs inside :meth:`FundLockManager.writer` or
:meth:`FundLockManager.recalculation` for its fund.  Two subscriptions to the
same fund therefore never read the same ``total_outstanding_units``.  Funds
do not share locks, so different funds proceed concurrently.

Each fund also carries a recalculation state::

    IDLE ──► RECALCULATING ──► IDLE
                   │
                   └─────────► FAILED   (last recalculation aborted; data untouched)

While a fund is RECALCULATING, new writers are rejected immediately with
:class:`ConcurrentRecalculationError` instead of queueing behind the replay.
FAILED does not block anything; it is reported for observability.

The locks are in-process.  Writers additionally load the fund row with
``SELECT ... FOR UPDATE`` so replicas sharing a PostgreSQL database serialize
on the row as well.
"""

import asyncio
import logging
from contextlib import asynccontextmanager, contextmanager
from enum import Enum
from typing import AsyncIterator, Dict, Hashable, Iterator

from fundledger.core.exceptions import ConcurrentRecalculationError, NotFoundException

logger = logging.getLogger(__name__)


class RecalculationState(str, Enum):
    """Recalculation lifecycle of a single fund."""

    IDLE = "idle"
    RECALCULATING = "recalculating"
    FAILED = "failed"


class FundLockManager:
    """
    Registry of per-fund asyncio locks and recalculation states.

    A fund's lock lives only while someone holds it or waits for it, and a
    state is kept only while it is not IDLE, so ids that never resolve to a
    fund leave nothing behind.
    """

    def __init__(self) -> None:
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}
        self._states: Dict[Hashable, RecalculationState] = {}

    @asynccontextmanager
    async def _hold(self, fund_id: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(fund_id)
        if lock is None:
            lock = self._locks[fund_id] = asyncio.Lock()
        self._users[fund_id] = self._users.get(fund_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._users.pop(fund_id) - 1
            if remaining:
                self._users[fund_id] = remaining
            else:
                del self._locks[fund_id]

    def _set_state(self, fund_id: Hashable, state: RecalculationState) -> None:
        if state is RecalculationState.IDLE:
            self._states.pop(fund_id, None)
        else:
            self._states[fund_id] = state

    def state(self, fund_id: Hashable) -> RecalculationState:
        return self._states.get(fund_id, RecalculationState.IDLE)

    def is_locked(self, fund_id: Hashable) -> bool:
        lock = self._locks.get(fund_id)
        return lock is not None and lock.locked()

    def _reject_if_recalculating(self, fund_id: Hashable) -> None:
        if self.state(fund_id) is RecalculationState.RECALCULATING:
            logger.warning(
                "Rejected write on fund %s: recalculation in progress",
                fund_id,
                extra={"fund_id": str(fund_id)},
            )
            raise ConcurrentRecalculationError(fund_id)

    @asynccontextmanager
    async def writer(self, fund_id: Hashable) -> AsyncIterator[None]:
        """Exclusive write access to ``fund_id`` for a single operation."""
        self._reject_if_recalculating(fund_id)
        async with self._hold(fund_id):
            yield

    @contextmanager
    def recalculating(self, fund_id: Hashable) -> Iterator[None]:
        """
        Mark ``fund_id`` as RECALCULATING for the duration of the block.

        Used directly by writers that already hold the fund's lock and
        discover they must replay (a backdated subscription, say).  An unknown
        fund restores the previous state; there was nothing to recalculate.
        """
        self._reject_if_recalculating(fund_id)
        previous = self.state(fund_id)
        self._set_state(fund_id, RecalculationState.RECALCULATING)
        try:
            yield
        except NotFoundException:
            self._set_state(fund_id, previous)
            raise
        except BaseException:
            self._set_state(fund_id, RecalculationState.FAILED)
            raise
        self._set_state(fund_id, RecalculationState.IDLE)

    @asynccontextmanager
    async def recalculation(self, fund_id: Hashable) -> AsyncIterator[None]:
        """Mark the fund RECALCULATING, then take its write lock."""
        with self.recalculating(fund_id):
            async with self._hold(fund_id):
                yield

    def __len__(self) -> int:
        """Number of funds with a live lock or a non-IDLE state."""
        return len(self._locks.keys() | self._states.keys())


fund_locks = FundLockManager()
