"""Per-credential daily quota ledger.

Purpose of this abstraction:
    Admit or deny a request for a credential against its daily ceiling, with
    the counter reset at local midnight of an injectable clock.

Transitions (`app.store.base.advance_quota`, applied by the store):
    - No record, or `last_reset` before today's boundary -> record becomes
      `count=1, last_reset=now, max_requests=ceiling`; admitted.
    - `count < max_requests` -> `count += 1`; admitted.
    - `count >= max_requests` -> `QuotaExceeded`; record untouched.

Concurrency:
    The store's `consume` is the atomic step, which covers several gateway
    processes sharing one table. Inside a process, callers for the same
    credential are additionally queued on one `asyncio.Lock` so they do not
    spin against each other; locks are held weakly and disappear once no
    request for that credential is in flight.

Side effects:
    Reads and writes through a `LedgerStore`.
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from app.core.errors import QuotaExceeded
from app.store.base import LedgerStore, QuotaRecord

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def local_now() -> datetime:
    return datetime.now().astimezone()


def reset_boundary(now: datetime) -> datetime:
    """Start of the quota day containing `now` (midnight in `now`'s timezone)."""
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def next_reset(now: datetime) -> datetime:
    return reset_boundary(now) + timedelta(days=1)


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of an admitted request. Informational between calls."""

    limit: int
    remaining: int
    reset_at: datetime

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": str(int(self.reset_at.timestamp())),
        }


class QuotaLedger:
    """Keyed quota accounting over a `LedgerStore`."""

    def __init__(self, store: LedgerStore, clock: Clock = local_now) -> None:
        self.store = store
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def _lock_for(self, credential_id: str) -> asyncio.Lock:
        lock = self._locks.get(credential_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[credential_id] = lock
        return lock

    async def check_and_consume(self, credential_id: str, ceiling: int) -> QuotaDecision:
        """Consume one request from the credential's daily quota.

        Args:
            credential_id: Credential being charged.
            ceiling: Credential's configured daily maximum, applied on reset.

        Returns:
            `QuotaDecision` for the admitted request.

        Raises:
            QuotaExceeded: The credential already used its quota today.
        """
        async with self._lock_for(credential_id):
            now = self._clock()
            record, admitted = await self.store.consume(
                credential_id, ceiling, reset_boundary(now), now
            )

        if not admitted:
            logger.info(
                "Quota exceeded for credential %s (%d/%d)",
                credential_id, record.requests_count, record.max_requests,
            )
            raise QuotaExceeded("Rate limit exceeded. Please try again later.")

        return QuotaDecision(
            limit=record.max_requests,
            remaining=record.max_requests - record.requests_count,
            reset_at=next_reset(now),
        )

    async def peek(self, credential_id: str) -> QuotaRecord | None:
        return await self.store.get(credential_id)
