"""Collaborator interfaces and records for persistence backends.

Architectural role:
    The gateway core talks to credentials, the quota ledger table, object
    storage, and the audit log only through the protocols below. Concrete
    backends live in `memory_store` (in-process) and `supabase_store`
    (Supabase REST + Storage).

Quota transitions:
    `advance_quota` is the single definition of the daily counter's
    upsert-if-stale-or-increment step. Every `LedgerStore.consume`
    implementation applies it atomically with respect to its own storage.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Protocol


class StorageError(RuntimeError):
    """A persistence backend failed to complete an operation."""


class StorageConflict(StorageError):
    """A conditional write lost against a concurrent writer."""


@dataclass(frozen=True)
class Credential:
    id: str
    quota_ceiling: int
    revoked: bool = False
    usage_count: int = 0


@dataclass(frozen=True)
class QuotaRecord:
    """Daily request counter for one credential."""

    credential_id: str
    requests_count: int
    last_reset: datetime
    max_requests: int


def as_aware(value: datetime) -> datetime:
    """Treat naive timestamps (e.g. `timestamp without time zone` columns) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def advance_quota(
    current: QuotaRecord | None,
    credential_id: str,
    ceiling: int,
    boundary: datetime,
    now: datetime,
) -> QuotaRecord | None:
    """Return the record after consuming one request, or None when denied.

    - No record, or `last_reset` before `boundary` -> `count=1, last_reset=now,
      max_requests=ceiling`.
    - `count < max_requests` -> `count + 1`.
    - `count >= max_requests` -> None.
    """
    if current is None or as_aware(current.last_reset) < as_aware(boundary):
        return QuotaRecord(
            credential_id=credential_id,
            requests_count=1,
            last_reset=now,
            max_requests=ceiling,
        )

    if current.requests_count >= current.max_requests:
        return None

    return replace(current, requests_count=current.requests_count + 1)


class CredentialStore(Protocol):
    async def lookup(self, key_hash: str) -> Credential | None:
        ...

    async def record_usage(self, credential_id: str) -> None:
        ...


class LedgerStore(Protocol):
    async def get(self, credential_id: str) -> QuotaRecord | None:
        ...

    async def consume(
        self,
        credential_id: str,
        ceiling: int,
        boundary: datetime,
        now: datetime,
    ) -> tuple[QuotaRecord | None, bool]:
        """Atomically apply `advance_quota`.

        Returns `(record, admitted)`: the stored record after the step when
        admitted, or the unchanged record when denied.
        """
        ...


class ObjectStorage(Protocol):
    async def put(self, path: str, data: bytes, content_type: str) -> None:
        ...

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        ...


class AuditSink(Protocol):
    async def append(self, table: str, record: dict[str, Any]) -> None:
        ...
