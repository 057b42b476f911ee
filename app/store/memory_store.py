"""In-process backends for local development and tests.

Used when no Supabase configuration is present. State lives for the lifetime
of the owning `GatewayContext` and is lost on restart.
"""

from __future__ import annotations

import asyncio
import secrets
from dataclasses import replace
from datetime import datetime
from typing import Any
from urllib.parse import quote

from app.store.base import Credential, QuotaRecord, StorageError, advance_quota


class InMemoryCredentialStore:
    """Credentials keyed by API-key hash."""

    def __init__(self, credentials: dict[str, Credential] | None = None) -> None:
        self._by_hash: dict[str, Credential] = dict(credentials or {})

    def add(self, key_hash: str, credential: Credential) -> None:
        self._by_hash[key_hash] = credential

    def get_by_id(self, credential_id: str) -> Credential | None:
        for credential in self._by_hash.values():
            if credential.id == credential_id:
                return credential
        return None

    async def lookup(self, key_hash: str) -> Credential | None:
        return self._by_hash.get(key_hash)

    async def record_usage(self, credential_id: str) -> None:
        for key_hash, credential in self._by_hash.items():
            if credential.id == credential_id:
                self._by_hash[key_hash] = replace(credential, usage_count=credential.usage_count + 1)
                return


class InMemoryLedgerStore:
    def __init__(self) -> None:
        self.records: dict[str, QuotaRecord] = {}

    async def get(self, credential_id: str) -> QuotaRecord | None:
        # Yield so concurrent callers interleave the way a remote store would.
        await asyncio.sleep(0)
        return self.records.get(credential_id)

    async def consume(
        self,
        credential_id: str,
        ceiling: int,
        boundary: datetime,
        now: datetime,
    ) -> tuple[QuotaRecord | None, bool]:
        await asyncio.sleep(0)
        # Read and write with no await in between.
        current = self.records.get(credential_id)
        updated = advance_quota(current, credential_id, ceiling, boundary, now)
        if updated is None:
            return current, False
        self.records[credential_id] = updated
        return updated, True


class InMemoryObjectStorage:
    """Bucket emulation; signed URLs are opaque tokens under `base_url`."""

    def __init__(self, base_url: str = "memory://storage") -> None:
        self.base_url = base_url.rstrip("/")
        self.objects: dict[str, tuple[bytes, str]] = {}

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        if path in self.objects:
            raise StorageError(f"Object already exists: {path}")
        self.objects[path] = (data, content_type)

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        if path not in self.objects:
            raise StorageError(f"Object not found: {path}")
        token = secrets.token_urlsafe(16)
        return f"{self.base_url}/{quote(path)}?token={token}&expires_in={ttl_seconds}"


class InMemoryAuditSink:
    def __init__(self) -> None:
        self.records: list[tuple[str, dict[str, Any]]] = []

    async def append(self, table: str, record: dict[str, Any]) -> None:
        self.records.append((table, dict(record)))

    def table(self, name: str) -> list[dict[str, Any]]:
        return [record for table, record in self.records if table == name]
