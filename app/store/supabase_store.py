"""Supabase-backed collaborators over the PostgREST and Storage HTTP APIs.

Tables (PostgREST, `/rest/v1/<table>`):
    - `keys`: `id`, `key_hash`, `rate_limit`, `revoked`, `usage_count`.
    - `rate_limits`: `key_id` (unique), `requests_count`, `last_reset`, `max_requests`.
    - `request_logs` / `images`: append-only audit rows.

Storage (`/storage/v1`):
    Objects are uploaded to `STORAGE_BUCKET` and shared through signed URLs.

Quota consumption:
    `SupabaseLedgerStore.consume` is a compare-and-swap over PostgREST
    conditional writes. The `PATCH` only matches the row version that was
    read (`requests_count` and `last_reset` unchanged), and a first-day row is
    created with a plain `INSERT` that conflicts on `key_id`. A lost race is
    retried from a fresh read, so concurrent gateway processes never admit
    past the ceiling.

Error handling strategy:
    Every HTTP or decoding failure is raised as `StorageError`; callers decide
    whether that degrades (materializer, audit) or fails the request (auth).
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx

from app.store.base import (
    Credential,
    QuotaRecord,
    StorageConflict,
    StorageError,
    advance_quota,
    as_aware,
)

CONSUME_ATTEMPTS = 5

# Postgres emits `2024-05-01 08:00:00.12345+00`: a variable-length fraction
# and an hour-only offset, neither of which `fromisoformat` accepts on 3.10.
_TIMESTAMP_RE = re.compile(
    r"^(?P<base>\d{4}-\d{2}-\d{2}[T ]\d{2}:\d{2}(?::\d{2})?)"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<offset>Z|[+-]\d{2}(?::?\d{2})?)?$"
)


def parse_timestamp(value: Any) -> datetime:
    """Parse a PostgREST timestamp; naive values are taken as UTC."""
    match = _TIMESTAMP_RE.match(str(value).strip())
    if match is None:
        raise ValueError(f"Unrecognized timestamp: {value!r}")

    text = match["base"]
    if match["fraction"]:
        text += "." + match["fraction"][:6].ljust(6, "0")

    offset = match["offset"]
    if offset == "Z":
        text += "+00:00"
    elif offset:
        digits = offset[1:].replace(":", "")
        text += f"{offset[0]}{digits[:2]}:{digits[2:4] or '00'}"

    return as_aware(datetime.fromisoformat(text))


class SupabaseRestClient:
    """Thin authenticated wrapper around a shared `httpx.AsyncClient`."""

    def __init__(self, base_url: str, service_key: str, http_client: httpx.AsyncClient) -> None:
        self.base_url = base_url.rstrip("/")
        self.service_key = service_key
        self.http_client = http_client

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.service_key,
            "Authorization": f"Bearer {self.service_key}",
        }
        if extra:
            headers.update(extra)
        return headers

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        content: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self.http_client.request(
                method,
                f"{self.base_url}{path}",
                params=params,
                json=json_body,
                content=content,
                headers=self._headers(headers),
            )
        except httpx.HTTPError as exc:
            raise StorageError(f"Supabase {method} {path} failed: {exc}") from exc

        if response.status_code == 409:
            raise StorageConflict(f"Supabase {method} {path} conflicted")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StorageError(f"Supabase {method} {path} failed: {exc}") from exc
        return response

    def rows(self, response: httpx.Response, table: str) -> list[dict[str, Any]]:
        try:
            rows = response.json()
        except ValueError as exc:
            raise StorageError(f"Supabase returned invalid JSON for {table}") from exc
        if not isinstance(rows, list):
            raise StorageError(f"Supabase returned non-list rows for {table}")
        return rows

    async def select(self, table: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        response = await self.request("GET", f"/rest/v1/{table}", params=params)
        return self.rows(response, table)


class SupabaseCredentialStore:
    def __init__(self, client: SupabaseRestClient) -> None:
        self.client = client

    async def lookup(self, key_hash: str) -> Credential | None:
        rows = await self.client.select(
            "keys",
            {"select": "id,rate_limit,revoked,usage_count", "key_hash": f"eq.{key_hash}", "limit": 1},
        )
        if not rows:
            return None
        row = rows[0]
        return Credential(
            id=str(row["id"]),
            quota_ceiling=int(row.get("rate_limit") or 0),
            revoked=bool(row.get("revoked")),
            usage_count=int(row.get("usage_count") or 0),
        )

    async def record_usage(self, credential_id: str) -> None:
        # Lifetime counter only; PostgREST has no atomic increment without an RPC.
        rows = await self.client.select(
            "keys", {"select": "usage_count", "id": f"eq.{credential_id}", "limit": 1}
        )
        if not rows:
            return
        current = int(rows[0].get("usage_count") or 0)
        await self.client.request(
            "PATCH",
            "/rest/v1/keys",
            params={"id": f"eq.{credential_id}"},
            json_body={"usage_count": current + 1},
            headers={"Prefer": "return=minimal"},
        )


class SupabaseLedgerStore:
    table = "rate_limits"

    def __init__(self, client: SupabaseRestClient) -> None:
        self.client = client

    async def get(self, credential_id: str) -> QuotaRecord | None:
        row = await self._fetch_row(credential_id)
        return None if row is None else _to_record(row, credential_id)

    async def consume(
        self,
        credential_id: str,
        ceiling: int,
        boundary: datetime,
        now: datetime,
    ) -> tuple[QuotaRecord | None, bool]:
        for _ in range(CONSUME_ATTEMPTS):
            row = await self._fetch_row(credential_id)
            current = None if row is None else _to_record(row, credential_id)

            updated = advance_quota(current, credential_id, ceiling, boundary, now)
            if updated is None:
                return current, False

            if row is None:
                stored = await self._insert(updated)
            else:
                stored = await self._swap(row, updated)
            if stored:
                return updated, True

        raise StorageError(f"Quota update for {credential_id} lost {CONSUME_ATTEMPTS} races")

    async def _fetch_row(self, credential_id: str) -> dict[str, Any] | None:
        rows = await self.client.select(
            self.table, {"select": "*", "key_id": f"eq.{credential_id}", "limit": 1}
        )
        return rows[0] if rows else None

    async def _insert(self, record: QuotaRecord) -> bool:
        try:
            await self.client.request(
                "POST",
                f"/rest/v1/{self.table}",
                json_body=_to_row(record),
                headers={"Prefer": "return=minimal"},
            )
        except StorageConflict:
            return False
        return True

    async def _swap(self, observed: dict[str, Any], record: QuotaRecord) -> bool:
        response = await self.client.request(
            "PATCH",
            f"/rest/v1/{self.table}",
            params={
                "key_id": f"eq.{record.credential_id}",
                "requests_count": f"eq.{observed['requests_count']}",
                "last_reset": f"eq.{observed['last_reset']}",
            },
            json_body=_to_row(record),
            headers={"Prefer": "return=representation"},
        )
        return bool(self.client.rows(response, self.table))


def _to_record(row: dict[str, Any], credential_id: str) -> QuotaRecord:
    try:
        return QuotaRecord(
            credential_id=str(row["key_id"]),
            requests_count=int(row["requests_count"]),
            last_reset=parse_timestamp(row["last_reset"]),
            max_requests=int(row["max_requests"]),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise StorageError(f"Malformed rate_limits row for {credential_id}") from exc


def _to_row(record: QuotaRecord) -> dict[str, Any]:
    return {
        "key_id": record.credential_id,
        "requests_count": record.requests_count,
        "last_reset": record.last_reset.isoformat(),
        "max_requests": record.max_requests,
    }


class SupabaseObjectStorage:
    def __init__(self, client: SupabaseRestClient, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    async def put(self, path: str, data: bytes, content_type: str) -> None:
        await self.client.request(
            "POST",
            f"/storage/v1/object/{self.bucket}/{quote(path)}",
            content=data,
            headers={
                "Content-Type": content_type,
                "Cache-Control": "3600",
                "x-upsert": "false",
            },
        )

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        response = await self.client.request(
            "POST",
            f"/storage/v1/object/sign/{self.bucket}/{quote(path)}",
            json_body={"expiresIn": ttl_seconds},
        )
        try:
            signed_path = response.json().get("signedURL")
        except (ValueError, AttributeError) as exc:
            raise StorageError("Supabase returned an invalid signed URL payload") from exc
        if not signed_path:
            raise StorageError(f"Supabase did not sign {path}")
        return f"{self.client.base_url}/storage/v1{signed_path}"


class SupabaseAuditSink:
    def __init__(self, client: SupabaseRestClient) -> None:
        self.client = client

    async def append(self, table: str, record: dict[str, Any]) -> None:
        await self.client.request(
            "POST",
            f"/rest/v1/{table}",
            json_body=record,
            headers={"Prefer": "return=minimal"},
        )
