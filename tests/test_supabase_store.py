from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from app.store.base import QuotaRecord, StorageError
from app.store.supabase_store import (
    CONSUME_ATTEMPTS,
    SupabaseAuditSink,
    SupabaseCredentialStore,
    SupabaseLedgerStore,
    SupabaseObjectStorage,
    SupabaseRestClient,
    parse_timestamp,
)

DB_URL = "https://project.supabase.test"


class FakeSupabase:
    def __init__(self, rows=None, status=200, signed_url="/object/sign/images/cred-1/a.png?token=abc"):
        self.rows = rows if rows is not None else []
        self.status = status
        self.signed_url = signed_url
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status != 200:
            return httpx.Response(self.status, json={"message": "boom"})
        if request.url.path.startswith("/storage/v1/object/sign/"):
            return httpx.Response(200, json={"signedURL": self.signed_url})
        if request.method == "GET":
            return httpx.Response(200, json=self.rows)
        return httpx.Response(201)

    def rest(self) -> SupabaseRestClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return SupabaseRestClient(DB_URL, "service-key", client)


@pytest.mark.asyncio
async def test_credential_lookup_maps_key_row() -> None:
    fake = FakeSupabase(rows=[{"id": 7, "rate_limit": 250, "revoked": False, "usage_count": 12}])
    store = SupabaseCredentialStore(fake.rest())

    credential = await store.lookup("abc123")

    assert credential.id == "7"
    assert credential.quota_ceiling == 250
    assert credential.usage_count == 12
    request = fake.requests[0]
    assert request.url.path == "/rest/v1/keys"
    assert request.url.params["key_hash"] == "eq.abc123"
    assert request.headers["apikey"] == "service-key"
    assert request.headers["Authorization"] == "Bearer service-key"


@pytest.mark.asyncio
async def test_credential_lookup_unknown_hash() -> None:
    store = SupabaseCredentialStore(FakeSupabase(rows=[]).rest())
    assert await store.lookup("missing") is None


@pytest.mark.asyncio
async def test_record_usage_patches_incremented_counter() -> None:
    fake = FakeSupabase(rows=[{"usage_count": 4}])
    store = SupabaseCredentialStore(fake.rest())

    await store.record_usage("7")

    patch = fake.requests[-1]
    assert patch.method == "PATCH"
    assert patch.url.params["id"] == "eq.7"
    assert json.loads(patch.content) == {"usage_count": 5}


@pytest.mark.asyncio
async def test_ledger_get_parses_timestamps() -> None:
    fake = FakeSupabase(rows=[{
        "key_id": "7",
        "requests_count": 3,
        "last_reset": "2024-05-01T08:00:00Z",
        "max_requests": 100,
    }])
    record = await SupabaseLedgerStore(fake.rest()).get("7")

    assert record == QuotaRecord("7", 3, datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc), 100)


@pytest.mark.asyncio
async def test_ledger_get_rejects_malformed_row() -> None:
    fake = FakeSupabase(rows=[{"key_id": "7", "requests_count": "many"}])
    with pytest.raises(StorageError):
        await SupabaseLedgerStore(fake.rest()).get("7")


class FakeRateLimits:
    """`rate_limits` table that honours the PostgREST `eq.` filters on PATCH.

    `interfere` makes that many PATCHes lose to a concurrent writer, and
    `conflicting_inserts` makes that many INSERTs collide with one.
    """

    def __init__(self, row=None, interfere=0, conflicting_inserts=0):
        self.row = row
        self.interfere = interfere
        self.conflicting_inserts = conflicting_inserts
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "GET":
            return httpx.Response(200, json=[self.row] if self.row else [])

        if request.method == "POST":
            if self.conflicting_inserts:
                self.conflicting_inserts -= 1
                self.row = {
                    "key_id": "7",
                    "requests_count": 1,
                    "last_reset": "2024-05-01T08:30:00+00:00",
                    "max_requests": 3,
                }
            if self.row is not None:
                return httpx.Response(409, json={"code": "23505"})
            self.row = json.loads(request.content)
            return httpx.Response(201)

        if self.interfere:
            self.interfere -= 1
            self.row = dict(self.row, requests_count=self.row["requests_count"] + 1)
        params = request.url.params
        if (
            params["requests_count"] != f"eq.{self.row['requests_count']}"
            or params["last_reset"] != f"eq.{self.row['last_reset']}"
        ):
            return httpx.Response(200, json=[])
        self.row = json.loads(request.content)
        return httpx.Response(200, json=[self.row])

    def store(self) -> SupabaseLedgerStore:
        client = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return SupabaseLedgerStore(SupabaseRestClient(DB_URL, "service-key", client))


NOW = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
BOUNDARY = datetime(2024, 5, 1, tzinfo=timezone.utc)


def rate_row(count: int, last_reset: str, max_requests: int = 3) -> dict:
    return {"key_id": "7", "requests_count": count, "last_reset": last_reset, "max_requests": max_requests}


@pytest.mark.asyncio
async def test_consume_inserts_first_row_of_the_day() -> None:
    table = FakeRateLimits()

    record, admitted = await table.store().consume("7", 3, BOUNDARY, NOW)

    assert admitted
    assert record == QuotaRecord("7", 1, NOW, 3)
    insert = table.requests[-1]
    assert insert.method == "POST"
    assert json.loads(insert.content)["last_reset"] == "2024-05-01T09:00:00+00:00"


@pytest.mark.asyncio
async def test_consume_increments_only_the_row_version_it_read() -> None:
    raw = "2024-05-01 08:00:00.12345+00"
    table = FakeRateLimits(rate_row(1, raw))

    record, admitted = await table.store().consume("7", 3, BOUNDARY, NOW)

    assert admitted
    assert record.requests_count == 2
    patch = table.requests[-1]
    assert patch.method == "PATCH"
    assert patch.url.params["key_id"] == "eq.7"
    assert patch.url.params["requests_count"] == "eq.1"
    assert patch.url.params["last_reset"] == f"eq.{raw}"
    assert "return=representation" in patch.headers["Prefer"]


@pytest.mark.asyncio
@pytest.mark.parametrize("last_reset", [
    "2024-05-01 08:00:00.12345+00",
    "2024-05-01T08:00:00",
    "2024-05-01T08:00:00.5Z",
])
async def test_consume_denies_full_row_in_any_timestamp_format(last_reset) -> None:
    table = FakeRateLimits(rate_row(3, last_reset))

    record, admitted = await table.store().consume("7", 3, BOUNDARY, NOW)

    assert not admitted
    assert record.requests_count == 3
    assert [request.method for request in table.requests] == ["GET"]


@pytest.mark.asyncio
async def test_consume_resets_yesterdays_row() -> None:
    table = FakeRateLimits(rate_row(3, "2024-04-30T22:00:00+00:00"))

    record, admitted = await table.store().consume("7", 5, BOUNDARY, NOW)

    assert admitted
    assert record == QuotaRecord("7", 1, NOW, 5)
    assert table.row["requests_count"] == 1
    assert table.row["max_requests"] == 5


@pytest.mark.asyncio
async def test_consume_retries_after_losing_a_race() -> None:
    table = FakeRateLimits(rate_row(1, "2024-05-01T08:00:00+00:00"), interfere=1)

    record, admitted = await table.store().consume("7", 3, BOUNDARY, NOW)

    assert admitted
    assert record.requests_count == 3
    assert [request.method for request in table.requests] == ["GET", "PATCH", "GET", "PATCH"]


@pytest.mark.asyncio
async def test_consume_denies_when_a_concurrent_writer_fills_the_quota() -> None:
    table = FakeRateLimits(rate_row(2, "2024-05-01T08:00:00+00:00"), interfere=1)

    record, admitted = await table.store().consume("7", 3, BOUNDARY, NOW)

    assert not admitted
    assert record.requests_count == 3
    assert table.row["requests_count"] == 3


@pytest.mark.asyncio
async def test_consume_retries_after_insert_conflict() -> None:
    table = FakeRateLimits(conflicting_inserts=1)

    record, admitted = await table.store().consume("7", 3, BOUNDARY, NOW)

    assert admitted
    assert record.requests_count == 2
    assert [request.method for request in table.requests] == ["GET", "POST", "GET", "PATCH"]


@pytest.mark.asyncio
async def test_consume_gives_up_after_repeated_lost_races() -> None:
    table = FakeRateLimits(rate_row(0, "2024-05-01T08:00:00+00:00", max_requests=100), interfere=CONSUME_ATTEMPTS)

    with pytest.raises(StorageError):
        await table.store().consume("7", 100, BOUNDARY, NOW)

    assert table.row["requests_count"] == CONSUME_ATTEMPTS


@pytest.mark.parametrize("value, expected", [
    ("2024-05-01 08:00:00.12345+00", datetime(2024, 5, 1, 8, 0, 0, 123450, tzinfo=timezone.utc)),
    ("2024-05-01T08:00:00", datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)),
    ("2024-05-01T08:00:00Z", datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)),
    ("2024-05-01T08:00:00.1234567+00:00", datetime(2024, 5, 1, 8, 0, 0, 123456, tzinfo=timezone.utc)),
    ("2024-05-01T13:30:00+05:30", datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)),
    ("2024-05-01T13:30:00+0530", datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)),
])
def test_parse_timestamp_always_returns_aware_values(value, expected) -> None:
    parsed = parse_timestamp(value)

    assert parsed.tzinfo is not None
    assert parsed == expected


def test_parse_timestamp_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        parse_timestamp("yesterday")


@pytest.mark.asyncio
async def test_object_storage_upload_and_sign() -> None:
    fake = FakeSupabase()
    storage = SupabaseObjectStorage(fake.rest(), "images")

    await storage.put("cred-1/a.png", b"bytes", "image/png")
    url = await storage.signed_url("cred-1/a.png", 120)

    upload, sign = fake.requests
    assert upload.url.path == "/storage/v1/object/images/cred-1/a.png"
    assert upload.headers["Content-Type"] == "image/png"
    assert upload.content == b"bytes"
    assert json.loads(sign.content) == {"expiresIn": 120}
    assert url == f"{DB_URL}/storage/v1/object/sign/images/cred-1/a.png?token=abc"


@pytest.mark.asyncio
async def test_missing_signed_url_is_a_storage_error() -> None:
    storage = SupabaseObjectStorage(FakeSupabase(signed_url=None).rest(), "images")
    with pytest.raises(StorageError):
        await storage.signed_url("cred-1/a.png", 120)


@pytest.mark.asyncio
async def test_http_errors_become_storage_errors() -> None:
    sink = SupabaseAuditSink(FakeSupabase(status=503).rest())
    with pytest.raises(StorageError):
        await sink.append("request_logs", {"status": "success"})
