from __future__ import annotations

import base64

import pytest

from app.core.engine import REQUEST_LOGS_TABLE, GenerationOrchestrator
from app.core.errors import (
    GenerationTimeout,
    InvalidModel,
    UpstreamGenerationFailed,
    UpstreamRejected,
)
from app.core.generation_types import GenerationRequest
from app.image.client import UpstreamProviderClient
from app.image.job_poller import JobPoller
from app.image.materializer import ArtifactMaterializer
from app.store.base import StorageError
from app.store.memory_store import InMemoryAuditSink, InMemoryObjectStorage

from conftest import IMAGE_URL, PNG_BYTES, UPSTREAM_URL, FakeUpstream


async def no_sleep(seconds: float) -> None:
    return None


class FailingAuditSink(InMemoryAuditSink):
    async def append(self, table, record):
        raise StorageError("audit down")


class FailingPutStorage(InMemoryObjectStorage):
    async def put(self, path, data, content_type):
        raise StorageError("bucket unavailable")


def build_orchestrator(upstream, temp_dir, *, audit=None, storage=None, default_model="dalle", max_attempts=3):
    http_client = upstream.client()
    audit = audit if audit is not None else InMemoryAuditSink()
    storage = storage if storage is not None else InMemoryObjectStorage()
    poller = JobPoller(
        UpstreamProviderClient(UPSTREAM_URL, http_client),
        max_attempts=max_attempts,
        interval_ms=0,
        sleep=no_sleep,
    )
    materializer = ArtifactMaterializer(http_client, storage, audit, temp_dir=temp_dir)
    return GenerationOrchestrator(
        poller,
        materializer,
        audit,
        default_model=default_model,
        creator="featherops",
        clock=lambda: 1700000000.0,
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("count", [1, 4, 10])
async def test_count_replicates_a_single_upstream_job(temp_dir, count: int) -> None:
    upstream = FakeUpstream(polls_until_done=2)
    orchestrator = build_orchestrator(upstream, temp_dir)
    request = GenerationRequest(prompt="a red fox", credential_id="cred-1", count=count)

    response = await orchestrator.generate(request)
    await orchestrator.drain()

    assert len(upstream.submits) == 1
    assert response["creator"] == "featherops"
    assert response["created"] == 1700000000
    assert len(response["data"]) == count
    assert all(entry == response["data"][0] for entry in response["data"])
    assert "token=" in response["data"][0]["url"]

    logs = orchestrator.audit.table(REQUEST_LOGS_TABLE)
    assert len(logs) == 1
    assert logs[0]["status"] == "success"
    assert logs[0]["model"] == "dalle"
    assert logs[0]["endpoint"] == "/ai-image/dalle"
    assert logs[0]["error_code"] is None


@pytest.mark.asyncio
async def test_b64_response_decodes_to_image_bytes(temp_dir) -> None:
    orchestrator = build_orchestrator(FakeUpstream(), temp_dir)
    request = GenerationRequest(prompt="p", credential_id="cred-1", count=2, response_format="b64_json")

    response = await orchestrator.generate(request)

    assert [set(entry) for entry in response["data"]] == [{"b64_json"}, {"b64_json"}]
    assert base64.b64decode(response["data"][0]["b64_json"]) == PNG_BYTES


@pytest.mark.asyncio
@pytest.mark.parametrize("alias,canonical", [("dall-e-3", "dalle"), ("dall-e-2", "magicstudio")])
async def test_alias_is_logged_under_canonical_model(temp_dir, alias: str, canonical: str) -> None:
    orchestrator = build_orchestrator(FakeUpstream(), temp_dir)

    await orchestrator.generate(GenerationRequest(prompt="p", credential_id="cred-1", model=alias))
    await orchestrator.drain()

    assert orchestrator.audit.table(REQUEST_LOGS_TABLE)[0]["model"] == canonical


@pytest.mark.asyncio
async def test_invalid_default_model_fails_before_any_side_effect(temp_dir) -> None:
    upstream = FakeUpstream()
    orchestrator = build_orchestrator(upstream, temp_dir, default_model="nope")

    with pytest.raises(InvalidModel):
        await orchestrator.generate(GenerationRequest(prompt="p", credential_id="cred-1"))
    await orchestrator.drain()

    assert upstream.submits == []
    assert orchestrator.audit.records == []


@pytest.mark.asyncio
async def test_rejected_submission_is_audited_and_reraised(temp_dir) -> None:
    upstream = FakeUpstream(submit_ok=False)
    orchestrator = build_orchestrator(upstream, temp_dir)

    with pytest.raises(UpstreamRejected) as excinfo:
        await orchestrator.generate(GenerationRequest(prompt="p", credential_id="cred-1"))
    await orchestrator.drain()

    assert excinfo.value.message == "Prompt rejected by provider"
    assert upstream.polls == 0
    logs = orchestrator.audit.table(REQUEST_LOGS_TABLE)
    assert [(row["status"], row["error_code"]) for row in logs] == [("error", "generation_failed")]


@pytest.mark.asyncio
async def test_upstream_error_status_keeps_its_class(temp_dir) -> None:
    orchestrator = build_orchestrator(FakeUpstream(poll_status="error"), temp_dir)

    with pytest.raises(UpstreamGenerationFailed) as excinfo:
        await orchestrator.generate(GenerationRequest(prompt="p", credential_id="cred-1"))

    assert excinfo.value.message == "NSFW content detected"


@pytest.mark.asyncio
async def test_timeout_keeps_its_class_and_is_audited(temp_dir) -> None:
    upstream = FakeUpstream(poll_status="pending")
    orchestrator = build_orchestrator(upstream, temp_dir, max_attempts=3)

    with pytest.raises(GenerationTimeout):
        await orchestrator.generate(GenerationRequest(prompt="p", credential_id="cred-1"))
    await orchestrator.drain()

    assert upstream.polls == 3
    assert orchestrator.audit.table(REQUEST_LOGS_TABLE)[0]["error_code"] == "generation_timeout"


@pytest.mark.asyncio
async def test_audit_failure_does_not_change_the_result(temp_dir) -> None:
    orchestrator = build_orchestrator(FakeUpstream(), temp_dir, audit=FailingAuditSink())

    response = await orchestrator.generate(GenerationRequest(prompt="p", credential_id="cred-1"))
    await orchestrator.drain()

    assert len(response["data"]) == 1


@pytest.mark.asyncio
async def test_storage_failure_returns_source_url(temp_dir) -> None:
    orchestrator = build_orchestrator(FakeUpstream(), temp_dir, storage=FailingPutStorage())

    response = await orchestrator.generate(GenerationRequest(prompt="p", credential_id="cred-1", count=2))
    await orchestrator.drain()

    assert response["data"] == [{"url": IMAGE_URL}, {"url": IMAGE_URL}]
    assert orchestrator.audit.table(REQUEST_LOGS_TABLE)[0]["status"] == "success"
