"""Explicit owner of the gateway's long-lived collaborators.

Architectural role:
    Replaces module-level singletons. `build_context` wires the HTTP client,
    persistence backends, quota ledger, orchestrator and keep-alive service
    from `GatewaySettings`; `startup` / `aclose` bracket their lifetime. The
    HTTP adapter keeps one context on `app.state`.

Backend selection:
    Supabase backends when `DB_URL` and `DB_KEY` are set, in-memory backends
    otherwise. Any collaborator can be overridden by keyword (tests do this).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx

from app.core.config import GatewaySettings
from app.core.engine import GenerationOrchestrator
from app.core.keep_alive import KeepAliveService
from app.core.quota import Clock, QuotaLedger, local_now
from app.image.client import UpstreamProvider, UpstreamProviderClient
from app.image.job_poller import JobPoller, SleepFn
from app.image.materializer import ArtifactMaterializer
from app.store.base import AuditSink, CredentialStore, LedgerStore, ObjectStorage
from app.store.memory_store import (
    InMemoryAuditSink,
    InMemoryCredentialStore,
    InMemoryLedgerStore,
    InMemoryObjectStorage,
)
from app.store.supabase_store import (
    SupabaseAuditSink,
    SupabaseCredentialStore,
    SupabaseLedgerStore,
    SupabaseObjectStorage,
    SupabaseRestClient,
)

logger = logging.getLogger(__name__)


@dataclass
class GatewayContext:
    settings: GatewaySettings
    http_client: httpx.AsyncClient
    credentials: CredentialStore
    ledger_store: LedgerStore
    storage: ObjectStorage
    audit: AuditSink
    ledger: QuotaLedger
    orchestrator: GenerationOrchestrator
    keep_alive: KeepAliveService

    async def startup(self) -> None:
        if self.settings.keep_alive_enabled:
            self.keep_alive.start(
                self.settings.health_url,
                self.settings.keep_alive_interval_minutes,
            )

    async def aclose(self) -> None:
        await asyncio.to_thread(self.keep_alive.stop)
        await self.orchestrator.drain()
        await self.http_client.aclose()


def build_context(
    settings: GatewaySettings | None = None,
    *,
    http_client: httpx.AsyncClient | None = None,
    provider: UpstreamProvider | None = None,
    credentials: CredentialStore | None = None,
    ledger_store: LedgerStore | None = None,
    storage: ObjectStorage | None = None,
    audit: AuditSink | None = None,
    clock: Clock = local_now,
    sleep: SleepFn | None = None,
    keep_alive: KeepAliveService | None = None,
) -> GatewayContext:
    """Construct a `GatewayContext` from settings plus optional overrides."""
    settings = settings or GatewaySettings()
    http_client = http_client or httpx.AsyncClient(
        timeout=settings.upstream_timeout_seconds,
        follow_redirects=True,
    )

    if settings.supabase_enabled:
        rest = SupabaseRestClient(settings.db_url, settings.db_key, http_client)
        credentials = credentials or SupabaseCredentialStore(rest)
        ledger_store = ledger_store or SupabaseLedgerStore(rest)
        storage = storage or SupabaseObjectStorage(rest, settings.storage_bucket)
        audit = audit or SupabaseAuditSink(rest)
    else:
        logger.warning("DB_URL/DB_KEY not set; using in-memory stores")
        credentials = credentials or InMemoryCredentialStore()
        ledger_store = ledger_store or InMemoryLedgerStore()
        storage = storage or InMemoryObjectStorage()
        audit = audit or InMemoryAuditSink()

    provider = provider or UpstreamProviderClient(
        settings.external_api_url,
        http_client,
        timeout_seconds=settings.upstream_timeout_seconds,
    )
    poller_kwargs = {"sleep": sleep} if sleep is not None else {}
    poller = JobPoller(
        provider,
        max_attempts=settings.poll_max_attempts,
        interval_ms=settings.poll_interval_ms,
        **poller_kwargs,
    )
    materializer = ArtifactMaterializer(
        http_client,
        storage,
        audit,
        temp_dir=settings.temp_image_dir,
        signed_url_ttl=settings.signed_url_ttl_seconds,
        timeout_seconds=settings.upstream_timeout_seconds,
    )
    orchestrator = GenerationOrchestrator(
        poller,
        materializer,
        audit,
        default_model=settings.default_model,
        creator=settings.creator,
    )

    return GatewayContext(
        settings=settings,
        http_client=http_client,
        credentials=credentials,
        ledger_store=ledger_store,
        storage=storage,
        audit=audit,
        ledger=QuotaLedger(ledger_store, clock=clock),
        orchestrator=orchestrator,
        keep_alive=keep_alive or KeepAliveService(settings.health_url),
    )
