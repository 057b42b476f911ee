"""Core request orchestration for image generation.

Architectural role:
    Composes model resolution, upstream job polling, artifact materialization
    and usage logging into one request-scoped workflow. API adapters build a
    validated `GenerationRequest`, pass the quota gate, and then call
    `GenerationOrchestrator.generate`.

Control-flow model:
    1. Resolve model/size to a `ResolvedTarget` (synchronous, no I/O).
    2. Submit the prompt upstream exactly once and poll to completion.
    3. Materialize the single source artifact (signed URL or base64).
    4. Replicate the artifact `count` times in the normalized response.
    5. Schedule one best-effort `request_logs` audit row for the outcome.

Error handling strategy:
    - Resolution errors (`InvalidModel`) surface immediately with no side effects.
    - Poller and inline-materializer errors propagate with their class intact,
      after the audit row has been scheduled.
    - Audit writes run as detached tasks; their failures are logged and can
      never change the returned value or the raised error.

Determinism:
    Routing is deterministic. Upstream output, timings and `created`
    timestamps are not.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable

from app.core.errors import GatewayError
from app.core.generation_types import GenerationRequest, NormalizedResponse, format_response
from app.image.job_poller import JobPoller
from app.image.materializer import ArtifactMaterializer
from app.image.provider_config import DEFAULT_MODEL
from app.image.resolver import resolve
from app.store.base import AuditSink

logger = logging.getLogger(__name__)

REQUEST_LOGS_TABLE = "request_logs"


class GenerationOrchestrator:
    """Request-scoped generation workflow over shared, stateless collaborators."""

    def __init__(
        self,
        poller: JobPoller,
        materializer: ArtifactMaterializer,
        audit: AuditSink,
        default_model: str = DEFAULT_MODEL,
        creator: str = "featherops",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.poller = poller
        self.materializer = materializer
        self.audit = audit
        self.default_model = default_model
        self.creator = creator
        self._clock = clock
        self._pending: set[asyncio.Task] = set()

    async def generate(self, request: GenerationRequest) -> NormalizedResponse:
        """Run one generation and return the OpenAI-compatible response.

        Args:
            request: Validated request (validation happens on construction).

        Returns:
            `{"creator", "created", "data": [...]}` with `request.count` entries
            that all reference the same artifact.

        Raises:
            InvalidModel, UpstreamRejected, UpstreamGenerationFailed,
            GenerationTimeout, ArtifactProcessingFailed.
        """
        target = resolve(request.model, request.size, default_model=self.default_model)

        try:
            job = await self.poller.submit(target, request.prompt)
            source_url = await self.poller.await_completion(job)
            artifact = await self.materializer.materialize(
                source_url,
                request.credential_id,
                request.prompt,
                target.canonical_model,
                request.response_format,
            )
        except GatewayError as exc:
            self._notify(request, target.endpoint_path, target.canonical_model, "error", exc.code)
            raise
        except Exception:
            logger.exception("Image generation failed for credential %s", request.credential_id)
            self._notify(request, target.endpoint_path, target.canonical_model, "error", "generation_error")
            raise

        response = format_response(
            artifact,
            request.response_format,
            request.count,
            self.creator,
            created=int(self._clock()),
        )
        self._notify(request, target.endpoint_path, target.canonical_model, "success", None)
        return response

    def _notify(
        self,
        request: GenerationRequest,
        endpoint: str,
        model: str,
        status: str,
        error_code: str | None,
    ) -> None:
        record: dict[str, Any] = {
            "key_id": request.credential_id,
            "endpoint": endpoint,
            "prompt": request.prompt,
            "model": model,
            "status": status,
            "error_code": error_code,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }
        task = asyncio.create_task(self._write_audit(record))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _write_audit(self, record: dict[str, Any]) -> None:
        try:
            await self.audit.append(REQUEST_LOGS_TABLE, record)
        except Exception:
            logger.exception("Failed to log request for credential %s", record.get("key_id"))

    async def drain(self) -> None:
        """Wait for scheduled audit writes (used at shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
