"""Generation data contracts shared by the resolver, poller, materializer and engine.

Architectural role:
    Defines the request-scoped values that flow through one generation:
    `GenerationRequest` -> `ResolvedTarget` -> `GenerationJob` -> `Artifact` ->
    normalized response dict.

Validation:
    `GenerationRequest` validates itself on construction, so an instance that
    exists is always safe to hand to the engine. `from_payload` additionally
    coerces the loosely typed JSON body (for example `"n": "3"`).

Determinism:
    Structural only. No I/O.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.core.errors import InvalidModel, InvalidRequest
from app.image.provider_config import (
    SUPPORTED_FORMATS,
    SUPPORTED_MODELS,
    SUPPORTED_SIZES,
    is_known_model,
)

MIN_IMAGES = 1
MAX_IMAGES = 10

NormalizedResponse = dict[str, Any]


@dataclass(frozen=True)
class GenerationRequest:
    """Validated, immutable image-generation request.

    Attributes:
        prompt: Non-empty prompt text.
        credential_id: Opaque id of the authenticated credential.
        count: Number of images to return (1-10).
        size: One of `SUPPORTED_SIZES` or `None`.
        response_format: `url` or `b64_json`.
        model: Caller-facing model name (canonical or alias) or `None`.
    """

    prompt: str
    credential_id: str
    count: int = 1
    size: str | None = None
    response_format: str = "url"
    model: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.prompt, str) or not self.prompt.strip():
            raise InvalidRequest("Prompt is required", param="prompt", code="param_required")

        if (
            isinstance(self.count, bool)
            or not isinstance(self.count, int)
            or not MIN_IMAGES <= self.count <= MAX_IMAGES
        ):
            raise InvalidRequest(f"n must be between {MIN_IMAGES} and {MAX_IMAGES}", param="n")

        if self.size is not None and self.size not in SUPPORTED_SIZES:
            raise InvalidRequest(
                f"Invalid size. Must be one of: {', '.join(SUPPORTED_SIZES)}",
                param="size",
            )

        if self.response_format not in SUPPORTED_FORMATS:
            raise InvalidRequest(
                f"Invalid response_format. Must be one of: {', '.join(SUPPORTED_FORMATS)}",
                param="response_format",
            )

        if self.model is not None and (not isinstance(self.model, str) or not is_known_model(self.model)):
            raise InvalidModel(f"Invalid model. Must be one of: {', '.join(SUPPORTED_MODELS)}")

    @classmethod
    def from_payload(cls, payload: Any, credential_id: str) -> "GenerationRequest":
        """Build a request from an OpenAI-style JSON body.

        Args:
            payload: Decoded JSON body (`prompt`, `n`, `size`, `response_format`, `model`).
            credential_id: Authenticated credential id.

        Raises:
            InvalidRequest / InvalidModel: On the first offending field.
        """
        if not isinstance(payload, dict):
            raise InvalidRequest("Request body must be a JSON object")

        return cls(
            prompt=payload.get("prompt"),
            credential_id=credential_id,
            count=_parse_count(payload.get("n")),
            size=payload.get("size") or None,
            response_format=payload.get("response_format") or "url",
            model=payload.get("model") or None,
        )


def _parse_count(value: Any) -> int:
    """Coerce `n` the way OpenAI clients send it (int or numeric string)."""
    if value is None:
        return 1
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    raise InvalidRequest(f"n must be between {MIN_IMAGES} and {MAX_IMAGES}", param="n")


@dataclass(frozen=True)
class ResolvedTarget:
    """Canonical routing target derived from a requested model/size."""

    provider_name: str
    canonical_model: str
    endpoint_path: str
    requested_model: str
    variant: str | None = None
    provider_metadata: dict[str, Any] = field(default_factory=dict)


class JobState(str, Enum):
    SUBMITTED = "submitted"
    POLLING = "polling"
    DONE = "done"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass
class GenerationJob:
    """Upstream job lifecycle, owned by a single poll loop."""

    task_handle: str
    target: ResolvedTarget
    state: JobState = JobState.SUBMITTED
    source_url: str | None = None
    attempts: int = 0


@dataclass(frozen=True)
class Artifact:
    """Materialized generation result.

    Exactly one of `signed_url` / `inline_base64` is set on a full success.
    A degraded artifact carries neither; its `source_url` is what callers get.
    """

    source_url: str
    storage_path: str | None = None
    signed_url: str | None = None
    inline_base64: str | None = None
    expires_in: int | None = None
    degraded: bool = False

    @property
    def reference(self) -> str:
        return self.signed_url or self.source_url

    def to_datum(self, response_format: str) -> dict[str, str]:
        if response_format == "b64_json":
            return {"b64_json": self.inline_base64 or ""}
        return {"url": self.reference}


def format_response(
    artifact: Artifact,
    response_format: str,
    count: int,
    creator: str,
    created: int | None = None,
) -> NormalizedResponse:
    """Render the OpenAI-compatible image response.

    The single artifact is replicated `count` times.
    """
    datum = artifact.to_datum(response_format)
    return {
        "creator": creator,
        "created": int(time.time()) if created is None else created,
        "data": [dict(datum) for _ in range(count)],
    }
