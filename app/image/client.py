"""Upstream image-provider HTTP client.

Processing flow:
    1. Build the submission URL from the configured base URL and the resolved
       endpoint path.
    2. Send the prompt (and variant for multi-variant providers) as query params.
    3. Return the decoded JSON acknowledgement / status object.

Error handling strategy:
    - HTTP status and transport failures propagate as `httpx.HTTPError`.
    - Non-JSON or non-object bodies raise `ProviderResponseError`.
    - Interpreting `ok` / `status` fields is the poller's job, not this module's.

Determinism:
    Request assembly is deterministic for fixed inputs. Responses are not.
"""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from app.core.generation_types import ResolvedTarget


class ProviderResponseError(RuntimeError):
    """Upstream answered with a body that is not a JSON object."""


class UpstreamProvider(Protocol):
    """Minimal async interface the job poller needs from a provider."""

    async def submit(self, target: ResolvedTarget, prompt: str) -> dict[str, Any]:
        ...

    async def poll(self, task_handle: str) -> dict[str, Any]:
        ...


class UpstreamProviderClient:
    """`UpstreamProvider` over a shared `httpx.AsyncClient`."""

    def __init__(
        self,
        base_url: str,
        http_client: httpx.AsyncClient,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.http_client = http_client
        self.timeout_seconds = timeout_seconds

    async def submit(self, target: ResolvedTarget, prompt: str) -> dict[str, Any]:
        """Start one upstream generation job.

        Args:
            target: Resolved provider target.
            prompt: Prompt text, sent URL-encoded as `text`.

        Returns:
            Provider acknowledgement, e.g. `{"ok": true, "task_url": "..."}`.
        """
        params = {"text": prompt}
        if target.variant:
            params[target.provider_metadata.get("variant_param", "model")] = target.variant

        response = await self.http_client.get(
            f"{self.base_url}{target.endpoint_path}",
            params=params,
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        return _json_object(response)

    async def poll(self, task_handle: str) -> dict[str, Any]:
        """Query job status, e.g. `{"status": "done", "url": "..."}`."""
        response = await self.http_client.get(self._task_url(task_handle), timeout=self.timeout_seconds)
        response.raise_for_status()
        return _json_object(response)

    def _task_url(self, task_handle: str) -> str:
        if task_handle.startswith(("http://", "https://")):
            return task_handle
        return f"{self.base_url}/{task_handle.lstrip('/')}"


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise ProviderResponseError(f"Provider returned invalid JSON from {response.url}") from exc

    if not isinstance(data, dict):
        raise ProviderResponseError(f"Provider returned non-object payload from {response.url}")
    return data
