"""Asynchronous submit-and-poll driver for upstream generation jobs.

Processing flow:
    1. Submit the prompt to the resolved provider endpoint.
    2. Reject immediately when the acknowledgement is not `ok`.
    3. Poll the returned task handle at a fixed interval.
    4. Return the first result URL reported with `status == "done"`.

State machine:
    `Submitted -> Polling -> {Done | Failed | TimedOut}`. The `GenerationJob`
    object is created here and mutated only by `await_completion`.

Error handling strategy:
    - Submission failures -> `UpstreamRejected` (no polling).
    - `status == "error"` while polling -> `UpstreamGenerationFailed`, terminal.
    - Transport errors / malformed bodies while polling are transient: logged,
      then the next attempt runs.
    - Budget exhausted -> `GenerationTimeout`.

Performance characteristics:
    Constant-interval polling bounded by `max_attempts * interval_ms`. The
    sleep function is injectable so tests run without real timers. No sleep
    follows the final attempt.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

import httpx

from app.core.errors import GenerationTimeout, UpstreamGenerationFailed, UpstreamRejected
from app.core.generation_types import GenerationJob, JobState, ResolvedTarget
from app.image.client import ProviderResponseError, UpstreamProvider
from app.image.provider_config import POLL_CONFIG

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

# `InvalidURL` is not an `HTTPError`; a malformed task handle is a bad response.
TRANSIENT_POLL_ERRORS = (httpx.HTTPError, httpx.InvalidURL, ProviderResponseError)


class JobPoller:
    """Drive one upstream job per call; holds no per-request state itself."""

    def __init__(
        self,
        provider: UpstreamProvider,
        max_attempts: int = POLL_CONFIG["max_attempts"],
        interval_ms: int = POLL_CONFIG["interval_ms"],
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.provider = provider
        self.max_attempts = max_attempts
        self.interval_ms = interval_ms
        self._sleep = sleep

    async def submit(self, target: ResolvedTarget, prompt: str) -> GenerationJob:
        """Submit one generation job and return it in the Polling state.

        Raises:
            UpstreamRejected: Provider refused the job (400) or could not be
                reached / answered garbage (502).
        """
        try:
            ack = await self.provider.submit(target, prompt)
        except TRANSIENT_POLL_ERRORS as exc:
            logger.warning("Submission to %s failed: %s", target.endpoint_path, exc)
            raise UpstreamRejected("Failed to start image generation", status_code=502) from exc

        if not ack.get("ok"):
            raise UpstreamRejected(ack.get("message") or "Failed to start image generation")

        task_handle = ack.get("task_url") or ack.get("task_id")
        if not task_handle:
            raise UpstreamRejected("Provider did not return a task handle", status_code=502)

        job = GenerationJob(task_handle=str(task_handle), target=target)
        job.state = JobState.POLLING
        return job

    async def await_completion(self, job: GenerationJob) -> str:
        """Poll `job` until it finishes, fails, or the attempt budget runs out.

        Returns:
            Source artifact URL reported by the provider.

        Raises:
            UpstreamGenerationFailed: Provider reported `status == "error"`.
            GenerationTimeout: No terminal status within `max_attempts` polls.
        """
        interval_seconds = self.interval_ms / 1000

        for attempt in range(1, self.max_attempts + 1):
            job.attempts = attempt
            try:
                status = await self.provider.poll(job.task_handle)
            except TRANSIENT_POLL_ERRORS as exc:
                logger.warning(
                    "Polling attempt %d/%d for %s failed: %s",
                    attempt, self.max_attempts, job.task_handle, exc,
                )
                status = None

            if status is not None:
                if status.get("status") == "done" and status.get("url"):
                    job.state = JobState.DONE
                    job.source_url = str(status["url"])
                    return job.source_url

                if status.get("status") == "error":
                    job.state = JobState.FAILED
                    raise UpstreamGenerationFailed(status.get("message") or "Image generation failed")

            if attempt < self.max_attempts:
                await self._sleep(interval_seconds)

        job.state = JobState.TIMED_OUT
        logger.warning("Job %s timed out after %d attempts", job.task_handle, self.max_attempts)
        raise GenerationTimeout("Image generation timed out")

    async def run(self, target: ResolvedTarget, prompt: str) -> GenerationJob:
        """Submit and wait; returns the finished job."""
        job = await self.submit(target, prompt)
        await self.await_completion(job)
        return job
