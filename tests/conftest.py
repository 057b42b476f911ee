from __future__ import annotations

import os
from datetime import datetime

import httpx
import pytest

from app.core.config import GatewaySettings

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 4
UPSTREAM_URL = "https://upstream.test"
IMAGE_URL = "https://cdn.test/generated/abc123.png"


class FakeUpstream:
    """Scriptable provider + CDN behind an `httpx.MockTransport`."""

    def __init__(
        self,
        polls_until_done: int = 1,
        submit_ok: bool = True,
        poll_status: str | None = None,
        image_status: int = 200,
        image_url: str = IMAGE_URL,
    ) -> None:
        self.polls_until_done = polls_until_done
        self.submit_ok = submit_ok
        self.poll_status = poll_status
        self.image_status = image_status
        self.image_url = image_url
        self.submits: list[httpx.Request] = []
        self.polls = 0
        self.downloads = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "cdn.test":
            self.downloads += 1
            if self.image_status != 200:
                return httpx.Response(self.image_status, content=b"gone")
            return httpx.Response(200, content=PNG_BYTES)

        if request.url.path.startswith("/ai-image/"):
            self.submits.append(request)
            if not self.submit_ok:
                return httpx.Response(200, json={"ok": False, "message": "Prompt rejected by provider"})
            return httpx.Response(200, json={"ok": True, "task_url": f"{UPSTREAM_URL}/tasks/task-1"})

        if request.url.path.startswith("/tasks/"):
            self.polls += 1
            if self.poll_status == "error":
                return httpx.Response(200, json={"status": "error", "message": "NSFW content detected"})
            if self.poll_status == "pending" or self.polls < self.polls_until_done:
                return httpx.Response(200, json={"status": "pending"})
            return httpx.Response(200, json={"status": "done", "url": self.image_url})

        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code
        self.ok = status_code < 400


class FakeSession:
    """Stand-in for `requests.Session` used by the keep-alive service."""

    def __init__(self, status_code: int = 200, error: Exception | None = None) -> None:
        self.status_code = status_code
        self.error = error
        self.calls: list[tuple[str, float]] = []

    def get(self, url: str, timeout: float) -> FakeResponse:
        self.calls.append((url, timeout))
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status_code)


def temp_files(path: str) -> list[str]:
    return os.listdir(path) if os.path.isdir(path) else []


@pytest.fixture
def temp_dir(tmp_path) -> str:
    return str(tmp_path / "temp")


@pytest.fixture
def settings(temp_dir) -> GatewaySettings:
    return GatewaySettings(
        external_api_url=UPSTREAM_URL,
        default_model="dalle",
        creator="featherops",
        poll_max_attempts=5,
        poll_interval_ms=0,
        upstream_timeout_seconds=5,
        temp_image_dir=temp_dir,
        signed_url_ttl_seconds=120,
        db_url="",
        db_key="",
        key_salt="test-salt",
        api_key_prefix="feather-ops-apikey-",
        default_rate_limit=100,
        keep_alive_enabled=False,
        public_url="http://gateway.test",
        debug=False,
    )
