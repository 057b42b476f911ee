"""Artifact materialization: turn a transient upstream URL into a caller-usable result.

Processing flow:
    URL mode (`response_format="url"`):
        1. Download the source image into a scoped temporary file.
        2. Upload it to object storage under `<credential_id>/<uuid>.<ext>`.
        3. Mint a short-lived signed URL (120s by default).
        4. Write a best-effort `images` audit row.
    Inline mode (`response_format="b64_json"`):
        1. Download into a scoped temporary file.
        2. Base64-encode the bytes.

Base64 and temporary files:
    - Temporary files are `aiofiles.tempfile.NamedTemporaryFile` instances
      used as async context managers under `TEMP_IMAGE_DIR`; they are removed
      on every exit path, including failed uploads and failed encodes.
    - File reads and writes go through `aiofiles` so they never block the
      event loop.

Error handling strategy:
    - URL mode never fails: any download/upload/signing error degrades to the
      original source URL and is logged at WARNING.
    - Inline mode has no alternative representation, so failures raise
      `ArtifactProcessingFailed`.
    - Audit-row failures are logged and ignored.
"""

from __future__ import annotations

import base64
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator

import aiofiles.os
import aiofiles.tempfile
import httpx

from app.core.errors import ArtifactProcessingFailed
from app.core.generation_types import Artifact
from app.store.base import AuditSink, ObjectStorage

logger = logging.getLogger(__name__)

SIGNED_URL_TTL_SECONDS = 120
IMAGES_TABLE = "images"


class ArtifactMaterializer:
    """Download, re-host and encode generated images."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        storage: ObjectStorage,
        audit: AuditSink,
        temp_dir: str = "./temp",
        signed_url_ttl: int = SIGNED_URL_TTL_SECONDS,
        timeout_seconds: float = 30.0,
    ) -> None:
        self.http_client = http_client
        self.storage = storage
        self.audit = audit
        self.temp_dir = temp_dir
        self.signed_url_ttl = signed_url_ttl
        self.timeout_seconds = timeout_seconds

    async def materialize(
        self,
        source_url: str,
        credential_id: str,
        prompt: str,
        model: str,
        response_format: str = "url",
    ) -> Artifact:
        """Materialize one generated image.

        Args:
            source_url: Result URL reported by the upstream provider.
            credential_id: Owner of the artifact; scopes the storage path.
            prompt: Prompt recorded in the audit row.
            model: Canonical model recorded in the audit row.
            response_format: `url` or `b64_json`.

        Returns:
            `Artifact` with a signed URL, an inline payload, or (degraded) only
            the source URL.

        Raises:
            ArtifactProcessingFailed: Inline mode only.
        """
        if response_format == "b64_json":
            return await self._encode_inline(source_url)
        return await self._rehost(source_url, credential_id, prompt, model)

    async def _encode_inline(self, source_url: str) -> Artifact:
        try:
            async with self._scoped_temp_file(_extension_for(source_url)) as handle:
                await self._download_to(source_url, handle)
                encoded = base64.b64encode(await handle.read()).decode("ascii")
        except Exception as exc:
            logger.exception("Failed to convert image to base64: %s", source_url)
            raise ArtifactProcessingFailed("Failed to process image") from exc

        return Artifact(source_url=source_url, inline_base64=encoded)

    async def _rehost(self, source_url: str, credential_id: str, prompt: str, model: str) -> Artifact:
        extension = _extension_for(source_url)
        content_type = "image/jpeg" if extension == "jpg" else "image/png"
        storage_path = f"{credential_id}/{uuid.uuid4()}.{extension}"

        try:
            async with self._scoped_temp_file(extension) as handle:
                await self._download_to(source_url, handle)
                await self.storage.put(storage_path, await handle.read(), content_type)
            signed_url = await self.storage.signed_url(storage_path, self.signed_url_ttl)
        except Exception as exc:
            logger.warning(
                "Re-hosting failed for %s, returning source URL instead: %s",
                source_url, exc, exc_info=True,
            )
            return Artifact(source_url=source_url, degraded=True)

        await self._record_image(credential_id, storage_path, prompt, model)

        return Artifact(
            source_url=source_url,
            storage_path=storage_path,
            signed_url=signed_url,
            expires_in=self.signed_url_ttl,
        )

    async def _record_image(self, credential_id: str, storage_path: str, prompt: str, model: str) -> None:
        try:
            await self.audit.append(IMAGES_TABLE, {
                "key_id": credential_id,
                "storage_path": storage_path,
                "prompt": prompt,
                "model": model,
                "created_at": datetime.now(timezone.utc).isoformat(),
            })
        except Exception:
            logger.exception("Failed to record image %s", storage_path)

    @asynccontextmanager
    async def _scoped_temp_file(self, extension: str) -> AsyncIterator[Any]:
        await aiofiles.os.makedirs(self.temp_dir, exist_ok=True)
        async with aiofiles.tempfile.NamedTemporaryFile(
            mode="w+b",
            dir=self.temp_dir,
            prefix="artifact-",
            suffix=f".{extension}",
            delete=True,
        ) as handle:
            yield handle

    async def _download_to(self, url: str, handle: Any) -> None:
        async with self.http_client.stream("GET", url, timeout=self.timeout_seconds) as response:
            response.raise_for_status()
            async for chunk in response.aiter_bytes():
                await handle.write(chunk)
        await handle.flush()
        await handle.seek(0)


def _extension_for(source_url: str) -> str:
    return "jpg" if ".jpg" in source_url.lower() else "png"
