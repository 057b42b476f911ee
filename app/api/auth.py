"""API-key authentication dependency.

Request lifecycle:
    1. Require `Authorization: Bearer <key>`.
    2. Require the configured key prefix (`feather-ops-apikey-` by default).
    3. Look the key up by `sha256(key + KEY_SALT)` in the credential store.
    4. Reject revoked keys.
    5. Fire a best-effort lifetime usage increment.

Error handling strategy:
    - Missing/malformed/unknown/revoked keys -> `AuthenticationError` (401).
    - Credential store failures -> `ServiceError` (500, `authentication_error`).
    - Usage-recording failures are logged and ignored.
"""

import hashlib
import logging

from fastapi import Request

from app.core.errors import AuthenticationError, ServiceError
from app.store.base import Credential

logger = logging.getLogger(__name__)


def hash_api_key(api_key: str, salt: str) -> str:
    return hashlib.sha256((api_key + salt).encode("utf-8")).hexdigest()


async def authenticate_api_key(request: Request) -> Credential:
    """FastAPI dependency returning the authenticated `Credential`."""
    context = request.app.state.context
    settings = context.settings

    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        raise AuthenticationError("Invalid API key provided")

    api_key = auth_header[len("Bearer "):].strip()
    if not api_key.startswith(settings.api_key_prefix):
        raise AuthenticationError("Invalid API key format", code="invalid_api_key_format")

    try:
        credential = await context.credentials.lookup(hash_api_key(api_key, settings.key_salt))
    except Exception as exc:
        logger.exception("API key authentication error")
        raise ServiceError(
            "Authentication service error",
            code="authentication_error",
        ) from exc

    if credential is None:
        raise AuthenticationError("Invalid API key")

    if credential.revoked:
        raise AuthenticationError("API key has been revoked", code="revoked_api_key")

    try:
        await context.credentials.record_usage(credential.id)
    except Exception:
        logger.exception("Failed to record usage for credential %s", credential.id)

    return credential
