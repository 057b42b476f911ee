"""Gateway error taxonomy and OpenAI-compatible error bodies.

Architectural role:
    Every failure the pipeline surfaces to a caller is an instance of
    `GatewayError`. The HTTP adapter renders them through `to_dict()` with the
    HTTP status carried on the exception.

Error kinds:
    - Client-fixable: `InvalidRequest`, `InvalidModel`, `AuthenticationError`,
      `NotFound`, `QuotaExceeded`.
    - Upstream: `UpstreamRejected`, `UpstreamGenerationFailed`,
      `GenerationTimeout`.
    - Local processing: `ArtifactProcessingFailed`, `ServiceError`.

Storage and audit failures have no class here on purpose: they are degraded
or logged where they happen and never reach the caller.
"""

from __future__ import annotations


def error_body(
    message: str,
    error_type: str = "server_error",
    param: str | None = None,
    code: str | None = None,
) -> dict:
    """Return the OpenAI-shaped `{"error": {...}}` envelope."""
    return {
        "error": {
            "message": message,
            "type": error_type,
            "param": param,
            "code": code,
        }
    }


class GatewayError(Exception):
    """Base class for caller-visible failures."""

    status_code = 500
    error_type = "server_error"
    default_code: str | None = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        param: str | None = None,
        code: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.param = param
        self.code = code or self.default_code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return error_body(self.message, self.error_type, self.param, self.code)


class InvalidRequest(GatewayError):
    status_code = 400
    error_type = "invalid_request_error"
    default_code = "param_invalid"


class InvalidModel(InvalidRequest):
    """Requested model is neither a canonical model nor a known alias."""

    def __init__(self, message: str, **kwargs) -> None:
        kwargs.setdefault("param", "model")
        super().__init__(message, **kwargs)


class AuthenticationError(GatewayError):
    status_code = 401
    error_type = "invalid_request_error"
    default_code = "invalid_api_key"

    def __init__(self, message: str, **kwargs) -> None:
        kwargs.setdefault("param", "authorization")
        super().__init__(message, **kwargs)


class NotFound(GatewayError):
    status_code = 404
    error_type = "invalid_request_error"
    default_code = "route_not_found"


class QuotaExceeded(GatewayError):
    status_code = 429
    error_type = "rate_limit_error"
    default_code = "rate_limit_exceeded"


class UpstreamRejected(GatewayError):
    """Provider refused the initial submission (400) or was unreachable (502)."""

    status_code = 400
    error_type = "api_error"
    default_code = "generation_failed"


class UpstreamGenerationFailed(GatewayError):
    """Provider reported an explicit failure while the job was polled."""

    status_code = 502
    error_type = "api_error"
    default_code = "generation_failed"


class GenerationTimeout(GatewayError):
    status_code = 408
    error_type = "timeout_error"
    default_code = "generation_timeout"


class ArtifactProcessingFailed(GatewayError):
    status_code = 500
    error_type = "processing_error"
    default_code = "image_processing_failed"


class ServiceError(GatewayError):
    """Internal collaborator failure that must stop the request (e.g. auth store down)."""

    status_code = 500
    error_type = "server_error"
    default_code = "internal_error"
