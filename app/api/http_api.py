"""
HTTP API adapter for the image gateway.

Architectural role:
- Expose OpenAI-compatible image endpoints.
- Authenticate API keys and enforce the per-credential daily quota.
- Delegate generation to `GenerationOrchestrator` held by the `GatewayContext`.
- Render every failure in the OpenAI error shape.
- Allow cross-origin browser clients (`CORS_ORIGINS`, all origins by default).

Endpoint responsibilities:
- `POST /v1/images/generations`: validate, gate on quota, generate.
- `GET /v1/images/models`: list native models and compatibility aliases.
- `GET|POST /v1/admin/keepalive/*`: keep-alive status, logs, start, stop.
- `GET /health`: liveness check (unauthenticated).

API request lifecycle (`POST /v1/images/generations`):
1. Authenticate the bearer key (`authenticate_api_key`).
2. Parse the JSON body into a validated `GenerationRequest`.
3. Consume one request from the credential's daily quota.
4. Run the orchestrator and return its normalized response with
   `X-RateLimit-*` headers.

Error handling strategy:
- `GatewayError` subclasses map to their own status/type/code.
- Unknown routes -> 404 `route_not_found`.
- Unexpected exceptions -> 500 `server_error`.
- A failing quota store is logged and the request is admitted.

Side effects:
- Builds the `GatewayContext` at startup and closes it at shutdown.
"""

import asyncio
import json
import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.auth import authenticate_api_key
from app.api.schemas import ErrorResponse, ImageResponse, KeepAliveStart, ModelList
from app.core.config import GatewaySettings
from app.core.context import GatewayContext, build_context
from app.core.errors import GatewayError, InvalidRequest, NotFound, QuotaExceeded, error_body
from app.core.generation_types import GenerationRequest
from app.image.provider_config import list_models
from app.store.base import Credential

logger = logging.getLogger(__name__)


# ============================================================
# Application Factory
# ============================================================

def create_app(
    settings: GatewaySettings | None = None,
    context: GatewayContext | None = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    A prebuilt `context` is used as-is (tests inject fakes this way);
    otherwise one is built from `settings` at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        ctx = context or build_context(settings)
        app.state.context = ctx
        await ctx.startup()
        logger.info("Image gateway started")
        try:
            yield
        finally:
            await ctx.aclose()
            logger.info("Image gateway stopped")

    app = FastAPI(title="Image Generation Gateway", lifespan=lifespan)
    effective = settings or (context.settings if context is not None else GatewaySettings())
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(effective.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _register_error_handlers(app)
    _register_routes(app)
    return app


def _context(request: Request) -> GatewayContext:
    return request.app.state.context


# ============================================================
# Error Handlers
# ============================================================

def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            err = NotFound(f"Route not found: {request.method} {request.url.path}")
            return JSONResponse(status_code=404, content=err.to_dict())
        return JSONResponse(
            status_code=exc.status_code,
            content=error_body(str(exc.detail), "invalid_request_error"),
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=error_body("An unexpected error occurred", "server_error", None, "internal_error"),
        )


# ============================================================
# Helpers
# ============================================================

async def _read_json(request: Request, required: bool = True):
    raw = await request.body()
    if not raw.strip():
        if required:
            raise InvalidRequest("Request body must be a JSON object")
        return {}
    try:
        return json.loads(raw)
    except ValueError as exc:
        raise InvalidRequest("Request body must be valid JSON") from exc


async def _consume_quota(context: GatewayContext, credential: Credential):
    ceiling = credential.quota_ceiling or context.settings.default_rate_limit
    try:
        return await context.ledger.check_and_consume(credential.id, ceiling)
    except QuotaExceeded:
        raise
    except Exception:
        # Ledger store failures admit the request.
        logger.exception("Quota ledger unavailable for credential %s; admitting request", credential.id)
        return None


# ============================================================
# Routes
# ============================================================

def _register_routes(app: FastAPI) -> None:

    error_responses = {code: {"model": ErrorResponse} for code in (400, 401, 408, 429, 500, 502)}

    @app.get("/health")
    def health():
        return {"status": "ok", "message": "Service is running"}

    @app.post(
        "/v1/images/generations",
        response_model=ImageResponse,
        response_model_exclude_none=True,
        responses=error_responses,
    )
    async def create_image(
        request: Request,
        response: Response,
        credential: Credential = Depends(authenticate_api_key),
    ):
        """
        OpenAI-compatible image generation endpoint.

        `n > 1` returns the same artifact `n` times; the upstream provider is
        called once per request.
        """
        context = _context(request)
        body = await _read_json(request)
        generation_request = GenerationRequest.from_payload(body, credential_id=credential.id)

        decision = await _consume_quota(context, credential)
        if decision is not None:
            response.headers.update(decision.headers())

        logger.debug(
            "Generating image for credential %s (model=%s, n=%d, format=%s)",
            credential.id,
            generation_request.model,
            generation_request.count,
            generation_request.response_format,
        )
        return await context.orchestrator.generate(generation_request)

    @app.get("/v1/images/models", response_model=ModelList)
    async def get_models(request: Request, credential: Credential = Depends(authenticate_api_key)):
        return list_models(created=int(time.time()), owner=_context(request).settings.creator)

    # --------------------------------------------------------
    # Keep-alive administration
    # --------------------------------------------------------

    @app.get("/v1/admin/keepalive/status")
    async def keepalive_status(request: Request, credential: Credential = Depends(authenticate_api_key)):
        return {
            "status": _context(request).keep_alive.get_status(),
            "message": "Keep-alive service status",
        }

    @app.get("/v1/admin/keepalive/logs")
    async def keepalive_logs(request: Request, credential: Credential = Depends(authenticate_api_key)):
        logs = _context(request).keep_alive.get_logs()
        return {"logs": logs, "count": len(logs), "message": "Keep-alive service logs"}

    @app.post("/v1/admin/keepalive/start")
    async def keepalive_start(request: Request, credential: Credential = Depends(authenticate_api_key)):
        context = _context(request)
        try:
            options = KeepAliveStart.model_validate(await _read_json(request, required=False))
        except ValidationError as exc:
            raise InvalidRequest("Invalid keep-alive options") from exc
        if not context.keep_alive.is_running:
            context.keep_alive.start(
                options.url,
                options.intervalMinutes or context.settings.keep_alive_interval_minutes,
            )
        return {"status": context.keep_alive.get_status(), "message": "Keep-alive service started"}

    @app.post("/v1/admin/keepalive/stop")
    async def keepalive_stop(request: Request, credential: Credential = Depends(authenticate_api_key)):
        context = _context(request)
        if context.keep_alive.is_running:
            await asyncio.to_thread(context.keep_alive.stop)
        return {"status": context.keep_alive.get_status(), "message": "Keep-alive service stopped"}


app = create_app()
