"""
Process entrypoint for the image gateway.

Architectural role:
- Configures stdlib logging (DEBUG level when `DEBUG=true`).
- Serves `app.api.http_api:app` with uvicorn on `PORT`.

Side effects:
- `.env` is loaded when `app.core.config` is imported.
- Temporary artifact files are created lazily by the materializer, not here.
"""

import logging

import uvicorn

from app.core.config import GatewaySettings


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)


def main():
    settings = GatewaySettings()
    configure_logging(settings.debug)
    if not settings.external_api_url:
        logging.getLogger(__name__).warning("EXTERNAL_API_URL is not set; generations will fail")

    uvicorn.run(
        "app.api.http_api:app",
        host="0.0.0.0",
        port=settings.port,
        log_config=None,
    )


if __name__ == "__main__":
    main()
