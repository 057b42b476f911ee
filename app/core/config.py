"""Runtime settings for the image gateway.

Fields are read from environment variables at import time, after `.env` has
been loaded with `python-dotenv`. Tests and embedding callers construct
`GatewaySettings(...)` with explicit values instead.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

from app.image.provider_config import DEFAULT_MODEL, POLL_CONFIG

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class GatewaySettings:
    """Gateway configuration.

    Relevant environment variables:
        - `EXTERNAL_API_URL`: upstream provider base URL.
        - `IMAGE_DEFAULT_MODEL`, `IMAGE_CREATOR`
        - `POLL_MAX_ATTEMPTS`, `POLL_INTERVAL_MS`, `UPSTREAM_TIMEOUT_SECONDS`
        - `TEMP_IMAGE_DIR`, `SIGNED_URL_TTL_SECONDS`
        - `DB_URL`, `DB_KEY`, `STORAGE_BUCKET` (Supabase backends)
        - `KEY_SALT`, `API_KEY_PREFIX`, `DEFAULT_RATE_LIMIT`
        - `KEEP_ALIVE_ENABLED`, `KEEP_ALIVE_INTERVAL_MINUTES`, `PUBLIC_URL`, `PORT`
        - `CORS_ORIGINS`
        - `DEBUG`
    """

    external_api_url: str = os.getenv("EXTERNAL_API_URL", "").strip().rstrip("/")
    default_model: str = os.getenv("IMAGE_DEFAULT_MODEL", DEFAULT_MODEL).strip()
    creator: str = os.getenv("IMAGE_CREATOR", "featherops").strip()

    poll_max_attempts: int = int(os.getenv("POLL_MAX_ATTEMPTS", str(POLL_CONFIG["max_attempts"])))
    poll_interval_ms: int = int(os.getenv("POLL_INTERVAL_MS", str(POLL_CONFIG["interval_ms"])))
    upstream_timeout_seconds: float = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "30"))

    temp_image_dir: str = os.getenv("TEMP_IMAGE_DIR", "./temp")
    signed_url_ttl_seconds: int = int(os.getenv("SIGNED_URL_TTL_SECONDS", "120"))

    db_url: str = os.getenv("DB_URL", "").strip().rstrip("/")
    db_key: str = os.getenv("DB_KEY", "").strip()
    storage_bucket: str = os.getenv("STORAGE_BUCKET", "images").strip()

    key_salt: str = os.getenv("KEY_SALT", "")
    api_key_prefix: str = os.getenv("API_KEY_PREFIX", "feather-ops-apikey-")
    default_rate_limit: int = int(os.getenv("DEFAULT_RATE_LIMIT", "100"))

    keep_alive_enabled: bool = _env_bool("KEEP_ALIVE_ENABLED")
    keep_alive_interval_minutes: float = float(os.getenv("KEEP_ALIVE_INTERVAL_MINUTES", "5"))
    public_url: str = os.getenv("PUBLIC_URL", "").strip().rstrip("/")
    port: int = int(os.getenv("PORT", "3000"))

    # Comma-separated; `*` allows any origin.
    cors_origins: tuple[str, ...] = tuple(
        origin.strip() for origin in os.getenv("CORS_ORIGINS", "*").split(",") if origin.strip()
    )

    debug: bool = _env_bool("DEBUG")

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.db_url and self.db_key)

    @property
    def health_url(self) -> str:
        base = self.public_url or f"http://localhost:{self.port}"
        return f"{base}/health"
