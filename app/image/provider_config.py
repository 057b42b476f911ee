"""Static provider/model catalog for the image gateway.

Architectural role:
    Centralizes the mapping from caller-facing model names to upstream providers,
    their endpoint paths, and OpenAI-compatible aliases. Consumed by
    `app.image.resolver` for routing and by the HTTP adapter for model listing.

Catalog contents:
    - `PROVIDERS`: provider name -> endpoint path + native model list.
    - `MODEL_PROVIDERS`: canonical model -> provider name.
    - `OPENAI_MODEL_MAP`: compatibility alias -> canonical model.
    - `FLUX_SIZE_MAP`: requested size -> flux variant.
    - `SUPPORTED_SIZES` / `SUPPORTED_FORMATS`: request validation sets.
    - `POLL_CONFIG`: default poll budget for upstream jobs.

Determinism:
    Pure data plus lookup helpers. No I/O and no mutable state.
"""

# Upstream providers keyed by provider name. Endpoint paths are appended to the
# configured upstream base URL (`EXTERNAL_API_URL`).
PROVIDERS = {

    "dalle": {
        "endpoint": "/ai-image/dalle",
        "models": ["dalle"]
    },

    "magicstudio": {
        "endpoint": "/ai-image/magicstudio",
        "models": ["magicstudio"]
    },

    "sdxl": {
        "endpoint": "/ai-image/sdxl-beta",
        "models": ["sdxl-beta"]
    },

    "flux": {
        "endpoint": "/ai-image/flux",
        "models": [
            "flux",
            "flux-schnell",
            "flux-realism",
            "flux-pro",
            "flux-1.1-pro",
            "flux-1.1-pro-ultra",
            "flux-1.1-pro-ultra-raw",
        ],
        # Multi-variant provider: the chosen variant travels as `model=<variant>`.
        "variant_param": "model",
        "fallback_variant": "flux-1.1-pro-ultra",
    }

}

MODEL_PROVIDERS = {
    model: provider_name
    for provider_name, provider in PROVIDERS.items()
    for model in provider["models"]
}

OPENAI_MODEL_MAP = {
    "dall-e-3": "dalle",
    "dall-e-2": "magicstudio",
    "stable-diffusion-3": "sdxl-beta",
    "stable-diffusion-2": "flux-1.1-pro-ultra",
}

FLUX_SIZE_MAP = {
    "256x256": "flux",
    "512x512": "flux-schnell",
    "1024x1024": "flux-realism",
    "1792x1024": "flux-pro",
    "1024x1792": "flux-1.1-pro",
    "2048x2048": "flux-1.1-pro-ultra",
    "hd": "flux-1.1-pro-ultra-raw",
}

# Size tables for providers that expose several variants behind one endpoint.
SIZE_VARIANT_MAPS = {
    "flux": FLUX_SIZE_MAP,
}

SUPPORTED_MODELS = list(MODEL_PROVIDERS)

SUPPORTED_SIZES = [
    "256x256",
    "512x512",
    "1024x1024",
    "1792x1024",
    "1024x1792",
    "2048x2048",
    "hd",
]

SUPPORTED_FORMATS = [
    "url",
    "b64_json",
]

DEFAULT_MODEL = "dalle"

POLL_CONFIG = {
    "max_attempts": 60,
    "interval_ms": 10000,
}


def is_known_model(name: str) -> bool:
    """Return True when `name` is a canonical model or a compatibility alias."""
    return name in MODEL_PROVIDERS or name in OPENAI_MODEL_MAP


def is_multi_variant(provider_name: str) -> bool:
    return len(PROVIDERS[provider_name]["models"]) > 1


def list_models(created: int, owner: str) -> dict:
    """Build the OpenAI-style model listing.

    Native models come first (tagged with their provider), followed by the
    compatibility aliases tagged `openai-compatible`.
    """
    models = []

    for provider_name, provider in PROVIDERS.items():
        for model_name in provider["models"]:
            models.append({
                "id": model_name,
                "object": "model",
                "created": created,
                "owned_by": owner,
                "provider": provider_name,
            })

    for alias in OPENAI_MODEL_MAP:
        models.append({
            "id": alias,
            "object": "model",
            "created": created,
            "owned_by": owner,
            "provider": "openai-compatible",
        })

    return {"object": "list", "data": models}
