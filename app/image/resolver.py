"""Model resolution for image generation requests.

Processing flow:
    1. Fall back to the configured default model when none is requested.
    2. Accept canonical models directly; translate compatibility aliases.
    3. Look up provider + endpoint in the catalog.
    4. For multi-variant providers, pick the variant from the model name or
       from the requested size.

Error handling strategy:
    - Unknown model names raise `InvalidModel`. Nothing else is raised.

Determinism:
    Pure function of its inputs and the static catalog. No I/O.
"""

import logging

from app.core.errors import InvalidModel
from app.core.generation_types import ResolvedTarget
from app.image.provider_config import (
    DEFAULT_MODEL,
    MODEL_PROVIDERS,
    OPENAI_MODEL_MAP,
    PROVIDERS,
    SIZE_VARIANT_MAPS,
    SUPPORTED_MODELS,
    is_multi_variant,
)

logger = logging.getLogger(__name__)


def resolve(
    requested_model: str | None,
    requested_size: str | None,
    default_model: str = DEFAULT_MODEL,
) -> ResolvedTarget:
    """Resolve a caller-facing model/size into a routing target.

    Args:
        requested_model: Canonical model, alias, or `None`.
        requested_size: Requested output size or `None`.
        default_model: Canonical model used when `requested_model` is absent.

    Returns:
        `ResolvedTarget` whose provider exists in `PROVIDERS`.

    Raises:
        InvalidModel: When the name is neither canonical nor an alias.
    """
    model_name = requested_model or default_model

    if model_name in MODEL_PROVIDERS:
        canonical = model_name
    elif model_name in OPENAI_MODEL_MAP:
        canonical = OPENAI_MODEL_MAP[model_name]
        logger.info("Resolved model alias %r to canonical model %r", model_name, canonical)
    else:
        raise InvalidModel(f"Invalid model. Must be one of: {', '.join(SUPPORTED_MODELS)}")

    provider_name = MODEL_PROVIDERS[canonical]
    provider = PROVIDERS[provider_name]

    variant = None
    metadata = {}
    if is_multi_variant(provider_name):
        variant = _select_variant(provider_name, canonical, requested_size)
        metadata = {
            "variant_param": provider.get("variant_param", "model"),
            "size_variants": dict(SIZE_VARIANT_MAPS.get(provider_name, {})),
        }

    return ResolvedTarget(
        provider_name=provider_name,
        canonical_model=canonical,
        endpoint_path=provider["endpoint"],
        requested_model=model_name,
        variant=variant,
        provider_metadata=metadata,
    )


def _select_variant(provider_name: str, canonical: str, requested_size: str | None) -> str:
    # The bare family name (e.g. "flux") names no specific variant; any other
    # native model of the provider does.
    if canonical != provider_name and canonical in PROVIDERS[provider_name]["models"]:
        return canonical

    size_map = SIZE_VARIANT_MAPS.get(provider_name, {})
    fallback = PROVIDERS[provider_name]["fallback_variant"]
    if requested_size is None:
        return fallback
    return size_map.get(requested_size, fallback)
