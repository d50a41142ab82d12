"""Public image provider utilities."""

from services.providers.providers import (
    PROVIDER_REGISTRY,
    BaseImageProvider,
    OpenAIImageProvider,
    StabilityImageProvider,
    generate_image,
    get_image_provider,
)
from services.providers.types import (
    EmptyResultError,
    GenerationRequest,
    ImageHandle,
    ImageProviderError,
    ProviderError,
    ProviderKind,
    UnknownProviderError,
)

__all__ = [
    "BaseImageProvider",
    "EmptyResultError",
    "GenerationRequest",
    "ImageHandle",
    "ImageProviderError",
    "OpenAIImageProvider",
    "PROVIDER_REGISTRY",
    "ProviderError",
    "ProviderKind",
    "StabilityImageProvider",
    "UnknownProviderError",
    "generate_image",
    "get_image_provider",
]
