"""Provider adapters for image generation services."""

from flyergen.adapters.base import (
    AspectRatio,
    ErrorCode,
    GenerationError,
    GenerationRequest,
    GenerationResult,
    ImageAdapter,
    ImageQuality,
    ProviderCapabilities,
    ProviderConfig,
    ProviderType,
)

__all__ = [
    "AspectRatio",
    "ErrorCode",
    "GenerationError",
    "GenerationRequest",
    "GenerationResult",
    "ImageAdapter",
    "ImageQuality",
    "ProviderCapabilities",
    "ProviderConfig",
    "ProviderType",
]
