"""Image generation API endpoint."""

import base64
import logging
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from flyergen.adapters.base import (
    AspectRatio,
    ErrorCode,
    GenerationError,
    GenerationRequest,
    ImageQuality,
    ProviderType,
)
from flyergen.api.dependencies import ImageServiceDep

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/images")

# HTTP status per error code; anything unlisted is a bad gateway
ERROR_STATUS_CODES = {
    ErrorCode.INVALID_PARAMETERS: 400,
    ErrorCode.PROMPT_TOO_LONG: 400,
    ErrorCode.UNSUPPORTED_ASPECT_RATIO: 400,
    ErrorCode.QUOTA_EXCEEDED: 429,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.SERVICE_UNAVAILABLE: 503,
    ErrorCode.NETWORK_ERROR: 503,
    ErrorCode.TIMEOUT: 504,
}


class ImageGenerationRequest(BaseModel):
    """Request body for image generation."""

    prompt: str = Field(..., description="Text description of desired image")
    aspect_ratio: AspectRatio = Field(default=AspectRatio.SQUARE, description="e.g. 16:9")
    quality: ImageQuality | None = Field(default=None, description="fast, standard, high, ultra")
    seed: int | None = None
    randomize_seed: bool = False
    user_id: str = ""
    style_name: str | None = None
    custom_style: str | None = None
    provider: ProviderType | None = Field(default=None, description="Provider to try first")
    provider_options: dict[str, Any] = Field(default_factory=dict)


class ImageGenerationResponse(BaseModel):
    """Response body for image generation."""

    image_base64: str = Field(..., description="Base64-encoded image data")
    mime_type: str = Field(..., description="MIME type (e.g., image/png)")
    provider: str = Field(..., description="Provider that served the request")
    seed: int | None = None
    cost: float
    generation_time_ms: int
    width: int
    height: int
    aspect_ratio: str
    quality: str


def error_status(error: GenerationError) -> int:
    return ERROR_STATUS_CODES.get(error.code, 502)


@router.post("/generate", response_model=ImageGenerationResponse)
async def generate_image(
    body: ImageGenerationRequest,
    service: ImageServiceDep,
) -> ImageGenerationResponse:
    """Generate an image, falling back across configured providers."""
    try:
        request = GenerationRequest(
            prompt=body.prompt,
            aspect_ratio=body.aspect_ratio,
            quality=body.quality,
            seed=body.seed,
            randomize_seed=body.randomize_seed,
            user_id=body.user_id,
            style_name=body.style_name,
            custom_style=body.custom_style,
            provider_options=body.provider_options,
        )
        result = await service.generate_image(request, body.provider)
    except GenerationError as e:
        status_code = error_status(e)
        logger.warning(f"Image generation failed ({status_code}): {e.code.value}: {e.message}")
        raise HTTPException(
            status_code=status_code,
            detail={
                "code": e.code.value,
                "message": e.message,
                "provider": e.provider.value if e.provider else None,
                "retryable": e.retryable,
            },
        ) from e

    return ImageGenerationResponse(
        image_base64=base64.b64encode(result.image_data).decode("utf-8"),
        mime_type=result.mime_type,
        provider=result.provider.value,
        seed=result.seed,
        cost=result.cost,
        generation_time_ms=result.generation_time_ms,
        width=result.metadata.width,
        height=result.metadata.height,
        aspect_ratio=result.metadata.aspect_ratio.value,
        quality=result.metadata.quality.value,
    )
