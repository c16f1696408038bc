"""Ideogram v3 image generation adapter."""

import logging
import time

import httpx

from flyergen.adapters.base import (
    AspectRatio,
    ErrorCode,
    GenerationError,
    GenerationRequest,
    GenerationResult,
    ImageAdapter,
    ImageMetadata,
    ImageQuality,
    Pricing,
    ProviderCapabilities,
    ProviderConfig,
    ProviderType,
    RateLimits,
    build_prompt,
)
from flyergen.constants import (
    IDEOGRAM_BASE_URL,
    NORMALIZED_DIMENSIONS,
    PORTRAIT_COMPENSATED_RATIOS,
)

logger = logging.getLogger(__name__)

API_VERSION = "v3"

RENDERING_SPEEDS = {
    ImageQuality.FAST: "TURBO",
    ImageQuality.STANDARD: "BALANCED",
    ImageQuality.HIGH: "QUALITY",
    ImageQuality.ULTRA: "QUALITY",
}

# Inverse of RENDERING_SPEEDS, for a configured default speed
SPEED_QUALITIES = {
    "TURBO": ImageQuality.FAST,
    "BALANCED": ImageQuality.STANDARD,
    "QUALITY": ImageQuality.HIGH,
}

# One tier up, used for ratios that come out soft at the requested speed
QUALITY_UPGRADES = {
    ImageQuality.FAST: ImageQuality.STANDARD,
    ImageQuality.STANDARD: ImageQuality.HIGH,
    ImageQuality.HIGH: ImageQuality.HIGH,
    ImageQuality.ULTRA: ImageQuality.ULTRA,
}

CAPABILITIES = ProviderCapabilities(
    supported_aspect_ratios=(
        AspectRatio.SQUARE,
        AspectRatio.WIDESCREEN,
        AspectRatio.PORTRAIT,
        AspectRatio.STANDARD,
        AspectRatio.PORTRAIT_STANDARD,
        AspectRatio.CLASSIC_PHOTO,
        AspectRatio.PORTRAIT_PHOTO,
        AspectRatio.EXTENDED_PORTRAIT,
        AspectRatio.EXTENDED_LANDSCAPE,
        AspectRatio.ULTRA_PORTRAIT,
        AspectRatio.ULTRA_LANDSCAPE,
    ),
    supported_qualities=(ImageQuality.FAST, ImageQuality.STANDARD, ImageQuality.HIGH),
    max_prompt_length=2000,
    supports_seeds=True,
    supports_style_images=True,
    supports_image_editing=True,
    rate_limits=RateLimits(requests_per_minute=10, requests_per_hour=100, requests_per_day=1000),
    pricing=Pricing(
        cost_per_image=0.08,
        free_quota=25,
        quality_multipliers={"fast": 0.8, "standard": 1.0, "high": 1.5, "ultra": 2.0},
    ),
)


def ideogram_aspect_ratio(aspect_ratio: AspectRatio) -> str:
    """Ideogram spells ratios as "16x9"."""
    return aspect_ratio.value.replace(":", "x")


class IdeogramAdapter(ImageAdapter):
    """Adapter for the Ideogram v3 REST API."""

    default_base_url = IDEOGRAM_BASE_URL

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        speed = str(config.options.get("rendering_speed", "BALANCED")).upper()
        self.default_quality = SPEED_QUALITIES.get(speed, ImageQuality.STANDARD)

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.IDEOGRAM

    def get_capabilities(self) -> ProviderCapabilities:
        return CAPABILITIES

    def effective_quality(self, request: GenerationRequest) -> ImageQuality:
        quality = request.quality or self.default_quality
        if request.aspect_ratio.value in PORTRAIT_COMPENSATED_RATIOS:
            return QUALITY_UPGRADES[quality]
        return quality

    def rendering_speed(self, request: GenerationRequest) -> str:
        """Vendor speed knob for a request, after portrait compensation."""
        return RENDERING_SPEEDS[self.effective_quality(request)]

    def error_from_status(self, status: int, message: str) -> GenerationError:
        if status == 401:
            return GenerationError(
                "Invalid Ideogram API key", ErrorCode.INVALID_API_KEY, self.provider_type
            )
        if status == 402:
            return GenerationError(
                "Insufficient credits in Ideogram account",
                ErrorCode.QUOTA_EXCEEDED,
                self.provider_type,
            )
        return super().error_from_status(status, message)

    def _headers(self) -> dict[str, str]:
        return {"Api-Key": self.config.api_key}

    async def generate_image(self, request: GenerationRequest) -> GenerationResult:
        start = time.monotonic()
        try:
            self.validate_params(request)
            prompt = build_prompt(request)
            rendering_speed = self.rendering_speed(request)
            requested = request.quality or self.default_quality
            if self.effective_quality(request) != requested:
                logger.warning(
                    f"Upgrading {requested.value} quality to {rendering_speed} "
                    f"for portrait ratio {request.aspect_ratio.value}"
                )
            seed = self.resolve_seed(request)

            # Ideogram only accepts multipart; (None, value) parts are plain form fields
            fields: list[tuple[str, tuple]] = [
                ("prompt", (None, prompt)),
                ("aspect_ratio", (None, ideogram_aspect_ratio(request.aspect_ratio))),
                ("rendering_speed", (None, rendering_speed)),
            ]
            if seed is not None:
                fields.append(("seed", (None, str(seed))))
            for index, image in enumerate(request.style_reference_images or []):
                fields.append(
                    ("style_reference_images", (f"style_{index}.png", image, "image/png"))
                )

            self._log_metrics("generate_start", request)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.base_url}/v1/ideogram-{API_VERSION}/generate",
                    headers=self._headers(),
                    files=fields,
                )
                response.raise_for_status()
                data = self._json_body(response)

                image_url = None
                items = data.get("data") or []
                if isinstance(items, list) and items and isinstance(items[0], dict):
                    image_url = items[0].get("url")
                if not image_url and data.get("url"):
                    image_url = data["url"]
                if not image_url:
                    raise GenerationError(
                        "Invalid response format from Ideogram API",
                        ErrorCode.GENERATION_FAILED,
                        self.provider_type,
                    )

                image_data, mime_type = await self._download_image(client, image_url)
        except GenerationError as e:
            self._log_metrics("generate_error", request, error=e)
            raise
        except Exception as e:
            error = self.translate_error(e, "generate_image")
            self._log_metrics("generate_error", request, error=error)
            raise error from e

        width, height = NORMALIZED_DIMENSIONS[request.aspect_ratio.value]
        result = GenerationResult(
            image_data=image_data,
            mime_type=mime_type,
            seed=seed,
            provider=self.provider_type,
            cost=self.estimate_cost(request),
            generation_time_ms=int((time.monotonic() - start) * 1000),
            metadata=ImageMetadata(
                width=width,
                height=height,
                aspect_ratio=request.aspect_ratio,
                prompt=prompt,
                quality=request.quality or self.default_quality,
            ),
            provider_data={
                "api_version": API_VERSION,
                "rendering_speed": rendering_speed,
                "original_response": data,
            },
        )
        self._log_metrics("generate_success", request, result=result)
        return result

    async def _probe(self) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.get(f"{self.base_url}/v1/health", headers=self._headers())
        return response.is_success
