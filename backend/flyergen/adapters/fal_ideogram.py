"""Fal-AI Ideogram v3 adapter."""

import base64
from typing import Any

from flyergen.adapters.base import (
    AspectRatio,
    ErrorCode,
    GenerationError,
    GenerationRequest,
    ImageQuality,
    Pricing,
    ProviderCapabilities,
    ProviderConfig,
    ProviderType,
    RateLimits,
    build_prompt,
)
from flyergen.adapters.fal_base import FalQueueAdapter
from flyergen.adapters.ideogram import RENDERING_SPEEDS, SPEED_QUALITIES
from flyergen.constants import FAL_IDEOGRAM_DIMENSIONS, FAL_IDEOGRAM_MODEL

MAX_IMAGES = 4

IMAGE_SIZES = {
    "1:1": "square_hd",
    "16:9": "landscape_16_9",
    "9:16": "portrait_16_9",
    "4:3": "landscape_4_3",
    "3:4": "portrait_4_3",
    "4:5": "portrait_4_3",
    "5:7": "portrait_4_3",
    "3:2": "landscape_4_3",
    "2:3": "portrait_4_3",
    "10:16": "portrait_16_9",
    "16:10": "landscape_16_9",
    "1:3": "portrait_16_9",
    "3:1": "landscape_16_9",
}

# provider_options passed through to the model unchanged
PASSTHROUGH_OPTIONS = ("negative_prompt", "style", "color_palette", "expand_prompt", "sync_mode")

CAPABILITIES = ProviderCapabilities(
    supported_aspect_ratios=tuple(AspectRatio),
    supported_qualities=tuple(ImageQuality),
    max_prompt_length=1000,
    supports_seeds=True,
    supports_style_images=True,
    supports_image_editing=False,
    rate_limits=RateLimits(requests_per_minute=10, requests_per_hour=100, requests_per_day=1000),
    pricing=Pricing(
        cost_per_image=0.06,
        cost_per_megapixel={"TURBO": 0.03, "BALANCED": 0.06, "QUALITY": 0.09},
    ),
)


def to_data_uri(image: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"


def is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


class FalIdeogramAdapter(FalQueueAdapter):
    """Adapter for fal-ai/ideogram/v3 on the Fal-AI queue."""

    default_model = FAL_IDEOGRAM_MODEL

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        speed = str(config.options.get("rendering_speed", "BALANCED")).upper()
        self.default_quality = SPEED_QUALITIES.get(speed, ImageQuality.STANDARD)

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.FAL_IDEOGRAM

    def get_capabilities(self) -> ProviderCapabilities:
        return CAPABILITIES

    def rendering_speed(self, request: GenerationRequest) -> str:
        """Speed sent to the model; an explicit rendering_speed option wins."""
        option = request.provider_options.get("rendering_speed")
        if option:
            return str(option).upper()
        return RENDERING_SPEEDS[self.effective_quality(request)]

    def dimensions(self, request: GenerationRequest) -> tuple[int, int]:
        custom = request.provider_options.get("custom_image_size")
        if (
            isinstance(custom, dict)
            and is_positive_int(custom.get("width"))
            and is_positive_int(custom.get("height"))
        ):
            return custom["width"], custom["height"]
        return FAL_IDEOGRAM_DIMENSIONS[request.aspect_ratio.value]

    def validate_params(self, request: GenerationRequest) -> None:
        super().validate_params(request)
        options = request.provider_options
        speed = options.get("rendering_speed")
        if speed and str(speed).upper() not in SPEED_QUALITIES:
            raise GenerationError(
                f"Unknown rendering speed: {speed}", ErrorCode.INVALID_PARAMETERS, self.provider_type
            )
        if "custom_image_size" in options:
            custom = options["custom_image_size"]
            if not (
                isinstance(custom, dict)
                and is_positive_int(custom.get("width"))
                and is_positive_int(custom.get("height"))
            ):
                raise GenerationError(
                    f"custom_image_size needs positive integer width and height, got {custom!r}",
                    ErrorCode.INVALID_PARAMETERS,
                    self.provider_type,
                )
        # Larger counts are capped at MAX_IMAGES when the arguments are built
        if "num_images" in options and not is_positive_int(options["num_images"]):
            raise GenerationError(
                f"num_images must be a positive integer, got {options['num_images']!r}",
                ErrorCode.INVALID_PARAMETERS,
                self.provider_type,
            )

    def error_from_status(self, status: int, message: str) -> GenerationError:
        provider = self.provider_type
        if status not in (422, 429):
            if "API key" in message:
                return GenerationError(
                    "Invalid API key for Fal-AI Ideogram", ErrorCode.INVALID_API_KEY, provider
                )
            if "quota" in message or "limit" in message:
                return GenerationError(
                    "Quota exceeded for Fal-AI Ideogram", ErrorCode.QUOTA_EXCEEDED, provider
                )
            if "timeout" in message:
                return GenerationError(
                    "Request timeout for Fal-AI Ideogram", ErrorCode.TIMEOUT, provider
                )
        return super().error_from_status(status, message)

    def build_arguments(self, request: GenerationRequest) -> dict[str, Any]:
        options = request.provider_options
        arguments: dict[str, Any] = {
            "prompt": build_prompt(request),
            "image_size": IMAGE_SIZES[request.aspect_ratio.value],
            "rendering_speed": self.rendering_speed(request),
            "expand_prompt": True,
            "num_images": 1,
            "sync_mode": False,
        }
        seed = self.resolve_seed(request)
        if seed is not None:
            arguments["seed"] = seed
        if request.style_reference_images:
            arguments["image_urls"] = [to_data_uri(image) for image in request.style_reference_images]

        for name in PASSTHROUGH_OPTIONS:
            if name in options:
                arguments[name] = options[name]
        if isinstance(options.get("style_codes"), list):
            arguments["style_codes"] = options["style_codes"]
        if options.get("custom_image_size"):
            arguments["image_size"] = options["custom_image_size"]
        if options.get("num_images"):
            arguments["num_images"] = min(int(options["num_images"]), MAX_IMAGES)
        if options.get("seed") is not None:
            arguments["seed"] = options["seed"]
        return arguments

    def probe_arguments(self) -> dict[str, Any]:
        return {
            "prompt": "test",
            "image_size": "square_hd",
            "rendering_speed": "TURBO",
            "expand_prompt": False,
            "num_images": 1,
            "sync_mode": False,
        }

    def result_dimensions(
        self, request: GenerationRequest, arguments: dict[str, Any], image: Any
    ) -> tuple[int, int]:
        return self.dimensions(request)

    def megapixel_cost(self, width: int, height: int, rendering_speed: str) -> float:
        rates = self.get_capabilities().pricing.cost_per_megapixel
        return width * height / 1_000_000 * rates.get(rendering_speed, rates["BALANCED"])

    def result_cost(
        self, request: GenerationRequest, arguments: dict[str, Any], width: int, height: int
    ) -> float:
        return self.megapixel_cost(width, height, arguments["rendering_speed"])

    def estimate_cost(self, request: GenerationRequest) -> float:
        width, height = self.dimensions(request)
        return self.megapixel_cost(width, height, self.rendering_speed(request))
