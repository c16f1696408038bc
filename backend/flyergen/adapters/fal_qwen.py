"""Fal-AI qwen-image adapter."""

import math
from typing import Any

from flyergen.adapters.base import (
    AspectRatio,
    ErrorCode,
    GenerationError,
    GenerationRequest,
    ImageQuality,
    Pricing,
    ProviderCapabilities,
    ProviderType,
    RateLimits,
    build_prompt,
)
from flyergen.adapters.fal_base import FalQueueAdapter
from flyergen.constants import FAL_PRESET_DIMENSIONS, FAL_QWEN_MODEL, PORTRAIT_COMPENSATED_RATIOS

MAX_INFERENCE_STEPS = 50

BASE_INFERENCE_STEPS = {
    ImageQuality.FAST: 15,
    ImageQuality.STANDARD: 25,
    ImageQuality.HIGH: 35,
    ImageQuality.ULTRA: 50,
}

IMAGE_SIZES = {
    "1:1": "square_hd",
    "16:9": "landscape_16_9",
    "9:16": "portrait_16_9",
    "4:3": "landscape_4_3",
    "3:4": "portrait_4_3",
    "4:5": "portrait_4_3",
    "5:7": "portrait_16_9",
    "3:2": "landscape_4_3",
    "2:3": "portrait_4_3",
}

# Fal presets render smaller than our normalized sizes; extra steps keep them sharp
STEP_COMPENSATION = {
    "1:1": 1.0,
    "16:9": 1.3,
    "9:16": 1.5,
    "4:3": 1.2,
    "3:4": 1.3,
    "4:5": 1.3,
    "5:7": 1.5,
    "3:2": 1.2,
    "2:3": 1.3,
}

PORTRAIT_KEYWORDS = (
    "highly detailed",
    "sharp focus",
    "professional photography",
    "high resolution",
    "crisp details",
)

PORTRAIT_GUIDANCE_SCALE = 4.5
DEFAULT_GUIDANCE_SCALE = 3.0

CAPABILITIES = ProviderCapabilities(
    supported_aspect_ratios=tuple(AspectRatio(ratio) for ratio in IMAGE_SIZES),
    supported_qualities=tuple(ImageQuality),
    max_prompt_length=1000,
    supports_seeds=True,
    supports_style_images=False,
    supports_image_editing=False,
    rate_limits=RateLimits(requests_per_minute=10, requests_per_hour=100, requests_per_day=1000),
    pricing=Pricing(cost_per_image=0.05, free_quota=0, cost_per_megapixel={"default": 0.05}),
)

# provider_options key -> (low, high) inclusive numeric bounds
NUMERIC_OPTION_BOUNDS = {
    "num_inference_steps": (1, MAX_INFERENCE_STEPS),
    "guidance_scale": (0.0, 20.0),
    "num_images": (1, 4),
}
BOOLEAN_OPTIONS = ("enable_safety_checker", "sync_mode")


def enhance_portrait_prompt(prompt: str, aspect_ratio: AspectRatio) -> str:
    """Append sharpness keywords to portrait prompts, skipping ones already present."""
    if aspect_ratio.value not in PORTRAIT_COMPENSATED_RATIOS:
        return prompt
    enhanced = prompt
    for keyword in PORTRAIT_KEYWORDS:
        if keyword not in enhanced.lower():
            enhanced = f"{enhanced}, {keyword}"
    return enhanced


def inference_steps(quality: ImageQuality, aspect_ratio: AspectRatio) -> int:
    scaled = BASE_INFERENCE_STEPS[quality] * STEP_COMPENSATION[aspect_ratio.value]
    # Half-up rounding, capped at the model maximum
    return min(math.floor(scaled + 0.5), MAX_INFERENCE_STEPS)


class FalQwenAdapter(FalQueueAdapter):
    """Adapter for fal-ai/qwen-image on the Fal-AI queue."""

    default_model = FAL_QWEN_MODEL

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.FAL_QWEN

    def get_capabilities(self) -> ProviderCapabilities:
        return CAPABILITIES

    def validate_params(self, request: GenerationRequest) -> None:
        super().validate_params(request)
        options = request.provider_options
        for name, (low, high) in NUMERIC_OPTION_BOUNDS.items():
            if name not in options:
                continue
            value = options[name]
            if isinstance(value, bool) or not isinstance(value, (int, float)) or not low <= value <= high:
                raise GenerationError(
                    f"{name} must be between {low} and {high}",
                    ErrorCode.INVALID_PARAMETERS,
                    self.provider_type,
                )
        for name in BOOLEAN_OPTIONS:
            if name in options and not isinstance(options[name], bool):
                raise GenerationError(
                    f"{name} must be a boolean", ErrorCode.INVALID_PARAMETERS, self.provider_type
                )

    def build_arguments(self, request: GenerationRequest) -> dict[str, Any]:
        ratio = request.aspect_ratio
        portrait = ratio.value in PORTRAIT_COMPENSATED_RATIOS
        arguments: dict[str, Any] = {
            "prompt": enhance_portrait_prompt(build_prompt(request), ratio),
            "image_size": IMAGE_SIZES[ratio.value],
            "num_inference_steps": inference_steps(self.effective_quality(request), ratio),
            "guidance_scale": PORTRAIT_GUIDANCE_SCALE if portrait else DEFAULT_GUIDANCE_SCALE,
            "num_images": 1,
            "enable_safety_checker": True,
            "sync_mode": False,
        }
        seed = self.resolve_seed(request)
        if seed is not None:
            arguments["seed"] = seed
        for name in (*NUMERIC_OPTION_BOUNDS, *BOOLEAN_OPTIONS):
            if name in request.provider_options:
                arguments[name] = request.provider_options[name]
        return arguments

    def probe_arguments(self) -> dict[str, Any]:
        return {"prompt": "test", "image_size": "square", "num_inference_steps": 1, "num_images": 1}

    def result_dimensions(
        self, request: GenerationRequest, arguments: dict[str, Any], image: Any
    ) -> tuple[int, int]:
        if isinstance(image, dict) and image.get("width") and image.get("height"):
            return int(image["width"]), int(image["height"])
        return FAL_PRESET_DIMENSIONS[arguments["image_size"]]

    def megapixel_cost(self, width: int, height: int) -> float:
        rate = self.get_capabilities().pricing.cost_per_megapixel["default"]
        return round(width * height / 1_000_000 * rate, 4)

    def result_cost(
        self, request: GenerationRequest, arguments: dict[str, Any], width: int, height: int
    ) -> float:
        return self.megapixel_cost(width, height)

    def estimate_cost(self, request: GenerationRequest) -> float:
        width, height = FAL_PRESET_DIMENSIONS[IMAGE_SIZES.get(request.aspect_ratio.value, "square_hd")]
        return self.megapixel_cost(width, height)
