"""Qwen-Image adapter (Hugging Face Inference Providers)."""

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
)
from flyergen.adapters.huggingface import HuggingFaceAdapter
from flyergen.constants import NORMALIZED_DIMENSIONS, QWEN_IMAGE_MODEL

INFERENCE_STEPS = {
    ImageQuality.FAST: 15,
    ImageQuality.STANDARD: 25,
    ImageQuality.HIGH: 35,
    ImageQuality.ULTRA: 50,
}

TRUE_CFG_SCALE = 4.0

CAPABILITIES = ProviderCapabilities(
    supported_aspect_ratios=tuple(AspectRatio),
    supported_qualities=tuple(ImageQuality),
    max_prompt_length=1000,
    supports_seeds=False,
    supports_style_images=False,
    supports_image_editing=False,
    rate_limits=RateLimits(
        requests_per_minute=100, requests_per_hour=1000, requests_per_day=10000
    ),
    pricing=Pricing(cost_per_image=0.02, free_quota=0),
)


class QwenAdapter(HuggingFaceAdapter):
    """Qwen-Image through the Inference API, with explicit output sizes.

    Unlike the generic Hugging Face models, a requested seed is rejected.
    """

    default_model = QWEN_IMAGE_MODEL
    ignores_unsupported_seed = False

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.QWEN

    def get_capabilities(self) -> ProviderCapabilities:
        return CAPABILITIES

    def set_model(self, name: str) -> None:
        raise ValueError("Qwen provider only serves Qwen-Image")

    def get_available_models(self) -> dict[str, str]:
        return {"qwen-image": QWEN_IMAGE_MODEL}

    def dimensions(self, aspect_ratio: AspectRatio) -> tuple[int, int]:
        return NORMALIZED_DIMENSIONS[aspect_ratio.value]

    def build_payload(self, request: GenerationRequest, prompt: str) -> dict[str, Any]:
        width, height = self.dimensions(request.aspect_ratio)
        return {
            "inputs": prompt,
            "parameters": {
                "num_inference_steps": INFERENCE_STEPS[self.effective_quality(request)],
                "true_cfg_scale": TRUE_CFG_SCALE,
                "width": width,
                "height": height,
                "negative_prompt": " ",
            },
        }

    def error_from_status(self, status: int, message: str) -> GenerationError:
        # Rate limit, loading and auth signals outrank quota wording
        lowered = message.lower()
        if status in (401, 403, 429, 503) or "rate limit" in lowered or "loading" in lowered:
            return super().error_from_status(status, message)
        if "quota" in lowered or "exceeded" in lowered:
            return GenerationError(
                f"Qwen quota exceeded: {message}", ErrorCode.QUOTA_EXCEEDED, self.provider_type
            )
        return super().error_from_status(status, message)
