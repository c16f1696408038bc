"""Hugging Face Inference API adapter."""

import logging
import time
from typing import Any

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
from flyergen.constants import HUGGINGFACE_BASE_URL, HUGGINGFACE_DEFAULT_MODEL, SDXL_DIMENSIONS

logger = logging.getLogger(__name__)

MODELS = {
    "stable-diffusion-xl": HUGGINGFACE_DEFAULT_MODEL,
    "flux-schnell": "black-forest-labs/FLUX.1-schnell",
    "stable-diffusion-21": "runwayml/stable-diffusion-v1-5",
}

INFERENCE_STEPS = {
    ImageQuality.FAST: 10,
    ImageQuality.STANDARD: 20,
    ImageQuality.HIGH: 30,
    ImageQuality.ULTRA: 40,
}

GUIDANCE_SCALE = 7.5
QUALITY_SUFFIX = ", high quality, detailed, professional"

CAPABILITIES = ProviderCapabilities(
    supported_aspect_ratios=(
        AspectRatio.SQUARE,
        AspectRatio.WIDESCREEN,
        AspectRatio.PORTRAIT,
        AspectRatio.STANDARD,
        AspectRatio.PORTRAIT_STANDARD,
        AspectRatio.CLASSIC_PHOTO,
        AspectRatio.PORTRAIT_PHOTO,
    ),
    supported_qualities=(ImageQuality.FAST, ImageQuality.STANDARD, ImageQuality.HIGH),
    max_prompt_length=500,
    supports_seeds=False,
    supports_style_images=False,
    supports_image_editing=False,
    rate_limits=RateLimits(
        requests_per_minute=100, requests_per_hour=1000, requests_per_day=10000
    ),
    pricing=Pricing(cost_per_image=0.01, free_quota=0),
)


class HuggingFaceAdapter(ImageAdapter):
    """Adapter for text-to-image models on the Hugging Face Inference API.

    The Inference API takes JSON and answers with the image bytes directly.
    Seeds are not honoured by these models, so a requested seed is dropped
    with a warning instead of failing the request.
    """

    default_base_url = HUGGINGFACE_BASE_URL
    default_model = HUGGINGFACE_DEFAULT_MODEL
    ignores_unsupported_seed = True

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self.model = str(config.options.get("model", self.default_model))

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.HUGGINGFACE

    def get_capabilities(self) -> ProviderCapabilities:
        return CAPABILITIES

    def set_model(self, name: str) -> None:
        """Switch to one of the known models by short name."""
        if name not in MODELS:
            raise ValueError(f"Unknown model: {name}. Available: {', '.join(MODELS)}")
        self.model = MODELS[name]
        logger.info(f"Switched {self.provider_type.value} model to {self.model}")

    def get_available_models(self) -> dict[str, str]:
        return dict(MODELS)

    def dimensions(self, aspect_ratio: AspectRatio) -> tuple[int, int]:
        return SDXL_DIMENSIONS[aspect_ratio.value]

    def build_payload(self, request: GenerationRequest, prompt: str) -> dict[str, Any]:
        quality = self.effective_quality(request)
        if quality in (ImageQuality.HIGH, ImageQuality.ULTRA):
            prompt += QUALITY_SUFFIX
        width, height = self.dimensions(request.aspect_ratio)
        return {
            "inputs": prompt,
            "parameters": {
                "guidance_scale": GUIDANCE_SCALE,
                "num_inference_steps": INFERENCE_STEPS[quality],
                "width": width,
                "height": height,
            },
        }

    def error_from_status(self, status: int, message: str) -> GenerationError:
        lowered = message.lower()
        provider = self.provider_type
        if "rate limit" in lowered:
            return GenerationError(f"Rate limit exceeded: {message}", ErrorCode.RATE_LIMITED, provider)
        if "loading" in lowered:
            return GenerationError(
                f"Model is loading: {message}", ErrorCode.SERVICE_UNAVAILABLE, provider
            )
        return super().error_from_status(status, message)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.config.api_key}"}

    def _model_url(self) -> str:
        return f"{self.base_url}/models/{self.model}"

    async def generate_image(self, request: GenerationRequest) -> GenerationResult:
        start = time.monotonic()
        try:
            self.validate_params(request)
            prompt = build_prompt(request)
            payload = self.build_payload(request, prompt)

            self._log_metrics("generate_start", request)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self._model_url(), headers=self._headers(), json=payload
                )
            response.raise_for_status()

            content_type = response.headers.get("content-type", "")
            if "image" not in content_type:
                raise GenerationError(
                    f"Expected image, got: {response.text[:200]}",
                    ErrorCode.GENERATION_FAILED,
                    self.provider_type,
                )
        except GenerationError as e:
            self._log_metrics("generate_error", request, error=e)
            raise
        except Exception as e:
            error = self.translate_error(e, "generate_image")
            self._log_metrics("generate_error", request, error=error)
            raise error from e

        width, height = self.dimensions(request.aspect_ratio)
        result = GenerationResult(
            image_data=response.content,
            mime_type=content_type.split(";")[0],
            seed=None,
            provider=self.provider_type,
            cost=self.estimate_cost(request),
            generation_time_ms=int((time.monotonic() - start) * 1000),
            metadata=ImageMetadata(
                width=width,
                height=height,
                aspect_ratio=request.aspect_ratio,
                prompt=prompt,
                quality=self.effective_quality(request),
                enhanced_prompt=payload["inputs"] if payload["inputs"] != prompt else None,
            ),
            provider_data={
                "model": self.model,
                "inference_api": True,
                "parameters": payload["parameters"],
            },
        )
        self._log_metrics("generate_success", request, result=result)
        return result

    async def _probe(self) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(
                self._model_url(),
                headers=self._headers(),
                json={"inputs": "test", "parameters": {"num_inference_steps": 1}},
            )
        return response.status_code == 200
