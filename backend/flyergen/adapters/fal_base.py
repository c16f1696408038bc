"""Shared client for models hosted on the Fal-AI queue API."""

import asyncio
import logging
import time
from abc import abstractmethod
from typing import Any

import httpx

from flyergen.adapters.base import (
    ErrorCode,
    GenerationError,
    GenerationRequest,
    GenerationResult,
    ImageAdapter,
    ImageMetadata,
    ProviderConfig,
    build_prompt,
    decode_image_payload,
)
from flyergen.constants import DEFAULT_FAL_POLL_INTERVAL, FAL_QUEUE_BASE_URL

logger = logging.getLogger(__name__)

PENDING_STATUSES = ("IN_QUEUE", "IN_PROGRESS")


class FalQueueAdapter(ImageAdapter):
    """Base for Fal-AI models.

    A generation is a queue round trip: submit the arguments, poll the
    request status until it completes, fetch the result document, then
    download (or decode) the first image it lists.
    """

    default_base_url = FAL_QUEUE_BASE_URL
    default_model: str = ""

    def __init__(self, config: ProviderConfig):
        super().__init__(config)
        self.model = str(config.options.get("model", self.default_model))
        self.poll_interval = float(config.options.get("poll_interval", DEFAULT_FAL_POLL_INTERVAL))

    @abstractmethod
    def build_arguments(self, request: GenerationRequest) -> dict[str, Any]:
        """Translate a request into the model's input document."""
        ...

    @abstractmethod
    def probe_arguments(self) -> dict[str, Any]:
        """Cheapest input the model accepts, used by health checks."""
        ...

    @abstractmethod
    def result_dimensions(
        self, request: GenerationRequest, arguments: dict[str, Any], image: Any
    ) -> tuple[int, int]:
        ...

    @abstractmethod
    def result_cost(
        self, request: GenerationRequest, arguments: dict[str, Any], width: int, height: int
    ) -> float:
        ...

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Key {self.config.api_key}"}

    def error_from_status(self, status: int, message: str) -> GenerationError:
        if status == 422:
            return GenerationError(
                f"Invalid parameters: {message}", ErrorCode.INVALID_PARAMETERS, self.provider_type
            )
        return super().error_from_status(status, message)

    async def _run(
        self, client: httpx.AsyncClient, arguments: dict[str, Any]
    ) -> tuple[str | None, dict[str, Any]]:
        """Submit to the queue and wait for the result document."""
        deadline = time.monotonic() + self.timeout
        headers = self._headers()

        response = await client.post(f"{self.base_url}/{self.model}", headers=headers, json=arguments)
        response.raise_for_status()
        submitted = self._json_body(response)
        request_id = submitted.get("request_id")
        request_url = f"{self.base_url}/{self.model}/requests/{request_id}"
        status_url = submitted.get("status_url") or f"{request_url}/status"
        response_url = submitted.get("response_url") or request_url
        logger.info(f"[{self.provider_type.value}] Queued Fal request {request_id}")

        while True:
            status_response = await client.get(status_url, headers=headers)
            status_response.raise_for_status()
            status = self._json_body(status_response).get("status")
            if status == "COMPLETED":
                break
            if status not in PENDING_STATUSES:
                raise GenerationError(
                    f"Unexpected Fal queue status: {status}",
                    ErrorCode.GENERATION_FAILED,
                    self.provider_type,
                )
            if time.monotonic() >= deadline:
                raise GenerationError(
                    f"Fal request {request_id} did not complete within {self.timeout:.0f}s",
                    ErrorCode.TIMEOUT,
                    self.provider_type,
                )
            await asyncio.sleep(self.poll_interval)

        result = await client.get(response_url, headers=headers)
        result.raise_for_status()
        return request_id, self._json_body(result)

    def _first_image(self, data: dict[str, Any]) -> Any:
        images = data.get("images") if isinstance(data, dict) else None
        if not images:
            raise GenerationError(
                "No images found in Fal-AI response",
                ErrorCode.GENERATION_FAILED,
                self.provider_type,
            )
        image = images[0]
        if isinstance(image, str) or (isinstance(image, dict) and image.get("url")):
            return image
        raise GenerationError(
            "Invalid image data format in Fal-AI response",
            ErrorCode.GENERATION_FAILED,
            self.provider_type,
        )

    async def _fetch_image(self, client: httpx.AsyncClient, image: Any) -> tuple[bytes, str]:
        """Turn an image entry (URL, data URL or base64) into bytes and a mime type."""
        reference = image if isinstance(image, str) else image["url"]
        declared = None if isinstance(image, str) else image.get("content_type")
        if reference.startswith("http"):
            return await self._download_image(client, reference)
        try:
            data, mime_type = decode_image_payload(reference)
        except ValueError as e:
            raise GenerationError(
                str(e), ErrorCode.GENERATION_FAILED, self.provider_type, cause=e
            ) from e
        return data, mime_type or declared or "image/png"

    async def generate_image(self, request: GenerationRequest) -> GenerationResult:
        start = time.monotonic()
        try:
            self.validate_params(request)
            arguments = self.build_arguments(request)

            self._log_metrics("generate_start", request)
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                request_id, data = await self._run(client, arguments)
                image = self._first_image(data)
                image_data, mime_type = await self._fetch_image(client, image)

            prompt = build_prompt(request)
            width, height = self.result_dimensions(request, arguments, image)
            seed = data.get("seed", arguments.get("seed"))
            result = GenerationResult(
                image_data=image_data,
                mime_type=mime_type,
                seed=int(seed) if seed is not None else None,
                provider=self.provider_type,
                cost=self.result_cost(request, arguments, width, height),
                generation_time_ms=int((time.monotonic() - start) * 1000),
                metadata=ImageMetadata(
                    width=width,
                    height=height,
                    aspect_ratio=request.aspect_ratio,
                    prompt=prompt,
                    quality=self.effective_quality(request),
                    enhanced_prompt=arguments["prompt"] if arguments["prompt"] != prompt else None,
                ),
                provider_data={
                    "request_id": request_id,
                    "model": self.model,
                    "arguments": {
                        k: v for k, v in arguments.items() if k not in ("prompt", "image_urls")
                    },
                    "timings": data.get("timings"),
                },
            )
        except GenerationError as e:
            self._log_metrics("generate_error", request, error=e)
            raise
        except Exception as e:
            error = self.translate_error(e, "generate_image")
            self._log_metrics("generate_error", request, error=error)
            raise error from e

        self._log_metrics("generate_success", request, result=result)
        return result

    async def _probe(self) -> bool:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            _, data = await self._run(client, self.probe_arguments())
        return bool(data)
