"""Tests for the Fal-AI queue client and the qwen-image adapter."""

import json

import pytest
from pytest_httpx import HTTPXMock

from flyergen.adapters.base import (
    MAX_SEED,
    AspectRatio,
    ErrorCode,
    GenerationError,
    GenerationRequest,
    ImageQuality,
    ProviderConfig,
    ProviderType,
)
from flyergen.adapters.fal_qwen import FalQwenAdapter, enhance_portrait_prompt, inference_steps

SUBMIT_URL = "https://queue.fal.run/fal-ai/qwen-image"
REQUEST_URL = f"{SUBMIT_URL}/requests/req-1"
STATUS_URL = f"{REQUEST_URL}/status"
IMAGE_URL = "https://v3.fal.media/files/cat.png"


def make_adapter(**options) -> FalQwenAdapter:
    options.setdefault("poll_interval", 0)
    return FalQwenAdapter(
        ProviderConfig(provider=ProviderType.FAL_QWEN, api_key="fal-key", options=options)
    )


@pytest.fixture
def adapter():
    return make_adapter()


def add_queue_round_trip(httpx_mock: HTTPXMock, result: dict, pending: int = 1) -> None:
    httpx_mock.add_response(
        url=SUBMIT_URL,
        method="POST",
        json={"request_id": "req-1", "status_url": STATUS_URL, "response_url": REQUEST_URL},
    )
    for _ in range(pending):
        httpx_mock.add_response(url=STATUS_URL, method="GET", json={"status": "IN_QUEUE"})
    httpx_mock.add_response(url=STATUS_URL, method="GET", json={"status": "COMPLETED"})
    httpx_mock.add_response(url=REQUEST_URL, method="GET", json=result)


def submitted_arguments(httpx_mock: HTTPXMock) -> dict:
    return json.loads(httpx_mock.get_requests()[0].read())


class TestFalQwenGenerate:
    """Tests for FalQwenAdapter.generate_image."""

    @pytest.mark.asyncio
    async def test_queue_round_trip(self, adapter, httpx_mock: HTTPXMock, png_bytes) -> None:
        """Submit, poll until completed, fetch the result and download the image."""
        add_queue_round_trip(
            httpx_mock,
            {
                "images": [
                    {"url": IMAGE_URL, "width": 1024, "height": 1024, "content_type": "image/png"}
                ],
                "seed": 99,
                "timings": {"inference": 1.2},
            },
        )
        httpx_mock.add_response(
            url=IMAGE_URL, method="GET", content=png_bytes, headers={"content-type": "image/png"}
        )

        result = await adapter.generate_image(GenerationRequest(prompt="a cat"))

        assert result.image_data == png_bytes
        assert result.provider == ProviderType.FAL_QWEN
        assert result.seed == 99
        assert result.cost == pytest.approx(0.0524)
        assert (result.metadata.width, result.metadata.height) == (1024, 1024)
        assert result.provider_data["request_id"] == "req-1"
        assert result.provider_data["timings"] == {"inference": 1.2}
        assert "prompt" not in result.provider_data["arguments"]

        submit = httpx_mock.get_requests()[0]
        assert submit.headers["Authorization"] == "Key fal-key"
        assert submitted_arguments(httpx_mock) == {
            "prompt": "a cat",
            "image_size": "square_hd",
            "num_inference_steps": 25,
            "guidance_scale": 3.0,
            "num_images": 1,
            "enable_safety_checker": True,
            "sync_mode": False,
        }

    @pytest.mark.asyncio
    async def test_portrait_compensation(
        self, adapter, httpx_mock: HTTPXMock, png_bytes
    ) -> None:
        """Portrait ratios get sharper prompts, more steps and stronger guidance."""
        add_queue_round_trip(httpx_mock, {"images": [{"url": IMAGE_URL}]}, pending=0)
        httpx_mock.add_response(url=IMAGE_URL, method="GET", content=png_bytes)

        result = await adapter.generate_image(
            GenerationRequest(prompt="a cat", aspect_ratio=AspectRatio.PORTRAIT)
        )

        arguments = submitted_arguments(httpx_mock)
        assert arguments["image_size"] == "portrait_16_9"
        assert arguments["num_inference_steps"] == 38
        assert arguments["guidance_scale"] == 4.5
        assert arguments["prompt"].startswith("a cat, highly detailed, sharp focus")
        assert result.metadata.enhanced_prompt == arguments["prompt"]
        assert (result.metadata.width, result.metadata.height) == (576, 1024)

    @pytest.mark.asyncio
    async def test_data_url_image(self, adapter, httpx_mock: HTTPXMock) -> None:
        """Inline data URLs are decoded without a download."""
        add_queue_round_trip(
            httpx_mock, {"images": ["data:image/jpeg;base64,aGVsbG8="]}, pending=0
        )

        result = await adapter.generate_image(GenerationRequest(prompt="a cat", seed=5))

        assert result.image_data == b"hello"
        assert result.mime_type == "image/jpeg"
        assert result.seed == 5
        assert submitted_arguments(httpx_mock)["seed"] == 5

    @pytest.mark.asyncio
    async def test_no_images(self, adapter, httpx_mock: HTTPXMock) -> None:
        """An empty image list is GENERATION_FAILED."""
        add_queue_round_trip(httpx_mock, {"images": []}, pending=0)

        with pytest.raises(GenerationError) as exc_info:
            await adapter.generate_image(GenerationRequest(prompt="a cat"))

        assert exc_info.value.code == ErrorCode.GENERATION_FAILED

    @pytest.mark.asyncio
    async def test_failed_status(self, adapter, httpx_mock: HTTPXMock) -> None:
        """A terminal status other than COMPLETED is GENERATION_FAILED."""
        httpx_mock.add_response(
            url=SUBMIT_URL,
            method="POST",
            json={"request_id": "req-1", "status_url": STATUS_URL, "response_url": REQUEST_URL},
        )
        httpx_mock.add_response(url=STATUS_URL, method="GET", json={"status": "FAILED"})

        with pytest.raises(GenerationError) as exc_info:
            await adapter.generate_image(GenerationRequest(prompt="a cat"))

        assert exc_info.value.code == ErrorCode.GENERATION_FAILED
        assert "FAILED" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_poll_deadline(self, httpx_mock: HTTPXMock) -> None:
        """Still queued at the deadline is a retryable TIMEOUT."""
        adapter = make_adapter(timeout=0)
        httpx_mock.add_response(
            url=SUBMIT_URL,
            method="POST",
            json={"request_id": "req-1", "status_url": STATUS_URL, "response_url": REQUEST_URL},
        )
        httpx_mock.add_response(url=STATUS_URL, method="GET", json={"status": "IN_PROGRESS"})

        with pytest.raises(GenerationError) as exc_info:
            await adapter.generate_image(GenerationRequest(prompt="a cat"))

        assert exc_info.value.code == ErrorCode.TIMEOUT
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_validation_error_from_vendor(self, adapter, httpx_mock: HTTPXMock) -> None:
        """A 422 on submit is INVALID_PARAMETERS."""
        httpx_mock.add_response(
            url=SUBMIT_URL, method="POST", status_code=422, json={"detail": "bad image_size"}
        )

        with pytest.raises(GenerationError) as exc_info:
            await adapter.generate_image(GenerationRequest(prompt="a cat"))

        assert exc_info.value.code == ErrorCode.INVALID_PARAMETERS
        assert "bad image_size" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_health_check_request(self, adapter, httpx_mock: HTTPXMock) -> None:
        """The health check runs a minimal queue request."""
        add_queue_round_trip(httpx_mock, {"images": [{"url": IMAGE_URL}]}, pending=0)

        assert await adapter.health_check() is True
        assert submitted_arguments(httpx_mock)["num_inference_steps"] == 1


class TestFalQwenArguments:
    """Tests for argument building and provider option validation."""

    @pytest.mark.parametrize(
        ("quality", "ratio", "steps"),
        [
            (ImageQuality.STANDARD, AspectRatio.SQUARE, 25),
            (ImageQuality.FAST, AspectRatio.STANDARD, 18),
            (ImageQuality.HIGH, AspectRatio.WIDESCREEN, 46),
            (ImageQuality.ULTRA, AspectRatio.PORTRAIT, 50),
        ],
    )
    def test_inference_steps(self, quality, ratio, steps):
        """Steps scale with ratio compensation, rounded and capped at 50."""
        assert inference_steps(quality, ratio) == steps

    def test_portrait_keywords_not_duplicated(self):
        """Keywords already in the prompt are not appended again."""
        prompt = enhance_portrait_prompt("a cat, Sharp Focus", AspectRatio.PORTRAIT_STANDARD)
        assert prompt.lower().count("sharp focus") == 1
        assert "highly detailed" in prompt

    def test_landscape_prompt_unchanged(self):
        """Only portrait ratios are enhanced."""
        assert enhance_portrait_prompt("a cat", AspectRatio.WIDESCREEN) == "a cat"

    def test_option_overrides(self, adapter):
        """Valid provider options override the computed arguments."""
        request = GenerationRequest(
            prompt="a cat",
            provider_options={"num_inference_steps": 10, "guidance_scale": 7.5, "sync_mode": True},
        )
        adapter.validate_params(request)
        arguments = adapter.build_arguments(request)
        assert arguments["num_inference_steps"] == 10
        assert arguments["guidance_scale"] == 7.5
        assert arguments["sync_mode"] is True

    @pytest.mark.parametrize(
        "options",
        [
            {"num_inference_steps": 0},
            {"num_inference_steps": 51},
            {"guidance_scale": 25},
            {"num_images": 5},
            {"num_images": "2"},
            {"enable_safety_checker": "yes"},
        ],
    )
    def test_invalid_options(self, adapter, options):
        """Out-of-range or mistyped options are INVALID_PARAMETERS."""
        with pytest.raises(GenerationError) as exc_info:
            adapter.validate_params(GenerationRequest(prompt="a cat", provider_options=options))
        assert exc_info.value.code == ErrorCode.INVALID_PARAMETERS

    def test_randomized_seed(self, adapter):
        """randomize_seed draws a seed in range."""
        arguments = adapter.build_arguments(GenerationRequest(prompt="x", randomize_seed=True))
        assert 0 <= arguments["seed"] <= MAX_SEED

    def test_estimate_cost_by_preset(self, adapter):
        """Cost is per megapixel of the preset the ratio maps to."""
        request = GenerationRequest(prompt="x", aspect_ratio=AspectRatio.WIDESCREEN)
        assert adapter.estimate_cost(request) == pytest.approx(0.0295)
