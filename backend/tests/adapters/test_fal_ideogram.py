"""Tests for the Fal-AI Ideogram v3 adapter."""

import json

import pytest
from pytest_httpx import HTTPXMock

from flyergen.adapters.base import (
    AspectRatio,
    ErrorCode,
    GenerationError,
    GenerationRequest,
    ImageQuality,
    ProviderConfig,
    ProviderType,
)
from flyergen.adapters.fal_ideogram import FalIdeogramAdapter, to_data_uri

SUBMIT_URL = "https://queue.fal.run/fal-ai/ideogram/v3"
REQUEST_URL = f"{SUBMIT_URL}/requests/req-9"
IMAGE_URL = "https://v3.fal.media/files/flyer.png"


@pytest.fixture
def adapter():
    return FalIdeogramAdapter(
        ProviderConfig(
            provider=ProviderType.FAL_IDEOGRAM, api_key="fal-key", options={"poll_interval": 0}
        )
    )


class TestFalIdeogramGenerate:
    """Tests for FalIdeogramAdapter.generate_image."""

    @pytest.mark.asyncio
    async def test_generate_with_derived_queue_urls(
        self, adapter, httpx_mock: HTTPXMock, png_bytes
    ) -> None:
        """Status and result URLs are derived when the submit response omits them."""
        httpx_mock.add_response(url=SUBMIT_URL, method="POST", json={"request_id": "req-9"})
        httpx_mock.add_response(
            url=f"{REQUEST_URL}/status", method="GET", json={"status": "IN_PROGRESS"}
        )
        httpx_mock.add_response(
            url=f"{REQUEST_URL}/status", method="GET", json={"status": "COMPLETED"}
        )
        httpx_mock.add_response(url=REQUEST_URL, method="GET", json={"images": [{"url": IMAGE_URL}]})
        httpx_mock.add_response(
            url=IMAGE_URL, method="GET", content=png_bytes, headers={"content-type": "image/png"}
        )

        result = await adapter.generate_image(GenerationRequest(prompt="a flyer", seed=7))

        assert result.image_data == png_bytes
        assert result.provider == ProviderType.FAL_IDEOGRAM
        assert result.seed == 7
        assert (result.metadata.width, result.metadata.height) == (1024, 1024)
        assert result.cost == pytest.approx(1.048576 * 0.06)
        assert result.provider_data["arguments"]["rendering_speed"] == "BALANCED"

        arguments = json.loads(httpx_mock.get_requests()[0].read())
        assert arguments == {
            "prompt": "a flyer",
            "image_size": "square_hd",
            "rendering_speed": "BALANCED",
            "expand_prompt": True,
            "num_images": 1,
            "sync_mode": False,
            "seed": 7,
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "message", "code"),
        [
            (401, "Invalid API key", ErrorCode.INVALID_API_KEY),
            (400, "monthly quota reached", ErrorCode.QUOTA_EXCEEDED),
            (500, "upstream timeout", ErrorCode.TIMEOUT),
            (429, "rate limit", ErrorCode.RATE_LIMITED),
            (422, "ensure this value has limit_value=4", ErrorCode.INVALID_PARAMETERS),
        ],
    )
    async def test_error_messages(
        self, adapter, httpx_mock: HTTPXMock, status, message, code
    ) -> None:
        """Error wording decides the code before the status does, except for 422 and 429."""
        httpx_mock.add_response(
            url=SUBMIT_URL, method="POST", status_code=status, json={"detail": message}
        )

        with pytest.raises(GenerationError) as exc_info:
            await adapter.generate_image(GenerationRequest(prompt="a flyer"))

        assert exc_info.value.code == code

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "options",
        [
            {"custom_image_size": {"width": "wide", "height": 512}},
            {"custom_image_size": {"width": 0, "height": 512}},
            {"custom_image_size": "1024x1024"},
            {"num_images": "three"},
            {"num_images": 0},
        ],
    )
    async def test_bad_options_rejected_before_submit(
        self, adapter, httpx_mock: HTTPXMock, options
    ) -> None:
        """Malformed size and count options fail validation without a billed call."""
        with pytest.raises(GenerationError) as exc_info:
            await adapter.generate_image(
                GenerationRequest(prompt="a flyer", provider_options=options)
            )

        assert exc_info.value.code == ErrorCode.INVALID_PARAMETERS
        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    async def test_html_submit_response(self, adapter, httpx_mock: HTTPXMock) -> None:
        """A 200 that is not JSON is GENERATION_FAILED."""
        httpx_mock.add_response(url=SUBMIT_URL, method="POST", text="<html>oops</html>")

        with pytest.raises(GenerationError) as exc_info:
            await adapter.generate_image(GenerationRequest(prompt="a flyer"))

        assert exc_info.value.code == ErrorCode.GENERATION_FAILED
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_non_object_status_response(self, adapter, httpx_mock: HTTPXMock) -> None:
        """A status document that is not a JSON object is GENERATION_FAILED."""
        httpx_mock.add_response(url=SUBMIT_URL, method="POST", json={"request_id": "req-9"})
        httpx_mock.add_response(url=f"{REQUEST_URL}/status", method="GET", json=["COMPLETED"])

        with pytest.raises(GenerationError) as exc_info:
            await adapter.generate_image(GenerationRequest(prompt="a flyer"))

        assert exc_info.value.code == ErrorCode.GENERATION_FAILED

    @pytest.mark.asyncio
    async def test_bad_result_fields_are_translated(
        self, adapter, httpx_mock: HTTPXMock, png_bytes
    ) -> None:
        """Problems building the result after download still surface as GenerationError."""
        httpx_mock.add_response(url=SUBMIT_URL, method="POST", json={"request_id": "req-9"})
        httpx_mock.add_response(
            url=f"{REQUEST_URL}/status", method="GET", json={"status": "COMPLETED"}
        )
        httpx_mock.add_response(
            url=REQUEST_URL, method="GET", json={"images": [{"url": IMAGE_URL}], "seed": "n/a"}
        )
        httpx_mock.add_response(
            url=IMAGE_URL, method="GET", content=png_bytes, headers={"content-type": "image/png"}
        )

        with pytest.raises(GenerationError) as exc_info:
            await adapter.generate_image(GenerationRequest(prompt="a flyer"))

        assert exc_info.value.code == ErrorCode.UNKNOWN_ERROR
        assert isinstance(exc_info.value.cause, ValueError)


class TestFalIdeogramArguments:
    """Tests for argument building, speeds and pricing."""

    @pytest.mark.parametrize(
        ("quality", "speed"),
        [
            (ImageQuality.FAST, "TURBO"),
            (ImageQuality.STANDARD, "BALANCED"),
            (ImageQuality.HIGH, "QUALITY"),
            (ImageQuality.ULTRA, "QUALITY"),
        ],
    )
    def test_speed_from_quality(self, adapter, quality, speed):
        """Quality maps to rendering speed without portrait compensation."""
        request = GenerationRequest(prompt="x", aspect_ratio=AspectRatio.PORTRAIT, quality=quality)
        assert adapter.build_arguments(request)["rendering_speed"] == speed

    def test_speed_option_wins(self, adapter):
        """An explicit rendering_speed option overrides the quality tier."""
        request = GenerationRequest(
            prompt="x", quality=ImageQuality.FAST, provider_options={"rendering_speed": "quality"}
        )
        adapter.validate_params(request)
        assert adapter.rendering_speed(request) == "QUALITY"

    def test_unknown_speed_rejected(self, adapter):
        """Unknown rendering speeds are INVALID_PARAMETERS."""
        request = GenerationRequest(prompt="x", provider_options={"rendering_speed": "LUDICROUS"})
        with pytest.raises(GenerationError) as exc_info:
            adapter.validate_params(request)
        assert exc_info.value.code == ErrorCode.INVALID_PARAMETERS

    def test_style_images_and_options(self, adapter):
        """Style images become data URIs; known options pass through."""
        request = GenerationRequest(
            prompt="x",
            aspect_ratio=AspectRatio.ULTRA_LANDSCAPE,
            style_reference_images=[b"hello"],
            provider_options={
                "negative_prompt": "blurry",
                "style_codes": ["AB12CD34"],
                "num_images": 10,
                "unknown": "dropped",
            },
        )
        arguments = adapter.build_arguments(request)
        assert arguments["image_size"] == "landscape_16_9"
        assert arguments["image_urls"] == ["data:image/png;base64,aGVsbG8="]
        assert arguments["negative_prompt"] == "blurry"
        assert arguments["style_codes"] == ["AB12CD34"]
        assert arguments["num_images"] == 4
        assert "unknown" not in arguments

    def test_custom_image_size(self, adapter):
        """A custom size is sent as-is and drives dimensions and cost."""
        size = {"width": 2000, "height": 500}
        request = GenerationRequest(
            prompt="x", quality=ImageQuality.FAST, provider_options={"custom_image_size": size}
        )
        assert adapter.build_arguments(request)["image_size"] == size
        assert adapter.dimensions(request) == (2000, 500)
        assert adapter.estimate_cost(request) == pytest.approx(1.0 * 0.03)

    def test_default_speed_from_config(self):
        """The configured rendering speed sets the default tier."""
        adapter = FalIdeogramAdapter(
            ProviderConfig(
                provider=ProviderType.FAL_IDEOGRAM,
                api_key="k",
                options={"rendering_speed": "TURBO"},
            )
        )
        assert adapter.rendering_speed(GenerationRequest(prompt="x")) == "TURBO"

    def test_estimate_cost_by_ratio(self, adapter):
        """Cost follows the output size for the ratio and the speed."""
        request = GenerationRequest(
            prompt="x", aspect_ratio=AspectRatio.WIDESCREEN, quality=ImageQuality.HIGH
        )
        assert adapter.estimate_cost(request) == pytest.approx(1024 * 576 / 1_000_000 * 0.09)

    def test_to_data_uri(self):
        """Bytes are base64 encoded with their mime type."""
        assert to_data_uri(b"hello", "image/jpeg") == "data:image/jpeg;base64,aGVsbG8="
