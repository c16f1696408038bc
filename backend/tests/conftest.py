"""Shared pytest fixtures and configuration.

Integration tests are skipped by default. Run them with:
    pytest --run-integration

IMPORTANT: Tests must never reach a real image vendor. Adapter tests mock
HTTP with pytest-httpx; everything above the adapters uses mock adapters.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from flyergen.adapters.base import (
    AspectRatio,
    GenerationResult,
    ImageAdapter,
    ImageMetadata,
    ImageQuality,
    ProviderType,
)
from flyergen.config import Settings

# Smallest byte string that still looks like a PNG to anyone sniffing it
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests (requires real vendor credentials)",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (calls real vendors)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is passed."""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def png_bytes():
    return PNG_BYTES


@pytest.fixture
def make_settings():
    """Build Settings isolated from ~/.env.local and real credentials."""

    def factory(**overrides):
        values = {
            "ideogram_api_key": "",
            "hugging_face_api_token": "",
            "fal_key": "",
            "image_generation_provider": "",
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def make_result():
    """Build a GenerationResult attributed to a provider."""

    def factory(provider: ProviderType, cost: float = 0.01) -> GenerationResult:
        return GenerationResult(
            image_data=PNG_BYTES,
            mime_type="image/png",
            provider=provider,
            cost=cost,
            generation_time_ms=5,
            metadata=ImageMetadata(
                width=1320,
                height=1320,
                aspect_ratio=AspectRatio.SQUARE,
                prompt="a cat",
                quality=ImageQuality.STANDARD,
            ),
            seed=42,
        )

    return factory


@pytest.fixture
def mock_adapter(make_result):
    """Create a mock adapter for a provider.

    outcomes is the side_effect sequence for generate_image: exceptions are
    raised, anything else is returned. Without outcomes every call succeeds.
    """

    def factory(provider: ProviderType, outcomes=None, healthy: bool = True):
        adapter = MagicMock(spec=ImageAdapter)
        adapter.provider_type = provider
        if outcomes is None:
            adapter.generate_image = AsyncMock(return_value=make_result(provider))
        else:
            adapter.generate_image = AsyncMock(side_effect=list(outcomes))
        adapter.health_check = AsyncMock(return_value=healthy)
        return adapter

    return factory
