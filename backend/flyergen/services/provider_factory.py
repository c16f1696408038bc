"""Image provider service: wires registry, adapters and router together."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from flyergen.adapters.base import (
    ErrorCode,
    GenerationError,
    GenerationRequest,
    GenerationResult,
    ImageAdapter,
    ProviderConfig,
    ProviderType,
)
from flyergen.adapters.fal_ideogram import FalIdeogramAdapter
from flyergen.adapters.fal_qwen import FalQwenAdapter
from flyergen.adapters.huggingface import HuggingFaceAdapter
from flyergen.adapters.ideogram import IdeogramAdapter
from flyergen.adapters.qwen import QwenAdapter
from flyergen.services.circuit_breaker import CircuitBreakerManager
from flyergen.services.provider_config import ProviderConfigManager
from flyergen.services.retry import RetryConfig
from flyergen.services.router import FallbackPolicy, ImageRouter

logger = logging.getLogger(__name__)

DEFAULT_ADAPTER_FACTORY: Mapping[ProviderType, Callable[[ProviderConfig], ImageAdapter]] = {
    ProviderType.IDEOGRAM: IdeogramAdapter,
    ProviderType.HUGGINGFACE: HuggingFaceAdapter,
    ProviderType.QWEN: QwenAdapter,
    ProviderType.FAL_QWEN: FalQwenAdapter,
    ProviderType.FAL_IDEOGRAM: FalIdeogramAdapter,
}


class ImageProviderService:
    """
    Single entry point for image generation.

    Builds one adapter per enabled provider in the registry and hands them to
    the router. Construct one per process and pass it to whoever needs it.
    """

    def __init__(
        self,
        registry: ProviderConfigManager | None = None,
        adapter_factory: Mapping[ProviderType, Callable[[ProviderConfig], ImageAdapter]]
        | None = None,
        circuit_breaker: CircuitBreakerManager | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the service and its adapters.

        Args:
            registry: Provider configuration registry. Defaults to one loaded
                from the environment.
            adapter_factory: Adapter constructor per provider.
            circuit_breaker: Shared circuit breaker. Defaults to one built
                from the registry settings.
            sleep: Awaitable sleep used between retries.
        """
        self.registry = registry or ProviderConfigManager()
        self._adapter_factory = adapter_factory or DEFAULT_ADAPTER_FACTORY
        settings = self.registry.settings
        self.router = ImageRouter(
            self.registry,
            circuit_breaker=circuit_breaker
            or CircuitBreakerManager(
                threshold=settings.circuit_breaker_threshold,
                reset_timeout=settings.circuit_breaker_reset_timeout,
            ),
            retry_config=RetryConfig.from_settings(settings),
            policy=FallbackPolicy.from_settings(settings),
            sleep=sleep,
        )
        self._initialize_providers()

    def _create_adapter(self, config: ProviderConfig) -> ImageAdapter | None:
        factory = self._adapter_factory.get(config.provider)
        if factory is None:
            logger.warning(f"No adapter for provider {config.provider.value}")
            return None
        try:
            return factory(config)
        except (GenerationError, ValueError) as e:
            logger.error(f"Failed to initialize {config.provider.value} provider: {e}")
            return None

    def _initialize_providers(self) -> None:
        self.router.clear()
        for config in self.registry.get_all_configs().values():
            if not config.enabled:
                continue
            adapter = self._create_adapter(config)
            if adapter is not None:
                self.router.register_adapter(adapter)
        logger.info(
            f"Image providers ready: "
            f"{', '.join(p.value for p in self.router.registered_providers()) or 'none'}"
        )

    def ensure_ready(self) -> None:
        """Rebuild adapters if an enabled provider has no live adapter."""
        self.registry.ensure_initialized()
        registered = set(self.router.registered_providers())
        missing = [p for p in self.registry.get_available_providers() if p not in registered]
        if missing:
            logger.warning(
                f"Providers missing from live set ({', '.join(p.value for p in missing)}), "
                "reloading"
            )
            self.reload_providers()

    def reload_providers(self) -> None:
        """Re-read the environment and rebuild every adapter."""
        self.registry.reload_configurations()
        self._initialize_providers()

    def get_provider(self, provider: ProviderType) -> ImageAdapter:
        """Get the live adapter for a provider.

        Raises:
            GenerationError: SERVICE_UNAVAILABLE if it is not configured.
        """
        adapter = self.router.get_adapter(provider)
        if adapter is None:
            self.ensure_ready()
            adapter = self.router.get_adapter(provider)
        if adapter is None:
            raise GenerationError(
                f"Provider {provider.value} is not available",
                ErrorCode.SERVICE_UNAVAILABLE,
                provider,
            )
        return adapter

    def get_default_provider(self) -> ImageAdapter:
        return self.get_provider(self.registry.get_default_provider())

    async def generate_image(
        self,
        request: GenerationRequest,
        preferred: ProviderType | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> GenerationResult:
        """Generate an image, with retry and fallback across providers."""
        self.ensure_ready()
        return await self.router.generate_image_with_fallback(
            request, preferred, cancel_event=cancel_event
        )

    def get_available_providers(self) -> list[ProviderType]:
        registered = set(self.router.registered_providers())
        return [p for p in self.registry.get_available_providers() if p in registered]

    async def get_providers_health(self) -> dict[str, dict[str, Any]]:
        return await self.router.get_providers_health()

    def get_circuit_breaker_status(self) -> dict[str, dict[str, Any]]:
        return self.router.get_circuit_breaker_status()

    def reset_circuit_breaker(self, provider: ProviderType) -> None:
        self.router.reset_circuit_breaker(provider)

    def set_default_provider(self, provider: ProviderType) -> None:
        self.registry.set_default_provider(provider)

    def add_provider(self, config: ProviderConfig) -> ImageAdapter | None:
        """Register a provider at runtime.

        Raises:
            ValueError: If the config is enabled without an API key or has
                no adapter.
            GenerationError: If the adapter rejects the config.
        """
        factory = self._adapter_factory.get(config.provider)
        if factory is None:
            raise ValueError(f"Unknown provider: {config.provider.value}")
        self.registry.add_provider_config(config)
        if not config.enabled:
            self.router.unregister_adapter(config.provider)
            return None
        adapter = factory(config)
        self.router.register_adapter(adapter)
        return adapter

    def remove_provider(self, provider: ProviderType) -> None:
        """Take a provider out of rotation until the next reload."""
        self.router.unregister_adapter(provider)
        if self.registry.get_provider_config(provider) is not None:
            self.registry.set_provider_enabled(provider, False)

    def get_provider_config_summary(self) -> list[dict[str, Any]]:
        return self.registry.get_config_summary()

    def validate_provider_setup(self) -> dict[str, Any]:
        """Startup self-check; never raises."""
        errors = [
            f"{provider.value}: {result['error']}"
            for provider, result in self.registry.validate_configurations().items()
            if not result["valid"]
        ]
        if not self.router.registered_providers():
            errors.append("No image generation providers available")
        return {"valid": not errors, "errors": errors}
