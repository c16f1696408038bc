"""Ordered fallback across image providers."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from flyergen.adapters.base import (
    ErrorCode,
    GenerationError,
    GenerationRequest,
    GenerationResult,
    ImageAdapter,
    ProviderType,
)
from flyergen.config import Settings
from flyergen.constants import LOG_PROMPT_CHARS
from flyergen.services.circuit_breaker import CircuitBreakerManager
from flyergen.services.provider_config import ProviderConfigManager
from flyergen.services.retry import RetryConfig, generate_with_retry

logger = logging.getLogger(__name__)

# Request-shape and credential problems no other provider can fix
ALWAYS_ABORT_CODES = frozenset(
    {
        ErrorCode.INVALID_PARAMETERS,
        ErrorCode.PROMPT_TOO_LONG,
        ErrorCode.INVALID_API_KEY,
        ErrorCode.UNAUTHORIZED,
    }
)


@dataclass(frozen=True)
class FallbackPolicy:
    """Which error codes stop the provider chain instead of trying the next one."""

    non_fallback_codes: frozenset[ErrorCode] = field(default_factory=lambda: ALWAYS_ABORT_CODES)

    @classmethod
    def from_settings(cls, settings: Settings) -> "FallbackPolicy":
        codes = set(ALWAYS_ABORT_CODES)
        if not settings.fallback_on_unsupported_aspect_ratio:
            codes.add(ErrorCode.UNSUPPORTED_ASPECT_RATIO)
        return cls(non_fallback_codes=frozenset(codes))


class ImageRouter:
    """
    Routes generation requests to providers with fallback support.

    Providers are tried one at a time in order: the preferred provider first
    (if any), then the registry's available providers by priority. Each
    provider call runs inside the retry engine. The first success wins.
    """

    def __init__(
        self,
        registry: ProviderConfigManager,
        circuit_breaker: CircuitBreakerManager | None = None,
        retry_config: RetryConfig | None = None,
        policy: FallbackPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize router.

        Args:
            registry: Provider configuration registry (ordering and availability).
            circuit_breaker: Shared circuit breaker. Defaults to a fresh one.
            retry_config: Backoff settings for each provider call.
            policy: Which error codes abort the chain.
            sleep: Awaitable sleep used between retries, injectable for tests.
        """
        self._registry = registry
        self._circuit_breaker = circuit_breaker or CircuitBreakerManager()
        self._retry_config = retry_config or RetryConfig()
        self._policy = policy or FallbackPolicy()
        self._sleep = sleep
        self._adapters: dict[ProviderType, ImageAdapter] = {}
        self._last_errors: dict[ProviderType, GenerationError] = {}

    @property
    def circuit_breaker(self) -> CircuitBreakerManager:
        return self._circuit_breaker

    def register_adapter(self, adapter: ImageAdapter) -> None:
        self._adapters[adapter.provider_type] = adapter
        logger.info(f"Registered image provider: {adapter.provider_type.value}")

    def unregister_adapter(self, provider: ProviderType) -> None:
        if self._adapters.pop(provider, None) is not None:
            logger.info(f"Unregistered image provider: {provider.value}")

    def get_adapter(self, provider: ProviderType) -> ImageAdapter | None:
        return self._adapters.get(provider)

    def registered_providers(self) -> list[ProviderType]:
        return list(self._adapters)

    def clear(self) -> None:
        self._adapters.clear()

    def _get_provider_order(self, preferred: ProviderType | None) -> list[ProviderType]:
        """Preferred provider first, then the rest by priority."""
        if preferred is None:
            return self._registry.get_available_providers()
        return [preferred, *self._registry.get_fallback_providers(preferred)]

    def _should_try_fallback(self, error: GenerationError) -> bool:
        return error.code not in self._policy.non_fallback_codes

    async def generate_image_with_fallback(
        self,
        request: GenerationRequest,
        preferred: ProviderType | None = None,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> GenerationResult:
        """Generate an image, falling back across providers.

        Args:
            request: Generation request.
            preferred: Provider to try first.
            cancel_event: When set, no further provider or attempt is started.

        Returns:
            The first successful result.

        Raises:
            GenerationError: The error that stopped the chain, the last error
                once every provider failed, or SERVICE_UNAVAILABLE if no
                provider could be tried at all.
            asyncio.CancelledError: If cancel_event is set.
        """
        order = self._get_provider_order(preferred)
        last_error: GenerationError | None = None

        logger.info(
            f"Generating image for user={request.user_id} "
            f"prompt={request.prompt[:LOG_PROMPT_CHARS]!r}, "
            f"providers={[p.value for p in order]}"
        )

        for i, provider in enumerate(order):
            if cancel_event is not None and cancel_event.is_set():
                raise asyncio.CancelledError("Image generation cancelled")

            if not self._circuit_breaker.is_provider_available(provider):
                logger.warning(f"Circuit open for {provider.value}, skipping")
                continue

            adapter = self._adapters.get(provider)
            if adapter is None:
                logger.warning(f"Provider {provider.value} not registered, skipping")
                continue

            try:
                logger.info(f"Trying provider {provider.value}")
                result = await generate_with_retry(
                    adapter,
                    request,
                    self._retry_config,
                    sleep=self._sleep,
                    cancel_event=cancel_event,
                )
            except GenerationError as e:
                self._circuit_breaker.record_failure(provider)
                self._last_errors[provider] = e
                last_error = e
                logger.error(f"Provider {provider.value} failed: {e.code.value}: {e.message}")

                if not self._should_try_fallback(e):
                    logger.error(f"Not falling back after {e.code.value} from {provider.value}")
                    raise
                continue

            self._circuit_breaker.record_success(provider)
            self._last_errors.pop(provider, None)
            if i > 0:
                logger.info(f"Request served by fallback provider: {provider.value}")
            else:
                logger.info(f"Request served by provider: {provider.value}")
            return result

        logger.error(f"All image providers failed. Last error: {last_error!r}")
        if last_error is not None:
            raise last_error
        raise GenerationError(
            "All image generation providers failed",
            ErrorCode.SERVICE_UNAVAILABLE,
        )

    async def get_providers_health(self) -> dict[str, dict[str, Any]]:
        """Probe every registered adapter concurrently."""
        providers = list(self._adapters)
        results = await asyncio.gather(*(self._adapters[p].health_check() for p in providers))

        health = {}
        for provider, healthy in zip(providers, results):
            circuit_open = self._circuit_breaker.is_open(provider)
            last_error = self._last_errors.get(provider)
            health[provider.value] = {
                "available": self._registry.is_provider_available(provider) and not circuit_open,
                "healthy": healthy,
                "circuit_open": circuit_open,
                "last_error": last_error.message if last_error else None,
            }
        return health

    def get_circuit_breaker_status(self) -> dict[str, dict[str, Any]]:
        providers = list(self._adapters)
        providers += [p for p in self._registry.get_all_configs() if p not in providers]
        return self._circuit_breaker.get_status(providers)

    def reset_circuit_breaker(self, provider: ProviderType) -> None:
        self._circuit_breaker.reset(provider)
        self._last_errors.pop(provider, None)
