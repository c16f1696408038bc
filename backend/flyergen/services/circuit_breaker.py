"""Circuit breaker implementation for provider failure management."""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from flyergen.adapters.base import ProviderType

logger = logging.getLogger(__name__)

# Circuit breaker defaults
CIRCUIT_BREAKER_THRESHOLD = 5  # Open circuit after this many consecutive failures
CIRCUIT_BREAKER_RESET_TIMEOUT = 60.0  # Seconds after the last failure before a trial call


class CircuitState(str, Enum):
    """Circuit breaker state, as reported by get_status()."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Rejecting requests
    HALF_OPEN = "half_open"  # Reset timeout elapsed, next call is a trial


@dataclass
class CircuitBreakerState:
    """Per-provider circuit breaker state."""

    failures: int = 0
    last_failure_time: float = 0.0
    is_open: bool = False


class CircuitBreakerManager:
    """Tracks consecutive failures per provider and blocks failing ones.

    There is no separate half-open state or timer. Once the reset timeout has
    elapsed since the last failure, is_provider_available() itself clears the
    open flag and failure count, and lets the next call through as a trial.
    A failure on that trial starts counting from zero again.

    All mutations are plain attribute writes with no awaits in between, so
    concurrent tasks on one event loop never see a torn state.
    """

    def __init__(
        self,
        threshold: int = CIRCUIT_BREAKER_THRESHOLD,
        reset_timeout: float = CIRCUIT_BREAKER_RESET_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker manager.

        Args:
            threshold: Consecutive failures that open the circuit.
            reset_timeout: Seconds after the last failure before a trial call.
            clock: Monotonic time source, injectable for tests.
        """
        self.threshold = threshold
        self.reset_timeout = reset_timeout
        self._clock = clock
        self._circuit_state: dict[ProviderType, CircuitBreakerState] = {}

    def _timeout_elapsed(self, state: CircuitBreakerState) -> bool:
        return self._clock() - state.last_failure_time > self.reset_timeout

    def is_provider_available(self, provider: ProviderType) -> bool:
        """Check if a call to provider may proceed.

        Side effect: an open circuit whose reset timeout has elapsed is closed
        here, so checking availability is also the reset attempt.
        """
        state = self._circuit_state.get(provider)
        if state is None or not state.is_open:
            return True

        if self._timeout_elapsed(state):
            state.is_open = False
            state.failures = 0
            logger.info(f"Circuit half-open for {provider.value}, allowing trial request")
            return True

        return False

    def is_open(self, provider: ProviderType) -> bool:
        """Whether calls are currently blocked, without attempting a reset."""
        state = self._circuit_state.get(provider)
        return state is not None and state.is_open and not self._timeout_elapsed(state)

    def record_failure(self, provider: ProviderType) -> None:
        """Count a failed call; opens the circuit at the threshold."""
        state = self._circuit_state.setdefault(provider, CircuitBreakerState())
        state.failures += 1
        state.last_failure_time = self._clock()

        if state.failures >= self.threshold and not state.is_open:
            state.is_open = True
            logger.error(
                f"Circuit breaker OPEN for {provider.value}: "
                f"{state.failures} consecutive failures, retry after {self.reset_timeout:.0f}s"
            )

    def record_success(self, provider: ProviderType) -> None:
        """One success fully heals the circuit."""
        state = self._circuit_state.get(provider)
        if state is None:
            return
        if state.is_open:
            logger.info(f"Circuit closed for {provider.value} after successful request")
        state.failures = 0
        state.is_open = False

    def reset(self, provider: ProviderType) -> None:
        """Manually reset circuit breaker for a provider."""
        if self._circuit_state.pop(provider, None) is not None:
            logger.info(f"Circuit manually reset for {provider.value}")

    def get_state(self, provider: ProviderType) -> CircuitState:
        state = self._circuit_state.get(provider)
        if state is None or not state.is_open:
            return CircuitState.CLOSED
        if self._timeout_elapsed(state):
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    def failure_count(self, provider: ProviderType) -> int:
        state = self._circuit_state.get(provider)
        return state.failures if state else 0

    def get_status(
        self, providers: list[ProviderType]
    ) -> dict[str, dict[str, str | int | float | bool | None]]:
        """Get current circuit breaker status for the given providers."""
        status = {}
        for provider in providers:
            state = self._circuit_state.get(provider)
            status[provider.value] = {
                "state": self.get_state(provider).value,
                "is_open": self.is_open(provider),
                "failures": state.failures if state else 0,
                "last_failure_time": state.last_failure_time if state else None,
            }
        return status
