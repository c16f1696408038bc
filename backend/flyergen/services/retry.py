"""Per-provider retry with capped exponential backoff."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from flyergen.adapters.base import (
    RETRYABLE_ERROR_CODES,
    ErrorCode,
    GenerationError,
    GenerationRequest,
    GenerationResult,
    ImageAdapter,
)
from flyergen.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryConfig:
    """Backoff settings for one adapter call.

    The delay before attempt n+1 is min(base_delay * backoff_multiplier ** (n - 1),
    max_delay), without jitter.
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # Seconds
    max_delay: float = 30.0  # Seconds
    backoff_multiplier: float = 2.0
    retryable_codes: frozenset[ErrorCode] = field(default_factory=lambda: RETRYABLE_ERROR_CODES)

    @classmethod
    def from_settings(cls, settings: Settings) -> "RetryConfig":
        return cls(
            max_attempts=settings.retry_max_attempts,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            backoff_multiplier=settings.retry_backoff_multiplier,
        )

    def should_retry(self, exc: BaseException) -> bool:
        """Both the error's own flag and the code allowlist must agree."""
        return (
            isinstance(exc, GenerationError)
            and exc.retryable
            and exc.code in self.retryable_codes
        )


def _log_retry(adapter: ImageAdapter) -> Callable[[RetryCallState], None]:
    def log(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        code = exc.code.value if isinstance(exc, GenerationError) else type(exc).__name__
        logger.warning(
            f"Retrying {adapter.provider_type.value} after {code} "
            f"(attempt {retry_state.attempt_number}), waiting {delay:.1f}s"
        )

    return log


async def _attempt(adapter: ImageAdapter, request: GenerationRequest) -> GenerationResult:
    try:
        return await adapter.generate_image(request)
    except GenerationError:
        raise
    except Exception as e:
        raise GenerationError(
            f"Unexpected error from {adapter.provider_type.value}: {e}",
            ErrorCode.UNKNOWN_ERROR,
            adapter.provider_type,
            cause=e,
        ) from e


async def generate_with_retry(
    adapter: ImageAdapter,
    request: GenerationRequest,
    config: RetryConfig | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    cancel_event: asyncio.Event | None = None,
) -> GenerationResult:
    """Call adapter.generate_image, retrying transient failures.

    Args:
        adapter: Provider adapter to call.
        request: Generation request, passed through unchanged.
        config: Backoff settings (defaults to RetryConfig()).
        sleep: Awaitable sleep, injectable for tests.
        cancel_event: When set, no further attempt is started.

    Returns:
        The first successful result.

    Raises:
        GenerationError: A non-retryable error immediately, or the last
            error once attempts are exhausted.
        asyncio.CancelledError: If cancel_event is set before an attempt.
    """
    config = config or RetryConfig()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(config.max_attempts),
        wait=wait_exponential(
            multiplier=config.base_delay,
            exp_base=config.backoff_multiplier,
            max=config.max_delay,
        ),
        retry=retry_if_exception(config.should_retry),
        sleep=sleep,
        before_sleep=_log_retry(adapter),
        reraise=True,
    )

    async for attempt in retrying:
        if cancel_event is not None and cancel_event.is_set():
            raise asyncio.CancelledError(
                f"Generation cancelled before {adapter.provider_type.value} attempt"
            )
        with attempt:
            result = await _attempt(adapter, request)
    return result
