"""Base interface and shared types for image generation adapters."""

import base64
import binascii
import logging
import random
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from flyergen.constants import DEFAULT_REQUEST_TIMEOUT, LOG_PROMPT_CHARS

logger = logging.getLogger(__name__)

MAX_SEED = 2**31 - 1


class AspectRatio(str, Enum):
    """Standard aspect ratios understood by every provider."""

    SQUARE = "1:1"
    WIDESCREEN = "16:9"
    PORTRAIT = "9:16"
    STANDARD = "4:3"
    PORTRAIT_STANDARD = "3:4"
    INSTAGRAM_PORTRAIT = "4:5"
    GREETING_CARD = "5:7"
    CLASSIC_PHOTO = "3:2"
    PORTRAIT_PHOTO = "2:3"
    EXTENDED_PORTRAIT = "10:16"
    EXTENDED_LANDSCAPE = "16:10"
    ULTRA_PORTRAIT = "1:3"
    ULTRA_LANDSCAPE = "3:1"


class ImageQuality(str, Enum):
    """Quality/speed tradeoff requested by the caller."""

    FAST = "fast"
    STANDARD = "standard"
    HIGH = "high"
    ULTRA = "ultra"


class ProviderType(str, Enum):
    """Image generation backends."""

    IDEOGRAM = "ideogram"
    HUGGINGFACE = "huggingface"
    QWEN = "qwen"
    FAL_QWEN = "fal-qwen"
    FAL_IDEOGRAM = "fal-ideogram"


class ErrorCode(str, Enum):
    """Closed set of failure codes every adapter maps vendor errors into."""

    # Authentication errors
    INVALID_API_KEY = "INVALID_API_KEY"
    UNAUTHORIZED = "UNAUTHORIZED"

    # Request errors
    INVALID_PARAMETERS = "INVALID_PARAMETERS"
    PROMPT_TOO_LONG = "PROMPT_TOO_LONG"
    UNSUPPORTED_ASPECT_RATIO = "UNSUPPORTED_ASPECT_RATIO"

    # Quota/rate limiting
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    RATE_LIMITED = "RATE_LIMITED"
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"

    # Service errors
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    GENERATION_FAILED = "GENERATION_FAILED"

    # Network errors
    NETWORK_ERROR = "NETWORK_ERROR"

    UNKNOWN_ERROR = "UNKNOWN_ERROR"


# Codes considered transient when the raising adapter does not say otherwise
RETRYABLE_ERROR_CODES = frozenset(
    {
        ErrorCode.QUOTA_EXCEEDED,
        ErrorCode.RATE_LIMITED,
        ErrorCode.SERVICE_UNAVAILABLE,
        ErrorCode.TIMEOUT,
        ErrorCode.NETWORK_ERROR,
    }
)


class GenerationError(Exception):
    """The only error type that crosses adapter boundaries."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        provider: ProviderType | None = None,
        retryable: bool | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.provider = provider
        self.retryable = code in RETRYABLE_ERROR_CODES if retryable is None else retryable
        self.cause = cause

    def __repr__(self) -> str:
        provider = self.provider.value if self.provider else None
        return (
            f"GenerationError(code={self.code.value}, provider={provider}, "
            f"retryable={self.retryable}, message={self.message!r})"
        )


@dataclass(frozen=True)
class RateLimits:
    """Published vendor rate limits (informational, not enforced here)."""

    requests_per_minute: int
    requests_per_hour: int
    requests_per_day: int


@dataclass(frozen=True)
class Pricing:
    """Cost data for one provider.

    quality_multipliers is keyed by ImageQuality value; cost_per_megapixel is
    keyed by the vendor's rendering speed (or "default") for providers that
    bill by output size.
    """

    cost_per_image: float
    currency: str = "USD"
    free_quota: int | None = None
    quality_multipliers: Mapping[str, float] = field(default_factory=dict)
    cost_per_megapixel: Mapping[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ProviderCapabilities:
    """Declared limits and features of one backend."""

    supported_aspect_ratios: tuple[AspectRatio, ...]
    supported_qualities: tuple[ImageQuality, ...]
    max_prompt_length: int
    supports_seeds: bool
    supports_style_images: bool
    supports_image_editing: bool
    rate_limits: RateLimits
    pricing: Pricing


@dataclass(frozen=True)
class ProviderConfig:
    """Credentials and operational knobs for one backend."""

    provider: ProviderType
    api_key: str
    base_url: str | None = None
    enabled: bool = True
    priority: int = 0
    options: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class GenerationRequest:
    """The caller's intent for one image."""

    prompt: str
    aspect_ratio: AspectRatio = AspectRatio.SQUARE
    user_id: str = ""
    quality: ImageQuality | None = None
    seed: int | None = None
    randomize_seed: bool = False
    style_name: str | None = None
    custom_style: str | None = None
    style_reference_images: list[bytes] | None = None
    provider_options: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        try:
            self.aspect_ratio = AspectRatio(self.aspect_ratio)
        except ValueError as e:
            raise GenerationError(
                f"Unsupported aspect ratio: {self.aspect_ratio}",
                ErrorCode.UNSUPPORTED_ASPECT_RATIO,
            ) from e
        if self.quality is not None:
            try:
                self.quality = ImageQuality(self.quality)
            except ValueError as e:
                raise GenerationError(
                    f"Unsupported quality: {self.quality}",
                    ErrorCode.INVALID_PARAMETERS,
                ) from e


@dataclass
class ImageMetadata:
    """Dimensioned description of a generated image."""

    width: int
    height: int
    aspect_ratio: AspectRatio
    prompt: str
    quality: ImageQuality
    enhanced_prompt: str | None = None


@dataclass
class GenerationResult:
    """Normalized success value returned by every adapter."""

    image_data: bytes  # Raw image bytes
    mime_type: str  # e.g., "image/png"
    provider: ProviderType
    cost: float
    generation_time_ms: int
    metadata: ImageMetadata
    seed: int | None = None
    provider_data: dict[str, Any] = field(default_factory=dict)


def build_prompt(request: GenerationRequest) -> str:
    """Assemble the prompt text sent to the vendor (prompt plus style hints)."""
    prompt = request.prompt.strip()
    style = request.custom_style or request.style_name
    if style:
        return f"{prompt}, {style} style"
    return prompt


def decode_image_payload(payload: str) -> tuple[bytes, str | None]:
    """Decode a data URL or bare base64 string into bytes and its mime type."""
    mime_type = None
    data = payload
    if payload.startswith("data:"):
        header, _, data = payload.partition(",")
        mime_type = header[len("data:") :].split(";")[0] or None
    try:
        return base64.b64decode(data, validate=True), mime_type
    except (binascii.Error, ValueError) as e:
        raise ValueError("Image payload is not valid base64") from e


def response_message(response: httpx.Response) -> str:
    """Best-effort human readable error text from a vendor response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500] or response.reason_phrase
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            if body.get(key):
                return str(body[key])
    return str(body)[:500]


class ImageAdapter(ABC):
    """Abstract base class for image generation adapters.

    Subclasses describe their vendor through get_capabilities() and implement
    generate_image() and _probe(). Validation, cost estimation and error
    translation have shared defaults here that adapters may extend.
    """

    default_base_url: str = ""

    # Adapters that set this drop an unsupported seed with a warning instead of
    # rejecting the request.
    ignores_unsupported_seed: bool = False

    # Tier used when a request does not name one
    default_quality: ImageQuality = ImageQuality.STANDARD

    def __init__(self, config: ProviderConfig):
        """Initialize adapter.

        Args:
            config: Provider configuration. Must carry an API key.

        Raises:
            GenerationError: INVALID_API_KEY if the config has no key.
        """
        if not config.api_key:
            raise GenerationError(
                f"API key is required for {config.provider.value} provider",
                ErrorCode.INVALID_API_KEY,
                config.provider,
            )
        self.config = config
        self.base_url = (config.base_url or self.default_base_url).rstrip("/")
        self.timeout = float(config.options.get("timeout", DEFAULT_REQUEST_TIMEOUT))

    @property
    @abstractmethod
    def provider_type(self) -> ProviderType:
        """Return the provider identifier."""
        ...

    @abstractmethod
    def get_capabilities(self) -> ProviderCapabilities:
        """Return the provider's declared capabilities."""
        ...

    @abstractmethod
    async def generate_image(self, request: GenerationRequest) -> GenerationResult:
        """Generate one image.

        Args:
            request: Caller's generation request.

        Returns:
            GenerationResult with raw image bytes and metadata.

        Raises:
            GenerationError: For every failure, vendor errors included.
        """
        ...

    @abstractmethod
    async def _probe(self) -> bool:
        """Issue the smallest real request the vendor accepts."""
        ...

    async def health_check(self) -> bool:
        """Check if the provider is reachable and accepts our credentials."""
        try:
            return await self._probe()
        except Exception as e:
            logger.warning(f"Health check failed for {self.provider_type.value}: {e}")
            return False

    def validate_params(self, request: GenerationRequest) -> None:
        """Check a request against the declared capabilities.

        Raises:
            GenerationError: INVALID_PARAMETERS, PROMPT_TOO_LONG or
                UNSUPPORTED_ASPECT_RATIO.
        """
        capabilities = self.get_capabilities()
        provider = self.provider_type

        if not request.prompt or not request.prompt.strip():
            raise GenerationError("Prompt is required", ErrorCode.INVALID_PARAMETERS, provider)

        prompt = build_prompt(request)
        if len(prompt) > capabilities.max_prompt_length:
            raise GenerationError(
                f"Prompt too long. Maximum length is {capabilities.max_prompt_length} characters",
                ErrorCode.PROMPT_TOO_LONG,
                provider,
            )

        if request.aspect_ratio not in capabilities.supported_aspect_ratios:
            supported = ", ".join(r.value for r in capabilities.supported_aspect_ratios)
            raise GenerationError(
                f"Unsupported aspect ratio: {request.aspect_ratio.value}. "
                f"Supported ratios: {supported}",
                ErrorCode.UNSUPPORTED_ASPECT_RATIO,
                provider,
            )

        if request.quality is not None and request.quality not in capabilities.supported_qualities:
            supported = ", ".join(q.value for q in capabilities.supported_qualities)
            raise GenerationError(
                f"Unsupported quality: {request.quality.value}. Supported qualities: {supported}",
                ErrorCode.INVALID_PARAMETERS,
                provider,
            )

        if request.style_reference_images and not capabilities.supports_style_images:
            raise GenerationError(
                "Style reference images are not supported by this provider",
                ErrorCode.INVALID_PARAMETERS,
                provider,
            )

        if request.seed is not None and not capabilities.supports_seeds:
            if not self.ignores_unsupported_seed:
                raise GenerationError(
                    "Custom seeds are not supported by this provider",
                    ErrorCode.INVALID_PARAMETERS,
                    provider,
                )
            logger.warning(f"Ignoring seed for {provider.value} (not supported by the vendor API)")

    def effective_quality(self, request: GenerationRequest) -> ImageQuality:
        """Quality tier actually used for the vendor call (and for billing)."""
        return request.quality or self.default_quality

    def estimate_cost(self, request: GenerationRequest) -> float:
        """Estimate the cost of a request without calling the vendor."""
        pricing = self.get_capabilities().pricing
        multiplier = pricing.quality_multipliers.get(self.effective_quality(request).value, 1.0)
        return pricing.cost_per_image * multiplier

    def resolve_seed(self, request: GenerationRequest) -> int | None:
        """Seed to send to the vendor, drawing a fresh one when asked to randomize."""
        if not self.get_capabilities().supports_seeds:
            return None
        if request.randomize_seed:
            return random.randint(0, MAX_SEED)
        return request.seed

    def error_from_status(self, status: int, message: str) -> GenerationError:
        """Map an HTTP status from the vendor to the shared error taxonomy."""
        provider = self.provider_type
        if status in (401, 403):
            return GenerationError(
                f"Authentication failed: {message}", ErrorCode.UNAUTHORIZED, provider
            )
        if status == 402:
            return GenerationError(f"Quota exceeded: {message}", ErrorCode.QUOTA_EXCEEDED, provider)
        if status == 429:
            return GenerationError(f"Rate limit exceeded: {message}", ErrorCode.RATE_LIMITED, provider)
        if status == 503:
            return GenerationError(
                f"Service unavailable: {message}", ErrorCode.SERVICE_UNAVAILABLE, provider
            )
        if status in (408, 504):
            return GenerationError(f"Request timeout: {message}", ErrorCode.TIMEOUT, provider)
        return GenerationError(
            f"Provider error ({status}): {message}",
            ErrorCode.GENERATION_FAILED,
            provider,
            retryable=status >= 500,
        )

    def translate_error(self, exc: Exception, operation: str) -> GenerationError:
        """Convert any exception raised while talking to the vendor."""
        if isinstance(exc, GenerationError):
            return exc

        provider = self.provider_type
        if isinstance(exc, httpx.HTTPStatusError):
            error = self.error_from_status(
                exc.response.status_code, response_message(exc.response)
            )
        elif isinstance(exc, httpx.TimeoutException):
            error = GenerationError(f"Request timeout: {exc}", ErrorCode.TIMEOUT, provider)
        elif isinstance(exc, httpx.TransportError):
            error = GenerationError(f"Network error: {exc}", ErrorCode.NETWORK_ERROR, provider)
        else:
            error = GenerationError(
                f"Unknown error during {operation}: {exc}", ErrorCode.UNKNOWN_ERROR, provider
            )
        error.cause = exc
        return error

    def _json_body(self, response: httpx.Response) -> dict[str, Any]:
        """Parse a successful vendor response that must be a JSON object."""
        try:
            body = response.json()
        except ValueError as e:
            raise GenerationError(
                f"Malformed response from {self.provider_type.value}: {response.text[:200]}",
                ErrorCode.GENERATION_FAILED,
                self.provider_type,
                cause=e,
            ) from e
        if not isinstance(body, dict):
            raise GenerationError(
                f"Unexpected response shape from {self.provider_type.value}: {str(body)[:200]}",
                ErrorCode.GENERATION_FAILED,
                self.provider_type,
            )
        return body

    async def _download_image(self, client: httpx.AsyncClient, url: str) -> tuple[bytes, str]:
        """Fetch a vendor-hosted image, returning its bytes and content type."""
        try:
            response = await client.get(url)
            response.raise_for_status()
        except (httpx.HTTPStatusError, httpx.TransportError) as e:
            raise GenerationError(
                "Failed to download generated image",
                ErrorCode.NETWORK_ERROR,
                self.provider_type,
                retryable=True,
                cause=e,
            ) from e
        mime_type = response.headers.get("content-type", "image/png").split(";")[0]
        return response.content, mime_type

    def _log_metrics(
        self,
        operation: str,
        request: GenerationRequest,
        result: GenerationResult | None = None,
        error: GenerationError | None = None,
    ) -> None:
        """Emit one log line describing a generation event."""
        provider = self.provider_type.value
        quality = request.quality.value if request.quality else None
        line = (
            f"[{provider}] {operation}: user={request.user_id} "
            f"aspect_ratio={request.aspect_ratio.value} quality={quality} "
            f"prompt={request.prompt[:LOG_PROMPT_CHARS]!r}"
        )
        if result is not None:
            line += (
                f" generation_time_ms={result.generation_time_ms} "
                f"cost={result.cost:.4f} seed={result.seed}"
            )
        if error is not None:
            line += f" error_code={error.code.value} error={error.message}"
            logger.warning(line)
            return
        logger.info(line)
