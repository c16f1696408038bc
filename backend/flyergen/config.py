"""
Configuration management using pydantic-settings.
Loads from environment variables and ~/.env.local
"""

from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from flyergen.constants import (
    DEFAULT_FAL_POLL_INTERVAL,
    DEFAULT_REQUEST_TIMEOUT,
    FAL_QUEUE_BASE_URL,
    HUGGINGFACE_BASE_URL,
    IDEOGRAM_BASE_URL,
)


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(
        env_file=str(Path.home() / ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Server
    host: str = "0.0.0.0"
    port: int = 8010
    log_level: str = "INFO"

    # CORS
    cors_origins: str = "http://localhost:3000"  # Comma-separated

    # API Keys (the NEXT_PUBLIC_ names are accepted for existing deployments)
    ideogram_api_key: str = Field(
        default="",
        validation_alias=AliasChoices("IDEOGRAM_API_KEY", "NEXT_PUBLIC_IDEOGRAM_API_KEY"),
    )
    hugging_face_api_token: str = Field(
        default="",
        validation_alias=AliasChoices(
            "HUGGING_FACE_API_TOKEN", "NEXT_PUBLIC_HUGGING_FACE_API_TOKEN"
        ),
    )
    fal_key: str = ""

    # Base URLs
    ideogram_base_url: str = IDEOGRAM_BASE_URL
    huggingface_base_url: str = HUGGINGFACE_BASE_URL
    qwen_base_url: str = HUGGINGFACE_BASE_URL
    fal_base_url: str = FAL_QUEUE_BASE_URL

    # Provider selection
    image_generation_provider: str = ""  # Explicit default provider override

    # Timeouts
    image_request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    fal_poll_interval: float = DEFAULT_FAL_POLL_INTERVAL

    # Retry
    retry_max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_backoff_multiplier: float = 2.0

    # Circuit breaker
    circuit_breaker_threshold: int = 5
    circuit_breaker_reset_timeout: float = 60.0

    # Fallback
    fallback_on_unsupported_aspect_ratio: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
