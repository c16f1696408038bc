"""Provider configuration registry.

Builds one ProviderConfig per provider whose credentials are present in the
environment, and decides which provider is the default.

The registry state lives in a single immutable snapshot. Every change (reload,
enable/disable, priority override) builds a new snapshot and swaps the
reference, so a caller that read a snapshot never sees a half-rebuilt one.
"""

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Any

from flyergen.adapters.base import ProviderConfig, ProviderType
from flyergen.config import Settings
from flyergen.constants import (
    EMPTY_REGISTRY_RELOAD_INTERVAL,
    FAL_IDEOGRAM_MODEL,
    FAL_QWEN_MODEL,
    HUGGINGFACE_DEFAULT_MODEL,
    PRIORITY_FAL_IDEOGRAM,
    PRIORITY_FAL_QWEN,
    PRIORITY_HUGGINGFACE,
    PRIORITY_IDEOGRAM,
    PRIORITY_QWEN,
    PROVIDER_ENV_VARS,
    QWEN_IMAGE_MODEL,
)

logger = logging.getLogger(__name__)

# Used when nothing is configured at all
FALLBACK_DEFAULT_PROVIDER = ProviderType.IDEOGRAM


@dataclass(frozen=True)
class ProviderDeclaration:
    """Where a provider's settings come from and how it ranks."""

    provider: ProviderType
    api_key_field: str
    base_url_field: str
    priority: int
    options: Mapping[str, Any]
    polls_queue: bool = False


# Declaration order breaks priority ties
PROVIDER_DECLARATIONS: tuple[ProviderDeclaration, ...] = (
    ProviderDeclaration(
        ProviderType.FAL_IDEOGRAM,
        "fal_key",
        "fal_base_url",
        PRIORITY_FAL_IDEOGRAM,
        {"model": FAL_IDEOGRAM_MODEL, "rendering_speed": "BALANCED"},
        polls_queue=True,
    ),
    ProviderDeclaration(
        ProviderType.FAL_QWEN,
        "fal_key",
        "fal_base_url",
        PRIORITY_FAL_QWEN,
        {"model": FAL_QWEN_MODEL},
        polls_queue=True,
    ),
    ProviderDeclaration(
        ProviderType.IDEOGRAM,
        "ideogram_api_key",
        "ideogram_base_url",
        PRIORITY_IDEOGRAM,
        {"api_version": "v3", "rendering_speed": "TURBO"},
    ),
    ProviderDeclaration(
        ProviderType.QWEN,
        "hugging_face_api_token",
        "qwen_base_url",
        PRIORITY_QWEN,
        {"model": QWEN_IMAGE_MODEL},
    ),
    ProviderDeclaration(
        ProviderType.HUGGINGFACE,
        "hugging_face_api_token",
        "huggingface_base_url",
        PRIORITY_HUGGINGFACE,
        {"model": HUGGINGFACE_DEFAULT_MODEL},
    ),
)


@dataclass(frozen=True)
class RegistrySnapshot:
    """One consistent view of every provider config and the default."""

    configs: Mapping[ProviderType, ProviderConfig]
    default_provider: ProviderType


def build_provider_configs(settings: Settings) -> dict[ProviderType, ProviderConfig]:
    """Materialize configs for every declared provider that has credentials."""
    configs: dict[ProviderType, ProviderConfig] = {}
    for declaration in PROVIDER_DECLARATIONS:
        api_key = getattr(settings, declaration.api_key_field)
        if not api_key:
            continue
        options = dict(declaration.options)
        options["timeout"] = settings.image_request_timeout
        if declaration.polls_queue:
            options["poll_interval"] = settings.fal_poll_interval
        configs[declaration.provider] = ProviderConfig(
            provider=declaration.provider,
            api_key=api_key,
            base_url=getattr(settings, declaration.base_url_field),
            enabled=True,
            priority=declaration.priority,
            options=MappingProxyType(options),
        )
    return configs


def _ranked(configs: Mapping[ProviderType, ProviderConfig]) -> list[ProviderType]:
    usable = [c for c in configs.values() if c.enabled and c.api_key]
    # sorted() is stable, so ties keep declaration order
    return [c.provider for c in sorted(usable, key=lambda c: -c.priority)]


def _parse_provider(name: str) -> ProviderType | None:
    try:
        return ProviderType(name.strip().lower())
    except ValueError:
        return None


class ProviderConfigManager:
    """Registry of provider configurations."""

    def __init__(
        self,
        settings_factory: Callable[[], Settings] = Settings,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the registry and load configs from the environment.

        Args:
            settings_factory: Called on every (re)load; the default re-reads
                the environment each time.
            clock: Monotonic time source for throttling empty-registry reloads.
        """
        self._settings_factory = settings_factory
        self._clock = clock
        self._settings = settings_factory()
        self._snapshot = self._load(self._settings)
        self._loaded_at = clock()

    @property
    def settings(self) -> Settings:
        """Settings captured by the most recent load."""
        return self._settings

    def _load(self, settings: Settings) -> RegistrySnapshot:
        configs = build_provider_configs(settings)
        override = None
        if settings.image_generation_provider:
            override = _parse_provider(settings.image_generation_provider)
            if override is None or override not in _ranked(configs):
                logger.warning(
                    f"IMAGE_GENERATION_PROVIDER={settings.image_generation_provider} "
                    "is not a configured provider, using priority order"
                )
                override = None

        snapshot = self._make_snapshot(configs, override)
        logger.info(
            f"Loaded {len(configs)} image provider configs "
            f"({', '.join(p.value for p in configs) or 'none'}), "
            f"default {snapshot.default_provider.value}"
        )
        return snapshot

    @staticmethod
    def _make_snapshot(
        configs: Mapping[ProviderType, ProviderConfig], default: ProviderType | None = None
    ) -> RegistrySnapshot:
        if default is None:
            ranked = _ranked(configs)
            default = ranked[0] if ranked else FALLBACK_DEFAULT_PROVIDER
        return RegistrySnapshot(MappingProxyType(dict(configs)), default)

    def _swap(self, configs: dict[ProviderType, ProviderConfig]) -> None:
        """Replace one config set, keeping the current default if still usable."""
        current = self._snapshot.default_provider
        default = current if current in _ranked(configs) else None
        self._snapshot = self._make_snapshot(configs, default)

    def snapshot(self) -> RegistrySnapshot:
        return self._snapshot

    def ensure_initialized(self) -> None:
        """Load from the environment if nothing is configured yet.

        Called on the request path, so an empty registry re-reads the
        environment at most once per EMPTY_REGISTRY_RELOAD_INTERVAL.
        """
        if self._snapshot.configs:
            return
        if self._clock() - self._loaded_at < EMPTY_REGISTRY_RELOAD_INTERVAL:
            return
        self.reload_configurations()

    def reload_configurations(self) -> None:
        """Rebuild every config from the current environment."""
        settings = self._settings_factory()
        snapshot = self._load(settings)
        self._settings = settings
        self._snapshot = snapshot
        self._loaded_at = self._clock()

    def get_provider_config(self, provider: ProviderType) -> ProviderConfig | None:
        return self._snapshot.configs.get(provider)

    def get_all_configs(self) -> Mapping[ProviderType, ProviderConfig]:
        return self._snapshot.configs

    def get_default_provider(self) -> ProviderType:
        return self._snapshot.default_provider

    def set_default_provider(self, provider: ProviderType) -> None:
        """Make provider the default.

        Raises:
            ValueError: If the provider is not configured or not enabled.
        """
        snapshot = self._snapshot
        config = snapshot.configs.get(provider)
        if config is None:
            raise ValueError(f"Provider {provider.value} is not configured")
        if not config.enabled:
            raise ValueError(f"Provider {provider.value} is not enabled")
        self._snapshot = RegistrySnapshot(snapshot.configs, provider)
        logger.info(f"Default image provider set to {provider.value}")

    def get_available_providers(self) -> list[ProviderType]:
        """Enabled providers with credentials, highest priority first."""
        return _ranked(self._snapshot.configs)

    def get_fallback_providers(self, primary: ProviderType) -> list[ProviderType]:
        return [p for p in self.get_available_providers() if p != primary]

    def is_provider_available(self, provider: ProviderType) -> bool:
        config = self._snapshot.configs.get(provider)
        return config is not None and config.enabled and bool(config.api_key)

    def set_provider_enabled(self, provider: ProviderType, enabled: bool) -> None:
        """Enable or disable a configured provider.

        Raises:
            ValueError: If the provider is not configured, or is being
                enabled without an API key.
        """
        configs = dict(self._snapshot.configs)
        config = configs.get(provider)
        if config is None:
            raise ValueError(f"Provider {provider.value} is not configured")
        if enabled and not config.api_key:
            raise ValueError(f"Cannot enable {provider.value}: no API key configured")
        configs[provider] = replace(config, enabled=enabled)
        self._swap(configs)
        logger.info(f"Provider {provider.value} {'enabled' if enabled else 'disabled'}")

    def set_provider_priority(self, provider: ProviderType, priority: int) -> None:
        configs = dict(self._snapshot.configs)
        config = configs.get(provider)
        if config is None:
            raise ValueError(f"Provider {provider.value} is not configured")
        configs[provider] = replace(config, priority=priority)
        self._swap(configs)

    def add_provider_config(self, config: ProviderConfig) -> None:
        """Add or replace the config for one provider.

        Raises:
            ValueError: If the config is enabled but has no API key.
        """
        if config.enabled and not config.api_key:
            raise ValueError(f"Cannot enable {config.provider.value}: no API key configured")
        configs = dict(self._snapshot.configs)
        configs[config.provider] = config
        self._swap(configs)

    def validate_configurations(self) -> dict[ProviderType, dict[str, Any]]:
        """Check every config for missing credentials or base URL (no network)."""
        results: dict[ProviderType, dict[str, Any]] = {}
        for provider, config in self._snapshot.configs.items():
            if not config.api_key:
                results[provider] = {"valid": False, "error": "Missing API key"}
            elif not config.base_url:
                results[provider] = {"valid": False, "error": "Missing base URL"}
            else:
                results[provider] = {"valid": True, "error": None}
        return results

    def get_config_summary(self) -> list[dict[str, Any]]:
        """One row per known provider, configured or not, for admin screens."""
        snapshot = self._snapshot
        providers = [d.provider for d in PROVIDER_DECLARATIONS]
        providers += [p for p in snapshot.configs if p not in providers]
        summary = []
        for provider in providers:
            config = snapshot.configs.get(provider)
            summary.append(
                {
                    "provider": provider.value,
                    "enabled": bool(config and config.enabled),
                    "configured": bool(config and config.api_key),
                    "priority": config.priority if config else None,
                    "is_default": provider == snapshot.default_provider,
                    "env_vars": PROVIDER_ENV_VARS.get(provider.value, []),
                }
            )
        return summary

    @staticmethod
    def required_environment_variables() -> dict[str, list[str]]:
        return {name: list(env_vars) for name, env_vars in PROVIDER_ENV_VARS.items()}
