"""
Model availability tracking.

Model keys look like ``azure:hifi`` or ``google:gemini-2.0-flash``. A model
is available when its provider is configured and the model has not been
disabled; a temporary disable expires on its own.
"""

from __future__ import annotations

import time
from functools import lru_cache

import structlog

from .config import rate_retry_config

logger = structlog.get_logger(__name__)

PROVIDERS = ('azure', 'google')
MODEL_TYPES = ('hifi', 'lofi', 'completions', 'embedding')
GOOGLE_SPECIFIC_MODELS = ('gemini-pro', 'gemini-flash', 'google-embedding', 'gemini-2.0-flash')


def model_key(provider: str, model: str) -> str:
    return f"{provider}:{model}"


def split_model_key(key: str) -> tuple[str, str]:
    provider, _, model = key.partition(':')
    return provider, model


class ModelAvailability:
    """Tracks which model keys may currently be used."""

    def __init__(self, configured_providers: set[str] | None = None, clock=time.monotonic):
        """
        Args:
            configured_providers: Providers with credentials; None means every provider
            clock: Monotonic clock in seconds
        """
        self.configured_providers = (
            set(PROVIDERS) if configured_providers is None else set(configured_providers)
        )
        self._clock = clock
        # key -> monotonic time the disable expires (None: until re-enabled)
        self._disabled: dict[str, float | None] = {}

    def is_provider_configured(self, provider: str) -> bool:
        return provider in self.configured_providers

    def is_model_available(self, key: str) -> bool:
        provider, _ = split_model_key(key)
        if not self.is_provider_configured(provider):
            return False
        if key not in self._disabled:
            return True
        until = self._disabled[key]
        if until is not None and self._clock() >= until:
            del self._disabled[key]
            return True
        return False

    def disable_model(self, key: str, duration_seconds: float | None = None) -> None:
        """Disable a model, for ``duration_seconds`` or until enable_model()."""
        until = None if duration_seconds is None else self._clock() + duration_seconds
        self._disabled[key] = until
        logger.warning('model_availability.disabled', model_key=key, duration_seconds=duration_seconds)

    def enable_model(self, key: str) -> None:
        self._disabled.pop(key, None)

    def provider_models(self, provider: str) -> list[str]:
        models = list(MODEL_TYPES)
        if provider == 'google':
            models.extend(GOOGLE_SPECIFIC_MODELS)
        return [model_key(provider, m) for m in models]

    def disable_provider(self, provider: str, duration_seconds: float | None = None) -> None:
        for key in self.provider_models(provider):
            self.disable_model(key, duration_seconds)

    def enable_provider(self, provider: str) -> None:
        for key in self.provider_models(provider):
            self.enable_model(key)

    def handle_rate_limit(self, provider: str, duration_seconds: float | None = None) -> None:
        """Take every model of a rate-limited provider out of rotation for a while."""
        self.disable_provider(
            provider,
            duration_seconds if duration_seconds is not None else rate_retry_config.RATE_LIMIT_COOLDOWN_SECONDS,
        )

    def get_availability_status(self) -> dict[str, bool]:
        """Availability of every model that has been explicitly disabled."""
        return {key: self.is_model_available(key) for key in list(self._disabled)}

    def reset_to_defaults(self) -> None:
        self._disabled.clear()


def configured_providers_from_env() -> set[str]:
    providers = set()
    if rate_retry_config.AZURE_OPENAI_API_KEY and rate_retry_config.AZURE_OPENAI_ENDPOINT:
        providers.add('azure')
    if rate_retry_config.GOOGLE_API_KEY:
        providers.add('google')
    return providers


@lru_cache
def get_model_availability() -> ModelAvailability:
    """Process-wide availability tracker."""
    return ModelAvailability(configured_providers_from_env())
