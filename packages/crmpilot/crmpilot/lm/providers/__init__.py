"""Concrete LM providers and provider resolution."""

from crmpilot.lm.providers.factory import (
    ProviderConfig,
    build_providers,
    resolve_provider_configs,
)

__all__ = ["ProviderConfig", "build_providers", "resolve_provider_configs"]
