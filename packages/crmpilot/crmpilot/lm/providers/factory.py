"""Provider resolution — turn tenant and system settings into an ordered provider list.

Resolution is pure: it only reads the settings objects it is given and
returns ``ProviderConfig`` values. Building clients is a separate step so
the fallback executor never needs to know where keys came from.
"""

from __future__ import annotations

from collections.abc import Callable

from pydantic import BaseModel

from crmpilot.core.errors import ConfigurationError
from crmpilot.lm.provider import BaseLMProvider
from crmpilot.settings import AgentSettings, ProviderName, TenantAISettings

SUPPORTED_PROVIDERS: tuple[ProviderName, ...] = ("openai", "anthropic")


class ProviderConfig(BaseModel):
    """Everything needed to construct one provider client."""

    provider: ProviderName
    api_key: str
    model: str


def resolve_provider_configs(
    system: AgentSettings,
    tenant: TenantAISettings | None = None,
) -> list[ProviderConfig]:
    """Return provider configs in priority order.

    Tenant keys take precedence over system keys. The tenant's chosen
    provider (or the system default, or the first provider with a key)
    comes first; the tenant's model override applies only to it.
    Raises ConfigurationError if no provider has a key.
    """
    tenant = tenant or TenantAISettings()

    def key_for(provider: str) -> str | None:
        return tenant.key_for(provider) or system.key_for(provider)

    primary = tenant.ai_provider or system.default_provider
    if primary is None:
        primary = next((p for p in SUPPORTED_PROVIDERS if key_for(p)), "openai")

    ordered = [primary, *(p for p in SUPPORTED_PROVIDERS if p != primary)]
    configs: list[ProviderConfig] = []
    for provider in ordered:
        key = key_for(provider)
        if not key:
            continue
        model = (tenant.ai_model if provider == primary else None) or system.default_models.get(
            provider, ""
        )
        configs.append(ProviderConfig(provider=provider, api_key=key, model=model))

    if not configs:
        raise ConfigurationError(
            "No AI API keys found. Configure a provider key in tenant or system settings."
        )
    return configs


def _openai(config: ProviderConfig, timeout: int) -> BaseLMProvider:
    from crmpilot.lm.providers.openai import OpenAIProvider

    return OpenAIProvider(model=config.model, api_key=config.api_key, timeout=timeout)


def _anthropic(config: ProviderConfig, timeout: int) -> BaseLMProvider:
    from crmpilot.lm.providers.anthropic import AnthropicProvider

    return AnthropicProvider(model=config.model, api_key=config.api_key, timeout=timeout)


_FACTORIES: dict[str, Callable[[ProviderConfig, int], BaseLMProvider]] = {
    "openai": _openai,
    "anthropic": _anthropic,
}


def build_providers(
    configs: list[ProviderConfig], *, timeout: int = 120
) -> list[BaseLMProvider]:
    """Instantiate provider clients for resolved configs, preserving order."""
    return [_FACTORIES[config.provider](config, timeout) for config in configs]
