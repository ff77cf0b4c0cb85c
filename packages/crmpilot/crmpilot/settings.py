"""Settings — system-level provider configuration persisted on disk."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_DEFAULT_DIR = os.path.expanduser("~/.crmpilot")
_SETTINGS_FILE = "settings.json"

ProviderName = Literal["openai", "anthropic"]

# Environment variables consulted when a key is absent from the settings file.
_ENV_KEYS: dict[str, str] = {
    "openai_api_key": "OPENAI_API_KEY",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
}


class AgentSettings(BaseModel):
    """System-level settings shared by every tenant."""

    openai_api_key: str | None = None
    anthropic_api_key: str | None = None

    default_provider: ProviderName | None = None
    default_models: dict[str, str] = Field(
        default_factory=lambda: {
            "openai": "gpt-4o",
            "anthropic": "claude-3-5-sonnet-latest",
        }
    )
    request_timeout_seconds: int = Field(default=120, gt=0)

    def key_for(self, provider: str) -> str | None:
        return getattr(self, f"{provider}_api_key", None)

    def mask_keys(self) -> dict:
        """Return settings with API keys masked for display."""
        data = self.model_dump()
        for key in ("openai_api_key", "anthropic_api_key"):
            val = data.get(key)
            if val:
                data[key] = val[:8] + "..." + val[-4:] if len(val) > 12 else "****"
        return data


class TenantAISettings(BaseModel):
    """Per-tenant AI configuration supplied by the tenant settings collaborator."""

    ai_provider: ProviderName | None = None
    ai_model: str | None = None
    openai_api_key: str | None = None
    anthropic_api_key: str | None = None

    def key_for(self, provider: str) -> str | None:
        return getattr(self, f"{provider}_api_key", None)


class SettingsManager:
    """Manages loading and saving agent settings from local filesystem."""

    def __init__(self, config_dir: str | None = None) -> None:
        self._config_dir = Path(config_dir or os.environ.get("CRMPILOT_HOME", _DEFAULT_DIR))

    @property
    def _settings_path(self) -> Path:
        return self._config_dir / _SETTINGS_FILE

    def load(self) -> AgentSettings:
        """Load settings from disk, filling missing keys from the environment."""
        settings = AgentSettings()
        if self._settings_path.exists():
            try:
                data = json.loads(self._settings_path.read_text())
                settings = AgentSettings.model_validate(data)
            except Exception as exc:
                logger.warning("Failed to load settings from %s: %s", self._settings_path, exc)

        env_updates = {
            field: os.environ[var]
            for field, var in _ENV_KEYS.items()
            if not getattr(settings, field) and os.environ.get(var)
        }
        return settings.model_copy(update=env_updates) if env_updates else settings

    def save(self, settings: AgentSettings) -> None:
        """Save settings to disk."""
        self._config_dir.mkdir(parents=True, exist_ok=True)
        self._settings_path.write_text(
            settings.model_dump_json(indent=2) + "\n"
        )

    def update(self, updates: dict) -> AgentSettings:
        """Load current settings, apply updates, save, and return."""
        settings = self.load()
        updated = settings.model_copy(update={
            k: v for k, v in updates.items() if v is not None
        })
        self.save(updated)
        return updated
