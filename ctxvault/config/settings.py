"""Configuration settings for a vault.

This module provides a Settings class that wraps the ConfigManager,
providing property-based access to configuration values with environment
variable fallbacks.
"""

from __future__ import annotations

import os
from typing import Any

from ctxvault.config.manager import ConfigManager
from ctxvault.config.schema import ConfigValidationError


class Settings:
    """Vault settings.

    ``CTXVAULT_*`` environment variables (including those loaded from the
    vault's ``.env``) override the vault's config.json, which overrides
    built-in defaults.
    """

    def __init__(self, config_manager: ConfigManager | None = None):
        self._config_manager = config_manager

    def _get(
        self,
        key: str,
        default: Any,
        env_key: str | None = None,
    ) -> Any:
        """Get config value from env override, then manager, then default."""
        if env_key and (env_val := os.getenv(env_key)):
            # Type conversion based on default type
            if isinstance(default, bool):
                return env_val.lower() in ("true", "1", "yes", "on")
            elif isinstance(default, int):
                try:
                    return int(env_val)
                except ValueError as e:
                    raise ConfigValidationError(
                        [f"Expected integer in {env_key}, got '{env_val}'"]
                    ) from e
            return env_val
        if self._config_manager:
            return self._config_manager.get(key, default)
        return default

    # Core
    @property
    def vault_name(self) -> str:
        return self._get("core.vault_name", "unnamed")

    @property
    def default_branch(self) -> str:
        return self._get("core.default_branch", "main")

    # Context
    @property
    def max_tokens(self) -> int:
        return self._get("context.max_tokens", 100_000, "CTXVAULT_MAX_TOKENS")

    @property
    def compress_snapshots(self) -> bool:
        return self._get("context.compress_snapshots", True)

    # Agent
    @property
    def default_author(self) -> str:
        return self._get("agent.default_author", "agent", "CTXVAULT_AUTHOR")

    @property
    def model_hint(self) -> str:
        return self._get("agent.model_hint", "claude-3-5-sonnet", "CTXVAULT_MODEL")

    @property
    def human_name(self) -> str:
        return os.getenv("CTXVAULT_USER") or os.getenv("USER") or "user"

    # Pins
    @property
    def always_load(self) -> list[str]:
        return list(self._get("pins.always_load", []))

    @property
    def never_load(self) -> list[str]:
        return list(self._get("pins.never_load", []))

    # Logging Configuration
    @property
    def log_level(self) -> str:
        return self._get("log_level", "WARNING", "CTXVAULT_LOG_LEVEL")

    @property
    def log_format(self) -> str:
        return self._get("log_format", "pretty", "CTXVAULT_LOG_FORMAT")

    @property
    def log_colors(self) -> bool:
        return self._get("log_colors", True, "CTXVAULT_LOG_COLORS")
