"""Configuration providers - abstract and concrete implementations."""

import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from ctxvault.config.schema import deep_merge, validate_config
from ctxvault.utils.logger import get_logger

logger = get_logger("ctxvault.config.providers")


class ConfigProvider(ABC):
    """Abstract base class for configuration providers."""

    @abstractmethod
    def load(self) -> dict[str, Any]:
        """Load configuration from the provider."""
        pass

    @abstractmethod
    def save(self, config: dict[str, Any]) -> None:
        """Save configuration to the provider."""
        pass


class LocalFileConfigProvider(ConfigProvider):
    """Configuration provider that stores config in a local JSON file.

    The file only needs to hold the keys a user changed; everything else is
    filled in from ``defaults`` on load. Invalid structure raises
    ``ConfigValidationError``, invalid JSON falls back to the last valid
    config (or defaults) and is logged.
    """

    def __init__(
        self,
        config_path: Path,
        defaults: dict[str, Any] | None = None,
        *,
        create_if_missing: bool = False,
    ):
        self.config_path = config_path
        self.defaults = defaults or {}
        self.create_if_missing = create_if_missing
        self._last_valid_config: dict[str, Any] | None = None
        self._user_config: dict[str, Any] | None = None

    def load(self) -> dict[str, Any]:
        """Load configuration from file, merged over defaults."""
        if not self.config_path.exists():
            if self.create_if_missing:
                logger.info(
                    "Config file not found, creating with defaults",
                    path=str(self.config_path),
                )
                self.save(self.defaults.copy())
            else:
                logger.debug(
                    "Config file not found, using defaults",
                    path=str(self.config_path),
                )
            merged = validate_config(self.defaults)
            self._last_valid_config = merged.copy()
            self._user_config = {}
            return merged

        try:
            content = self.config_path.read_text(encoding="utf-8")
            config = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(
                "Invalid JSON syntax in config file",
                error=str(e),
                line=e.lineno,
                column=e.colno,
                path=str(self.config_path),
            )
            if self._last_valid_config is not None:
                return self._last_valid_config.copy()
            logger.warning(
                "No previous valid config, using defaults",
                path=str(self.config_path),
            )
            return validate_config(self.defaults)

        merged = validate_config(deep_merge(self.defaults, config))
        self._last_valid_config = merged.copy()
        self._user_config = config.copy()
        logger.debug("Config loaded from file", path=str(self.config_path))
        return merged

    def save(self, config: dict[str, Any]) -> None:
        """Atomically save configuration to file."""
        merged = validate_config(deep_merge(self.defaults, config))

        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.config_path.with_suffix(".tmp")
        content = json.dumps(merged, ensure_ascii=False, indent=2)
        tmp_path.write_text(content, encoding="utf-8")
        tmp_path.replace(self.config_path)

        self._user_config = merged.copy()
        self._last_valid_config = merged.copy()
        logger.debug("Config saved to file", path=str(self.config_path))
