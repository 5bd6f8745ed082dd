"""Configuration manager over a single provider."""

from __future__ import annotations

from pathlib import Path
from typing import Any, TypeVar

from ctxvault.config.constants import CONFIG_FILE_NAME
from ctxvault.config.defaults import get_default_config
from ctxvault.config.providers import ConfigProvider, LocalFileConfigProvider
from ctxvault.config.schema import deep_merge
from ctxvault.utils.logger import get_logger

logger = get_logger("ctxvault.config.manager")

T = TypeVar("T")


class ConfigManager:
    """Holds the loaded configuration of one vault."""

    def __init__(self, provider: ConfigProvider):
        self.provider = provider
        self._config: dict[str, Any] = {}
        self._loaded = False

    def initialize(self) -> None:
        self._config = self.provider.load()
        self._loaded = True
        logger.debug("Configuration initialized", config_keys=list(self._config.keys()))

    def get(self, key: str, default: Any = None) -> Any:
        """Get a configuration value; dotted keys walk nested sections."""
        if "." not in key:
            return self._config.get(key, default)
        node: Any = self._config
        for part in key.split("."):
            if isinstance(node, dict) and part in node:
                node = node[part]
            else:
                return default
        return node

    def get_typed(self, key: str, expected_type: type[T], default: T) -> T:
        """Get a typed configuration value with validation."""
        value = self.get(key, default)
        if not isinstance(value, expected_type):
            logger.warning(
                "Config type mismatch, using default",
                key=key,
                expected=expected_type.__name__,
                actual=type(value).__name__,
            )
            return default
        return value

    def get_int(self, key: str, default: int = 0) -> int:
        return self.get_typed(key, int, default)

    def get_bool(self, key: str, default: bool = False) -> bool:
        return self.get_typed(key, bool, default)

    def get_all(self) -> dict[str, Any]:
        return self._config.copy()

    def update(self, updates: dict[str, Any]) -> None:
        """Deep-merge updates into the config and persist it."""
        self._config = deep_merge(self._config, updates)
        self.provider.save(self._config)
        logger.info("Configuration updated", keys=list(updates.keys()))


def create_config_manager(
    control_dir: Path,
    *,
    defaults: dict[str, Any] | None = None,
    create_if_missing: bool = False,
) -> ConfigManager:
    """Create and load the config manager of a vault control directory."""
    config_path = control_dir / CONFIG_FILE_NAME
    provider = LocalFileConfigProvider(
        config_path,
        defaults=defaults if defaults is not None else get_default_config(),
        create_if_missing=create_if_missing,
    )
    manager = ConfigManager(provider)
    manager.initialize()
    return manager
