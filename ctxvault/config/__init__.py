"""Configuration module for ctxvault."""

from .defaults import get_default_config
from .manager import ConfigManager, create_config_manager
from .providers import ConfigProvider, LocalFileConfigProvider
from .schema import ConfigValidationError, VaultConfig
from .settings import Settings

__all__ = [
    "Settings",
    "ConfigManager",
    "ConfigValidationError",
    "VaultConfig",
    "create_config_manager",
    "ConfigProvider",
    "LocalFileConfigProvider",
    "get_default_config",
]
