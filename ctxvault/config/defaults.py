"""Default configuration values for a vault."""

from datetime import UTC, datetime
from typing import Any


def get_default_config(vault_name: str = "unnamed") -> dict[str, Any]:
    """Return the default configuration dictionary."""
    return {
        "core": {
            "vault_name": vault_name,
            "default_branch": "main",
            "created_at": datetime.now(UTC).isoformat(),
        },
        "context": {
            "max_tokens": 100_000,
            "compress_snapshots": True,
        },
        "agent": {
            "default_author": "agent",
            "model_hint": "claude-3-5-sonnet",
        },
        "pins": {
            "always_load": ["domains/_global/agent.md"],
            "never_load": ["domains/archive/*"],
        },
        # Logging Configuration
        "log_level": "WARNING",
        "log_format": "pretty",
        "log_colors": True,
    }
