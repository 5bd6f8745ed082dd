from __future__ import annotations

from copy import deepcopy
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


def deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Deep-merge updates into base without mutating inputs.

    - Keys present in updates with non-None values are merged/overwritten
    - Keys present in updates with None values are skipped (preserve base value)
    - Keys not present in updates are preserved from base
    """
    result = deepcopy(base)
    for key, value in updates.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        elif key in result and value is None:
            # Treat None as "not provided" so lower layers keep their values
            continue
        else:
            result[key] = value
    return result


class CoreConfig(BaseModel):
    vault_name: str = "unnamed"
    default_branch: str = "main"
    created_at: datetime | None = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("default_branch")
    @classmethod
    def _branch_name_is_plain(cls, value: str) -> str:
        if not value or "/" in value or value.startswith(".") or value == "HEAD":
            raise ValueError(f"Invalid default branch name '{value}'")
        return value


class ContextConfig(BaseModel):
    max_tokens: int = 100_000
    compress_snapshots: bool = True

    model_config = ConfigDict(extra="ignore")


class AgentConfig(BaseModel):
    default_author: Literal["human", "agent"] = "agent"
    model_hint: str = "claude-3-5-sonnet"

    model_config = ConfigDict(extra="ignore")


class PinsConfig(BaseModel):
    always_load: list[str] = Field(default_factory=list)
    never_load: list[str] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")


class VaultConfig(BaseModel):
    core: CoreConfig = Field(default_factory=CoreConfig)
    context: ContextConfig = Field(default_factory=ContextConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    pins: PinsConfig = Field(default_factory=PinsConfig)

    log_level: str = "WARNING"
    log_format: Literal["pretty", "json"] = "pretty"
    log_colors: bool = True

    model_config = ConfigDict(extra="ignore")


class ConfigValidationError(Exception):
    """Structured configuration validation error."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Validate configuration using the pydantic schema.

    Raises:
        ConfigValidationError: With structured list of human-readable error messages.
    """
    try:
        vault_config = VaultConfig.model_validate(config)
        return vault_config.model_dump(mode="json")
    except ValidationError as e:
        raise ConfigValidationError(_extract_validation_errors(e)) from e


def _extract_validation_errors(exc: ValidationError) -> list[str]:
    """Convert Pydantic ValidationError to list of human-readable messages."""
    errors = []
    for err in exc.errors():
        loc = ".".join(str(x) for x in err["loc"]) if err["loc"] else "config"
        msg = err["msg"]

        # Strip Pydantic's "Value error, " prefix from our custom messages
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, ") :]

        if err["type"] == "missing":
            errors.append(f"Missing required field: {loc}")
        elif err["type"] == "string_type":
            errors.append(f"Expected string at '{loc}'")
        elif err["type"] == "int_type" or err["type"] == "int_parsing":
            errors.append(f"Expected integer at '{loc}'")
        elif err["type"] == "bool_type" or err["type"] == "bool_parsing":
            errors.append(f"Expected boolean at '{loc}'")
        elif err["type"] == "dict_type" or err["type"] == "model_type":
            errors.append(f"Expected object at '{loc}'")
        else:
            errors.append(f"{loc}: {msg}")

    return errors if errors else ["Invalid configuration"]
