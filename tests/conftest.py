"""Shared pytest fixtures for all tests."""

from pathlib import Path

import pytest

from ctxvault.core.vault import Vault
from ctxvault.services.vault_service import VaultService

_ENV_VARS = (
    "CTXVAULT_AUTHOR",
    "CTXVAULT_MODEL",
    "CTXVAULT_MAX_TOKENS",
    "CTXVAULT_LOG_LEVEL",
    "CTXVAULT_LOG_FORMAT",
    "CTXVAULT_LOG_COLORS",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Keep the developer's CTXVAULT_* environment out of tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CTXVAULT_USER", "tester")


@pytest.fixture
def service(tmp_path) -> VaultService:
    """A freshly initialized vault with its initial commit on ``main``."""
    return VaultService.init(tmp_path / "vault", name="test")


@pytest.fixture
def temp_vault(service) -> Vault:
    return service.vault


@pytest.fixture
def write_file(temp_vault):
    """Return a helper creating a file below the vault root."""

    def _write(rel_path: str, content: str | bytes) -> Path:
        path = temp_vault.root / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content, encoding="utf-8")
        return path

    return _write
