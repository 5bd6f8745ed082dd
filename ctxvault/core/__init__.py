"""Core vault value and error taxonomy."""

from .errors import VaultError
from .vault import Vault

__all__ = ["Vault", "VaultError"]
