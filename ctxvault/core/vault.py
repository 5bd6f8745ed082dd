"""Vault location and working-state management.

A ``Vault`` is the explicit context value every core component receives: it
owns the directory layout (control dir, tracked root, object store) and the
vault's configuration and index. It is built once per invocation, either for
a known root or by walking up from a starting directory.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from ctxvault.config.constants import (
    BRANCH_DESCRIPTIONS_FILE_NAME,
    COMMIT_LOG_SUFFIX,
    CONTROL_DIR_NAME,
    HEAD_FILE_NAME,
    IGNORE_FILE_NAME,
    INDEX_FILE_NAME,
    TRACKED_ROOT_NAME,
)
from ctxvault.config.manager import ConfigManager, create_config_manager
from ctxvault.config.settings import Settings
from ctxvault.core.errors import StorageError, VaultNotFound
from ctxvault.domain.models import Index
from ctxvault.utils.logger import get_logger

logger = get_logger("ctxvault.vault")


def write_json_atomic(path: Path, data: Any) -> None:
    """Write JSON via temp file + rename so readers never see partial files."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp_path.replace(path)


@dataclass
class Vault:
    """A vault rooted at ``root``.

    Attributes:
        root: Absolute vault root directory.
        control_dir: Hidden directory holding refs, logs, objects and config.
        tracked_root: Directory whose files are versioned.
    """

    root: Path
    control_dir: Path
    tracked_root: Path
    _config_manager: ConfigManager | None = field(default=None, repr=False)

    @classmethod
    def at(cls, root: str | Path) -> Vault:
        """Build the vault value for ``root`` without checking it exists."""
        root_path = Path(root).expanduser().resolve()
        return cls(
            root=root_path,
            control_dir=root_path / CONTROL_DIR_NAME,
            tracked_root=root_path / TRACKED_ROOT_NAME,
        )

    @classmethod
    def discover(cls, start: str | Path | None = None) -> Vault:
        """Find the nearest vault at or above ``start`` (default: cwd)."""
        current = Path(start or Path.cwd()).expanduser().resolve()
        for candidate in (current, *current.parents):
            if (candidate / CONTROL_DIR_NAME).is_dir():
                logger.debug("Vault discovered", root=str(candidate))
                return cls.at(candidate)
        raise VaultNotFound(current)

    def exists(self) -> bool:
        return self.control_dir.is_dir()

    def validate(self) -> None:
        if not self.exists():
            raise VaultNotFound(self.root)

    # ---- layout ----
    @property
    def objects_dir(self) -> Path:
        return self.control_dir / "objects"

    @property
    def refs_dir(self) -> Path:
        return self.control_dir / "refs" / "heads"

    @property
    def branch_descriptions_path(self) -> Path:
        return self.control_dir / "refs" / BRANCH_DESCRIPTIONS_FILE_NAME

    @property
    def commits_dir(self) -> Path:
        return self.control_dir / "commits"

    @property
    def head_path(self) -> Path:
        return self.control_dir / HEAD_FILE_NAME

    @property
    def index_path(self) -> Path:
        return self.control_dir / INDEX_FILE_NAME

    @property
    def ignore_path(self) -> Path:
        return self.root / IGNORE_FILE_NAME

    def commit_log_path(self, branch: str) -> Path:
        return self.commits_dir / f"{branch}{COMMIT_LOG_SUFFIX}"

    def ensure_layout(self) -> None:
        """Create the control directory structure and tracked root."""
        for directory in (
            self.control_dir,
            self.objects_dir,
            self.refs_dir,
            self.commits_dir,
            self.tracked_root,
        ):
            directory.mkdir(parents=True, exist_ok=True)

    def relative(self, path: Path) -> str:
        """Vault-relative POSIX form of ``path``."""
        try:
            return path.resolve().relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    # ---- configuration ----
    @property
    def config_manager(self) -> ConfigManager:
        if self._config_manager is None:
            self._config_manager = create_config_manager(self.control_dir)
        return self._config_manager

    @property
    def settings(self) -> Settings:
        return Settings(self.config_manager)

    # ---- index ----
    def load_index(self) -> Index:
        """Load the index; a missing file means an empty index."""
        if not self.index_path.exists():
            return Index()
        try:
            return Index.model_validate_json(self.index_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise StorageError("read index", e) from e

    def save_index(self, index: Index) -> None:
        try:
            write_json_atomic(self.index_path, index.model_dump(mode="json"))
        except OSError as e:
            raise StorageError("write index", e) from e
