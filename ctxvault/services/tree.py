"""Tracked-tree walking shared by snapshots, diffing and wikilinks.

Only regular files under the tracked root take part. Symlinks are never
followed or recorded. Paths matching ``DEFAULT_EXCLUDES`` or the vault's
``.ctxvaultignore`` (gitignore syntax, via pathspec) are skipped.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path

import pathspec

from ctxvault.core.vault import Vault

# OS and editor artifacts that never belong in a snapshot
DEFAULT_EXCLUDES = [
    ".DS_Store",
    "Thumbs.db",
    "desktop.ini",
    "*.swp",
    "*.swo",
    "*~",
    "*.tmp",
]


@dataclass(frozen=True)
class TrackedFile:
    path: Path
    rel_path: str  # vault-relative, POSIX separators
    tree_path: str  # relative to the tracked root

    @property
    def domain(self) -> str | None:
        return domain_of(self.tree_path)


def domain_of(tree_path: str) -> str | None:
    """First path segment below the tracked root, if the file is nested."""
    parts = tree_path.split("/")
    return parts[0] if len(parts) >= 2 else None


def build_ignore_spec(vault: Vault) -> pathspec.PathSpec:
    """Build PathSpec from DEFAULT_EXCLUDES and the vault ignore file."""
    patterns = list(DEFAULT_EXCLUDES)
    if vault.ignore_path.exists():
        for line in vault.ignore_path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            # Skip comments and empty lines
            if not line or line.startswith("#"):
                continue
            patterns.append(line)
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


def iter_tracked_files(
    vault: Vault,
    base: Path | None = None,
    ignore_spec: pathspec.PathSpec | None = None,
) -> Iterator[TrackedFile]:
    """Yield tracked files in sorted traversal order.

    Args:
        vault: Vault whose tracked root is walked
        base: Optional subdirectory of the tracked root to restrict the walk to
        ignore_spec: Precomputed spec; built from the vault when omitted
    """
    tracked_root = vault.tracked_root
    start = base or tracked_root
    if not start.is_dir():
        return
    spec = ignore_spec or build_ignore_spec(vault)

    for root, dirs, files in os.walk(start, followlinks=False):
        root_path = Path(root)
        rel_root = root_path.relative_to(tracked_root).as_posix()
        prefix = "" if rel_root == "." else f"{rel_root}/"

        kept_dirs = []
        for d in sorted(dirs):
            if (root_path / d).is_symlink():
                continue
            if spec.match_file(f"{prefix}{d}/"):
                continue
            kept_dirs.append(d)
        dirs[:] = kept_dirs

        for filename in sorted(files):
            file_path = root_path / filename
            if file_path.is_symlink() or not file_path.is_file():
                continue
            tree_path = f"{prefix}{filename}"
            if spec.match_file(tree_path):
                continue
            yield TrackedFile(
                path=file_path,
                rel_path=f"{tracked_root.name}/{tree_path}",
                tree_path=tree_path,
            )
