"""Context diffing and token accounting.

The engine compares the live tracked tree against a commit's manifest and
classifies every path as added, modified or removed. Token counts use a fixed
heuristic of one token per four characters of UTF-8 text; binary files are
hashed and counted for domains but contribute no tokens.

Within one engine instance, file hashes and decoded text are memoized by
``(size, mtime_ns)`` so repeated scans skip unchanged files.
"""

from __future__ import annotations

import os
import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from ctxvault.config.constants import CHARS_PER_TOKEN
from ctxvault.core.errors import SnapshotNotFound
from ctxvault.core.vault import Vault
from ctxvault.domain.models import Commit, ContextDiff, ContextSummary
from ctxvault.services.commits import CommitGraph
from ctxvault.services.snapshots import SnapshotStore
from ctxvault.services.tree import TrackedFile, domain_of, iter_tracked_files
from ctxvault.utils.hashing import blob_hash
from ctxvault.utils.logger import get_logger

logger = get_logger("ctxvault.context")

_NS_PER_SECOND = 1_000_000_000


def estimate_tokens(text: str) -> int:
    """Token estimate of ``text``: character count floor-divided by four."""
    return len(text) // CHARS_PER_TOKEN


def compress_markdown(content: str) -> str:
    """Trim trailing whitespace on every line and collapse triple newlines."""
    trimmed = "\n".join(line.rstrip() for line in content.split("\n"))
    return trimmed.replace("\n\n\n", "\n\n")


def domains_in(paths: Iterable[str], tracked_root_name: str) -> list[str]:
    """Unique domains of vault-relative ``paths`` in first-seen order."""
    prefix = f"{tracked_root_name}/"
    seen: dict[str, None] = {}
    for path in paths:
        if not path.startswith(prefix):
            continue
        domain = domain_of(path[len(prefix):])
        if domain is not None:
            seen.setdefault(domain, None)
    return list(seen)


@dataclass(frozen=True)
class ScannedFile:
    tracked: TrackedFile
    hash: str
    text: str | None  # None when the content is not valid UTF-8


@dataclass(frozen=True)
class _CacheEntry:
    size: int
    mtime_ns: int
    ctime_ns: int
    inode: int
    read_ns: int
    hash: str
    text: str | None


def _is_unchanged(cached: _CacheEntry, stat: os.stat_result) -> bool:
    """Whether a memoized hash can be reused for a file with ``stat``.

    A file modified in the same second it was read is "racy": a later
    same-size write could keep the same mtime, so it is always rehashed.
    """
    return (
        cached.size == stat.st_size
        and cached.mtime_ns == stat.st_mtime_ns
        and cached.ctime_ns == stat.st_ctime_ns
        and cached.inode == stat.st_ino
        and stat.st_mtime_ns < cached.read_ns
    )


class ContextEngine:
    """Classifies tree changes and estimates context size for one vault."""

    def __init__(
        self,
        vault: Vault,
        graph: CommitGraph | None = None,
        snapshots: SnapshotStore | None = None,
    ) -> None:
        self.vault = vault
        self.graph = graph or CommitGraph(vault)
        self.snapshots = snapshots or SnapshotStore(vault)
        self._cache: dict[Path, _CacheEntry] = {}

    def clear_cache(self) -> None:
        """Forget memoized hashes, e.g. after the tree was rewritten."""
        self._cache.clear()

    # ---- scanning ----
    def _scan_file(self, tracked: TrackedFile) -> ScannedFile:
        stat = tracked.path.stat()
        cached = self._cache.get(tracked.path)
        if cached and _is_unchanged(cached, stat):
            return ScannedFile(tracked=tracked, hash=cached.hash, text=cached.text)

        # Whole seconds: the coarsest timestamp granularity in common use
        read_ns = time.time_ns() // _NS_PER_SECOND * _NS_PER_SECOND
        data = tracked.path.read_bytes()
        try:
            text: str | None = data.decode("utf-8")
        except UnicodeDecodeError:
            text = None
        entry = _CacheEntry(
            size=stat.st_size,
            mtime_ns=stat.st_mtime_ns,
            ctime_ns=stat.st_ctime_ns,
            inode=stat.st_ino,
            read_ns=read_ns,
            hash=blob_hash(data),
            text=text,
        )
        self._cache[tracked.path] = entry
        return ScannedFile(tracked=tracked, hash=entry.hash, text=text)

    def scan(self) -> list[ScannedFile]:
        """Hash every tracked file in traversal order."""
        return [self._scan_file(tracked) for tracked in iter_tracked_files(self.vault)]

    def _manifest_hashes(self, commit: Commit | None) -> dict[str, str]:
        if commit is None:
            return {}
        try:
            return self.snapshots.load_manifest(commit.hash).hashes()
        except SnapshotNotFound:
            logger.warning("Manifest missing, comparing against empty tree", commit=commit.short_hash)
            return {}

    # ---- summaries ----
    def calculate_context_summary(self, previous: Commit | None = None) -> ContextSummary:
        """Summarize the working tree relative to ``previous``.

        With no previous commit every file is added. Otherwise paths are
        classified against the previous commit's manifest.
        """
        scanned = self.scan()

        buffer_parts: list[str] = []
        current: dict[str, str] = {}
        domains: dict[str, None] = {}
        for item in scanned:
            current[item.tracked.rel_path] = item.hash
            if item.text is not None:
                buffer_parts.append(item.text)
                buffer_parts.append("\n")
            if item.tracked.domain is not None:
                domains.setdefault(item.tracked.domain, None)
        token_estimate = estimate_tokens("".join(buffer_parts))

        if previous is None:
            added, modified, removed = sorted(current), [], []
        else:
            added, modified, removed = _classify(self._manifest_hashes(previous), current)

        return ContextSummary(
            domains_loaded=list(domains),
            files_added=added,
            files_modified=modified,
            files_removed=removed,
            token_estimate=token_estimate,
        )

    def get_modified_files(self) -> list[str]:
        """Files modified or added since the HEAD commit."""
        summary = self.calculate_context_summary(self.graph.get_head_commit())
        return sorted(summary.files_modified + summary.files_added)

    def has_uncommitted_changes(self) -> bool:
        return bool(self.get_modified_files())

    # ---- whole-context views ----
    def get_all_files(self) -> list[str]:
        return [tracked.rel_path for tracked in iter_tracked_files(self.vault)]

    def load_context(self, compress: bool = False) -> str:
        """Concatenate the tracked tree into one document with file headers."""
        parts: list[str] = []
        for item in self.scan():
            parts.append(f"\n# File: {item.tracked.rel_path}\n\n")
            if item.text is not None:
                parts.append(item.text)
                parts.append("\n\n")
        content = "".join(parts)
        return compress_markdown(content) if compress else content

    # ---- comparisons ----
    def compare_commits(self, source: Commit, target: Commit) -> ContextDiff:
        """Manifest-based comparison of two commits."""
        before = self._manifest_hashes(source)
        after = self._manifest_hashes(target)
        added, modified, removed = _classify(before, after)
        root_name = self.vault.tracked_root.name
        before_domains = set(domains_in(before, root_name))
        after_domains = set(domains_in(after, root_name))
        return ContextDiff(
            source=source.hash,
            target=target.hash,
            files_added=added,
            files_modified=modified,
            files_removed=removed,
            token_delta=target.context_summary.token_estimate
            - source.context_summary.token_estimate,
            domains_added=sorted(after_domains - before_domains),
            domains_removed=sorted(before_domains - after_domains),
        )

    def compare_working_tree(self, commit: Commit | None) -> ContextDiff:
        """Compare the working tree against ``commit`` (or an empty tree)."""
        summary = self.calculate_context_summary(commit)
        before_domains = set(domains_in(self._manifest_hashes(commit), self.vault.tracked_root.name))
        after_domains = set(summary.domains_loaded)
        previous_tokens = commit.context_summary.token_estimate if commit else 0
        return ContextDiff(
            source=commit.hash if commit else None,
            target=None,
            files_added=summary.files_added,
            files_modified=summary.files_modified,
            files_removed=summary.files_removed,
            token_delta=summary.token_estimate - previous_tokens,
            domains_added=sorted(after_domains - before_domains),
            domains_removed=sorted(before_domains - after_domains),
        )


def _classify(
    before: dict[str, str], after: dict[str, str]
) -> tuple[list[str], list[str], list[str]]:
    """Return sorted (added, modified, removed) paths between two hash maps."""
    added = sorted(p for p in after if p not in before)
    modified = sorted(p for p, h in after.items() if p in before and before[p] != h)
    removed = sorted(p for p in before if p not in after)
    return added, modified, removed
