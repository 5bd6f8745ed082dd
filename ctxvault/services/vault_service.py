"""Vault service: user-level operations composed from the storage core.

Every mutating operation follows the same order: classify the working tree,
build the commit record, persist the snapshot, then append to the branch log
and move the branch pointer. Nothing here takes a lock; running two commands
against the same vault at once is unsafe.
"""

from __future__ import annotations

import os
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path

import pathspec

from ctxvault.config.constants import GLOBAL_DOMAIN_NAME, MERGE_AUTHOR_MODEL
from ctxvault.config.defaults import get_default_config
from ctxvault.config.manager import create_config_manager
from ctxvault.core.errors import (
    AlreadyInitialized,
    BranchExists,
    BranchNotFound,
    CommitNotFound,
    DetachedHead,
    ExcludedPath,
    FileNotFound,
    InvalidAuthor,
    InvalidCommitRef,
    NoCommits,
    StorageError,
    UncommittedChanges,
)
from ctxvault.core.vault import Vault
from ctxvault.domain.models import (
    AgentAuthor,
    Author,
    BranchDivergence,
    BranchInfo,
    Commit,
    ContextDiff,
    ContextSummary,
    HeadRef,
    HumanAuthor,
    Index,
    VaultStatus,
    VaultSummary,
    utcnow,
)
from ctxvault.services.commits import CommitGraph, normalize_commit_ref, validate_branch_name
from ctxvault.services.context import ContextEngine, estimate_tokens
from ctxvault.services.snapshots import SnapshotStore
from ctxvault.services.tree import iter_tracked_files
from ctxvault.services.wikilink import is_wikilink, resolve_wikilink
from ctxvault.utils.hashing import compute_hash
from ctxvault.utils.logger import get_logger

logger = get_logger("ctxvault.service")

INITIAL_COMMIT_MESSAGE = "Initial commit"
INITIAL_COMMIT_AUTHOR = "user"


class VaultService:
    def __init__(self, vault: Vault) -> None:
        vault.validate()
        self.vault = vault
        self.graph = CommitGraph(vault)
        self.snapshots = SnapshotStore(vault)
        self.engine = ContextEngine(vault, self.graph, self.snapshots)

    @classmethod
    def open(cls, start: str | Path | None = None) -> VaultService:
        """Open the nearest vault at or above ``start``."""
        return cls(Vault.discover(start))

    # ---- init ----
    @classmethod
    def init(cls, root: str | Path, name: str | None = None) -> VaultService:
        """Create a vault at ``root`` with an initial commit on the default branch."""
        vault = Vault.at(root)
        if vault.exists():
            raise AlreadyInitialized(vault.root)
        vault_name = name or vault.root.name or "unnamed"

        try:
            vault.ensure_layout()
            (vault.tracked_root / GLOBAL_DOMAIN_NAME).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError("create vault layout", e) from e
        vault._config_manager = create_config_manager(
            vault.control_dir,
            defaults=get_default_config(vault_name),
            create_if_missing=True,
        )

        service = cls(vault)
        branch = validate_branch_name(vault.settings.default_branch)
        service.graph.write_head(branch)
        vault.save_index(Index())

        timestamp = utcnow()
        commit_hash = compute_hash(f"tree {vault_name}\n{timestamp.isoformat()}".encode())
        service._record_commit(
            branch,
            commit_hash=commit_hash,
            parent=None,
            timestamp=timestamp,
            author=HumanAuthor(name=INITIAL_COMMIT_AUTHOR),
            message=INITIAL_COMMIT_MESSAGE,
            summary=service.engine.calculate_context_summary(None),
        )
        logger.info("Vault initialized", root=str(vault.root), name=vault_name, branch=branch)
        return service

    # ---- commits ----
    def _make_author(
        self,
        author_type: str | None,
        model: str | None = None,
        session_id: str | None = None,
    ) -> HumanAuthor | AgentAuthor:
        settings = self.vault.settings
        kind = (author_type or settings.default_author).lower()
        if kind == "human":
            return HumanAuthor(name=settings.human_name)
        if kind == "agent":
            return AgentAuthor(model=model or settings.model_hint, session_id=session_id)
        raise InvalidAuthor(kind)

    def _record_commit(
        self,
        branch: str,
        *,
        commit_hash: str,
        parent: str | None,
        timestamp: datetime,
        author: Author,
        message: str,
        summary: ContextSummary,
    ) -> Commit:
        archive = self.snapshots.create_snapshot(commit_hash)
        commit = Commit(
            hash=commit_hash,
            parent=parent,
            timestamp=timestamp,
            author=author,
            message=message,
            context_summary=summary,
            snapshot_path=self.vault.relative(archive),
        )
        self.graph.append_commit(branch, commit)
        self.graph.write_branch_ref(branch, commit_hash)
        logger.info(
            "Commit created",
            branch=branch,
            commit=commit.short_hash,
            changed=summary.changed_count,
            tokens=summary.token_estimate,
        )
        return commit

    def _attached_branch(self, action: str) -> str:
        head = self.graph.read_head()
        if head.branch is None:
            raise DetachedHead(head.commit or "", action)
        return head.branch

    def commit(
        self,
        message: str,
        author_type: str | None = None,
        model: str | None = None,
        session_id: str | None = None,
    ) -> Commit | None:
        """Commit the working tree on the current branch.

        Returns:
            The new commit, or None when nothing changed since the parent
        """
        author = self._make_author(author_type, model, session_id)
        branch = self._attached_branch("commit")

        parent = self.graph.get_head_commit()
        summary = self.engine.calculate_context_summary(parent)
        if parent is not None and not summary.has_changes():
            logger.info("Nothing to commit", branch=branch)
            return None

        timestamp = utcnow()
        parent_hash = parent.hash if parent else None
        commit_hash = compute_hash(
            f"parent {parent_hash or ''}\n{message}\n{timestamp.isoformat()}".encode()
        )
        return self._record_commit(
            branch,
            commit_hash=commit_hash,
            parent=parent_hash,
            timestamp=timestamp,
            author=author,
            message=message,
            summary=summary,
        )

    def _head_history(self) -> list[Commit]:
        """History leading to HEAD, oldest first."""
        head = self.graph.read_head()
        if head.commit is None:
            return []
        if head.branch is not None:
            commits = self.graph.read_commits(head.branch)
        else:
            located = self.graph.locate_commit(head.commit)
            if located is None:
                raise CommitNotFound(head.commit)
            commits = self.graph.read_commits(located[0])
        return _history_upto(commits, head.commit)

    def log(self, branch: str | None = None, limit: int | None = None) -> list[Commit]:
        """Commits newest first, for ``branch`` or the history behind HEAD."""
        if branch is None:
            history = self._head_history()
        else:
            tip = self.graph.read_branch_ref(branch)
            if tip is None:
                raise BranchNotFound(branch)
            history = _history_upto(self.graph.read_commits(branch), tip)
        history.reverse()
        return history[:limit] if limit is not None else history

    # ---- branches ----
    def create_branch(self, name: str, description: str | None = None) -> BranchInfo:
        """Create ``name`` at the HEAD commit without switching to it."""
        validate_branch_name(name)
        if self.graph.branch_exists(name):
            raise BranchExists(name)
        head = self.graph.read_head()
        if head.commit is None:
            raise NoCommits("create branch")

        if head.branch is not None:
            source = head.branch
        else:
            located = self.graph.locate_commit(head.commit)
            if located is None:
                raise CommitNotFound(head.commit)
            source = located[0]

        history = self.graph.copy_log(source, name, head.commit)
        self.graph.write_branch_ref(name, head.commit)
        if description:
            self.graph.write_description(name, description)
        logger.info("Branch created", branch=name, source=source, commit=head.commit[:7])
        return BranchInfo(
            name=name,
            head=head.commit,
            is_current=False,
            description=description,
            commit=history[-1],
        )

    def delete_branch(self, name: str) -> None:
        self.graph.delete_branch(name)
        if name in self.graph.read_descriptions():
            self.graph.write_description(name, None)

    def list_branches(self) -> list[BranchInfo]:
        head = self.graph.read_head()
        descriptions = self.graph.read_descriptions()
        branches: list[BranchInfo] = []
        for name in self.graph.list_branches():
            tip = self.graph.read_branch_ref(name)
            commit = None
            if tip is not None:
                commit = next(
                    (c for c in self.graph.read_commits(name) if c.hash == tip), None
                ) or self.graph.find_commit(tip)
            branches.append(
                BranchInfo(
                    name=name,
                    head=tip,
                    is_current=name == head.branch,
                    description=descriptions.get(name),
                    commit=commit,
                )
            )
        return branches

    # ---- moving HEAD ----
    def _restore(self, commit_hash: str) -> list[str]:
        restored = self.snapshots.restore_snapshot(commit_hash)
        self.engine.clear_cache()
        return restored

    def checkout(self, target: str, force: bool = False) -> HeadRef:
        """Switch to a branch, or detach HEAD at a commit.

        Raises:
            UncommittedChanges: The working tree differs from HEAD and
                ``force`` is not set.
            CommitNotFound: ``target`` is neither a branch nor a known commit.
        """
        if not force and self.engine.has_uncommitted_changes():
            raise UncommittedChanges()

        if self.graph.branch_exists(target):
            tip = self.graph.read_branch_ref(target)
            if tip is None:
                raise NoCommits(f"checkout '{target}'")
            self._restore(tip)
            self.graph.write_head(target)
            logger.info("Checked out branch", branch=target, commit=tip[:7])
            return HeadRef(branch=target, commit=tip)

        try:
            commit = self.graph.find_commit(target)
        except InvalidCommitRef:
            commit = None
        if commit is None:
            raise CommitNotFound(target)
        self._restore(commit.hash)
        self.graph.write_detached_head(commit.hash)
        logger.info("Checked out commit (detached)", commit=commit.short_hash)
        return HeadRef(branch=None, commit=commit.hash)

    def rewind(self, target: str, soft: bool = False) -> Commit:
        """Move the current branch back to ``target``.

        Only commits in the current branch's log are accepted. Unless ``soft``,
        the working tree is replaced with the target's snapshot, discarding
        uncommitted work; later commits stay in the log and object store.
        """
        branch = self._attached_branch("rewind")
        prefix = normalize_commit_ref(target)
        commit = next(
            (c for c in self.graph.read_commits(branch) if c.hash.startswith(prefix)),
            None,
        )
        if commit is None:
            raise CommitNotFound(target)

        self.graph.write_branch_ref(branch, commit.hash)
        if not soft:
            self._restore(commit.hash)
        logger.info(
            "Branch rewound", branch=branch, commit=commit.short_hash, soft=soft
        )
        return commit

    # ---- comparisons ----
    def resolve_commit(self, ref: str) -> Commit:
        """Resolve ``HEAD``, a branch name, or a commit hash/prefix."""
        if ref == "HEAD":
            commit = self.graph.get_head_commit()
            if commit is None:
                raise NoCommits("resolve HEAD")
            return commit
        if self.graph.branch_exists(ref):
            tip = self.graph.read_branch_ref(ref)
            if tip is None:
                raise NoCommits(f"resolve '{ref}'")
            commit = next(
                (c for c in self.graph.read_commits(ref) if c.hash == tip), None
            ) or self.graph.find_commit(tip)
        else:
            commit = self.graph.find_commit(ref)
        if commit is None:
            raise CommitNotFound(ref)
        return commit

    def diff(self, source: str | None = None, target: str | None = None) -> ContextDiff:
        """Compare tree states.

        - no arguments: working tree against HEAD
        - ``source`` only: working tree against that commit or branch
        - both: ``source`` against ``target`` (commits or branches)
        """
        if source is None and target is not None:
            raise InvalidCommitRef(target, "a diff target requires a source")
        if source is None:
            return self.engine.compare_working_tree(self.graph.get_head_commit())
        source_commit = self.resolve_commit(source)
        if target is None:
            return self.engine.compare_working_tree(source_commit)
        return self.engine.compare_commits(source_commit, self.resolve_commit(target))

    # ---- merge ----
    def merge(
        self,
        source: str,
        into: str | None = None,
        squash: bool = False,
        force: bool = False,
    ) -> Commit:
        """Merge branch ``source`` into ``into`` (default: current branch).

        This is an overwrite merge: the target's tree is replaced by the
        source's snapshot and recorded as a commit with both parents.
        Conflicts are never detected.
        """
        if into is None:
            into = self._attached_branch("merge")
        source_tip = self.graph.read_branch_ref(source)
        if source_tip is None:
            raise BranchNotFound(source)
        target_tip = self.graph.read_branch_ref(into)
        if target_tip is None:
            raise BranchNotFound(into)
        if not force and self.engine.has_uncommitted_changes():
            raise UncommittedChanges()

        source_commit = self.resolve_commit(source)
        target_commit = self.resolve_commit(into)

        head = self.graph.read_head()
        if head.branch != into:
            self._restore(target_commit.hash)
            self.graph.write_head(into)
        self._restore(source_commit.hash)

        summary = self.engine.calculate_context_summary(target_commit)
        message = f"Merge {source}: {source_commit.message}"
        if squash:
            message += " (squashed)"
        timestamp = utcnow()
        commit_hash = compute_hash(
            (
                f"parent {target_commit.hash}\nparent {source_commit.hash}\n"
                f"{message}\n{timestamp.isoformat()}"
            ).encode()
        )
        commit = self._record_commit(
            into,
            commit_hash=commit_hash,
            parent=target_commit.hash,
            timestamp=timestamp,
            author=AgentAuthor(model=MERGE_AUTHOR_MODEL),
            message=message,
            summary=summary,
        )
        logger.info("Merged (overwrite)", source=source, into=into, commit=commit.short_hash)
        return commit

    # ---- working set ----
    def _resolve_path(self, path_or_link: str) -> Path:
        if is_wikilink(path_or_link):
            return resolve_wikilink(self.vault, path_or_link)
        return self.vault.root / path_or_link

    def _check_loadable(self, rel_path: str, index: Index) -> None:
        if any(rel_path == p or rel_path.startswith(f"{p}/") for p in index.excluded):
            raise ExcludedPath(rel_path)
        never_load = self.vault.settings.never_load
        if never_load and pathspec.PathSpec.from_lines("gitwildmatch", never_load).match_file(
            rel_path
        ):
            raise ExcludedPath(rel_path)

    def _path_tokens(self, path: Path) -> int:
        if path.is_file():
            return estimate_tokens(_read_text(path) or "")
        resolved = path.resolve()
        if resolved.is_relative_to(self.vault.tracked_root.resolve()):
            files = [tracked.path for tracked in iter_tracked_files(self.vault, base=resolved)]
        else:
            files = list(_walk_files(resolved, skip=self.vault.control_dir.resolve()))
        parts: list[str] = []
        for file_path in files:
            text = _read_text(file_path)
            if text is not None:
                parts.append(text)
                parts.append("\n")
        return estimate_tokens("".join(parts))

    def load(self, path_or_link: str, pin: bool = False) -> tuple[str, int]:
        """Mark a file or directory as loaded.

        Returns:
            The vault-relative path and its token estimate
        """
        path = self._resolve_path(path_or_link)
        if not path.exists():
            raise FileNotFound(path)
        rel_path = self.vault.relative(path)
        index = self.vault.load_index()
        self._check_loadable(rel_path, index)
        tokens = self._path_tokens(path)

        if rel_path not in index.loaded:
            index.loaded.append(rel_path)
        if pin and rel_path not in index.pinned:
            index.pinned.append(rel_path)
        self.vault.save_index(index)

        logger.info("Loaded", path=rel_path, tokens=tokens, pinned=pin)
        return rel_path, tokens

    def unload(self, path_or_link: str | None = None, all: bool = False) -> list[str]:
        """Unload one path, or every non-pinned path when ``all`` is set.

        Returns:
            The paths removed from the loaded list
        """
        index = self.vault.load_index()
        if all:
            removed = [p for p in index.loaded if p not in index.pinned]
            index.loaded = [p for p in index.loaded if p in index.pinned]
        else:
            if path_or_link is None:
                raise ValueError("Specify a path to unload or use all=True")
            rel_path = self.vault.relative(self._resolve_path(path_or_link))
            removed = [p for p in index.loaded if p == rel_path]
            index.loaded = [p for p in index.loaded if p != rel_path]
        self.vault.save_index(index)
        return removed

    def pin(self, path_or_link: str, exclude: bool = False) -> str:
        """Pin a path so it stays loaded, or exclude it from loading."""
        rel_path = self.vault.relative(self._resolve_path(path_or_link))
        index = self.vault.load_index()
        if exclude:
            if rel_path not in index.excluded:
                index.excluded.append(rel_path)
            index.loaded = [p for p in index.loaded if p != rel_path]
            index.pinned = [p for p in index.pinned if p != rel_path]
        else:
            self._check_loadable(rel_path, index)
            if rel_path not in index.pinned:
                index.pinned.append(rel_path)
            if rel_path not in index.loaded:
                index.loaded.append(rel_path)
        self.vault.save_index(index)
        return rel_path

    def unpin(self, path_or_link: str) -> str:
        """Drop a path from both the pinned and excluded lists."""
        rel_path = self.vault.relative(self._resolve_path(path_or_link))
        index = self.vault.load_index()
        index.pinned = [p for p in index.pinned if p != rel_path]
        index.excluded = [p for p in index.excluded if p != rel_path]
        self.vault.save_index(index)
        return rel_path

    def loaded(self) -> list[tuple[str, bool]]:
        """Loaded paths with their pinned flag; ``pins.always_load`` entries count as pinned."""
        index = self.vault.load_index()
        entries = [(p, p in index.pinned) for p in index.loaded]
        for path in self.vault.settings.always_load:
            if path not in index.loaded and (self.vault.root / path).exists():
                entries.append((path, True))
        return entries

    def resolve(self, link: str) -> Path:
        return resolve_wikilink(self.vault, link)

    # ---- read-only views ----
    def context(self, compress: bool = False) -> str:
        return self.engine.load_context(compress=compress)

    def context_payload(self, compress: bool = False) -> dict[str, object]:
        content = self.context(compress=compress)
        return {
            "files": self.engine.get_all_files(),
            "content": content,
            "token_estimate": estimate_tokens(content),
        }

    def status(self) -> VaultStatus:
        head = self.graph.read_head()
        last_commit = self.graph.get_head_commit()
        summary = self.engine.calculate_context_summary(last_commit)
        index = self.vault.load_index()
        max_tokens = self.vault.settings.max_tokens
        if summary.token_estimate > max_tokens:
            logger.warning(
                "Context exceeds token budget",
                tokens=summary.token_estimate,
                max_tokens=max_tokens,
            )

        committed = self._committed_paths(last_commit)
        untracked: dict[str, int] = {}
        for tracked in iter_tracked_files(self.vault):
            domain = tracked.domain
            if domain is None or domain.startswith("_"):
                continue
            prefix = f"{self.vault.tracked_root.name}/{domain}/"
            if any(p.startswith(prefix) for p in committed):
                continue
            untracked[domain] = untracked.get(domain, 0) + 1
        logger.debug("Status computed", committed=len(committed), untracked=len(untracked))

        return VaultStatus(
            head=head,
            last_commit=last_commit,
            token_estimate=summary.token_estimate,
            max_tokens=max_tokens,
            files=list(index.loaded) or self.engine.get_all_files(),
            index=index,
            modified=sorted(summary.files_modified + summary.files_added),
            removed=summary.files_removed,
            untracked_domains=dict(sorted(untracked.items())),
        )

    def _committed_paths(self, commit: Commit | None) -> set[str]:
        if commit is None or not self.snapshots.has_snapshot(commit.hash):
            return set()
        return {f.path for f in self.snapshots.load_manifest(commit.hash).files}

    def summary(self) -> VaultSummary:
        head = self.graph.read_head()
        tracked_root = self.vault.tracked_root
        domains: list[str] = []
        if tracked_root.is_dir():
            domains = sorted(
                p.name
                for p in tracked_root.iterdir()
                if p.is_dir() and not p.is_symlink() and not p.name.startswith("_")
            )

        current_len = len(self._head_history())
        branches = []
        for name in self.graph.list_branches():
            tip = self.graph.read_branch_ref(name)
            length = len(_history_upto(self.graph.read_commits(name), tip)) if tip else 0
            branches.append(
                BranchDivergence(
                    name=name,
                    is_current=name == head.branch,
                    diverged=0 if name == head.branch else abs(length - current_len),
                )
            )

        return VaultSummary(
            head=head,
            last_commit=self.graph.get_head_commit(),
            domains=domains,
            has_global=(tracked_root / GLOBAL_DOMAIN_NAME).is_dir(),
            modified=self.engine.get_modified_files(),
            branches=branches,
        )


def _history_upto(commits: list[Commit], tip: str) -> list[Commit]:
    """First-parent chain ending at ``tip``, oldest first.

    Commits abandoned by a rewind stay in the log but are not part of the
    chain, so they are skipped.
    """
    by_hash = {c.hash: c for c in commits}
    chain: list[Commit] = []
    current = by_hash.get(tip)
    while current is not None:
        chain.append(current)
        current = by_hash.get(current.parent) if current.parent else None
    chain.reverse()
    return chain


def _read_text(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return None


def _walk_files(start: Path, skip: Path) -> Iterator[Path]:
    """Regular files under ``start`` in sorted order, never following symlinks."""
    for root, dirs, files in os.walk(start, followlinks=False):
        root_path = Path(root)
        dirs[:] = sorted(
            d for d in dirs if not (root_path / d).is_symlink() and root_path / d != skip
        )
        for filename in sorted(files):
            file_path = root_path / filename
            if file_path.is_file() and not file_path.is_symlink():
                yield file_path
