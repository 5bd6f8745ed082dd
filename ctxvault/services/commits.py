"""Commit graph and branch references.

Layout inside the control directory:

- ``commits/<branch>.jsonl``: append-only log, one JSON commit per line,
  oldest first. Logs outlive their branch ref and stay searchable.
- ``refs/heads/<branch>``: hash of the branch's latest commit.
- ``HEAD``: ``ref: refs/heads/<branch>`` when attached, a literal commit hash
  when detached.

A branch pointer always names a commit that is present in that branch's own
log; callers keep this true by seeding a new branch's log with ``copy_log``.
"""

from __future__ import annotations

import json
import string

from pydantic import ValidationError

from ctxvault.config.constants import (
    COMMIT_LOG_SUFFIX,
    HEAD_REF_PREFIX,
    MIN_HASH_PREFIX_LENGTH,
)
from ctxvault.core.errors import (
    BranchNotFound,
    CannotDeleteCurrentBranch,
    CommitNotFound,
    InvalidBranchName,
    InvalidCommitRef,
    StorageError,
)
from ctxvault.core.vault import Vault, write_json_atomic
from ctxvault.domain.models import Commit, HeadRef
from ctxvault.utils.logger import get_logger

logger = get_logger("ctxvault.commits")

_HEX_DIGITS = frozenset(string.hexdigits.lower())


def validate_branch_name(name: str) -> str:
    if (
        not name
        or "/" in name
        or "\\" in name
        or name.startswith(".")
        or name.strip() != name
        or name == "HEAD"
    ):
        raise InvalidBranchName(name)
    return name


def normalize_commit_ref(ref: str) -> str:
    """Lowercase a hash or hash prefix, rejecting short or non-hex input."""
    candidate = ref.strip().lower()
    if len(candidate) < MIN_HASH_PREFIX_LENGTH:
        raise InvalidCommitRef(
            ref, f"use at least {MIN_HASH_PREFIX_LENGTH} hex characters"
        )
    if not set(candidate) <= _HEX_DIGITS:
        raise InvalidCommitRef(ref, "not a hexadecimal hash")
    return candidate


class CommitGraph:
    """Reads and writes commit logs, branch refs and HEAD of one vault."""

    def __init__(self, vault: Vault) -> None:
        self.vault = vault
        # hash -> (branch, commit), first occurrence in scan order wins
        self._index: dict[str, tuple[str, Commit]] | None = None

    # ---- logs ----
    def append_commit(self, branch: str, commit: Commit) -> None:
        """Append ``commit`` to ``branch``'s log. Parent links are not checked."""
        validate_branch_name(branch)
        path = self.vault.commit_log_path(branch)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                f.write(commit.model_dump_json() + "\n")
        except OSError as e:
            raise StorageError(f"append commit to '{branch}'", e) from e
        self._index = None
        logger.debug("Commit appended", branch=branch, commit=commit.short_hash)

    def read_commits(self, branch: str) -> list[Commit]:
        """Commits of ``branch`` oldest first; empty when it has no log."""
        path = self.vault.commit_log_path(branch)
        if not path.exists():
            return []
        commits: list[Commit] = []
        try:
            with path.open(encoding="utf-8") as f:
                for line_no, line in enumerate(f, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        commits.append(Commit.model_validate_json(line))
                    except ValidationError as e:
                        raise StorageError(
                            f"parse commit log '{branch}' line {line_no}", e
                        ) from e
        except OSError as e:
            raise StorageError(f"read commit log '{branch}'", e) from e
        return commits

    def copy_log(self, source: str, target: str, upto_hash: str) -> list[Commit]:
        """Seed ``target``'s log with ``source``'s history up to ``upto_hash``.

        Any existing log of ``target`` is replaced.
        """
        validate_branch_name(target)
        history: list[Commit] = []
        for commit in self.read_commits(source):
            history.append(commit)
            if commit.hash == upto_hash:
                break
        else:
            raise CommitNotFound(upto_hash)

        path = self.vault.commit_log_path(target)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as f:
                for commit in history:
                    f.write(commit.model_dump_json() + "\n")
            tmp_path.replace(path)
        except OSError as e:
            raise StorageError(f"seed commit log '{target}'", e) from e
        self._index = None
        logger.debug("Commit log seeded", source=source, target=target, commits=len(history))
        return history

    def log_branches(self) -> list[str]:
        """Names of every branch that has a log, including deleted branches."""
        if not self.vault.commits_dir.is_dir():
            return []
        return sorted(
            p.name[: -len(COMMIT_LOG_SUFFIX)]
            for p in self.vault.commits_dir.iterdir()
            if p.is_file() and p.name.endswith(COMMIT_LOG_SUFFIX)
        )

    # ---- lookup ----
    def _build_index(self) -> dict[str, tuple[str, Commit]]:
        if self._index is None:
            index: dict[str, tuple[str, Commit]] = {}
            for branch in self.log_branches():
                for commit in self.read_commits(branch):
                    index.setdefault(commit.hash, (branch, commit))
            self._index = index
        return self._index

    def find_commit(self, hash_or_prefix: str) -> Commit | None:
        """Find a commit by full hash or a prefix of at least 7 hex characters.

        Branch logs are scanned in lexicographic order of branch name, each
        oldest first; the first match wins.
        """
        found = self.locate_commit(hash_or_prefix)
        return found[1] if found else None

    def locate_commit(self, hash_or_prefix: str) -> tuple[str, Commit] | None:
        """Like ``find_commit`` but also report the log the match came from."""
        prefix = normalize_commit_ref(hash_or_prefix)
        index = self._build_index()
        if prefix in index:
            return index[prefix]
        for commit_hash, entry in index.items():
            if commit_hash.startswith(prefix):
                return entry
        return None

    # ---- branch refs ----
    def write_branch_ref(self, branch: str, commit_hash: str) -> None:
        validate_branch_name(branch)
        path = self.vault.refs_dir / branch
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(commit_hash + "\n", encoding="utf-8")
        except OSError as e:
            raise StorageError(f"write ref '{branch}'", e) from e

    def read_branch_ref(self, branch: str) -> str | None:
        path = self.vault.refs_dir / branch
        if not path.is_file():
            return None
        try:
            value = path.read_text(encoding="utf-8").strip()
        except OSError as e:
            raise StorageError(f"read ref '{branch}'", e) from e
        return value or None

    def branch_exists(self, branch: str) -> bool:
        return (self.vault.refs_dir / branch).is_file()

    def list_branches(self) -> list[str]:
        if not self.vault.refs_dir.is_dir():
            return []
        return sorted(p.name for p in self.vault.refs_dir.iterdir() if p.is_file())

    def delete_branch(self, branch: str) -> None:
        """Remove ``branch``'s ref. Its log is kept as history."""
        if not self.branch_exists(branch):
            raise BranchNotFound(branch)
        head = self.read_head()
        if head.branch == branch:
            raise CannotDeleteCurrentBranch(branch)
        try:
            (self.vault.refs_dir / branch).unlink()
        except OSError as e:
            raise StorageError(f"delete ref '{branch}'", e) from e
        logger.info("Branch deleted", branch=branch)

    # ---- HEAD ----
    def read_head(self) -> HeadRef:
        """Resolve HEAD; a missing HEAD file means the default branch."""
        try:
            raw = (
                self.vault.head_path.read_text(encoding="utf-8").strip()
                if self.vault.head_path.exists()
                else ""
            )
        except OSError as e:
            raise StorageError("read HEAD", e) from e

        if not raw:
            branch = self.vault.settings.default_branch
            return HeadRef(branch=branch, commit=self.read_branch_ref(branch))
        if raw.startswith(HEAD_REF_PREFIX):
            branch = raw[len(HEAD_REF_PREFIX):].strip()
            return HeadRef(branch=branch, commit=self.read_branch_ref(branch))
        return HeadRef(branch=None, commit=raw)

    def write_head(self, branch: str) -> None:
        """Attach HEAD to ``branch``."""
        validate_branch_name(branch)
        self._write_head_text(f"{HEAD_REF_PREFIX}{branch}")
        logger.debug("HEAD attached", branch=branch)

    def write_detached_head(self, commit_hash: str) -> None:
        self._write_head_text(commit_hash)
        logger.debug("HEAD detached", commit=commit_hash[:7])

    def _write_head_text(self, text: str) -> None:
        try:
            self.vault.head_path.parent.mkdir(parents=True, exist_ok=True)
            self.vault.head_path.write_text(text + "\n", encoding="utf-8")
        except OSError as e:
            raise StorageError("write HEAD", e) from e

    def get_head_commit(self) -> Commit | None:
        head = self.read_head()
        if head.commit is None:
            return None
        if head.branch is not None:
            for commit in reversed(self.read_commits(head.branch)):
                if commit.hash == head.commit:
                    return commit
        return self.find_commit(head.commit)

    # ---- branch descriptions ----
    def read_descriptions(self) -> dict[str, str]:
        path = self.vault.branch_descriptions_path
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError("read branch descriptions", e) from e
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def write_description(self, branch: str, description: str | None) -> None:
        """Store or clear the description of ``branch``."""
        descriptions = self.read_descriptions()
        if description:
            descriptions[branch] = description
        else:
            descriptions.pop(branch, None)
        try:
            write_json_atomic(self.vault.branch_descriptions_path, descriptions)
        except OSError as e:
            raise StorageError("write branch descriptions", e) from e
