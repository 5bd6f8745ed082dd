"""Exception hierarchy for vault operations.

Every failure surfaced to the user derives from ``VaultError`` so that the CLI
can report it on stderr and exit non-zero. Underlying I/O, JSON, archive and
validation failures are wrapped in ``StorageError`` with the original
exception chained.
"""

from __future__ import annotations

from pathlib import Path


class VaultError(Exception):
    """Base class for all ctxvault errors."""


class VaultNotFound(VaultError):
    def __init__(self, start: Path):
        self.start = start
        super().__init__(
            f"No ctxvault vault found in {start} or any parent directory\n"
            "  Run 'ctxvault init' to create a new vault"
        )


class AlreadyInitialized(VaultError):
    def __init__(self, root: Path):
        self.root = root
        super().__init__(f"Vault already initialized at {root}")


class BranchExists(VaultError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Branch '{name}' already exists\n"
            f"  Use 'ctxvault checkout {name}' to switch to it"
        )


class BranchNotFound(VaultError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Branch '{name}' not found")


class CannotDeleteCurrentBranch(VaultError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Cannot delete current branch '{name}'. Switch to another branch first."
        )


class InvalidBranchName(VaultError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(
            f"Invalid branch name '{name}': use a non-empty name without '/' "
            "or a leading '.' ('HEAD' is reserved)"
        )


class CommitNotFound(VaultError):
    def __init__(self, ref: str):
        self.ref = ref
        super().__init__(f"Commit '{ref}' not found")


class InvalidCommitRef(VaultError):
    def __init__(self, ref: str, reason: str | None = None):
        self.ref = ref
        message = f"Invalid commit reference: {ref}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class NoCommits(VaultError):
    def __init__(self, action: str):
        super().__init__(f"Cannot {action}: no commits yet")


class DetachedHead(VaultError):
    def __init__(self, commit_hash: str, action: str):
        self.commit_hash = commit_hash
        super().__init__(
            f"Cannot {action} in detached HEAD state (at {commit_hash[:7]})\n"
            "  Run 'ctxvault checkout <branch>' to re-attach first"
        )


class SnapshotNotFound(VaultError):
    def __init__(self, commit_hash: str):
        self.commit_hash = commit_hash
        super().__init__(f"Snapshot for commit '{commit_hash}' not found")


class SnapshotCorrupted(VaultError):
    def __init__(self, commit_hash: str, detail: str):
        self.commit_hash = commit_hash
        super().__init__(f"Snapshot for commit '{commit_hash}' is corrupted: {detail}")


class UncommittedChanges(VaultError):
    def __init__(self) -> None:
        super().__init__(
            "Uncommitted changes would be lost\n"
            '  Commit your changes first: ctxvault commit "message"\n'
            "  Or discard them with: ctxvault checkout --force"
        )


class MergeConflict(VaultError):
    """Reserved. Merges overwrite by snapshot and never detect conflicts."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Merge conflict in {path}")


class WikilinkNotFound(VaultError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Wikilink '{name}' not found in vault")


class WikilinkAmbiguous(VaultError):
    def __init__(self, name: str, candidates: list[Path]):
        self.name = name
        self.candidates = candidates
        joined = ", ".join(str(p) for p in candidates)
        super().__init__(f"Wikilink '{name}' is ambiguous, matches: {joined}")


class FileNotFound(VaultError):
    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"File not found: {path}")


class ExcludedPath(VaultError):
    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Path is excluded from context: {path}")


class InvalidAuthor(VaultError):
    def __init__(self, author_type: str):
        self.author_type = author_type
        super().__init__(
            f"Invalid author type: {author_type}. Use 'human' or 'agent'"
        )


class StorageError(VaultError):
    """Wraps an underlying I/O, serialization or archive failure."""

    def __init__(self, action: str, error: Exception):
        self.action = action
        self.error = error
        super().__init__(f"Failed to {action}: {error}")
