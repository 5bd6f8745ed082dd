"""Persisted records of a vault: commits, manifests, index and heads."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(UTC)


class HumanAuthor(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["human"] = "human"
    name: str

    def display(self) -> str:
        return f"Human ({self.name})"


class AgentAuthor(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["agent"] = "agent"
    model: str
    session_id: str | None = None

    def display(self) -> str:
        return f"Agent ({self.model})"


Author = Annotated[HumanAuthor | AgentAuthor, Field(discriminator="type")]


class ContextSummary(BaseModel):
    """What a commit's tree looks like compared with its parent."""

    model_config = ConfigDict(frozen=True)

    domains_loaded: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)
    files_added: list[str] = Field(default_factory=list)
    files_removed: list[str] = Field(default_factory=list)
    token_estimate: int = 0

    @property
    def changed_count(self) -> int:
        return len(self.files_added) + len(self.files_modified) + len(self.files_removed)

    def has_changes(self) -> bool:
        return self.changed_count > 0


class Commit(BaseModel):
    """One immutable entry of a branch log."""

    model_config = ConfigDict(frozen=True)

    hash: str
    parent: str | None = None
    timestamp: datetime
    author: Author
    message: str
    context_summary: ContextSummary
    snapshot_path: str

    @property
    def short_hash(self) -> str:
        return self.hash[:7]


class FileInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    hash: str
    size: int


class Manifest(BaseModel):
    """Per-file listing stored next to every snapshot archive."""

    files: list[FileInfo] = Field(default_factory=list)
    total_files: int = 0
    total_size: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    def hashes(self) -> dict[str, str]:
        return {f.path: f.hash for f in self.files}


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class StagedFile(BaseModel):
    path: str
    reason: str
    priority: Priority = Priority.MEDIUM


class Index(BaseModel):
    """Working-state relevance lists, independent of commit history."""

    staged: list[StagedFile] = Field(default_factory=list)
    pinned: list[str] = Field(default_factory=list)
    excluded: list[str] = Field(default_factory=list)
    loaded: list[str] = Field(default_factory=list)


class HeadRef(BaseModel):
    """HEAD is either attached to a branch or detached at a commit."""

    model_config = ConfigDict(frozen=True)

    branch: str | None = None
    commit: str | None = None

    @property
    def detached(self) -> bool:
        return self.branch is None


class BranchInfo(BaseModel):
    name: str
    head: str | None
    is_current: bool = False
    description: str | None = None
    commit: Commit | None = None


class ContextDiff(BaseModel):
    """Comparison of two tree states (commits or working tree)."""

    source: str | None = None
    target: str | None = None
    files_added: list[str] = Field(default_factory=list)
    files_modified: list[str] = Field(default_factory=list)
    files_removed: list[str] = Field(default_factory=list)
    token_delta: int = 0
    domains_added: list[str] = Field(default_factory=list)
    domains_removed: list[str] = Field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.files_added or self.files_modified or self.files_removed)


class VaultStatus(BaseModel):
    head: HeadRef
    last_commit: Commit | None = None
    token_estimate: int = 0
    max_tokens: int | None = None
    files: list[str] = Field(default_factory=list)
    index: Index = Field(default_factory=Index)
    modified: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    untracked_domains: dict[str, int] = Field(default_factory=dict)


class BranchDivergence(BaseModel):
    name: str
    is_current: bool
    diverged: int = 0


class VaultSummary(BaseModel):
    head: HeadRef
    last_commit: Commit | None = None
    domains: list[str] = Field(default_factory=list)
    has_global: bool = False
    modified: list[str] = Field(default_factory=list)
    branches: list[BranchDivergence] = Field(default_factory=list)
