"""Data models for the merge resolution system.

This module contains the core data classes used throughout the system to
represent pull requests, conflicting files, stored resolutions and command
checks. All models are immutable; state changes produce new instances via
``dataclasses.replace``.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class FileType(Enum):
    """File classification used to pick a conflict check."""

    BINARY = "binary"
    JSON = "json"
    TEXT = "text"


class ChangeStatus(str, Enum):
    """Status of a file in a pull request's change list."""

    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    RENAMED = "renamed"
    COPIED = "copied"
    CHANGED = "changed"
    UNCHANGED = "unchanged"

    @classmethod
    def parse(cls, value: str) -> "ChangeStatus":
        """Map a GitHub status string, treating unknown values as ``changed``."""
        try:
            return cls(value)
        except ValueError:
            return cls.CHANGED


@dataclass(frozen=True, slots=True)
class RepoRef:
    """Owner/name pair identifying a repository."""

    owner: str
    name: str

    @property
    def full_name(self) -> str:
        """Return ``owner/name``, used as the repository id in storage."""
        return f"{self.owner}/{self.name}"

    @classmethod
    def parse(cls, full_name: str) -> "RepoRef":
        """Build a RepoRef from ``owner/name``.

        Raises:
            ValueError: If the string is not exactly two non-empty segments.
        """
        parts = full_name.split("/")
        if len(parts) != 2 or not all(parts):
            raise ValueError(f"Expected 'owner/name', got '{full_name}'")
        return cls(owner=parts[0], name=parts[1])

    def __str__(self) -> str:
        return self.full_name


@dataclass(frozen=True, slots=True)
class BranchTip:
    """One side of a pull request: branch name and commit sha."""

    ref: str
    sha: str
    repo_full_name: str | None = None


@dataclass(frozen=True, slots=True)
class PullRequestInfo:
    """The parts of a pull request the workflows need."""

    number: int
    author: str
    head: BranchTip
    base: BranchTip
    mergeable: bool | None = None
    state: str = "open"


@dataclass(frozen=True, slots=True)
class ConflictCandidate:
    """A file changed by a pull request. Only ``modified`` files are eligible."""

    filename: str
    status: ChangeStatus
    previous_filename: str | None = None

    @property
    def eligible(self) -> bool:
        """Whether the file can carry a textual merge conflict."""
        return self.status is ChangeStatus.MODIFIED


@dataclass(frozen=True, slots=True)
class FileVersion:
    """Content of a file at one revision. ``content`` is None when no file exists there."""

    content: str | None
    sha: str
    ref: str


@dataclass(frozen=True, slots=True)
class CommitInfo:
    """Metadata of one commit."""

    sha: str
    parents: list[str]
    author: str | None
    date: datetime | None
    message: str


@dataclass(frozen=True, slots=True)
class ConflictRecord:
    """Three-way view of one conflicting file."""

    filename: str
    base: FileVersion
    ours: FileVersion
    theirs: FileVersion
    strategy: str


@dataclass(frozen=True, slots=True)
class ResolvedFile:
    """Merged content proposed by the resolver service for one file."""

    filename: str
    resolved_code: str
    record: ConflictRecord


@dataclass(frozen=True, slots=True)
class Resolution:
    """A persisted resolution. Unique per (repo_id, pr_number, filename)."""

    repo_id: str
    pr_number: int
    filename: str
    resolved_code: str
    confirmed: bool = False
    applied: bool = False
    applied_commit_sha: str | None = None
    base_content: str | None = None
    ours_content: str | None = None
    theirs_content: str | None = None
    ours_branch: str | None = None
    theirs_branch: str | None = None
    comment_id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def key(self) -> tuple[str, int, str]:
        """Identity used for upserts."""
        return (self.repo_id, self.pr_number, self.filename)

    @property
    def pending(self) -> bool:
        """Confirmed but not yet applied."""
        return self.confirmed and not self.applied


@dataclass(frozen=True, slots=True)
class CommandWatermark:
    """Latest processed command timestamp for a pull request."""

    repo_id: str
    pr_number: int
    last_processed: datetime


@dataclass(frozen=True, slots=True)
class IssueComment:
    """A pull request conversation comment."""

    id: int
    body: str
    user_login: str
    user_type: str
    created_at: datetime

    @property
    def from_bot(self) -> bool:
        """True for GitHub App and bot accounts."""
        return self.user_type == "Bot" or self.user_login.endswith("[bot]")


@dataclass(frozen=True, slots=True)
class CommandCheckResult:
    """Outcome of scanning a pull request for an ``apply all`` command."""

    apply_all: bool
    comment_id: int | None = None
    user: str | None = None
    command_timestamp: datetime | None = None

    @classmethod
    def none(cls) -> "CommandCheckResult":
        """Result for a pull request without a qualifying command."""
        return cls(apply_all=False)
