"""Test configuration and fixtures."""

from datetime import UTC, datetime
from unittest.mock import Mock

import pytest

from pr_merge_resolver.content.fetcher import ContentFetcher
from pr_merge_resolver.core.models import (
    BranchTip,
    ConflictRecord,
    FileVersion,
    IssueComment,
    PullRequestInfo,
    RepoRef,
    Resolution,
)
from pr_merge_resolver.integrations.github import GitHubClient
from pr_merge_resolver.store.repository import InMemoryResolutionRepository
from pr_merge_resolver.store.resolution_store import ResolutionStore


@pytest.fixture
def repo() -> RepoRef:
    """Repository used across tests."""
    return RepoRef(owner="octo", name="widgets")


@pytest.fixture
def pr_info() -> PullRequestInfo:
    """
    Pull request #42 from ``feature`` into ``main`` with an unknown mergeable flag.

    Returns:
        PullRequestInfo: Head ``feature`` at ``headsha...`` and base ``main`` at ``basesha...``.
    """
    return PullRequestInfo(
        number=42,
        author="alice",
        head=BranchTip(ref="feature", sha="headsha1234567", repo_full_name="octo/widgets"),
        base=BranchTip(ref="main", sha="basesha1234567", repo_full_name="octo/widgets"),
        mergeable=None,
    )


@pytest.fixture
def store() -> ResolutionStore:
    """Resolution store over a fresh in-memory repository."""
    return ResolutionStore(InMemoryResolutionRepository())


@pytest.fixture
def github() -> Mock:
    """GitHub client mock with safe defaults for branch and file lookups."""
    client = Mock(spec=GitHubClient)
    client.get_branch_sha.return_value = None
    client.get_file_sha.return_value = None
    client.list_pull_files.return_value = []
    client.create_or_update_file.return_value = {"commit": {"sha": "commitsha"}}
    client.create_issue_comment.return_value = {"id": 900}
    return client


@pytest.fixture
def fetcher() -> Mock:
    """Content fetcher mock."""
    return Mock(spec=ContentFetcher)


@pytest.fixture
def conflict_record() -> ConflictRecord:
    """Three-way record for ``src/app.py`` where both sides edited line two."""
    return ConflictRecord(
        filename="src/app.py",
        base=FileVersion(content="a\nb\nc", sha="mergebase123", ref="merge-base"),
        ours=FileVersion(content="a\nours\nc", sha="headsha1234567", ref="feature"),
        theirs=FileVersion(content="a\ntheirs\nc", sha="basesha1234567", ref="main"),
        strategy="content-diff",
    )


def make_comment(
    comment_id: int,
    body: str,
    login: str = "alice",
    user_type: str = "User",
    minute: int = 0,
) -> IssueComment:
    """Build an IssueComment created at 2024-01-01 10:<minute> UTC."""
    return IssueComment(
        id=comment_id,
        body=body,
        user_login=login,
        user_type=user_type,
        created_at=datetime(2024, 1, 1, 10, minute, tzinfo=UTC),
    )


def make_resolution(
    filename: str,
    repo_id: str = "octo/widgets",
    pr_number: int = 42,
    confirmed: bool = False,
    applied: bool = False,
) -> Resolution:
    """Build a stored-resolution value with fixed content."""
    return Resolution(
        repo_id=repo_id,
        pr_number=pr_number,
        filename=filename,
        resolved_code=f"resolved {filename}\n",
        confirmed=confirmed,
        applied=applied,
    )
