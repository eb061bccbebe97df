"""Unit tests for ContentFetcher and file classification."""

import base64
from unittest.mock import Mock

import pytest

from pr_merge_resolver.content.fetcher import ContentFetcher, classify, is_binary, is_json
from pr_merge_resolver.core.exceptions import ContentFetchError, GitHubAPIError
from pr_merge_resolver.core.models import BranchTip, CommitInfo, FileType, RepoRef
from pr_merge_resolver.integrations.github import GitHubClient


def _file_entry(content: bytes, sha: str = "blob1") -> dict:
    return {
        "type": "file",
        "path": "x",
        "sha": sha,
        "encoding": "base64",
        "content": base64.b64encode(content).decode("ascii"),
    }


@pytest.mark.parametrize(
    ("filename", "expected"),
    [
        ("assets/logo.PNG", FileType.BINARY),
        ("fonts/a.woff2", FileType.BINARY),
        ("lib/native.so", FileType.BINARY),
        ("package.json", FileType.JSON),
        (".babelrc", FileType.JSON),
        ("web/.prettierrc", FileType.JSON),
        ("src/main.py", FileType.TEXT),
        ("Makefile", FileType.TEXT),
    ],
)
def test_classify(filename: str, expected: FileType) -> None:
    """Files are classified by extension or known config name."""
    assert classify(filename) is expected


def test_is_binary_and_is_json() -> None:
    assert is_binary("doc.pdf")
    assert not is_binary("doc.md")
    assert is_json("tsconfig.json")
    assert not is_json("tsconfig.yaml")


class TestFetchRaw:
    """Reading bytes through the contents API."""

    def test_inline_base64_content(self, repo: RepoRef) -> None:
        github = Mock(spec=GitHubClient)
        github.get_contents.return_value = _file_entry(b"hello\n")

        assert ContentFetcher(github).fetch_raw(repo, "a.txt", "sha1") == b"hello\n"
        github.get_contents.assert_called_once_with(repo, "a.txt", "sha1")

    def test_large_file_falls_back_to_blob(self, repo: RepoRef) -> None:
        github = Mock(spec=GitHubClient)
        github.get_contents.return_value = {"type": "file", "sha": "big", "encoding": "none"}
        github.get_blob.return_value = b"large"

        assert ContentFetcher(github).fetch_raw(repo, "a.txt", "sha1") == b"large"
        github.get_blob.assert_called_once_with(repo, "big")

    def test_missing_file_returns_none(self, repo: RepoRef) -> None:
        github = Mock(spec=GitHubClient)
        github.get_contents.side_effect = GitHubAPIError("Not Found", status_code=404)

        assert ContentFetcher(github).fetch_raw(repo, "gone.txt", "sha1") is None

    def test_directory_returns_none(self, repo: RepoRef) -> None:
        github = Mock(spec=GitHubClient)
        github.get_contents.return_value = [{"type": "file", "name": "a"}]

        assert ContentFetcher(github).fetch_raw(repo, "src", "sha1") is None

    def test_server_error_raises_fetch_error(self, repo: RepoRef) -> None:
        github = Mock(spec=GitHubClient)
        github.get_contents.side_effect = GitHubAPIError("boom", status_code=502)

        with pytest.raises(ContentFetchError, match="Failed to fetch a.txt"):
            ContentFetcher(github).fetch_raw(repo, "a.txt", "sha1")


class TestFetchVersion:
    """Decoding text versions."""

    def test_decodes_utf8(self, repo: RepoRef) -> None:
        github = Mock(spec=GitHubClient)
        github.get_contents.return_value = _file_entry("héllo".encode())

        version = ContentFetcher(github).fetch_version(repo, "a.txt", "sha1", "main")

        assert version.content == "héllo"
        assert version.sha == "sha1"
        assert version.ref == "main"

    def test_missing_file_has_no_content(self, repo: RepoRef) -> None:
        github = Mock(spec=GitHubClient)
        github.get_contents.side_effect = GitHubAPIError("Not Found", status_code=404)

        version = ContentFetcher(github).fetch_version(repo, "a.txt", "sha1", "main")

        assert version.content is None

    def test_non_utf8_raises(self, repo: RepoRef) -> None:
        github = Mock(spec=GitHubClient)
        github.get_contents.return_value = _file_entry(b"\xff\xfe\x00")

        with pytest.raises(ContentFetchError, match="not UTF-8"):
            ContentFetcher(github).fetch_version(repo, "a.txt", "sha1", "main")


def test_fetch_three_way_reads_each_revision(repo: RepoRef) -> None:
    """Base, ours and theirs are read at their own revisions and labelled."""
    by_sha = {"base": b"base", "head": b"ours", "tip": b"theirs"}
    github = Mock(spec=GitHubClient)
    github.get_contents.side_effect = lambda _repo, _path, sha: _file_entry(by_sha[sha])

    base, ours, theirs = ContentFetcher(github).fetch_three_way(
        repo,
        "a.txt",
        "base",
        ours=BranchTip(ref="feature", sha="head"),
        theirs=BranchTip(ref="main", sha="tip"),
    )

    assert (base.content, base.ref) == ("base", "merge-base")
    assert (ours.content, ours.ref) == ("ours", "feature")
    assert (theirs.content, theirs.ref) == ("theirs", "main")


def test_fetch_three_way_propagates_errors(repo: RepoRef) -> None:
    github = Mock(spec=GitHubClient)
    github.get_contents.side_effect = GitHubAPIError("rate limited", status_code=403)

    with pytest.raises(ContentFetchError):
        ContentFetcher(github).fetch_three_way(
            repo,
            "a.txt",
            "base",
            ours=BranchTip(ref="feature", sha="head"),
            theirs=BranchTip(ref="main", sha="tip"),
        )


class TestFetchCommit:
    """Commit metadata lookups."""

    def test_returns_commit_info(self, repo: RepoRef) -> None:
        github = Mock(spec=GitHubClient)
        info = CommitInfo(
            sha="c1", parents=["p1"], author="Alice", date=None, message="Fix parser"
        )
        github.get_commit.return_value = info

        assert ContentFetcher(github).fetch_commit(repo, "c1") == info
        github.get_commit.assert_called_once_with(repo, "c1")

    def test_api_error_raises_fetch_error(self, repo: RepoRef) -> None:
        github = Mock(spec=GitHubClient)
        github.get_commit.side_effect = GitHubAPIError("not found", status_code=404)

        with pytest.raises(ContentFetchError, match="Failed to fetch commit c1") as exc_info:
            ContentFetcher(github).fetch_commit(repo, "c1")

        assert exc_info.value.details["sha"] == "c1"
