"""Read file content at a revision and classify files for conflict checks."""

import base64
import binascii
import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import PurePosixPath

from pr_merge_resolver.core.exceptions import ContentFetchError, GitHubAPIError
from pr_merge_resolver.core.models import (
    BranchTip,
    CommitInfo,
    FileType,
    FileVersion,
    RepoRef,
)
from pr_merge_resolver.integrations.github import GitHubClient

logger = logging.getLogger(__name__)

BINARY_EXTENSIONS = frozenset(
    {
        ".png",
        ".jpg",
        ".jpeg",
        ".gif",
        ".ico",
        ".webp",
        ".pdf",
        ".zip",
        ".gz",
        ".tar",
        ".ttf",
        ".woff",
        ".woff2",
        ".eot",
        ".mp3",
        ".mp4",
        ".avi",
        ".mov",
        ".exe",
        ".dll",
        ".so",
        ".o",
    }
)

# Extensionless config files that hold JSON.
JSON_CONFIG_NAMES = frozenset({".eslintrc", ".babelrc", ".prettierrc"})

MERGE_BASE_REF = "merge-base"


def classify(filename: str) -> FileType:
    """Classify a path as binary, JSON or plain text by its name."""
    path = PurePosixPath(filename)
    suffix = path.suffix.lower()
    if suffix in BINARY_EXTENSIONS:
        return FileType.BINARY
    if suffix == ".json" or path.name in JSON_CONFIG_NAMES:
        return FileType.JSON
    return FileType.TEXT


def is_binary(filename: str) -> bool:
    """True for extensions that cannot be merged line by line."""
    return classify(filename) is FileType.BINARY


def is_json(filename: str) -> bool:
    """True for ``.json`` files and JSON-formatted dotfile configs."""
    return classify(filename) is FileType.JSON


class ContentFetcher:
    """Fetches file versions through the GitHub contents API."""

    def __init__(self, github: GitHubClient, max_workers: int = 3) -> None:
        """Initialize the fetcher.

        Args:
            github: Client used for contents and blob reads.
            max_workers: Thread pool size for concurrent three-way reads.
        """
        self.github = github
        self.max_workers = max_workers

    def fetch_raw(self, repo: RepoRef, path: str, sha: str) -> bytes | None:
        """Read the bytes of ``path`` at revision ``sha``.

        Returns:
            bytes | None: The file bytes, or None when no regular file exists at that
                path and revision (missing, directory, symlink or submodule).

        Raises:
            ContentFetchError: When the read fails.
        """
        details = {"path": path, "sha": sha, "repo": repo.full_name}
        try:
            data = self.github.get_contents(repo, path, sha)
        except GitHubAPIError as e:
            if e.not_found:
                logger.debug(f"{path} does not exist at {sha}")
                return None
            raise ContentFetchError(f"Failed to fetch {path} at {sha}: {e}", details=details) from e

        if not isinstance(data, dict) or data.get("type") != "file":
            return None

        try:
            return self._decode_payload(repo, data)
        except (binascii.Error, GitHubAPIError) as e:
            raise ContentFetchError(f"Could not read {path} at {sha}: {e}", details=details) from e

    def fetch_version(self, repo: RepoRef, path: str, sha: str, ref: str) -> FileVersion:
        """Read ``path`` at revision ``sha`` as text.

        Args:
            repo: Repository to read from.
            path: Repository-relative file path.
            sha: Commit sha or branch to read at.
            ref: Label recorded on the version (branch name or ``merge-base``).

        Returns:
            FileVersion: The content at the revision, None when no file exists there.

        Raises:
            ContentFetchError: When the read fails or the content is not UTF-8 text.
        """
        raw = self.fetch_raw(repo, path, sha)
        if raw is None:
            return FileVersion(content=None, sha=sha, ref=ref)
        try:
            content = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ContentFetchError(
                f"{path} at {sha} is not UTF-8 text",
                details={"path": path, "sha": sha, "repo": repo.full_name},
            ) from e
        return FileVersion(content=content, sha=sha, ref=ref)

    def _decode_payload(self, repo: RepoRef, data: dict) -> bytes:
        # Files over 1 MB come back without inline content.
        if data.get("encoding") == "base64" and data.get("content") is not None:
            return base64.b64decode(data["content"])
        blob_sha = data.get("sha")
        if not blob_sha:
            raise GitHubAPIError(f"Contents entry for {data.get('path')} has no blob sha")
        return self.github.get_blob(repo, blob_sha)

    def fetch_three_way(
        self,
        repo: RepoRef,
        path: str,
        merge_base_sha: str,
        ours: BranchTip,
        theirs: BranchTip,
    ) -> tuple[FileVersion, FileVersion, FileVersion]:
        """Read the base, ours and theirs versions of a file concurrently.

        ``ours`` is the pull request head and ``theirs`` the target branch tip.

        Returns:
            tuple: ``(base, ours, theirs)`` versions.

        Raises:
            ContentFetchError: If any of the three reads fails.
        """
        with ThreadPoolExecutor(max_workers=min(3, self.max_workers)) as executor:
            base_future = executor.submit(
                self.fetch_version, repo, path, merge_base_sha, MERGE_BASE_REF
            )
            ours_future = executor.submit(self.fetch_version, repo, path, ours.sha, ours.ref)
            theirs_future = executor.submit(
                self.fetch_version, repo, path, theirs.sha, theirs.ref
            )
            return base_future.result(), ours_future.result(), theirs_future.result()

    def fetch_commit(self, repo: RepoRef, sha: str) -> CommitInfo:
        """Read the metadata of commit ``sha``.

        Raises:
            ContentFetchError: When the commit cannot be read.
        """
        try:
            return self.github.get_commit(repo, sha)
        except GitHubAPIError as e:
            raise ContentFetchError(
                f"Failed to fetch commit {sha}: {e}",
                details={"sha": sha, "repo": repo.full_name},
            ) from e
