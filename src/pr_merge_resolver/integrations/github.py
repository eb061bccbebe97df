"""GitHub integration for pull request, content, ref and comment operations.

This module provides the GitHubClient class, a thin wrapper over the GitHub REST
API used by every workflow in the package. Read requests are retried by the
transport adapter on transient status codes; mutating requests are sent once.
"""

import base64
import logging
import os
from datetime import datetime
from typing import Any
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from pr_merge_resolver.core.exceptions import GitHubAPIError
from pr_merge_resolver.core.models import (
    BranchTip,
    ChangeStatus,
    CommitInfo,
    ConflictCandidate,
    IssueComment,
    PullRequestInfo,
    RepoRef,
)

logger = logging.getLogger(__name__)


def parse_github_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp as returned by GitHub (``2024-01-01T10:00:00Z``)."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GitHubClient:
    """Client for the subset of the GitHub REST API used by the resolver."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str = "https://api.github.com",
        timeout: int = 30,
        read_retries: int = 3,
    ) -> None:
        """Initialize the client with an optional GitHub token and API base URL.

        Args:
            token: Token to authenticate GitHub API requests.
                If None, the value is read from the GITHUB_TOKEN environment variable.
            base_url: Base URL for the GitHub API endpoints.
            timeout: Request timeout in seconds.
            read_retries: Transport-level retries for GET requests on 429/5xx responses.
        """
        self.token = token or os.getenv("GITHUB_TOKEN")
        self.base_url = base_url.rstrip("/")
        self._timeout = timeout
        self.session = requests.Session()

        retry_strategy = Retry(
            total=read_retries,
            status_forcelist=[429, 500, 502, 503, 504],
            backoff_factor=1,
            allowed_methods=["GET"],
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        headers = {
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "pr-merge-resolver/0.1.0",
            "X-GitHub-Api-Version": "2022-11-28",
        }

        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        self.session.headers.update(headers)

    def _url(self, repo: RepoRef, path: str) -> str:
        return f"{self.base_url}/repos/{repo.owner}/{repo.name}{path}"

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> requests.Response:
        """Send one request and raise GitHubAPIError on transport or HTTP errors.

        Args:
            method: HTTP method.
            url: Absolute URL.
            params: Optional query parameters.
            json: Optional JSON request body.

        Returns:
            requests.Response: The successful response.

        Raises:
            GitHubAPIError: On connection failures and non-2xx responses.
        """
        logger.debug(f"{method} {url}")
        try:
            response = self.session.request(
                method, url, params=params, json=json, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise GitHubAPIError(
                f"GitHub request failed: {method} {url}: {e}",
                details={"method": method, "url": url},
            ) from e

        if not response.ok:
            message = ""
            try:
                payload = response.json()
                if isinstance(payload, dict):
                    message = str(payload.get("message", ""))
            except ValueError:
                message = response.text[:200]
            raise GitHubAPIError(
                f"GitHub API returned {response.status_code} for {method} {url}: {message}",
                status_code=response.status_code,
                details={"method": method, "url": url},
            )
        return response

    def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:  # noqa: ANN401
        response = self._request("GET", url, params=params)
        try:
            return response.json()
        except ValueError as e:
            raise GitHubAPIError(
                f"Invalid JSON from GitHub for {url}", status_code=response.status_code
            ) from e

    def _get_all_pages(
        self, url: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """GET ``url`` and every following page named by the ``Link`` header.

        List payloads are concatenated; an object payload counts as one item.

        Raises:
            GitHubAPIError: When any page request fails or returns invalid JSON.
        """
        items: list[dict[str, Any]] = []
        next_url: str | None = url
        page_params: dict[str, Any] | None = {"per_page": 100, **(params or {})}

        while next_url:
            logger.debug(f"GET page {next_url}")
            response = self._request("GET", next_url, params=page_params)
            try:
                payload = response.json()
            except ValueError as e:
                raise GitHubAPIError(
                    f"Invalid JSON from GitHub for {next_url}",
                    status_code=response.status_code,
                ) from e
            if isinstance(payload, list):
                items.extend(payload)
            elif isinstance(payload, dict):
                items.append(payload)
            # the next link already carries the query string
            page_params = None
            next_url = response.links.get("next", {}).get("url")

        logger.debug(f"{url}: {len(items)} items")
        return items

    # Pull requests

    def get_pull_request(self, repo: RepoRef, pr_number: int) -> dict[str, Any]:
        """Fetch raw pull request metadata.

        Raises:
            GitHubAPIError: When the request fails or the payload is not an object.
        """
        data = self._get_json(self._url(repo, f"/pulls/{pr_number}"))
        if not isinstance(data, dict):
            raise GitHubAPIError(f"Expected dict response from GitHub API, got {type(data)}")
        return data

    def get_pull_request_info(self, repo: RepoRef, pr_number: int) -> PullRequestInfo:
        """Fetch a pull request and keep the fields the workflows use."""
        data = self.get_pull_request(repo, pr_number)
        try:
            head = data["head"]
            base = data["base"]
            return PullRequestInfo(
                number=int(data["number"]),
                author=data["user"]["login"],
                head=BranchTip(
                    ref=head["ref"],
                    sha=head["sha"],
                    repo_full_name=(head.get("repo") or {}).get("full_name"),
                ),
                base=BranchTip(
                    ref=base["ref"],
                    sha=base["sha"],
                    repo_full_name=(base.get("repo") or {}).get("full_name"),
                ),
                mergeable=data.get("mergeable"),
                state=data.get("state", "open"),
            )
        except (KeyError, TypeError) as e:
            raise GitHubAPIError(
                f"Malformed pull request payload for {repo}#{pr_number}: missing {e}"
            ) from e

    def list_pull_files(self, repo: RepoRef, pr_number: int) -> list[ConflictCandidate]:
        """List the files changed by a pull request in GitHub's order."""
        files = self._get_all_pages(self._url(repo, f"/pulls/{pr_number}/files"))
        return [
            ConflictCandidate(
                filename=f["filename"],
                status=ChangeStatus.parse(f.get("status", "")),
                previous_filename=f.get("previous_filename"),
            )
            for f in files
            if "filename" in f
        ]

    def compare_commits(self, repo: RepoRef, base: str, head: str) -> dict[str, Any]:
        """Compare two commits (``base...head``)."""
        base_q = quote(base, safe="")
        head_q = quote(head, safe="")
        data = self._get_json(self._url(repo, f"/compare/{base_q}...{head_q}"))
        if not isinstance(data, dict):
            raise GitHubAPIError(f"Expected dict response from compare API, got {type(data)}")
        return data

    def get_merge_base(self, repo: RepoRef, base: str, head: str) -> str:
        """Return the merge-base commit sha of two revisions.

        Raises:
            GitHubAPIError: When the compare call fails or lacks a merge base.
        """
        data = self.compare_commits(repo, base, head)
        try:
            return str(data["merge_base_commit"]["sha"])
        except (KeyError, TypeError) as e:
            raise GitHubAPIError(f"No merge base between {base} and {head} in {repo}") from e

    def get_commit(self, repo: RepoRef, sha: str) -> CommitInfo:
        """Fetch commit metadata for ``sha``.

        Raises:
            GitHubAPIError: When the request fails or the payload is malformed.
        """
        data = self._get_json(self._url(repo, f"/commits/{sha}"))
        try:
            commit = data["commit"]
            author = commit.get("author") or {}
            date = author.get("date")
            return CommitInfo(
                sha=str(data["sha"]),
                parents=[str(p["sha"]) for p in data.get("parents") or []],
                author=author.get("name"),
                date=parse_github_timestamp(date) if date else None,
                message=commit.get("message") or "",
            )
        except (KeyError, TypeError, ValueError) as e:
            raise GitHubAPIError(
                f"Unexpected commit payload for {sha} in {repo}", details={"sha": sha}
            ) from e

    # Contents

    def get_contents(self, repo: RepoRef, path: str, ref: str) -> Any:  # noqa: ANN401
        """Fetch the contents API entry for ``path`` at ``ref``.

        Returns:
            The decoded JSON: an object for files and symlinks, a list for directories.
        """
        return self._get_json(
            self._url(repo, f"/contents/{quote(path, safe='/')}"), params={"ref": ref}
        )

    def get_blob(self, repo: RepoRef, sha: str) -> bytes:
        """Fetch a git blob by sha and return its raw bytes."""
        data = self._get_json(self._url(repo, f"/git/blobs/{sha}"))
        if not isinstance(data, dict) or data.get("encoding") != "base64":
            raise GitHubAPIError(f"Unexpected blob payload for {sha} in {repo}")
        return base64.b64decode(data.get("content", ""))

    def get_file_sha(self, repo: RepoRef, path: str, branch: str) -> str | None:
        """Return the blob sha of ``path`` on ``branch``, or None if it does not exist."""
        try:
            data = self.get_contents(repo, path, branch)
        except GitHubAPIError as e:
            if e.not_found:
                return None
            raise
        if isinstance(data, dict) and data.get("type") == "file":
            return data.get("sha")
        return None

    def create_or_update_file(
        self,
        repo: RepoRef,
        path: str,
        *,
        content: str | bytes,
        message: str,
        branch: str,
        sha: str | None = None,
    ) -> dict[str, Any]:
        """Write a file on a branch, creating one commit.

        Args:
            repo: Target repository.
            path: Repository-relative file path.
            content: New file content, text (written as UTF-8) or raw bytes.
            message: Commit message.
            branch: Branch to commit to.
            sha: Current blob sha, required when the file already exists.

        Returns:
            dict[str, Any]: GitHub's response with ``content`` and ``commit`` objects.
        """
        raw = content.encode("utf-8") if isinstance(content, str) else content
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(raw).decode("ascii"),
            "branch": branch,
        }
        if sha:
            body["sha"] = sha
        response = self._request(
            "PUT", self._url(repo, f"/contents/{quote(path, safe='/')}"), json=body
        )
        data: dict[str, Any] = response.json()
        return data

    def delete_file(
        self, repo: RepoRef, path: str, *, message: str, branch: str, sha: str
    ) -> dict[str, Any]:
        """Delete a file on a branch, creating one commit."""
        body = {"message": message, "branch": branch, "sha": sha}
        response = self._request(
            "DELETE", self._url(repo, f"/contents/{quote(path, safe='/')}"), json=body
        )
        data: dict[str, Any] = response.json()
        return data

    # Refs

    def get_branch_sha(self, repo: RepoRef, branch: str) -> str | None:
        """Return the tip sha of ``branch``, or None if the branch does not exist."""
        try:
            data = self._get_json(self._url(repo, f"/git/ref/heads/{quote(branch, safe='/')}"))
        except GitHubAPIError as e:
            if e.not_found:
                return None
            raise
        if not isinstance(data, dict):
            return None
        return (data.get("object") or {}).get("sha")

    def create_branch(self, repo: RepoRef, branch: str, sha: str) -> None:
        """Create ``refs/heads/<branch>`` pointing at ``sha``."""
        self._request(
            "POST",
            self._url(repo, "/git/refs"),
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )

    def update_branch(self, repo: RepoRef, branch: str, sha: str, *, force: bool) -> None:
        """Move ``branch`` to ``sha``; ``force`` allows non-fast-forward updates."""
        self._request(
            "PATCH",
            self._url(repo, f"/git/refs/heads/{quote(branch, safe='/')}"),
            json={"sha": sha, "force": force},
        )

    def delete_branch(self, repo: RepoRef, branch: str) -> None:
        """Delete ``refs/heads/<branch>``."""
        self._request("DELETE", self._url(repo, f"/git/refs/heads/{quote(branch, safe='/')}"))

    # Comments, reactions, labels, collaborators

    def list_issue_comments(self, repo: RepoRef, pr_number: int) -> list[IssueComment]:
        """Fetch every conversation comment on a pull request, oldest first."""
        raw = self._get_all_pages(self._url(repo, f"/issues/{pr_number}/comments"))
        comments = []
        for item in raw:
            user = item.get("user") or {}
            try:
                comments.append(
                    IssueComment(
                        id=int(item["id"]),
                        body=item.get("body") or "",
                        user_login=user.get("login", ""),
                        user_type=user.get("type", "User"),
                        created_at=parse_github_timestamp(item["created_at"]),
                    )
                )
            except (KeyError, ValueError) as e:
                logger.warning(f"Skipping malformed comment on {repo}#{pr_number}: {e}")
        return comments

    def create_issue_comment(self, repo: RepoRef, pr_number: int, body: str) -> dict[str, Any]:
        """Post a conversation comment on a pull request."""
        response = self._request(
            "POST", self._url(repo, f"/issues/{pr_number}/comments"), json={"body": body}
        )
        data: dict[str, Any] = response.json()
        return data

    def create_comment_reaction(self, repo: RepoRef, comment_id: int, content: str) -> None:
        """React to a conversation comment (``eyes``, ``+1``, ``-1``...)."""
        self._request(
            "POST",
            self._url(repo, f"/issues/comments/{comment_id}/reactions"),
            json={"content": content},
        )

    def is_collaborator(self, repo: RepoRef, username: str) -> bool:
        """Check repository collaborator membership.

        Returns:
            bool: True on 204, False on 404.

        Raises:
            GitHubAPIError: For any other failure.
        """
        try:
            response = self._request(
                "GET", self._url(repo, f"/collaborators/{quote(username, safe='')}")
            )
        except GitHubAPIError as e:
            if e.not_found:
                return False
            raise
        return response.status_code == 204

    def add_labels(self, repo: RepoRef, pr_number: int, labels: list[str]) -> None:
        """Add labels to a pull request."""
        self._request(
            "POST", self._url(repo, f"/issues/{pr_number}/labels"), json={"labels": labels}
        )

    def remove_label(self, repo: RepoRef, pr_number: int, label: str) -> bool:
        """Remove a label from a pull request.

        Returns:
            bool: False when the label was not present.
        """
        try:
            self._request(
                "DELETE", self._url(repo, f"/issues/{pr_number}/labels/{quote(label, safe='')}")
            )
        except GitHubAPIError as e:
            if e.not_found:
                return False
            raise
        return True
