"""Conflict detection strategies.

Strategies are tried in order. A strategy that cannot reach a verdict raises
StrategyUnavailableError and the detector moves on to the next one.
"""

import logging
from typing import Protocol

from pr_merge_resolver.analysis.git_workspace import GitRunner, auth_environment, temporary_workspace
from pr_merge_resolver.analysis.three_way import has_conflict
from pr_merge_resolver.content.fetcher import ContentFetcher, is_binary
from pr_merge_resolver.core.exceptions import (
    ContentFetchError,
    GitCommandError,
    GitHubAPIError,
    StrategyUnavailableError,
)
from pr_merge_resolver.core.models import PullRequestInfo, RepoRef
from pr_merge_resolver.integrations.github import GitHubClient

logger = logging.getLogger(__name__)


class DetectionStrategy(Protocol):
    """Finds which of a pull request's modified files conflict with the target branch."""

    name: str

    def detect(self, repo: RepoRef, pr: PullRequestInfo, modified: list[str]) -> list[str]:
        """Return the conflicting subset of ``modified``.

        Raises:
            StrategyUnavailableError: If no verdict could be reached.
        """
        ...


def web_url_from_api(api_url: str) -> str:
    """Map a REST API base URL to the web host used for git remotes."""
    api_url = api_url.rstrip("/")
    if api_url == "https://api.github.com":
        return "https://github.com"
    if api_url.endswith("/api/v3"):
        return api_url[: -len("/api/v3")]
    return api_url


class GitMergeStrategy:
    """Merges the pull request head into the target branch in a scratch repository."""

    name = "git-merge"

    def __init__(
        self,
        token: str | None,
        web_url: str = "https://github.com",
        timeout: int = 120,
    ) -> None:
        """Initialize the strategy.

        Args:
            token: Token for authenticated fetches, passed through the environment.
            web_url: Git host base URL.
            timeout: Timeout in seconds for each git command.
        """
        self._token = token
        self.web_url = web_url.rstrip("/")
        self.timeout = timeout

    def detect(self, repo: RepoRef, pr: PullRequestInfo, modified: list[str]) -> list[str]:
        """Run ``git merge`` and report unmerged paths among ``modified``."""
        remote = f"{self.web_url}/{repo.full_name}.git"
        base_branch = pr.base.ref
        head_ref = f"refs/remotes/origin/pr-{pr.number}-head"

        with temporary_workspace() as workdir:
            git = GitRunner(workdir, timeout=self.timeout, env=auth_environment(self._token))
            try:
                git.run("init", "--quiet")
                git.run("remote", "add", "origin", remote)
                git.run(
                    "fetch",
                    "--quiet",
                    "--no-tags",
                    "origin",
                    f"+refs/heads/{base_branch}:refs/remotes/origin/{base_branch}",
                    f"+refs/pull/{pr.number}/head:{head_ref}",
                )
                git.run("checkout", "--quiet", "-b", base_branch, f"origin/{base_branch}")
            except GitCommandError as e:
                raise StrategyUnavailableError(
                    f"Could not prepare scratch repository for {repo}#{pr.number}: {e}",
                    details=e.details,
                ) from e

            try:
                merge = git.run(
                    "-c",
                    "user.name=pr-merge-resolver",
                    "-c",
                    "user.email=pr-merge-resolver@users.noreply.github.com",
                    "merge",
                    "--no-commit",
                    "--no-ff",
                    head_ref,
                    check=False,
                )
                if merge.returncode == 0:
                    logger.info(f"git merge of {repo}#{pr.number} is clean")
                    return []

                unmerged = git.run("diff", "--name-only", "--diff-filter=U")
            except GitCommandError as e:
                raise StrategyUnavailableError(
                    f"git merge check failed for {repo}#{pr.number}: {e}", details=e.details
                ) from e
            finally:
                try:
                    git.run("merge", "--abort", check=False)
                except GitCommandError as e:
                    logger.debug(f"git merge --abort failed: {e}")

        paths = {line.strip() for line in unmerged.stdout.splitlines() if line.strip()}
        if not paths:
            raise StrategyUnavailableError(
                f"git merge failed for {repo}#{pr.number} without unmerged paths",
                details={"stderr": merge.stderr.strip()},
            )

        logger.info(f"git merge reported {len(paths)} unmerged paths in {repo}#{pr.number}")
        return [filename for filename in modified if filename in paths]


class ContentDiffStrategy:
    """Three-way diff of file content fetched through the GitHub API."""

    name = "content-diff"

    def __init__(self, github: GitHubClient, fetcher: ContentFetcher) -> None:
        self.github = github
        self.fetcher = fetcher

    def detect(self, repo: RepoRef, pr: PullRequestInfo, modified: list[str]) -> list[str]:
        """Diff every non-binary modified file. Files that cannot be checked count as conflicting."""
        try:
            merge_base = self.github.get_merge_base(repo, pr.base.sha, pr.head.sha)
        except GitHubAPIError as e:
            logger.warning(f"Merge base lookup failed for {repo}#{pr.number}: {e}")
            merge_base = None

        conflicting = []
        for filename in modified:
            if is_binary(filename):
                logger.debug(f"Skipping binary file {filename}")
                continue
            if merge_base is None:
                conflicting.append(filename)
                continue
            if self._file_conflicts(repo, pr, filename, merge_base):
                conflicting.append(filename)
        return conflicting

    def _file_conflicts(
        self, repo: RepoRef, pr: PullRequestInfo, filename: str, merge_base: str
    ) -> bool:
        try:
            base, ours, theirs = self.fetcher.fetch_three_way(
                repo, filename, merge_base, ours=pr.head, theirs=pr.base
            )
        except ContentFetchError as e:
            logger.warning(f"Treating {filename} as conflicting, content fetch failed: {e}")
            return True

        if base.content is None or ours.content is None or theirs.content is None:
            logger.warning(f"Treating {filename} as conflicting, a version is missing")
            return True

        try:
            return has_conflict(filename, base.content, ours.content, theirs.content)
        except Exception:
            logger.exception(f"Treating {filename} as conflicting, diff failed")
            return True
