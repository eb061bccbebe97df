"""Detection of pull request files that genuinely conflict with the target branch.

This module provides the ConflictDetector class, which reads GitHub's mergeable
flag, narrows the changed files down to modified ones and hands them to an
ordered list of detection strategies.
"""

import logging
from dataclasses import dataclass, field

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed,
)

from pr_merge_resolver.analysis.strategies import DetectionStrategy
from pr_merge_resolver.content.fetcher import is_binary
from pr_merge_resolver.core.exceptions import GitHubAPIError, StrategyUnavailableError
from pr_merge_resolver.core.models import PullRequestInfo, RepoRef
from pr_merge_resolver.integrations.github import GitHubClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DetectionResult:
    """Conflicting files and how they were found."""

    files: list[str] = field(default_factory=list)
    strategy: str | None = None
    pull_request: PullRequestInfo | None = None


def _mergeable_unknown(pr: PullRequestInfo | None) -> bool:
    return pr is None or pr.mergeable is None


def _last_result_or_none(retry_state: RetryCallState) -> PullRequestInfo | None:
    outcome = retry_state.outcome
    if outcome is None or outcome.failed:
        return None
    result: PullRequestInfo | None = outcome.result()
    return result


class ConflictDetector:
    """Finds the modified files of a pull request that cannot merge cleanly."""

    def __init__(
        self,
        github: GitHubClient,
        strategies: list[DetectionStrategy],
        mergeable_retries: int = 5,
        mergeable_retry_delay: float = 2.5,
    ) -> None:
        """Initialize the detector.

        Args:
            github: GitHub client for pull request and file listing reads.
            strategies: Strategies tried in order until one reaches a verdict.
            mergeable_retries: Reads of the mergeable flag before giving up.
            mergeable_retry_delay: Seconds between mergeable reads.
        """
        if not strategies:
            raise ValueError("At least one detection strategy is required")
        self.github = github
        self.strategies = strategies
        self.mergeable_retries = mergeable_retries
        self.mergeable_retry_delay = mergeable_retry_delay

    def poll_mergeable(self, repo: RepoRef, pr_number: int) -> PullRequestInfo | None:
        """Read the pull request until GitHub has computed its mergeable flag.

        GitHub computes mergeability asynchronously and reports ``null`` until it
        is done. Reads are retried a fixed number of times with a fixed delay,
        also when the read itself fails.

        Returns:
            PullRequestInfo | None: The last pull request read. Its ``mergeable`` is
                None when the flag stayed unknown. None when every read failed.
        """
        retryer = Retrying(
            stop=stop_after_attempt(self.mergeable_retries),
            wait=wait_fixed(self.mergeable_retry_delay),
            retry=retry_if_result(_mergeable_unknown) | retry_if_exception_type(GitHubAPIError),
            retry_error_callback=_last_result_or_none,
        )
        pr: PullRequestInfo | None = retryer(self.github.get_pull_request_info, repo, pr_number)
        if _mergeable_unknown(pr):
            logger.warning(
                f"Mergeable status of {repo}#{pr_number} unknown after "
                f"{self.mergeable_retries} attempts"
            )
        return pr

    def modified_files(self, repo: RepoRef, pr_number: int) -> list[str]:
        """List modified files in GitHub's order, without duplicates."""
        seen: set[str] = set()
        modified = []
        for candidate in self.github.list_pull_files(repo, pr_number):
            if candidate.eligible and candidate.filename not in seen:
                seen.add(candidate.filename)
                modified.append(candidate.filename)
        return modified

    def analyze(self, repo: RepoRef, pr_number: int) -> DetectionResult:
        """Detect conflicting files and report which strategy decided.

        Raises:
            GitHubAPIError: If the pull request or its file list cannot be read.
        """
        pr = self.poll_mergeable(repo, pr_number)
        if pr is not None and pr.mergeable is True:
            logger.info(f"{repo}#{pr_number} is mergeable, no conflicts to detect")
            return DetectionResult(pull_request=pr)

        if pr is None:
            pr = self.github.get_pull_request_info(repo, pr_number)

        modified = self.modified_files(repo, pr_number)
        if not modified:
            logger.info(f"{repo}#{pr_number} has no modified files")
            return DetectionResult(pull_request=pr)

        for strategy in self.strategies:
            try:
                found = strategy.detect(repo, pr, modified)
            except StrategyUnavailableError as e:
                logger.warning(f"Strategy {strategy.name} unavailable for {repo}#{pr_number}: {e}")
                continue
            found_set = set(found)
            files = [filename for filename in modified if filename in found_set]
            logger.info(
                f"Strategy {strategy.name} found {len(files)} conflicting files "
                f"in {repo}#{pr_number}"
            )
            return DetectionResult(files=files, strategy=strategy.name, pull_request=pr)

        logger.error(
            f"No detection strategy reached a verdict for {repo}#{pr_number}, "
            f"flagging every modified text file"
        )
        return DetectionResult(
            files=[filename for filename in modified if not is_binary(filename)],
            strategy="fail-safe",
            pull_request=pr,
        )

    def detect(self, repo: RepoRef, pr_number: int) -> list[str]:
        """Return the conflicting modified files of a pull request.

        Args:
            repo: Repository of the pull request.
            pr_number: Pull request number.

        Returns:
            list[str]: Conflicting filenames in GitHub's listing order. Empty when the
                pull request is mergeable.
        """
        return self.analyze(repo, pr_number).files
