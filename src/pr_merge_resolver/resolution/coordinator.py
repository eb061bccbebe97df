"""Obtain proposed resolutions for conflicting files and publish them."""

import logging

from pr_merge_resolver.analysis.conflict_detector import ConflictDetector, DetectionResult
from pr_merge_resolver.content.fetcher import ContentFetcher
from pr_merge_resolver.core.exceptions import (
    ContentFetchError,
    GitHubAPIError,
    ResolverOracleError,
)
from pr_merge_resolver.core.models import (
    ConflictRecord,
    PullRequestInfo,
    RepoRef,
    Resolution,
    ResolvedFile,
)
from pr_merge_resolver.integrations.github import GitHubClient
from pr_merge_resolver.integrations.resolver_oracle import ResolverOracleClient
from pr_merge_resolver.resolution.comments import build_resolution_comment
from pr_merge_resolver.store.resolution_store import ResolutionStore

logger = logging.getLogger(__name__)


class ResolutionCoordinator:
    """Gathers three-way content for conflicting files and asks the resolver service."""

    def __init__(
        self,
        detector: ConflictDetector,
        github: GitHubClient,
        fetcher: ContentFetcher,
        oracle: ResolverOracleClient,
        store: ResolutionStore,
    ) -> None:
        self.detector = detector
        self.github = github
        self.fetcher = fetcher
        self.oracle = oracle
        self.store = store

    def resolve(self, repo: RepoRef, pr_number: int) -> list[ResolvedFile] | None:
        """Propose resolutions for every conflicting file of a pull request.

        Files whose content cannot be read or that the resolver rejects are
        skipped. No request is retried.

        Args:
            repo: Repository of the pull request.
            pr_number: Pull request number.

        Returns:
            list[ResolvedFile] | None: Proposed resolutions in detection order, or
                None when nothing conflicts or no file could be resolved.
        """
        return self.resolve_detected(repo, pr_number, self.detector.analyze(repo, pr_number))

    def resolve_detected(
        self, repo: RepoRef, pr_number: int, detection: DetectionResult
    ) -> list[ResolvedFile] | None:
        """Propose resolutions for an existing detection result."""
        if not detection.files:
            logger.info(f"No conflicting files in {repo}#{pr_number}")
            return None

        pr = detection.pull_request or self.github.get_pull_request_info(repo, pr_number)
        strategy = detection.strategy or "unknown"
        merge_base: str | None = None
        resolved: list[ResolvedFile] = []

        for filename in detection.files:
            if merge_base is None:
                try:
                    merge_base = self.github.get_merge_base(repo, pr.base.sha, pr.head.sha)
                except GitHubAPIError as e:
                    logger.error(f"Cannot resolve {repo}#{pr_number} without a merge base: {e}")
                    return None

            record = self._build_record(repo, pr, filename, merge_base, strategy)
            if record is None:
                continue

            try:
                resolved_code = self.oracle.resolve(record)
            except ResolverOracleError as e:
                logger.error(f"Resolver failed for {filename} in {repo}#{pr_number}: {e}")
                continue

            resolved.append(
                ResolvedFile(filename=filename, resolved_code=resolved_code, record=record)
            )
            logger.info(f"Resolved {filename} in {repo}#{pr_number}")

        if not resolved:
            logger.warning(f"No resolutions obtained for {repo}#{pr_number}")
            return None
        return resolved

    def _build_record(
        self,
        repo: RepoRef,
        pr: PullRequestInfo,
        filename: str,
        merge_base: str,
        strategy: str,
    ) -> ConflictRecord | None:
        try:
            base, ours, theirs = self.fetcher.fetch_three_way(
                repo, filename, merge_base, ours=pr.head, theirs=pr.base
            )
        except ContentFetchError as e:
            logger.error(f"Skipping {filename}, content fetch failed: {e}")
            return None
        return ConflictRecord(
            filename=filename, base=base, ours=ours, theirs=theirs, strategy=strategy
        )

    def publish(
        self, repo: RepoRef, pr_number: int, resolved: list[ResolvedFile]
    ) -> list[Resolution]:
        """Post a summary comment for each resolution and store it unconfirmed.

        A failed comment does not prevent storing the resolution.

        Returns:
            list[Resolution]: The stored resolutions.
        """
        stored = []
        for item in resolved:
            comment_id = None
            try:
                comment = self.github.create_issue_comment(
                    repo, pr_number, build_resolution_comment(item)
                )
                comment_id = comment.get("id")
            except GitHubAPIError as e:
                logger.error(f"Failed to post resolution comment for {item.filename}: {e}")

            record = item.record
            stored.append(
                self.store.save(
                    Resolution(
                        repo_id=repo.full_name,
                        pr_number=pr_number,
                        filename=item.filename,
                        resolved_code=item.resolved_code,
                        base_content=record.base.content,
                        ours_content=record.ours.content,
                        theirs_content=record.theirs.content,
                        ours_branch=record.ours.ref,
                        theirs_branch=record.theirs.ref,
                        comment_id=comment_id,
                    )
                )
            )
        logger.info(f"Published {len(stored)} resolutions for {repo}#{pr_number}")
        return stored
