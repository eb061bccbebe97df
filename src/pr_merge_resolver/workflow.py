"""Pull request event handling that ties detection, resolution and apply together.

MergeConflictWorkflow reacts to two kinds of pull request activity:

* New commits (``synchronize``): label and comment when the pull request stops
  being mergeable, propose resolutions, and clear the label once it merges
  cleanly again.
* New comments: run an authorized ``apply all`` command, acknowledge it with
  reactions and record it in the command watermark on success.
"""

import logging
from dataclasses import dataclass

from pr_merge_resolver.analysis.conflict_detector import ConflictDetector
from pr_merge_resolver.analysis.strategies import (
    ContentDiffStrategy,
    DetectionStrategy,
    GitMergeStrategy,
    web_url_from_api,
)
from pr_merge_resolver.apply.coordinator import ApplyCoordinator
from pr_merge_resolver.apply.locks import PullRequestLocks
from pr_merge_resolver.commands.interpreter import CommandInterpreter, is_apply_all_command
from pr_merge_resolver.config.runtime_config import RuntimeConfig
from pr_merge_resolver.content.fetcher import ContentFetcher
from pr_merge_resolver.core.exceptions import GitHubAPIError, MergeResolverError
from pr_merge_resolver.core.models import RepoRef, Resolution
from pr_merge_resolver.integrations.github import GitHubClient
from pr_merge_resolver.integrations.resolver_oracle import ResolverOracleClient
from pr_merge_resolver.resolution import comments
from pr_merge_resolver.resolution.coordinator import ResolutionCoordinator
from pr_merge_resolver.store.repository import (
    InMemoryResolutionRepository,
    ResolutionRepository,
    SQLiteResolutionRepository,
)
from pr_merge_resolver.store.resolution_store import ResolutionStore

logger = logging.getLogger(__name__)

MERGE_CONFLICT_LABEL = "Merge Conflict"


@dataclass(frozen=True, slots=True)
class SynchronizeOutcome:
    """What handle_synchronize did."""

    mergeable: bool | None
    conflicting_files: list[str]
    published: list[Resolution]


class MergeConflictWorkflow:
    """Entry points for pull request events."""

    def __init__(
        self,
        github: GitHubClient,
        detector: ConflictDetector,
        resolver: ResolutionCoordinator,
        interpreter: CommandInterpreter,
        applier: ApplyCoordinator,
        store: ResolutionStore,
    ) -> None:
        self.github = github
        self.detector = detector
        self.resolver = resolver
        self.interpreter = interpreter
        self.applier = applier
        self.store = store

    @classmethod
    def from_config(
        cls, config: RuntimeConfig, repository: ResolutionRepository | None = None
    ) -> "MergeConflictWorkflow":
        """Wire every component from runtime configuration.

        Args:
            config: Runtime configuration.
            repository: Resolution repository; by default SQLite when
                ``database_path`` is set, in-memory otherwise.
        """
        github = GitHubClient(
            token=config.github_token,
            base_url=config.github_api_url,
            timeout=config.http_timeout,
        )
        fetcher = ContentFetcher(github, max_workers=config.max_workers)

        strategies: list[DetectionStrategy] = []
        if config.git_enabled:
            strategies.append(
                GitMergeStrategy(
                    token=github.token,
                    web_url=web_url_from_api(config.github_api_url),
                    timeout=config.git_timeout,
                )
            )
        strategies.append(ContentDiffStrategy(github, fetcher))

        detector = ConflictDetector(
            github,
            strategies,
            mergeable_retries=config.mergeable_retries,
            mergeable_retry_delay=config.mergeable_retry_delay,
        )

        if repository is None:
            repository = (
                SQLiteResolutionRepository(config.database_path)
                if config.database_path
                else InMemoryResolutionRepository()
            )
        store = ResolutionStore(repository)
        oracle = ResolverOracleClient(config.resolver_url, timeout=config.resolver_timeout)

        return cls(
            github=github,
            detector=detector,
            resolver=ResolutionCoordinator(detector, github, fetcher, oracle, store),
            interpreter=CommandInterpreter(github, store),
            applier=ApplyCoordinator(
                github,
                fetcher,
                store,
                branch_prefix=config.ephemeral_branch_prefix,
                locks=PullRequestLocks(),
                detector=detector,
            ),
            store=store,
        )

    def run_resolution(self, repo: RepoRef, pr_number: int) -> list[Resolution]:
        """Detect, resolve and publish resolutions for a pull request."""
        resolved = self.resolver.resolve(repo, pr_number)
        if not resolved:
            return []
        return self.resolver.publish(repo, pr_number, resolved)

    def handle_synchronize(
        self, repo: RepoRef, pr_number: int, auto_resolve: bool = True
    ) -> SynchronizeOutcome:
        """React to new commits on a pull request.

        Args:
            repo: Repository of the pull request.
            pr_number: Pull request number.
            auto_resolve: Propose and publish resolutions for conflicting files.

        Returns:
            SynchronizeOutcome: The mergeable flag, conflicting files and published
                resolutions.
        """
        detection = self.detector.analyze(repo, pr_number)
        pr = detection.pull_request
        mergeable = pr.mergeable if pr else None

        if mergeable is True:
            if self._remove_conflict_label(repo, pr_number):
                self._comment(repo, pr_number, comments.merge_conflict_cleared_comment())
            return SynchronizeOutcome(mergeable=True, conflicting_files=[], published=[])

        if not detection.files:
            logger.info(f"{repo}#{pr_number} has no conflicting files (mergeable={mergeable})")
            return SynchronizeOutcome(mergeable=mergeable, conflicting_files=[], published=[])

        try:
            self.github.add_labels(repo, pr_number, [MERGE_CONFLICT_LABEL])
        except GitHubAPIError as e:
            logger.error(f"Failed to label {repo}#{pr_number}: {e}")
        self._comment(repo, pr_number, comments.merge_conflict_detected_comment(detection.files))

        published: list[Resolution] = []
        if auto_resolve:
            resolved = self.resolver.resolve_detected(repo, pr_number, detection)
            if resolved:
                published = self.resolver.publish(repo, pr_number, resolved)

        return SynchronizeOutcome(
            mergeable=mergeable, conflicting_files=list(detection.files), published=published
        )

    def handle_comment(
        self,
        repo: RepoRef,
        pr_number: int,
        body: str,
        user_type: str = "User",
        is_pull_request: bool = True,
    ) -> bool | None:
        """React to a new pull request comment.

        Returns:
            bool | None: None when the comment is not an applicable command,
                otherwise whether the apply succeeded.
        """
        if not is_pull_request or user_type == "Bot":
            return None
        if not is_apply_all_command(body):
            return None
        return self.process_commands(repo, pr_number)

    def process_commands(self, repo: RepoRef, pr_number: int) -> bool | None:
        """Run the latest authorized ``apply all`` command, if there is a new one.

        The pull request lock is held from the command check until the
        watermark is recorded.

        Returns:
            bool | None: None when there is no new authorized command, otherwise
                whether the apply succeeded.
        """
        with self.applier.locks.hold(repo, pr_number):
            try:
                result = self.interpreter.check_command(repo, pr_number)
            except MergeResolverError as e:
                logger.error(f"Command check failed for {repo}#{pr_number}: {e}")
                return None
            if not result.apply_all or result.comment_id is None:
                return None

            self._react(repo, result.comment_id, "eyes")
            success = self.applier.apply_all(repo, pr_number)
            self._react(repo, result.comment_id, "+1" if success else "-1")

            if success and result.command_timestamp is not None:
                self.store.set_watermark(repo, pr_number, result.command_timestamp)
            return success

    def _remove_conflict_label(self, repo: RepoRef, pr_number: int) -> bool:
        try:
            return self.github.remove_label(repo, pr_number, MERGE_CONFLICT_LABEL)
        except GitHubAPIError as e:
            logger.error(f"Failed to remove label from {repo}#{pr_number}: {e}")
            return False

    def _comment(self, repo: RepoRef, pr_number: int, body: str) -> None:
        try:
            self.github.create_issue_comment(repo, pr_number, body)
        except GitHubAPIError as e:
            logger.error(f"Failed to comment on {repo}#{pr_number}: {e}")

    def _react(self, repo: RepoRef, comment_id: int, reaction: str) -> None:
        try:
            self.github.create_comment_reaction(repo, comment_id, reaction)
        except GitHubAPIError as e:
            logger.warning(f"Failed to add {reaction} reaction to comment {comment_id}: {e}")
