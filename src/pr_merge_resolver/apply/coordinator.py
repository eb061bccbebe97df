"""Apply confirmed resolutions to a pull request through an ephemeral branch.

ApplyCoordinator performs the effects requested by ``state_machine.transition``
against GitHub and the resolution store, and turns each outcome into the next
event.
"""

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field

from pr_merge_resolver.analysis.conflict_detector import ConflictDetector
from pr_merge_resolver.apply import state_machine as sm
from pr_merge_resolver.apply.locks import PullRequestLocks
from pr_merge_resolver.content.fetcher import ContentFetcher
from pr_merge_resolver.core.exceptions import (
    ContentFetchError,
    GitHubAPIError,
    ResolutionStoreError,
)
from pr_merge_resolver.core.models import ChangeStatus, PullRequestInfo, RepoRef, Resolution
from pr_merge_resolver.integrations.github import GitHubClient
from pr_merge_resolver.store.resolution_store import ResolutionStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ApplyContext:
    """Mutable working data of one apply run."""

    repo: RepoRef
    pr_number: int
    branch: str
    run: sm.ApplyRun = field(default_factory=sm.ApplyRun)
    pull_request: PullRequestInfo | None = None
    resolutions: list[Resolution] = field(default_factory=list)


class ApplyCoordinator:
    """Writes confirmed, unapplied resolutions to a pull request branch."""

    def __init__(
        self,
        github: GitHubClient,
        fetcher: ContentFetcher,
        store: ResolutionStore,
        branch_prefix: str = "temp-merge-",
        locks: PullRequestLocks | None = None,
        detector: ConflictDetector | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            github: GitHub client for refs, contents and comments.
            fetcher: Reads the pull request's version of copied files.
            store: Resolution store.
            branch_prefix: Prefix of the ephemeral branch name.
            locks: Lock registry shared by every caller that applies resolutions.
            detector: Re-detects conflicting files so none of them is copied from
                the pull request head. Without it only files with a stored
                resolution are kept out of the copy.
        """
        self.github = github
        self.fetcher = fetcher
        self.store = store
        self.branch_prefix = branch_prefix
        self.locks = locks if locks is not None else PullRequestLocks()
        self.detector = detector

    def branch_name(self, pr_number: int) -> str:
        return f"{self.branch_prefix}{pr_number}"

    def apply_all(self, repo: RepoRef, pr_number: int) -> bool:
        """Apply every confirmed, unapplied resolution of a pull request.

        Runs are serialized per pull request. The outcome is reported on the pull
        request as a comment.

        Args:
            repo: Repository of the pull request.
            pr_number: Pull request number.

        Returns:
            bool: True if the pull request branch was updated with at least one
                resolution.
        """
        with self.locks.hold(repo, pr_number):
            ctx = ApplyContext(repo=repo, pr_number=pr_number, branch=self.branch_name(pr_number))
            try:
                ctx.resolutions = self.store.list_pending(repo, pr_number)
            except Exception as e:
                logger.exception(f"Could not load pending resolutions for {repo}#{pr_number}")
                self._dispatch(ctx, sm.Failed(str(e)))
            else:
                logger.info(
                    f"Applying {len(ctx.resolutions)} resolutions to {repo}#{pr_number}"
                )
                self._dispatch(ctx, sm.Started(len(ctx.resolutions)))

        run = ctx.run
        logger.info(
            f"Apply run for {repo}#{pr_number} finished: state={run.state.name}, "
            f"applied {run.succeeded}/{run.total}, success={run.success}"
        )
        return run.success

    def _dispatch(self, ctx: ApplyContext, event: sm.ApplyEvent) -> None:
        events: deque[sm.ApplyEvent] = deque([event])
        while events:
            current = events.popleft()
            ctx.run, effects = sm.transition(ctx.run, current)
            logger.debug(f"{current!r} -> {ctx.run.state.name}, effects={effects!r}")
            for effect in effects:
                follow_up = self._perform(ctx, effect)
                if follow_up is not None:
                    events.append(follow_up)

    def _perform(self, ctx: ApplyContext, effect: sm.Effect) -> sm.ApplyEvent | None:
        if isinstance(effect, sm.CreateBranch):
            return self._guarded(ctx, self._create_branch, sm.BranchCreated())
        if isinstance(effect, sm.CopyFiles):
            return self._guarded(ctx, self._copy_files, sm.FilesCopied())
        if isinstance(effect, sm.WriteResolutions):
            try:
                return sm.ResolutionsAttempted(self._write_resolutions(ctx))
            except Exception as e:
                logger.exception(f"Writing resolutions failed for {ctx.repo}#{ctx.pr_number}")
                return sm.Failed(str(e))
        if isinstance(effect, sm.UpdatePullBranch):
            return self._update_pull_branch(ctx)
        if isinstance(effect, sm.ResetResolutions):
            self._reset_resolutions(ctx)
            return None
        if isinstance(effect, sm.PostComment):
            self._post_comment(ctx, effect.body)
            return None
        if isinstance(effect, sm.DeleteBranch):
            self._delete_branch(ctx)
            return sm.CleanedUp()
        raise TypeError(f"Unknown effect {effect!r}")

    def _guarded(
        self, ctx: ApplyContext, action: Callable[[ApplyContext], None], success: sm.ApplyEvent
    ) -> sm.ApplyEvent:
        try:
            action(ctx)
        except Exception as e:
            logger.exception(f"{action.__name__} failed for {ctx.repo}#{ctx.pr_number}")
            return sm.Failed(str(e))
        return success

    def _create_branch(self, ctx: ApplyContext) -> None:
        if ctx.pull_request is None:
            ctx.pull_request = self.github.get_pull_request_info(ctx.repo, ctx.pr_number)

        if self.github.get_branch_sha(ctx.repo, ctx.branch) is not None:
            logger.warning(f"Deleting stale branch {ctx.branch} in {ctx.repo}")
            self.github.delete_branch(ctx.repo, ctx.branch)

        self.github.create_branch(ctx.repo, ctx.branch, ctx.pull_request.base.sha)
        logger.info(
            f"Created {ctx.branch} at {ctx.pull_request.base.ref} "
            f"({ctx.pull_request.base.sha[:7]})"
        )

    def _conflict_set(self, ctx: ApplyContext) -> set[str]:
        """Files whose pull request version must not be copied over the base."""
        conflicting = {r.filename for r in ctx.resolutions}
        conflicting.update(
            r.filename for r in self.store.list_by_pull_request(ctx.repo, ctx.pr_number)
        )
        if self.detector is not None:
            conflicting.update(self.detector.detect(ctx.repo, ctx.pr_number))
        return conflicting

    def _copy_files(self, ctx: ApplyContext) -> None:
        """Carry every pull request change outside the conflict set onto the branch."""
        pr = ctx.pull_request
        if pr is None:
            raise RuntimeError("Pull request not loaded before copying files")
        conflicting = self._conflict_set(ctx)
        pending = {r.filename for r in ctx.resolutions}
        unresolved = sorted(conflicting - pending)
        if unresolved:
            logger.warning(
                f"Keeping the base version of conflicting files without a pending "
                f"resolution on {ctx.repo}#{ctx.pr_number}: {', '.join(unresolved)}"
            )

        for candidate in self.github.list_pull_files(ctx.repo, ctx.pr_number):
            if candidate.filename in conflicting:
                continue
            if candidate.previous_filename and candidate.previous_filename not in conflicting:
                self._delete_path(ctx, candidate.previous_filename)
            if candidate.status is ChangeStatus.REMOVED:
                self._delete_path(ctx, candidate.filename)
                continue

            content = self.fetcher.fetch_raw(ctx.repo, candidate.filename, pr.head.sha)
            if content is None:
                raise ContentFetchError(
                    f"{candidate.filename} is missing at {pr.head.sha}",
                    details={"path": candidate.filename},
                )
            sha = self.github.get_file_sha(ctx.repo, candidate.filename, ctx.branch)
            self.github.create_or_update_file(
                ctx.repo,
                candidate.filename,
                content=content,
                message=f"Copy {candidate.filename} from #{ctx.pr_number}",
                branch=ctx.branch,
                sha=sha,
            )
            logger.debug(f"Copied {candidate.filename} to {ctx.branch}")

    def _delete_path(self, ctx: ApplyContext, path: str) -> None:
        sha = self.github.get_file_sha(ctx.repo, path, ctx.branch)
        if sha is None:
            return
        self.github.delete_file(
            ctx.repo,
            path,
            message=f"Remove {path} as in #{ctx.pr_number}",
            branch=ctx.branch,
            sha=sha,
        )
        logger.debug(f"Removed {path} from {ctx.branch}")

    def _write_resolutions(self, ctx: ApplyContext) -> int:
        """Write each resolution independently. Returns the number written."""
        succeeded = 0
        for resolution in ctx.resolutions:
            try:
                sha = self.github.get_file_sha(ctx.repo, resolution.filename, ctx.branch)
                response = self.github.create_or_update_file(
                    ctx.repo,
                    resolution.filename,
                    content=resolution.resolved_code,
                    message=f"Resolve merge conflict in {resolution.filename}",
                    branch=ctx.branch,
                    sha=sha,
                )
                commit_sha = (response.get("commit") or {}).get("sha")
                self.store.mark_applied(ctx.repo, ctx.pr_number, resolution.filename, commit_sha)
            except (GitHubAPIError, ResolutionStoreError) as e:
                logger.error(f"Failed to apply resolution for {resolution.filename}: {e}")
                continue
            except Exception:
                logger.exception(f"Unexpected error applying resolution for {resolution.filename}")
                continue
            succeeded += 1
            logger.info(f"Applied resolution for {resolution.filename}")
        return succeeded

    def _update_pull_branch(self, ctx: ApplyContext) -> sm.ApplyEvent:
        pr = ctx.pull_request
        try:
            if pr is None:
                raise RuntimeError("Pull request not loaded before branch update")
            tip = self.github.get_branch_sha(ctx.repo, ctx.branch)
            if tip is None:
                raise GitHubAPIError(f"Ephemeral branch {ctx.branch} disappeared")
            self.github.update_branch(ctx.repo, pr.head.ref, tip, force=True)
        except Exception as e:
            logger.error(f"Updating {ctx.repo}#{ctx.pr_number} branch failed: {e}")
            return sm.BranchUpdateFailed(str(e))
        logger.info(f"Updated {pr.head.ref} to {tip[:7]}")
        return sm.BranchUpdated()

    def _reset_resolutions(self, ctx: ApplyContext) -> None:
        try:
            self.store.mark_all_not_applied(ctx.repo, ctx.pr_number)
        except Exception:
            logger.exception(f"Could not reset resolutions for {ctx.repo}#{ctx.pr_number}")

    def _post_comment(self, ctx: ApplyContext, body: str) -> None:
        try:
            self.github.create_issue_comment(ctx.repo, ctx.pr_number, body)
        except Exception:
            logger.exception(f"Could not comment on {ctx.repo}#{ctx.pr_number}")

    def _delete_branch(self, ctx: ApplyContext) -> None:
        try:
            self.github.delete_branch(ctx.repo, ctx.branch)
        except Exception as e:
            logger.warning(f"Failed to delete {ctx.branch} in {ctx.repo}: {e}")
