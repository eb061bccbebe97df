"""State machine for applying confirmed resolutions to a pull request branch.

The workflow is modelled as a pure function ``transition(run, event)`` that
returns the next run and the side effects to perform. The executor in
``apply.coordinator`` performs the effects and feeds their outcomes back in as
events. Every run ends in ``CLEANED_UP``.

    INIT -> BRANCH_CREATED -> FILES_COPIED -> RESOLUTIONS_ATTEMPTED
         -> BRANCH_UPDATED | UPDATE_FAILED -> CLEANED_UP

Failure paths reset every resolution to unapplied and post a comment before
cleaning up. The ephemeral branch is deleted whenever its creation was requested.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import TypeAlias

from pr_merge_resolver.resolution import comments


class ApplyState(Enum):
    """Phases of an apply run."""

    INIT = "init"
    BRANCH_CREATED = "branch-created"
    FILES_COPIED = "files-copied"
    RESOLUTIONS_ATTEMPTED = "resolutions-attempted"
    BRANCH_UPDATED = "branch-updated"
    UPDATE_FAILED = "update-failed"
    CLEANED_UP = "cleaned-up"


@dataclass(frozen=True, slots=True)
class ApplyRun:
    """Immutable progress record of one apply run."""

    state: ApplyState = ApplyState.INIT
    total: int = 0
    succeeded: int = 0
    branch_requested: bool = False
    branch_updated: bool = False
    failed: bool = False
    error: str | None = None

    @property
    def success(self) -> bool:
        """True for a finished run that updated the pull request branch."""
        return self.state is ApplyState.CLEANED_UP and self.branch_updated and not self.failed

    @property
    def finished(self) -> bool:
        return self.state is ApplyState.CLEANED_UP


# Events


@dataclass(frozen=True, slots=True)
class Started:
    total: int


@dataclass(frozen=True, slots=True)
class BranchCreated:
    pass


@dataclass(frozen=True, slots=True)
class FilesCopied:
    pass


@dataclass(frozen=True, slots=True)
class ResolutionsAttempted:
    succeeded: int


@dataclass(frozen=True, slots=True)
class BranchUpdated:
    pass


@dataclass(frozen=True, slots=True)
class BranchUpdateFailed:
    error: str


@dataclass(frozen=True, slots=True)
class Failed:
    error: str


@dataclass(frozen=True, slots=True)
class CleanedUp:
    pass


ApplyEvent: TypeAlias = (
    Started
    | BranchCreated
    | FilesCopied
    | ResolutionsAttempted
    | BranchUpdated
    | BranchUpdateFailed
    | Failed
    | CleanedUp
)


# Effects


@dataclass(frozen=True, slots=True)
class CreateBranch:
    pass


@dataclass(frozen=True, slots=True)
class CopyFiles:
    pass


@dataclass(frozen=True, slots=True)
class WriteResolutions:
    pass


@dataclass(frozen=True, slots=True)
class UpdatePullBranch:
    pass


@dataclass(frozen=True, slots=True)
class ResetResolutions:
    pass


@dataclass(frozen=True, slots=True)
class PostComment:
    body: str


@dataclass(frozen=True, slots=True)
class DeleteBranch:
    pass


Effect: TypeAlias = (
    CreateBranch
    | CopyFiles
    | WriteResolutions
    | UpdatePullBranch
    | ResetResolutions
    | PostComment
    | DeleteBranch
)


class InvalidTransitionError(ValueError):
    """An event arrived in a state that does not accept it."""


# States in which the run is waiting only for cleanup to finish.
_AWAITING_CLEANUP = {ApplyState.BRANCH_UPDATED, ApplyState.UPDATE_FAILED}


def _fail(run: ApplyRun, error: str) -> tuple[ApplyRun, list[Effect]]:
    failed = replace(run, failed=True, error=error)
    effects: list[Effect] = [ResetResolutions(), PostComment(comments.unexpected_error_comment())]
    if run.branch_requested:
        effects.append(DeleteBranch())
        return failed, effects
    return replace(failed, state=ApplyState.CLEANED_UP), effects


def transition(run: ApplyRun, event: ApplyEvent) -> tuple[ApplyRun, list[Effect]]:
    """Compute the next run and the effects to perform.

    Args:
        run: Current run.
        event: Outcome of the previous effect.

    Returns:
        tuple[ApplyRun, list[Effect]]: The next run and effects in execution order.

    Raises:
        InvalidTransitionError: If ``event`` is not accepted in ``run.state``.
    """
    state = run.state

    if state is ApplyState.CLEANED_UP:
        raise InvalidTransitionError(f"Run already finished, got {event!r}")

    if isinstance(event, Failed):
        if run.failed:
            # A second failure while already unwinding only needs cleanup.
            if run.branch_requested:
                return run, [DeleteBranch()]
            return replace(run, state=ApplyState.CLEANED_UP), []
        return _fail(run, event.error)

    if isinstance(event, CleanedUp):
        if run.failed or state in _AWAITING_CLEANUP or (
            state is ApplyState.RESOLUTIONS_ATTEMPTED and run.succeeded == 0
        ):
            return replace(run, state=ApplyState.CLEANED_UP), []
        raise InvalidTransitionError(f"Cleanup before the run settled in {state.name}")

    if run.failed:
        raise InvalidTransitionError(f"Run is unwinding after failure, got {event!r}")

    if state is ApplyState.INIT and isinstance(event, Started):
        if run.branch_requested:
            raise InvalidTransitionError("Run already started")
        if event.total <= 0:
            return (
                replace(run, state=ApplyState.CLEANED_UP, total=0),
                [PostComment(comments.nothing_pending_comment())],
            )
        return replace(run, total=event.total, branch_requested=True), [CreateBranch()]

    if state is ApplyState.INIT and isinstance(event, BranchCreated) and run.branch_requested:
        return replace(run, state=ApplyState.BRANCH_CREATED), [CopyFiles()]

    if state is ApplyState.BRANCH_CREATED and isinstance(event, FilesCopied):
        return replace(run, state=ApplyState.FILES_COPIED), [WriteResolutions()]

    if state is ApplyState.FILES_COPIED and isinstance(event, ResolutionsAttempted):
        attempted = replace(
            run, state=ApplyState.RESOLUTIONS_ATTEMPTED, succeeded=event.succeeded
        )
        if event.succeeded <= 0:
            return attempted, [
                ResetResolutions(),
                PostComment(comments.none_applied_comment(run.total)),
                DeleteBranch(),
            ]
        return attempted, [UpdatePullBranch()]

    if state is ApplyState.RESOLUTIONS_ATTEMPTED and run.succeeded > 0:
        if isinstance(event, BranchUpdated):
            if run.succeeded >= run.total:
                body = comments.all_applied_comment(run.total)
            else:
                body = comments.partially_applied_comment(run.succeeded, run.total)
            return replace(run, state=ApplyState.BRANCH_UPDATED, branch_updated=True), [
                PostComment(body),
                DeleteBranch(),
            ]
        if isinstance(event, BranchUpdateFailed):
            return replace(run, state=ApplyState.UPDATE_FAILED, error=event.error), [
                ResetResolutions(),
                PostComment(comments.branch_update_failed_comment()),
                DeleteBranch(),
            ]

    raise InvalidTransitionError(f"Event {event!r} not accepted in state {state.name}")
