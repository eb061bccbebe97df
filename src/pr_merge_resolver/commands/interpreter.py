"""Recognize authorized ``apply all`` commands in pull request comments."""

import logging
import re
from datetime import UTC, datetime

from pr_merge_resolver.core.exceptions import GitHubAPIError
from pr_merge_resolver.core.models import CommandCheckResult, IssueComment, RepoRef
from pr_merge_resolver.integrations.github import GitHubClient
from pr_merge_resolver.store.resolution_store import ResolutionStore

logger = logging.getLogger(__name__)

APPLY_ALL_PATTERN = re.compile(r"\bapply\s+all\b", re.IGNORECASE)

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def is_apply_all_command(body: str) -> bool:
    """True when a comment body contains the ``apply all`` phrase (any case)."""
    return bool(APPLY_ALL_PATTERN.search(body))


class CommandInterpreter:
    """Finds the latest authorized ``apply all`` command newer than the watermark."""

    def __init__(self, github: GitHubClient, store: ResolutionStore) -> None:
        self.github = github
        self.store = store

    def check_command(self, repo: RepoRef, pr_number: int) -> CommandCheckResult:
        """Look for a new, authorized ``apply all`` command on a pull request.

        Comments from bots and from users who are neither the pull request author
        nor collaborators are ignored. When several commands qualify, the latest
        one wins. A qualifying command confirms every unconfirmed resolution of
        the pull request; advancing the watermark is left to the caller once the
        apply succeeds.

        Args:
            repo: Repository of the pull request.
            pr_number: Pull request number.

        Returns:
            CommandCheckResult: ``apply_all=True`` with the command's metadata, or
                ``apply_all=False``.

        Raises:
            GitHubAPIError: If the pull request or its comments cannot be read.
        """
        watermark = self.store.get_watermark(repo, pr_number) or EPOCH
        if watermark.tzinfo is None:
            watermark = watermark.replace(tzinfo=UTC)

        comments = self.github.list_issue_comments(repo, pr_number)
        candidates = [
            comment
            for comment in comments
            if not comment.from_bot
            and comment.created_at > watermark
            and is_apply_all_command(comment.body)
        ]
        if not candidates:
            logger.debug(f"No new apply-all commands on {repo}#{pr_number}")
            return CommandCheckResult.none()

        author = self.github.get_pull_request_info(repo, pr_number).author
        command = self._latest_authorized(repo, author, candidates)
        if command is None:
            logger.info(f"Ignoring unauthorized apply-all commands on {repo}#{pr_number}")
            return CommandCheckResult.none()

        confirmed = self.store.confirm_all_unconfirmed(repo, pr_number)
        logger.info(
            f"apply-all from {command.user_login} on {repo}#{pr_number} "
            f"(comment {command.id}), confirmed {confirmed} resolutions"
        )
        return CommandCheckResult(
            apply_all=True,
            comment_id=command.id,
            user=command.user_login,
            command_timestamp=command.created_at,
        )

    def _latest_authorized(
        self, repo: RepoRef, author: str, candidates: list[IssueComment]
    ) -> IssueComment | None:
        decisions: dict[str, bool] = {}
        for comment in sorted(candidates, key=lambda c: (c.created_at, c.id), reverse=True):
            login = comment.user_login
            if login not in decisions:
                decisions[login] = self._is_authorized(repo, author, login)
            if decisions[login]:
                return comment
        return None

    def _is_authorized(self, repo: RepoRef, author: str, login: str) -> bool:
        if login.lower() == author.lower():
            return True
        try:
            return self.github.is_collaborator(repo, login)
        except GitHubAPIError as e:
            logger.warning(f"Collaborator check for {login} on {repo} failed: {e}")
            return False
