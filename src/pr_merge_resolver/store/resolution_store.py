"""Resolution lifecycle operations on top of a ResolutionRepository.

A resolution is created unconfirmed, confirmed by an authorized ``apply all``
command, marked applied once written to the branch, and reset to unapplied
when an apply run fails. The per pull request command watermark only moves
forward.
"""

import logging
import threading
from dataclasses import replace
from datetime import UTC, datetime

from pr_merge_resolver.core.models import CommandWatermark, RepoRef, Resolution
from pr_merge_resolver.store.repository import ResolutionRepository

logger = logging.getLogger(__name__)


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=UTC)


class ResolutionStore:
    """Persistence boundary for resolutions and command watermarks."""

    def __init__(self, repository: ResolutionRepository) -> None:
        """Initialize the store.

        Args:
            repository: Backing repository (in-memory or SQLite).
        """
        self.repository = repository
        self._lock = threading.RLock()

    def save(self, resolution: Resolution) -> Resolution:
        """Store a freshly proposed resolution.

        An existing row for the same file is replaced and goes back to
        unconfirmed and unapplied, since its content is new.
        """
        fresh = replace(resolution, confirmed=False, applied=False, applied_commit_sha=None)
        with self._lock:
            stored = self.repository.upsert(fresh)
        logger.debug(
            f"Saved resolution for {stored.filename} in {stored.repo_id}#{stored.pr_number}"
        )
        return stored

    def get(self, repo: RepoRef, pr_number: int, filename: str) -> Resolution | None:
        """Fetch the resolution of one file."""
        return self.repository.get(repo.full_name, pr_number, filename)

    def list_by_pull_request(self, repo: RepoRef, pr_number: int) -> list[Resolution]:
        """All resolutions of a pull request."""
        return self.repository.list_for_pull_request(repo.full_name, pr_number)

    def list_pending(self, repo: RepoRef, pr_number: int) -> list[Resolution]:
        """Confirmed resolutions that have not been applied yet."""
        return [r for r in self.list_by_pull_request(repo, pr_number) if r.pending]

    def confirm_all_unconfirmed(self, repo: RepoRef, pr_number: int) -> int:
        """Confirm every unconfirmed resolution of a pull request.

        Returns:
            int: Number of resolutions confirmed.
        """
        count = 0
        with self._lock:
            for resolution in self.list_by_pull_request(repo, pr_number):
                if not resolution.confirmed:
                    self.repository.upsert(replace(resolution, confirmed=True))
                    count += 1
        logger.info(f"Confirmed {count} resolutions in {repo}#{pr_number}")
        return count

    def mark_applied(
        self, repo: RepoRef, pr_number: int, filename: str, commit_sha: str | None
    ) -> Resolution | None:
        """Record that a resolution was written to the branch.

        Returns:
            Resolution | None: The updated row, or None if no resolution exists.
        """
        with self._lock:
            resolution = self.get(repo, pr_number, filename)
            if resolution is None:
                logger.warning(f"No resolution for {filename} in {repo}#{pr_number} to mark")
                return None
            return self.repository.upsert(
                replace(resolution, applied=True, applied_commit_sha=commit_sha)
            )

    def mark_all_not_applied(self, repo: RepoRef, pr_number: int) -> int:
        """Reset every resolution of a pull request to unapplied.

        Returns:
            int: Number of resolutions that were marked applied before the reset.
        """
        count = 0
        with self._lock:
            for resolution in self.list_by_pull_request(repo, pr_number):
                if resolution.applied or resolution.applied_commit_sha:
                    self.repository.upsert(
                        replace(resolution, applied=False, applied_commit_sha=None)
                    )
                    count += 1
        logger.info(f"Reset {count} applied resolutions in {repo}#{pr_number}")
        return count

    def get_watermark(self, repo: RepoRef, pr_number: int) -> datetime | None:
        """Timestamp of the last processed command, or None if none was processed."""
        watermark = self.repository.get_watermark(repo.full_name, pr_number)
        return watermark.last_processed if watermark else None

    def set_watermark(self, repo: RepoRef, pr_number: int, timestamp: datetime) -> bool:
        """Advance the command watermark.

        Older or equal timestamps are ignored.

        Returns:
            bool: True if the watermark moved.
        """
        timestamp = _aware(timestamp)
        with self._lock:
            current = self.get_watermark(repo, pr_number)
            if current is not None and _aware(current) >= timestamp:
                logger.debug(
                    f"Ignoring watermark {timestamp.isoformat()} for {repo}#{pr_number}, "
                    f"current is {current.isoformat()}"
                )
                return False
            self.repository.put_watermark(
                CommandWatermark(
                    repo_id=repo.full_name, pr_number=pr_number, last_processed=timestamp
                )
            )
        logger.info(f"Watermark for {repo}#{pr_number} set to {timestamp.isoformat()}")
        return True
