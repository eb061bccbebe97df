"""Advisory locks serializing work on one pull request."""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field

from pr_merge_resolver.core.models import RepoRef

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Entry:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class PullRequestLocks:
    """Registry of one re-entrant lock per (repository, pull request) pair.

    A thread already holding a pull request's lock can take it again, so a
    command handler can hold it across checking, applying and recording.
    Entries live only while some thread holds or waits for them.

    Example:
        >>> locks = PullRequestLocks()
        >>> with locks.hold(repo, 42):
        ...     coordinator.apply_all(repo, 42)
    """

    def __init__(self) -> None:
        self._entries: dict[tuple[str, int], _Entry] = {}
        self._registry_lock = threading.Lock()

    @property
    def active(self) -> int:
        """Number of pull requests whose lock is held or awaited."""
        with self._registry_lock:
            return len(self._entries)

    def lock_for(self, repo: RepoRef, pr_number: int) -> threading.RLock:
        """Return the lock currently in use for a pull request.

        When nobody holds or waits for it, a fresh unregistered lock is returned.
        """
        with self._registry_lock:
            entry = self._entries.get((repo.full_name, pr_number))
            return entry.lock if entry else threading.RLock()

    @contextmanager
    def hold(self, repo: RepoRef, pr_number: int) -> Iterator[None]:
        """Hold the pull request's lock for the duration of the block."""
        key = (repo.full_name, pr_number)
        with self._registry_lock:
            entry = self._entries.setdefault(key, _Entry())
            entry.users += 1
        try:
            if not entry.lock.acquire(blocking=False):
                logger.info(f"Waiting for running apply on {repo}#{pr_number}")
                entry.lock.acquire()
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            with self._registry_lock:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]
