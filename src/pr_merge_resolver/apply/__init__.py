"""Transactional application of confirmed resolutions."""

from pr_merge_resolver.apply.coordinator import ApplyCoordinator
from pr_merge_resolver.apply.locks import PullRequestLocks
from pr_merge_resolver.apply.state_machine import ApplyRun, ApplyState, transition

__all__ = ["ApplyCoordinator", "ApplyRun", "ApplyState", "PullRequestLocks", "transition"]
