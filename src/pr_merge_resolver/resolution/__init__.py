"""Resolution proposal and publishing."""

from pr_merge_resolver.resolution.coordinator import ResolutionCoordinator

__all__ = ["ResolutionCoordinator"]
