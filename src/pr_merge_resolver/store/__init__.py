"""Persistence of resolutions and command watermarks."""

from pr_merge_resolver.store.repository import (
    InMemoryResolutionRepository,
    ResolutionRepository,
    SQLiteResolutionRepository,
)
from pr_merge_resolver.store.resolution_store import ResolutionStore

__all__ = [
    "InMemoryResolutionRepository",
    "ResolutionRepository",
    "ResolutionStore",
    "SQLiteResolutionRepository",
]
