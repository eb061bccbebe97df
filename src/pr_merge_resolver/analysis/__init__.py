"""Conflict analysis: detection strategies, three-way diff and reference extraction."""

from pr_merge_resolver.analysis.conflict_detector import ConflictDetector, DetectionResult
from pr_merge_resolver.analysis.strategies import (
    ContentDiffStrategy,
    DetectionStrategy,
    GitMergeStrategy,
)

__all__ = [
    "ConflictDetector",
    "ContentDiffStrategy",
    "DetectionResult",
    "DetectionStrategy",
    "GitMergeStrategy",
]
