"""PR Merge Resolver.

Detects textual merge conflicts on GitHub pull requests, collects proposed
resolutions from a resolver service and applies confirmed resolutions back to
the pull request branch.
"""

__version__ = "0.1.0"
__author__ = "VirtualAgentics"
__email__ = "contact@virtualagentics.com"

from .analysis.conflict_detector import ConflictDetector
from .apply.coordinator import ApplyCoordinator
from .commands.interpreter import CommandInterpreter
from .config.runtime_config import RuntimeConfig
from .content.fetcher import ContentFetcher
from .core.models import (
    CommandCheckResult,
    CommitInfo,
    FileType,
    RepoRef,
    Resolution,
    ResolvedFile,
)
from .integrations.github import GitHubClient
from .resolution.coordinator import ResolutionCoordinator
from .store.resolution_store import ResolutionStore
from .workflow import MergeConflictWorkflow

__all__ = [
    "ApplyCoordinator",
    "CommandCheckResult",
    "CommandInterpreter",
    "CommitInfo",
    "ConflictDetector",
    "ContentFetcher",
    "FileType",
    "GitHubClient",
    "MergeConflictWorkflow",
    "RepoRef",
    "Resolution",
    "ResolutionCoordinator",
    "ResolutionStore",
    "ResolvedFile",
    "RuntimeConfig",
]
