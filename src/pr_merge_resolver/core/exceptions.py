"""Exception hierarchy for the merge resolver.

Every error carries an optional ``details`` mapping with structured context
(repository, PR number, filename, status code) for logging and CLI output.
"""

from typing import Any


class MergeResolverError(Exception):
    """Base class for all merge resolver errors."""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        """Initialize the error.

        Args:
            message: Human readable description.
            details: Optional structured context for the failure.
        """
        super().__init__(message)
        self.details = details or {}


class GitHubAPIError(MergeResolverError):
    """A GitHub REST call failed or returned an unexpected payload."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the error with the HTTP status code when one was received."""
        super().__init__(message, details=details)
        self.status_code = status_code

    @property
    def not_found(self) -> bool:
        """True when GitHub answered 404."""
        return self.status_code == 404


class ContentFetchError(MergeResolverError):
    """File content or commit metadata could not be read at a revision."""


class GitCommandError(MergeResolverError):
    """A local git subprocess failed or timed out."""


class StrategyUnavailableError(MergeResolverError):
    """A detection strategy could not produce an answer and the next one should run."""


class ResolverOracleError(MergeResolverError):
    """The resolver service failed or answered with a non-success status."""


class ResolutionStoreError(MergeResolverError):
    """The resolution repository rejected a read or write."""
