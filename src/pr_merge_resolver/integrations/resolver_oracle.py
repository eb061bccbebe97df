"""HTTP client for the resolver service that proposes merged file content.

The service receives the base, ours and theirs content of one file and answers
with ``{"status": "success", "resolved_code": "..."}``. Requests are sent once;
callers decide what to do with a failure.
"""

import logging
from typing import ClassVar

import requests
from requests.adapters import HTTPAdapter

from pr_merge_resolver.core.exceptions import ResolverOracleError
from pr_merge_resolver.core.models import ConflictRecord

logger = logging.getLogger(__name__)


class ResolverOracleClient:
    """Client for the ``/mcr`` merge-conflict-resolution endpoint.

    Context manager (recommended):
        >>> with ResolverOracleClient("http://localhost:5000") as oracle:
        ...     merged = oracle.resolve(record)
    """

    ENDPOINT: ClassVar[str] = "/mcr"
    DEFAULT_TIMEOUT: ClassVar[int] = 120

    def __init__(self, base_url: str, timeout: int = DEFAULT_TIMEOUT) -> None:
        """Initialize the client.

        Args:
            base_url: Resolver service base URL.
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        adapter = HTTPAdapter(
            pool_connections=10,
            pool_maxsize=10,
            max_retries=0,
        )
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def resolve(self, record: ConflictRecord) -> str:
        """Ask the service to merge one file.

        Args:
            record: Three-way content of the conflicting file.

        Returns:
            str: The merged file content.

        Raises:
            ResolverOracleError: On transport errors, non-200 responses, malformed
                payloads or a status other than ``success``.
        """
        payload = {
            "name": record.filename,
            "base_code": record.base.content or "",
            "branch_a_code": record.ours.content or "",
            "branch_b_code": record.theirs.content or "",
            "baseSha": record.base.sha,
            "oursSha": record.ours.sha,
            "theirsSha": record.theirs.sha,
        }
        details = {"filename": record.filename, "url": self.base_url}

        logger.debug(f"Requesting resolution for {record.filename} from {self.base_url}")
        try:
            response = self.session.post(
                f"{self.base_url}{self.ENDPOINT}", json=payload, timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise ResolverOracleError(f"Resolver request failed: {e}", details=details) from e

        if response.status_code != 200:
            raise ResolverOracleError(
                f"Resolver returned status {response.status_code}: {response.text[:200]}",
                details={**details, "status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ResolverOracleError("Resolver returned invalid JSON", details=details) from e

        if not isinstance(data, dict) or data.get("status") != "success":
            status = data.get("status") if isinstance(data, dict) else None
            raise ResolverOracleError(
                f"Resolver did not succeed for {record.filename}: status={status}",
                details={**details, "status": status},
            )

        resolved = data.get("resolved_code")
        if not isinstance(resolved, str):
            raise ResolverOracleError(
                f"Resolver response for {record.filename} has no resolved_code", details=details
            )
        return resolved

    def close(self) -> None:
        """Close the HTTP session."""
        self.session.close()

    def __enter__(self) -> "ResolverOracleClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
