"""Scoped scratch repositories and a timeout-bound git runner."""

import base64
import logging
import os
import shutil
import subprocess  # nosec B404  # Required for git execution with fixed argument lists
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from pr_merge_resolver.core.exceptions import GitCommandError

logger = logging.getLogger(__name__)


@contextmanager
def temporary_workspace(prefix: str = "merge-check-") -> Iterator[Path]:
    """Create a temporary directory that is removed on exit, even after errors.

    Yields:
        Path: The directory path.

    Example:
        >>> with temporary_workspace() as workdir:
        ...     GitRunner(workdir).run("init")
        # Directory is removed
    """
    path = Path(tempfile.mkdtemp(prefix=prefix))
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as e:
            logger.warning(f"Failed to remove temporary workspace {path}: {e}")


def auth_environment(token: str | None) -> dict[str, str]:
    """Git config entries, passed through the environment, that authenticate HTTPS fetches.

    The token never appears in argv or in the scratch repository's config file.
    """
    if not token:
        return {}
    basic = base64.b64encode(f"x-access-token:{token}".encode()).decode("ascii")
    return {
        "GIT_CONFIG_COUNT": "1",
        "GIT_CONFIG_KEY_0": "http.extraHeader",
        "GIT_CONFIG_VALUE_0": f"Authorization: Basic {basic}",
    }


class GitRunner:
    """Runs git commands inside one working directory."""

    def __init__(
        self,
        cwd: Path,
        timeout: int = 120,
        env: dict[str, str] | None = None,
        git_binary: str = "git",
    ) -> None:
        self.cwd = cwd
        self.timeout = timeout
        self.git_binary = git_binary
        self._env = {
            **os.environ,
            "GIT_TERMINAL_PROMPT": "0",
            "LC_ALL": "C",
            **(env or {}),
        }

    def run(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        """Run ``git <args>``.

        Args:
            *args: Git arguments.
            check: Raise GitCommandError on a non-zero exit code.

        Returns:
            subprocess.CompletedProcess[str]: The finished process.

        Raises:
            GitCommandError: On timeout, missing binary, or (with ``check``) non-zero exit.
        """
        command = [self.git_binary, *args]
        logger.debug(f"Running git {' '.join(args)} in {self.cwd}")
        try:
            result = subprocess.run(  # nosec B603  # noqa: S603  # fixed git argv, no shell
                command,
                cwd=self.cwd,
                env=self._env,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise GitCommandError(
                f"git {args[0] if args else ''} timed out after {self.timeout}s",
                details={"args": list(args), "timeout": self.timeout},
            ) from e
        except (OSError, subprocess.SubprocessError) as e:
            raise GitCommandError(
                f"git subprocess execution failed: {e}", details={"args": list(args)}
            ) from e

        if check and result.returncode != 0:
            stderr = result.stderr.strip() if result.stderr else "Unknown error"
            raise GitCommandError(
                f"git {args[0] if args else ''} failed with exit code {result.returncode}: "
                f"{stderr}",
                details={"args": list(args), "exit_code": result.returncode, "stderr": stderr},
            )
        return result
