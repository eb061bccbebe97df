"""Unit tests for detection strategies and the git runner."""

import subprocess
from collections.abc import Callable
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from pr_merge_resolver.analysis.git_workspace import (
    GitRunner,
    auth_environment,
    temporary_workspace,
)
from pr_merge_resolver.analysis.strategies import (
    ContentDiffStrategy,
    GitMergeStrategy,
    web_url_from_api,
)
from pr_merge_resolver.core.exceptions import (
    ContentFetchError,
    GitCommandError,
    GitHubAPIError,
    StrategyUnavailableError,
)
from pr_merge_resolver.core.models import FileVersion, PullRequestInfo, RepoRef

RUN = "pr_merge_resolver.analysis.git_workspace.subprocess.run"


def _completed(returncode: int = 0, stdout: str = "", stderr: str = "") -> Mock:
    result = Mock(spec=subprocess.CompletedProcess)
    result.returncode = returncode
    result.stdout = stdout
    result.stderr = stderr
    return result


def _git_responder(
    merge_rc: int = 1, unmerged: str = "", fail_on: str | None = None
) -> Callable[..., Mock]:
    def respond(command: list[str], **_kwargs: object) -> Mock:
        args = command[1:]
        if fail_on and fail_on in args:
            return _completed(128, stderr=f"fatal: {fail_on} failed")
        if "merge" in args and "--no-commit" in args:
            return _completed(merge_rc, stderr="CONFLICT (content)")
        if args[:1] == ["diff"]:
            return _completed(stdout=unmerged)
        return _completed()

    return respond


class TestGitWorkspace:
    """Scratch directory and subprocess wrapper."""

    def test_temporary_workspace_removed_after_error(self) -> None:
        with pytest.raises(RuntimeError), temporary_workspace() as workdir:
            created = workdir
            assert workdir.is_dir()
            raise RuntimeError("boom")
        assert not created.exists()

    def test_auth_environment_keeps_token_out_of_argv(self) -> None:
        env = auth_environment("s3cret")
        assert env["GIT_CONFIG_KEY_0"] == "http.extraHeader"
        assert env["GIT_CONFIG_VALUE_0"].startswith("Authorization: Basic ")
        assert "s3cret" not in env["GIT_CONFIG_VALUE_0"]
        assert auth_environment(None) == {}

    def test_runner_raises_on_nonzero_exit(self, tmp_path: Path) -> None:
        with (
            patch(RUN, return_value=_completed(1, stderr="bad ref")),
            pytest.raises(GitCommandError, match="bad ref"),
        ):
            GitRunner(tmp_path).run("checkout", "nope")

    def test_runner_unchecked_returns_result(self, tmp_path: Path) -> None:
        with patch(RUN, return_value=_completed(1)) as mock_run:
            result = GitRunner(tmp_path, env={"X": "1"}).run("merge", "--abort", check=False)
        assert result.returncode == 1
        kwargs = mock_run.call_args.kwargs
        assert kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"
        assert kwargs["env"]["X"] == "1"
        assert kwargs["timeout"] == 120

    def test_runner_timeout(self, tmp_path: Path) -> None:
        with (
            patch(RUN, side_effect=subprocess.TimeoutExpired(["git"], 5)),
            pytest.raises(GitCommandError, match="timed out"),
        ):
            GitRunner(tmp_path, timeout=5).run("fetch")


class TestGitMergeStrategy:
    """Detection through a scratch merge."""

    def test_web_url_from_api(self) -> None:
        assert web_url_from_api("https://api.github.com") == "https://github.com"
        assert web_url_from_api("https://ghe.example.com/api/v3/") == "https://ghe.example.com"

    def test_clean_merge_reports_nothing(self, repo: RepoRef, pr_info: PullRequestInfo) -> None:
        with patch(RUN, side_effect=_git_responder(merge_rc=0)):
            assert GitMergeStrategy(token=None).detect(repo, pr_info, ["a.py"]) == []

    def test_unmerged_paths_filtered_to_modified(
        self, repo: RepoRef, pr_info: PullRequestInfo
    ) -> None:
        responder = _git_responder(unmerged="b.py\na.py\nlockfile\n")
        with patch(RUN, side_effect=responder) as mock_run:
            found = GitMergeStrategy(token="s3cret").detect(
                repo, pr_info, ["a.py", "b.py", "c.py"]
            )

        assert found == ["a.py", "b.py"]
        commands = [call.args[0][1:] for call in mock_run.call_args_list]
        fetch = next(c for c in commands if c[0] == "fetch")
        assert "+refs/pull/42/head:refs/remotes/origin/pr-42-head" in fetch
        assert ["merge", "--abort"] in commands
        assert all("s3cret" not in arg for c in commands for arg in c)

    def test_fetch_failure_is_unavailable(self, repo: RepoRef, pr_info: PullRequestInfo) -> None:
        with (
            patch(RUN, side_effect=_git_responder(fail_on="fetch")),
            pytest.raises(StrategyUnavailableError, match="scratch repository"),
        ):
            GitMergeStrategy(token=None).detect(repo, pr_info, ["a.py"])

    def test_failed_merge_without_unmerged_paths_is_unavailable(
        self, repo: RepoRef, pr_info: PullRequestInfo
    ) -> None:
        with (
            patch(RUN, side_effect=_git_responder(unmerged="")),
            pytest.raises(StrategyUnavailableError, match="without unmerged paths"),
        ):
            GitMergeStrategy(token=None).detect(repo, pr_info, ["a.py"])


class TestContentDiffStrategy:
    """Detection through fetched content."""

    @staticmethod
    def _versions(base: str | None, ours: str | None, theirs: str | None) -> tuple:
        return (
            FileVersion(content=base, sha="mb", ref="merge-base"),
            FileVersion(content=ours, sha="h", ref="feature"),
            FileVersion(content=theirs, sha="b", ref="main"),
        )

    def test_reports_conflicting_files_and_skips_binaries(
        self, repo: RepoRef, pr_info: PullRequestInfo, github: Mock, fetcher: Mock
    ) -> None:
        github.get_merge_base.return_value = "mb"
        contents = {
            "clash.txt": self._versions("x\n", "y\n", "z\n"),
            "clean.txt": self._versions("x\n", "y\n", "x\n"),
        }
        fetcher.fetch_three_way.side_effect = lambda _r, name, *_a, **_k: contents[name]

        found = ContentDiffStrategy(github, fetcher).detect(
            repo, pr_info, ["clash.txt", "logo.png", "clean.txt"]
        )

        assert found == ["clash.txt"]
        assert fetcher.fetch_three_way.call_count == 2

    def test_merge_base_failure_flags_every_text_file(
        self, repo: RepoRef, pr_info: PullRequestInfo, github: Mock, fetcher: Mock
    ) -> None:
        github.get_merge_base.side_effect = GitHubAPIError("nope", status_code=404)

        found = ContentDiffStrategy(github, fetcher).detect(
            repo, pr_info, ["a.py", "b.gif", "c.json"]
        )

        assert found == ["a.py", "c.json"]
        fetcher.fetch_three_way.assert_not_called()

    def test_unreadable_or_missing_versions_count_as_conflicting(
        self, repo: RepoRef, pr_info: PullRequestInfo, github: Mock, fetcher: Mock
    ) -> None:
        github.get_merge_base.return_value = "mb"
        fetcher.fetch_three_way.side_effect = [
            ContentFetchError("boom"),
            self._versions(None, "new\n", "new\n"),
        ]

        found = ContentDiffStrategy(github, fetcher).detect(repo, pr_info, ["a.py", "b.py"])

        assert found == ["a.py", "b.py"]

    def test_diff_errors_count_as_conflicting(
        self, repo: RepoRef, pr_info: PullRequestInfo, github: Mock, fetcher: Mock
    ) -> None:
        github.get_merge_base.return_value = "mb"
        fetcher.fetch_three_way.return_value = self._versions("a", "b", "c")

        with patch(
            "pr_merge_resolver.analysis.strategies.has_conflict",
            side_effect=RecursionError("deep"),
        ):
            found = ContentDiffStrategy(github, fetcher).detect(repo, pr_info, ["a.py"])

        assert found == ["a.py"]
