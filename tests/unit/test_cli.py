"""Unit tests for CLI commands in pr_merge_resolver.cli.main."""

import os
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import MagicMock, Mock, patch

import click
import pytest
from click.testing import CliRunner
from conftest import make_resolution

from pr_merge_resolver.analysis.conflict_detector import DetectionResult
from pr_merge_resolver.cli.main import (
    cli,
    load_runtime_config,
    sanitize_for_output,
    validate_github_repo,
    validate_github_username,
    validate_pr_number,
)
from pr_merge_resolver.core.exceptions import GitHubAPIError
from pr_merge_resolver.core.models import (
    CommandCheckResult,
    ConflictRecord,
    FileVersion,
    PullRequestInfo,
    RepoRef,
    ResolvedFile,
)
from pr_merge_resolver.workflow import SynchronizeOutcome

PR_ARGS = ["--owner", "octo", "--repo", "widgets", "--pr", "42"]


@pytest.fixture(autouse=True)
def clean_env() -> Iterator[None]:
    """Keep MR_* variables from the developer's shell out of CLI runs."""
    with (
        patch.dict(os.environ, {}, clear=True),
        patch("pr_merge_resolver.cli.main.configure_logging"),
    ):
        yield


@pytest.fixture
def workflow() -> Iterator[MagicMock]:
    """Workflow returned by MergeConflictWorkflow.from_config."""
    with patch("pr_merge_resolver.cli.main.MergeConflictWorkflow") as workflow_cls:
        yield workflow_cls.from_config.return_value


def test_validate_pr_number_rejects_non_positive() -> None:
    with pytest.raises(click.BadParameter, match="PR number must be positive"):
        validate_pr_number(Mock(), Mock(), 0)


def test_sanitize_for_output_redacts_control_chars() -> None:
    assert sanitize_for_output("safe-value") == "safe-value"
    assert sanitize_for_output("\x1b[31mred") == "[REDACTED]"


@pytest.mark.parametrize("value", ["bad/user", "-lead", "trail-", "dou--ble", "   ", "a" * 40])
def test_validate_github_username_rejects(value: str) -> None:
    with pytest.raises(click.BadParameter):
        validate_github_username(Mock(), Mock(), value)


@pytest.mark.parametrize("value", ["repo/with/slash", "..", "mirror.git", "r" * 101])
def test_validate_github_repo_rejects(value: str) -> None:
    with pytest.raises(click.BadParameter):
        validate_github_repo(Mock(), Mock(), value)


def test_validators_accept_valid_names() -> None:
    assert validate_github_username(Mock(), Mock(), "octo-cat") == "octo-cat"
    assert validate_github_repo(Mock(), Mock(), "my_repo.v2") == "my_repo.v2"


def test_invalid_owner_is_usage_error(workflow: MagicMock) -> None:
    result = CliRunner().invoke(cli, ["detect", "--owner", "bad/user", "--repo", "r", "--pr", "1"])
    assert result.exit_code == 2
    workflow.detector.analyze.assert_not_called()


class TestConfigLoading:
    """Configuration precedence for the CLI group."""

    def test_env_overrides_file_and_cli_overrides_env(self, tmp_path: Path) -> None:
        path = tmp_path / "resolver.yaml"
        path.write_text("mergeable:\n  retries: 3\nresolver:\n  url: http://file:1\n")
        env = {"MR_RESOLVER_URL": "http://env:2"}

        with patch.dict(os.environ, env):
            config = load_runtime_config(str(path), log_level="debug")

        assert config.mergeable_retries == 3
        assert config.resolver_url == "http://env:2"
        assert config.log_level == "DEBUG"

    def test_config_error_aborts(self, tmp_path: Path, workflow: MagicMock) -> None:
        result = CliRunner().invoke(
            cli, ["--config", str(tmp_path / "missing.yaml"), "detect", *PR_ARGS]
        )

        assert result.exit_code == 1
        assert "Configuration error" in result.output
        workflow.detector.analyze.assert_not_called()


class TestDetect:
    """The detect command."""

    def test_no_conflicts(self, workflow: MagicMock) -> None:
        workflow.detector.analyze.return_value = DetectionResult()

        result = CliRunner().invoke(cli, ["detect", *PR_ARGS])

        assert result.exit_code == 0
        assert "Detecting conflicts in PR #42 for octo/widgets" in result.output
        assert "No conflicts detected" in result.output
        workflow.detector.analyze.assert_called_once_with(RepoRef("octo", "widgets"), 42)

    def test_lists_conflicting_files(self, workflow: MagicMock) -> None:
        workflow.detector.analyze.return_value = DetectionResult(
            files=["app.py", "cfg.json"], strategy="git-merge"
        )

        result = CliRunner().invoke(cli, ["detect", *PR_ARGS])

        assert result.exit_code == 0
        assert "app.py" in result.output
        assert "cfg.json" in result.output
        assert "Found 2 conflicting files" in result.output

    def test_show_references(self, workflow: MagicMock, pr_info: PullRequestInfo) -> None:
        workflow.detector.analyze.return_value = DetectionResult(
            files=["src/app.js"], strategy="content-diff", pull_request=pr_info
        )
        workflow.resolver.fetcher.fetch_version.return_value = FileVersion(
            content="import x from './lib';\n", sha="abc", ref="feature"
        )

        result = CliRunner().invoke(cli, ["detect", *PR_ARGS, "--show-references"])

        assert result.exit_code == 0
        assert "src/lib" in result.output

    def test_github_error_aborts(self, workflow: MagicMock) -> None:
        workflow.detector.analyze.side_effect = GitHubAPIError("boom", status_code=500)

        result = CliRunner().invoke(cli, ["detect", *PR_ARGS])

        assert result.exit_code == 1
        assert "Error detecting conflicts" in result.output


class TestResolve:
    """The resolve command."""

    def test_nothing_to_resolve(self, workflow: MagicMock) -> None:
        workflow.resolver.resolve.return_value = []

        result = CliRunner().invoke(cli, ["resolve", *PR_ARGS])

        assert result.exit_code == 0
        assert "No resolutions available" in result.output

    def test_publish(self, workflow: MagicMock, conflict_record: ConflictRecord) -> None:
        resolved = [ResolvedFile("src/app.py", "a\nmerged\nc", conflict_record)]
        workflow.resolver.resolve.return_value = resolved
        workflow.resolver.publish.return_value = [make_resolution("src/app.py")]

        result = CliRunner().invoke(cli, ["resolve", *PR_ARGS, "--publish"])

        assert result.exit_code == 0
        assert "src/app.py" in result.output
        assert "Published 1 resolutions on PR #42" in result.output
        workflow.resolver.publish.assert_called_once_with(RepoRef("octo", "widgets"), 42, resolved)

    def test_without_publish_stores_nothing(
        self, workflow: MagicMock, conflict_record: ConflictRecord
    ) -> None:
        workflow.resolver.resolve.return_value = [
            ResolvedFile("src/app.py", "merged", conflict_record)
        ]

        CliRunner().invoke(cli, ["resolve", *PR_ARGS])

        workflow.resolver.publish.assert_not_called()


class TestCheckCommand:
    """The check-command command."""

    def test_no_command(self, workflow: MagicMock) -> None:
        workflow.interpreter.check_command.return_value = CommandCheckResult.none()

        result = CliRunner().invoke(cli, ["check-command", *PR_ARGS])

        assert result.exit_code == 0
        assert "No new apply-all command" in result.output

    def test_command_found(self, workflow: MagicMock) -> None:
        workflow.interpreter.check_command.return_value = CommandCheckResult(
            apply_all=True,
            comment_id=77,
            user="alice",
            command_timestamp=datetime(2024, 1, 1, 10, 3, tzinfo=UTC),
        )

        result = CliRunner().invoke(cli, ["check-command", *PR_ARGS])

        assert result.exit_code == 0
        assert "Comment: 77" in result.output
        assert "User: alice" in result.output


class TestApplyAll:
    """The apply-all command."""

    def test_success(self, workflow: MagicMock) -> None:
        workflow.applier.apply_all.return_value = True

        result = CliRunner().invoke(cli, ["apply-all", *PR_ARGS])

        assert result.exit_code == 0
        assert "Resolutions applied to PR #42" in result.output
        workflow.process_commands.assert_not_called()

    def test_failure_exits_nonzero(self, workflow: MagicMock) -> None:
        workflow.applier.apply_all.return_value = False

        result = CliRunner().invoke(cli, ["apply-all", *PR_ARGS])

        assert result.exit_code == 1
        assert "were not applied" in result.output

    def test_from_comments_without_command(self, workflow: MagicMock) -> None:
        workflow.process_commands.return_value = None

        result = CliRunner().invoke(cli, ["apply-all", *PR_ARGS, "--from-comments"])

        assert result.exit_code == 0
        assert "No new apply-all command" in result.output
        workflow.applier.apply_all.assert_not_called()


class TestNotify:
    """The notify command."""

    def test_mergeable(self, workflow: MagicMock) -> None:
        workflow.handle_synchronize.return_value = SynchronizeOutcome(True, [], [])

        result = CliRunner().invoke(cli, ["notify", *PR_ARGS])

        assert "PR #42 is mergeable" in result.output

    def test_conflicts(self, workflow: MagicMock) -> None:
        workflow.handle_synchronize.return_value = SynchronizeOutcome(
            False, ["a.py", "b.py"], [make_resolution("a.py")]
        )

        result = CliRunner().invoke(cli, ["notify", *PR_ARGS, "--no-resolve"])

        assert "has 2 conflicting files, 1 resolutions published" in result.output
        workflow.handle_synchronize.assert_called_once_with(
            RepoRef("octo", "widgets"), 42, auto_resolve=False
        )

    def test_unknown(self, workflow: MagicMock) -> None:
        workflow.handle_synchronize.return_value = SynchronizeOutcome(None, [], [])

        result = CliRunner().invoke(cli, ["notify", *PR_ARGS])

        assert "mergeability unknown" in result.output
