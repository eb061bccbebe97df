"""Command-line interface for pr-merge-resolver."""

import hashlib
import logging
import re
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from pr_merge_resolver.analysis.references import extract_referenced_paths
from pr_merge_resolver.config.exceptions import ConfigError
from pr_merge_resolver.config.runtime_config import RuntimeConfig
from pr_merge_resolver.content.fetcher import classify
from pr_merge_resolver.core.exceptions import MergeResolverError
from pr_merge_resolver.core.models import RepoRef
from pr_merge_resolver.workflow import MergeConflictWorkflow

console = Console()
logger = logging.getLogger(__name__)

MAX_GITHUB_USERNAME_LENGTH = 39
MAX_GITHUB_REPO_LENGTH = 100

_INJECTION_PATTERN = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_for_output(value: str) -> str:
    """Return ``value`` unchanged, or "[REDACTED]" when it holds control characters.

    Only a length and SHA-256 digest of a redacted value reach the debug log.
    """
    if _INJECTION_PATTERN.search(value):
        value_hash = hashlib.sha256(value.encode("utf-8")).hexdigest()
        logger.debug(
            "Redacting value containing control characters: length=%d, hash=%s",
            len(value),
            value_hash,
        )
        return "[REDACTED]"
    return value


def validate_github_username(ctx: click.Context, param: click.Parameter, value: str) -> str:
    """Click callback for ``--owner``.

    Accepts 1 to 39 alphanumerics with single inner hyphens, as GitHub does.

    Raises:
        click.BadParameter: If validation fails.
    """
    if not isinstance(value, str) or not value.strip():
        raise click.BadParameter("username required", param=param, ctx=ctx)

    if len(value) > MAX_GITHUB_USERNAME_LENGTH:
        raise click.BadParameter(
            f"username too long (max {MAX_GITHUB_USERNAME_LENGTH})", param=param, ctx=ctx
        )

    if not re.fullmatch(r"[A-Za-z0-9]([A-Za-z0-9]|-(?=[A-Za-z0-9]))*", value):
        raise click.BadParameter(
            "username contains invalid characters or format; "
            "allowed: A-Za-z0-9 and hyphen, cannot start/end with hyphen, "
            "no consecutive hyphens",
            param=param,
            ctx=ctx,
        )
    return value


def validate_github_repo(ctx: click.Context, param: click.Parameter, value: str) -> str:
    """Validate a GitHub repository name.

    Letters, digits, dot, underscore and hyphen; at most 100 characters; not
    ``.``, ``..`` or ending in ``.git``.

    Raises:
        click.BadParameter: If validation fails.
    """
    if not isinstance(value, str) or not value.strip():
        raise click.BadParameter("repository name required", param=param, ctx=ctx)

    if len(value) > MAX_GITHUB_REPO_LENGTH:
        raise click.BadParameter(
            f"repository name too long (max {MAX_GITHUB_REPO_LENGTH})", param=param, ctx=ctx
        )

    if not re.fullmatch(r"[A-Za-z0-9._-]+", value):
        raise click.BadParameter(
            "repository name contains invalid characters; "
            "allowed: letters, digits, dot, underscore, hyphen",
            param=param,
            ctx=ctx,
        )

    if value in (".", ".."):
        raise click.BadParameter("repository name cannot be '.' or '..'", param=param, ctx=ctx)

    if value.lower().endswith(".git"):
        raise click.BadParameter("repository name cannot end with '.git'", param=param, ctx=ctx)

    return value


def validate_pr_number(ctx: click.Context, param: click.Parameter, value: int) -> int:
    """Click callback rejecting pull request numbers below 1."""
    if value < 1:
        raise click.BadParameter("PR number must be positive (>= 1)", ctx=ctx, param=param)
    return value


def load_runtime_config(config_path: str | None, **overrides: Any) -> RuntimeConfig:  # noqa: ANN401
    """Build configuration: file (if given), then environment, then CLI overrides.

    Environment variables that are set override file values.

    Raises:
        ConfigError: If any source is invalid.
    """
    env_config = RuntimeConfig.from_env()
    if not config_path:
        return env_config.merge_with_cli(**overrides)

    file_config = RuntimeConfig.from_file(Path(config_path))
    defaults = RuntimeConfig.from_defaults().to_dict()
    env_values = env_config.to_dict()
    env_overrides = {
        name: getattr(env_config, name)
        for name, value in env_values.items()
        if value != defaults[name]
    }
    return file_config.merge_with_cli(**env_overrides).merge_with_cli(**overrides)


def configure_logging(config: RuntimeConfig) -> None:
    """Route log records to stderr or the configured log file."""
    log_handler = (
        logging.FileHandler(config.log_file) if config.log_file else logging.StreamHandler()
    )
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[log_handler],
        force=True,
    )


def pr_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Attach the ``--owner``, ``--repo`` and ``--pr`` options."""
    func = click.option(
        "--pr", required=True, type=int, callback=validate_pr_number, help="Pull request number"
    )(func)
    func = click.option(
        "--repo", required=True, callback=validate_github_repo, help="Repository name"
    )(func)
    func = click.option(
        "--owner", required=True, callback=validate_github_username, help="Repository owner"
    )(func)
    return func


@click.group()
@click.version_option(version="0.1.0")
@click.option("--config", "config_path", type=str, help="Path to a YAML or TOML config file")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Logging level (default: INFO)",
)
@click.option("--log-file", type=str, help="Write logs to this file instead of stderr")
@click.option("--database", type=str, help="SQLite database for stored resolutions")
@click.option("--resolver-url", type=str, help="Resolver service base URL")
@click.option("--git/--no-git", "git_enabled", default=None, help="Try the git merge strategy")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: str | None,
    log_level: str | None,
    log_file: str | None,
    database: str | None,
    resolver_url: str | None,
    git_enabled: bool | None,
) -> None:
    """Detect merge conflicts on pull requests and apply confirmed resolutions.

    Configuration precedence: CLI flags > environment variables > config file > defaults
    """
    try:
        config = load_runtime_config(
            config_path,
            log_level=log_level,
            log_file=log_file,
            database_path=database,
            resolver_url=resolver_url,
            git_enabled=git_enabled,
        )
        configure_logging(config)
    except ConfigError as e:
        console.print(f"[red]❌ Configuration error: {e}[/red]")
        raise click.Abort() from e

    ctx.ensure_object(dict)
    ctx.obj["config"] = config


def _workflow(ctx: click.Context) -> MergeConflictWorkflow:
    workflow = ctx.obj.get("workflow")
    if workflow is None:
        workflow = MergeConflictWorkflow.from_config(ctx.obj["config"])
        ctx.obj["workflow"] = workflow
    return workflow


def _repo(owner: str, repo: str) -> RepoRef:
    return RepoRef(owner=owner, name=repo)


@cli.command()
@pr_options
@click.option(
    "--show-references", is_flag=True, help="List files imported by each conflicting file"
)
@click.pass_context
def detect(ctx: click.Context, owner: str, repo: str, pr: int, show_references: bool) -> None:
    """List the files of a pull request that conflict with the target branch."""
    repo_ref = _repo(owner, repo)
    workflow = _workflow(ctx)
    console.print(
        f"Detecting conflicts in PR #{pr} for "
        f"{sanitize_for_output(owner)}/{sanitize_for_output(repo)}"
    )

    try:
        result = workflow.detector.analyze(repo_ref, pr)
    except MergeResolverError as e:
        console.print(f"❌ Error detecting conflicts: {e}")
        logger.exception("Failed to detect conflicts")
        raise click.Abort() from e

    if not result.files:
        console.print("✅ No conflicts detected")
        return

    table = Table(title=f"Conflicting files ({result.strategy})")
    table.add_column("File", style="cyan")
    table.add_column("Type", style="yellow")
    if show_references:
        table.add_column("References", style="magenta")

    for filename in result.files:
        row = [filename, classify(filename).value]
        if show_references:
            row.append(", ".join(_references(workflow, repo_ref, result, filename)) or "-")
        table.add_row(*row)

    console.print(table)
    console.print(f"\n📊 Found {len(result.files)} conflicting files")


def _references(
    workflow: MergeConflictWorkflow, repo: RepoRef, result: Any, filename: str  # noqa: ANN401
) -> list[str]:
    pr = result.pull_request
    if pr is None:
        return []
    try:
        version = workflow.resolver.fetcher.fetch_version(repo, filename, pr.head.sha, pr.head.ref)
    except MergeResolverError as e:
        logger.warning(f"Could not read {filename} for references: {e}")
        return []
    if version.content is None:
        return []
    return extract_referenced_paths(filename, version.content)


@cli.command()
@pr_options
@click.option("--publish", is_flag=True, help="Store resolutions and post summary comments")
@click.pass_context
def resolve(ctx: click.Context, owner: str, repo: str, pr: int, publish: bool) -> None:
    """Request resolutions for every conflicting file of a pull request."""
    repo_ref = _repo(owner, repo)
    workflow = _workflow(ctx)

    try:
        resolved = workflow.resolver.resolve(repo_ref, pr)
    except MergeResolverError as e:
        console.print(f"❌ Error resolving conflicts: {e}")
        logger.exception("Failed to resolve conflicts")
        raise click.Abort() from e

    if not resolved:
        console.print("No resolutions available")
        return

    table = Table(title="Proposed resolutions")
    table.add_column("File", style="cyan")
    table.add_column("Strategy", style="yellow")
    table.add_column("Lines", style="blue", justify="right")
    for item in resolved:
        table.add_row(
            item.filename, item.record.strategy, str(len(item.resolved_code.splitlines()))
        )
    console.print(table)

    if publish:
        stored = workflow.resolver.publish(repo_ref, pr, resolved)
        console.print(f"📝 Published {len(stored)} resolutions on PR #{pr}")


@cli.command("check-command")
@pr_options
@click.pass_context
def check_command(ctx: click.Context, owner: str, repo: str, pr: int) -> None:
    """Look for a new authorized apply-all command (confirms resolutions when found)."""
    try:
        result = _workflow(ctx).interpreter.check_command(_repo(owner, repo), pr)
    except MergeResolverError as e:
        console.print(f"❌ Error checking commands: {e}")
        raise click.Abort() from e

    if not result.apply_all:
        console.print("No new apply-all command")
        return

    timestamp = result.command_timestamp.isoformat() if result.command_timestamp else "-"
    console.print(
        Panel(
            f"Comment: {result.comment_id}\nUser: {result.user}\nAt: {timestamp}",
            title="apply-all command",
            border_style="green",
        )
    )


@cli.command("apply-all")
@pr_options
@click.option(
    "--from-comments",
    is_flag=True,
    help="Apply only when a new authorized apply-all comment exists, and record it",
)
@click.pass_context
def apply_all(ctx: click.Context, owner: str, repo: str, pr: int, from_comments: bool) -> None:
    """Apply confirmed resolutions to the pull request branch."""
    repo_ref = _repo(owner, repo)
    workflow = _workflow(ctx)

    if from_comments:
        outcome = workflow.process_commands(repo_ref, pr)
        if outcome is None:
            console.print("No new apply-all command")
            return
        success = outcome
    else:
        success = workflow.applier.apply_all(repo_ref, pr)

    if success:
        console.print(f"✅ Resolutions applied to PR #{pr}")
    else:
        console.print(f"[red]❌ Resolutions were not applied to PR #{pr}[/red]")
        raise SystemExit(1)


@cli.command()
@pr_options
@click.option("--no-resolve", is_flag=True, help="Only label and comment, skip resolution")
@click.pass_context
def notify(ctx: click.Context, owner: str, repo: str, pr: int, no_resolve: bool) -> None:
    """Handle new commits: label conflicts, propose resolutions, or clear the label."""
    try:
        outcome = _workflow(ctx).handle_synchronize(
            _repo(owner, repo), pr, auto_resolve=not no_resolve
        )
    except MergeResolverError as e:
        console.print(f"❌ Error handling PR #{pr}: {e}")
        logger.exception("Failed to handle synchronize")
        raise click.Abort() from e

    if outcome.mergeable is True:
        console.print(f"✅ PR #{pr} is mergeable")
    elif outcome.conflicting_files:
        console.print(
            f"⚠️ PR #{pr} has {len(outcome.conflicting_files)} conflicting files, "
            f"{len(outcome.published)} resolutions published"
        )
    else:
        console.print(f"PR #{pr} mergeability unknown, nothing to do")


if __name__ == "__main__":
    cli()
