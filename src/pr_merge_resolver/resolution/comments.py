"""Markdown bodies for resolution and apply-outcome comments."""

import difflib
from pathlib import PurePosixPath

from pr_merge_resolver.analysis.three_way import RegionKind, diff3_regions, split_lines
from pr_merge_resolver.core.models import ResolvedFile

APPLY_ALL_HINT = (
    "Comment `apply all resolutions` to apply every proposed resolution on this pull "
    "request. Only the pull request author and repository collaborators can do this."
)

_LANGUAGES = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "jsx",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".json": "json",
    ".yml": "yaml",
    ".yaml": "yaml",
    ".toml": "toml",
    ".md": "markdown",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
    ".rb": "ruby",
    ".sh": "bash",
    ".css": "css",
    ".html": "html",
}


def language_for(filename: str) -> str:
    """Code fence language hint for a filename, empty when unknown."""
    return _LANGUAGES.get(PurePosixPath(filename).suffix.lower(), "")


def fenced(text: str, language: str = "") -> str:
    """Wrap text in a code fence longer than any backtick run inside it."""
    longest = 0
    run = 0
    for ch in text:
        run = run + 1 if ch == "`" else 0
        longest = max(longest, run)
    fence = "`" * max(3, longest + 1)
    body = text if text.endswith("\n") else text + "\n"
    return f"{fence}{language}\n{body}{fence}"


def render_conflict_view(
    base: str, ours: str, theirs: str, ours_label: str, theirs_label: str
) -> str:
    """Render the merge the way git shows it with ``merge.conflictStyle=diff3``.

    Regions changed by one side only are shown merged; conflicting regions get
    ``<<<<<<<``, ``|||||||``, ``=======`` and ``>>>>>>>`` markers.
    """
    lines: list[str] = []
    for region in diff3_regions(split_lines(base), split_lines(ours), split_lines(theirs)):
        if region.kind is RegionKind.CONFLICT:
            lines.append(f"<<<<<<< {ours_label} (Your branch)")
            lines.extend(region.ours)
            lines.append("||||||| BASE")
            lines.extend(region.base)
            lines.append("=======")
            lines.extend(region.theirs)
            lines.append(f">>>>>>> {theirs_label} (Target branch)")
        elif region.kind is RegionKind.THEIRS:
            lines.extend(region.theirs)
        else:
            lines.extend(region.ours)
    return "\n".join(lines)


def unified_diff(before: str, after: str, before_label: str, after_label: str) -> str:
    """Unified diff between two texts, empty when they are identical."""
    diff = difflib.unified_diff(
        before.splitlines(keepends=True),
        after.splitlines(keepends=True),
        fromfile=before_label,
        tofile=after_label,
    )
    return "".join(line if line.endswith("\n") else line + "\n" for line in diff)


def build_resolution_comment(resolved: ResolvedFile) -> str:
    """Summary comment for one proposed resolution.

    Contains the conflict view, the proposed content and the changes the
    resolution makes relative to each branch.
    """
    record = resolved.record
    filename = resolved.filename
    base = record.base.content or ""
    ours = record.ours.content or ""
    theirs = record.theirs.content or ""
    language = language_for(filename)

    sections = [
        f"### Resolution Summary for `{filename}`",
        "",
        f"Detected by `{record.strategy}`. Base `{record.base.sha[:7]}`, "
        f"`{record.ours.ref}` at `{record.ours.sha[:7]}`, "
        f"`{record.theirs.ref}` at `{record.theirs.sha[:7]}`.",
        "",
        "<details>",
        "<summary>Conflict</summary>",
        "",
        fenced(render_conflict_view(base, ours, theirs, record.ours.ref, record.theirs.ref)),
        "",
        "</details>",
        "",
        "#### Proposed resolution",
        "",
        fenced(resolved.resolved_code, language),
    ]

    for label, content in ((record.ours.ref, ours), (record.theirs.ref, theirs)):
        diff = unified_diff(content, resolved.resolved_code, label, "resolution")
        sections.extend(["", f"#### Changes from `{label}`", ""])
        sections.append(fenced(diff, "diff") if diff else "_No changes._")

    sections.extend(["", APPLY_ALL_HINT])
    return "\n".join(sections)


def nothing_pending_comment() -> str:
    return "No pending conflict resolutions to apply. Resolutions must be confirmed first."


def all_applied_comment(total: int) -> str:
    return f"✅ Successfully applied all {total} conflict resolutions."


def partially_applied_comment(succeeded: int, total: int) -> str:
    return (
        f"⚠️ Applied {succeeded} out of {total} conflict resolutions. "
        "The remaining resolutions could not be written and were left unapplied."
    )


def none_applied_comment(total: int) -> str:
    return f"❌ Failed to apply any of the {total} conflict resolutions."


def branch_update_failed_comment() -> str:
    return (
        "❌ Error updating PR branch with resolved conflicts. "
        "No changes were made to the pull request branch."
    )


def unexpected_error_comment() -> str:
    return "❌ An error occurred while trying to apply conflict resolutions."


def merge_conflict_detected_comment(files: list[str]) -> str:
    """Notification posted when a pull request stops being mergeable."""
    lines = ["⚠️ This pull request has merge conflicts with the target branch."]
    if files:
        lines.extend(["", "Conflicting files:", ""])
        lines.extend(f"- `{filename}`" for filename in files)
    return "\n".join(lines)


def merge_conflict_cleared_comment() -> str:
    return "✅ Merge conflicts have been resolved. This pull request can be merged."
