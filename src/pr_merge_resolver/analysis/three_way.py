"""Three-way textual merge analysis.

Lines are aligned against the common ancestor with ``difflib.SequenceMatcher``
and grouped into diff3 regions: stable runs shared by all three versions and
unstable runs where at least one side differs from the base. An unstable run is
a conflict only when both sides changed it and disagree on the result.

JSON files get two refinements:

* Documents with ``dependencies``, ``devDependencies`` or ``peerDependencies``
  maps conflict only when both sides set the same package to different values,
  each different from the base.
* Other JSON documents are compared through a canonical serialization so that
  key order and formatting do not produce conflicts.
"""

import difflib
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pr_merge_resolver.content.fetcher import is_json

logger = logging.getLogger(__name__)

DEPENDENCY_SECTIONS = ("dependencies", "devDependencies", "peerDependencies")


class RegionKind(Enum):
    """How a diff3 region relates to the base."""

    STABLE = "stable"
    OURS = "ours"
    THEIRS = "theirs"
    BOTH_SAME = "both-same"
    CONFLICT = "conflict"


@dataclass(frozen=True, slots=True)
class Diff3Region:
    """A run of lines and the versions of it held by base, ours and theirs."""

    kind: RegionKind
    base: tuple[str, ...]
    ours: tuple[str, ...]
    theirs: tuple[str, ...]


def split_lines(text: str) -> list[str]:
    """Split text on newlines. The empty string has no lines."""
    if text == "":
        return []
    return text.split("\n")


def _matches(base: list[str], other: list[str]) -> dict[int, int]:
    matcher = difflib.SequenceMatcher(a=base, b=other, autojunk=False)
    mapping: dict[int, int] = {}
    for block in matcher.get_matching_blocks():
        for offset in range(block.size):
            mapping[block.a + offset] = block.b + offset
    return mapping


def _classify(base: list[str], ours: list[str], theirs: list[str]) -> RegionKind:
    if ours == base:
        return RegionKind.THEIRS
    if theirs == base:
        return RegionKind.OURS
    if ours == theirs:
        return RegionKind.BOTH_SAME
    return RegionKind.CONFLICT


def diff3_regions(base: list[str], ours: list[str], theirs: list[str]) -> list[Diff3Region]:
    """Split three line sequences into diff3 regions.

    Args:
        base: Lines of the common ancestor.
        ours: Lines of the pull request head.
        theirs: Lines of the target branch.

    Returns:
        list[Diff3Region]: Regions in document order covering every line of each input.
    """
    match_ours = _matches(base, ours)
    match_theirs = _matches(base, theirs)

    regions: list[Diff3Region] = []
    o = a = b = 0

    while True:
        stable = 0
        while (
            o + stable < len(base)
            and match_ours.get(o + stable) == a + stable
            and match_theirs.get(o + stable) == b + stable
        ):
            stable += 1
        if stable:
            lines = tuple(base[o : o + stable])
            regions.append(Diff3Region(RegionKind.STABLE, lines, lines, lines))
            o += stable
            a += stable
            b += stable

        # Next base line that both sides still hold.
        j = o
        while j < len(base) and not (j in match_ours and j in match_theirs):
            j += 1

        if j == len(base):
            base_chunk, ours_chunk, theirs_chunk = base[o:], ours[a:], theirs[b:]
            if base_chunk or ours_chunk or theirs_chunk:
                regions.append(
                    Diff3Region(
                        _classify(base_chunk, ours_chunk, theirs_chunk),
                        tuple(base_chunk),
                        tuple(ours_chunk),
                        tuple(theirs_chunk),
                    )
                )
            return regions

        a_end, b_end = match_ours[j], match_theirs[j]
        base_chunk, ours_chunk, theirs_chunk = base[o:j], ours[a:a_end], theirs[b:b_end]
        regions.append(
            Diff3Region(
                _classify(base_chunk, ours_chunk, theirs_chunk),
                tuple(base_chunk),
                tuple(ours_chunk),
                tuple(theirs_chunk),
            )
        )
        o, a, b = j, a_end, b_end


def has_line_conflict(base: str, ours: str, theirs: str) -> bool:
    """True when a line-level three-way merge has at least one conflicting region."""
    regions = diff3_regions(split_lines(base), split_lines(ours), split_lines(theirs))
    return any(region.kind is RegionKind.CONFLICT for region in regions)


def has_dependency_maps(*documents: Any) -> bool:  # noqa: ANN401
    """True when any document is an object holding a dependency section."""
    return any(
        isinstance(doc, dict) and any(section in doc for section in DEPENDENCY_SECTIONS)
        for doc in documents
    )


def _section(doc: Any, name: str) -> dict[str, Any]:  # noqa: ANN401
    if not isinstance(doc, dict):
        return {}
    value = doc.get(name)
    return value if isinstance(value, dict) else {}


def dependency_conflicts(base: Any, ours: Any, theirs: Any) -> list[tuple[str, str]]:  # noqa: ANN401
    """List ``(section, package)`` pairs that both sides changed to different values.

    A package conflicts when it is present on both sides with different values and
    each side either added it or changed it relative to the base.
    """
    conflicts: list[tuple[str, str]] = []
    for section in DEPENDENCY_SECTIONS:
        base_deps = _section(base, section)
        ours_deps = _section(ours, section)
        theirs_deps = _section(theirs, section)
        for package in ours_deps.keys() & theirs_deps.keys():
            ours_value = ours_deps[package]
            theirs_value = theirs_deps[package]
            if ours_value == theirs_value:
                continue
            ours_changed = package not in base_deps or base_deps[package] != ours_value
            theirs_changed = package not in base_deps or base_deps[package] != theirs_value
            if ours_changed and theirs_changed:
                conflicts.append((section, package))
    return sorted(conflicts)


def canonical_json(document: Any) -> str:  # noqa: ANN401
    """Serialize a JSON document with sorted keys and two-space indentation."""
    return json.dumps(document, indent=2, sort_keys=True, ensure_ascii=False)


def has_json_conflict(base: str, ours: str, theirs: str) -> bool:
    """JSON-aware conflict check, falling back to lines when any version fails to parse."""
    try:
        base_doc = json.loads(base) if base.strip() else {}
        ours_doc = json.loads(ours) if ours.strip() else {}
        theirs_doc = json.loads(theirs) if theirs.strip() else {}
    except json.JSONDecodeError as e:
        logger.debug(f"JSON parse failed, using line diff: {e}")
        return has_line_conflict(base, ours, theirs)

    if has_dependency_maps(base_doc, ours_doc, theirs_doc):
        conflicts = dependency_conflicts(base_doc, ours_doc, theirs_doc)
        if conflicts:
            logger.debug(f"Dependency conflicts: {conflicts}")
        return bool(conflicts)

    return has_line_conflict(
        canonical_json(base_doc), canonical_json(ours_doc), canonical_json(theirs_doc)
    )


def has_conflict(filename: str, base: str, ours: str, theirs: str) -> bool:
    """Decide whether merging ``ours`` and ``theirs`` over ``base`` conflicts.

    Args:
        filename: Path used to select the JSON-aware check.
        base: Merge-base content.
        ours: Pull request head content.
        theirs: Target branch content.

    Returns:
        bool: True if at least one region cannot be merged automatically.
    """
    if is_json(filename):
        return has_json_conflict(base, ours, theirs)
    return has_line_conflict(base, ours, theirs)
