"""Heuristic extraction of files referenced by import statements.

This is a regular-expression scan, not a parser. It recognizes:

- ``import x from '...'`` and ``import {a, b} from "..."`` (single line)
- ``require('...')``
- Python ``from .module import name`` (relative imports only)

Known limits: multi-line import lists, ``export ... from``, dynamic ``import()``,
template strings and imports inside comments or strings are not handled the
way a real parser would. Bare package imports are ignored; only relative
specifiers (``./``, ``../``, leading dots in Python) become paths.
"""

import posixpath
import re

_ES_IMPORT = re.compile(r"""import\s+.*\s+from\s+['"]([^'"]+)['"]""")
_REQUIRE = re.compile(r"""require\(\s*['"]([^'"]+)['"]\s*\)""")
_PY_RELATIVE = re.compile(r"^\s*from\s+(\.+)([\w.]*)\s+import\s", re.MULTILINE)


def extract_specifiers(source: str) -> list[str]:
    """Return raw import specifiers in order of appearance, without duplicates."""
    found: list[tuple[int, str]] = []
    for pattern in (_ES_IMPORT, _REQUIRE):
        found.extend((m.start(), m.group(1)) for m in pattern.finditer(source))
    for m in _PY_RELATIVE.finditer(source):
        found.append((m.start(), m.group(1) + m.group(2)))

    ordered: list[str] = []
    for _, spec in sorted(found):
        if spec not in ordered:
            ordered.append(spec)
    return ordered


def _resolve_python(importer_dir: str, spec: str) -> str:
    dots = len(spec) - len(spec.lstrip("."))
    module = spec[dots:]
    base = importer_dir
    for _ in range(dots - 1):
        base = posixpath.dirname(base)
    if not module:
        return posixpath.join(base, "__init__.py") if base else "__init__.py"
    return posixpath.join(base, *module.split(".")) + ".py"


def extract_referenced_paths(filename: str, source: str) -> list[str]:
    """Map relative import specifiers in ``source`` to repository paths.

    Args:
        filename: Repository path of the importing file.
        source: File content.

    Returns:
        list[str]: Normalized repository-relative paths. JavaScript specifiers are
            returned without guessing an extension.
    """
    importer_dir = posixpath.dirname(filename)
    paths: list[str] = []
    for spec in extract_specifiers(source):
        if spec.startswith(("./", "../")):
            path = posixpath.normpath(posixpath.join(importer_dir, spec))
        elif spec.startswith(".") and filename.endswith(".py"):
            path = posixpath.normpath(_resolve_python(importer_dir, spec))
        else:
            continue
        if path.startswith("../") or path == "..":
            continue
        if path not in paths:
            paths.append(path)
    return paths
