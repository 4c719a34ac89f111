"""
versions.py - Minimal version constraint checks for installed dependencies.

Supported forms: `*`, `latest`, exact (`1.2.3`, `=1.2.3`, `v1.2.3`), caret
(`^1.2.0`), tilde (`~1.2.0`) and comparisons (`>=`, `>`, `<=`, `<`).
Space-separated constraints must all hold. Anything beyond that (ranges with
`-`, `||` alternatives, pre-release ordering) is out of scope.
"""

from __future__ import annotations

import re
from typing import List, Optional

from stencil.descriptor.parser import compare_versions

WILDCARDS = ("", "*", "x", "latest")

_COMPARATORS = (">=", "<=", ">", "<", "^", "~", "=")


def _clean(version: str) -> str:
    return version.strip().lstrip("vV=")


def _numbers(version: str) -> List[int]:
    result = []
    for piece in _clean(version).split("."):
        match = re.match(r"\d+", piece)
        result.append(int(match.group(0)) if match else 0)
    while len(result) < 3:
        result.append(0)
    return result


def _satisfies_one(installed: str, constraint: str) -> bool:
    if constraint.lower() in WILDCARDS:
        return True

    operator = next((op for op in _COMPARATORS if constraint.startswith(op)), "=")
    target = _clean(constraint[len(operator):] if constraint.startswith(operator) else constraint)
    cmp = compare_versions(_clean(installed), target)

    if operator == ">=":
        return cmp >= 0
    if operator == ">":
        return cmp > 0
    if operator == "<=":
        return cmp <= 0
    if operator == "<":
        return cmp < 0
    if operator == "=":
        return cmp == 0

    have, want = _numbers(installed), _numbers(target)
    if cmp < 0:
        return False
    if operator == "~":
        return have[:2] == want[:2]
    # caret: the left-most non-zero component is fixed
    if want[0] != 0:
        return have[0] == want[0]
    if want[1] != 0:
        return have[:2] == want[:2]
    return have[:3] == want[:3]


def version_satisfies(installed: Optional[str], constraint: Optional[str]) -> bool:
    """True if an installed version meets a constraint.

    A missing constraint always passes; a missing installed version passes
    only wildcard constraints.
    """
    if constraint is None or constraint.strip().lower() in WILDCARDS:
        return True
    if not installed:
        return False
    return all(_satisfies_one(installed, part) for part in constraint.split())
