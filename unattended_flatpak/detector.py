"""
Permission-change detection.

Compares the canonical forms of the installed and the remote manifest.
Any difference, however small, blocks the automatic update.
"""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from enum import Enum
from typing import Sequence


class Verdict(str, Enum):
    IDENTICAL = "identical"
    CHANGED = "changed"


@dataclass(frozen=True)
class Comparison:
    """
    Outcome of comparing two canonical manifests.

    Attributes:
        verdict: IDENTICAL or CHANGED
        diff: Unified diff (installed → remote); empty when IDENTICAL
        added: Lines only present in the remote manifest
        removed: Lines only present in the installed manifest
    """
    verdict: Verdict
    diff: str = ""
    added: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()

    @property
    def changed(self) -> bool:
        return self.verdict is Verdict.CHANGED

    def summary(self) -> str:
        """One-line human summary of the change."""
        if not self.changed:
            return "no permission changes"
        parts = []
        if self.added:
            parts.append(f"{len(self.added)} added")
        if self.removed:
            parts.append(f"{len(self.removed)} removed")
        return "permissions changed: " + (", ".join(parts) or "entries reordered")

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "verdict": self.verdict.value,
            "diff": self.diff,
            "added": list(self.added),
            "removed": list(self.removed),
        }


def _significant(lines: Sequence[str]) -> list[str]:
    return [line.strip() for line in lines if line.strip()]


def compare(installed: Sequence[str], remote: Sequence[str]) -> Comparison:
    """
    Compare two canonical manifests.

    Blank entries and surrounding whitespace are not significant; every
    other difference, including order, yields CHANGED.

    Args:
        installed: Canonical form of the installed manifest
        remote: Canonical form of the remote manifest

    Returns:
        Comparison with a deterministic unified diff when CHANGED
    """
    left = _significant(installed)
    right = _significant(remote)

    if left == right:
        return Comparison(verdict=Verdict.IDENTICAL)

    diff = "\n".join(difflib.unified_diff(
        left,
        right,
        fromfile="installed",
        tofile="remote",
        lineterm="",
    ))
    left_set = set(left)
    right_set = set(right)
    return Comparison(
        verdict=Verdict.CHANGED,
        diff=diff,
        added=tuple(line for line in right if line not in left_set),
        removed=tuple(line for line in left if line not in right_set),
    )
