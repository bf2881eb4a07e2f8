"""
Flatpak metadata parsing and normalization.

The metadata file is a GKeyFile: `[Section]` headers followed by
`key=value` lines. For permission comparison a manifest is reduced to its
canonical form, a sorted list of `"<section> <key>=<value>"` strings with
ignored sections removed. Section boundaries survive only as a prefix, so
two manifests can be compared with a plain line diff.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from .common import vlog


_SECTION_RE = re.compile(r"^\[(?P<name>[^\[\]]+)\]$")
_COMMENT_PREFIXES = ("#", ";")


@dataclass(frozen=True)
class Section:
    """
    One `[Name]` group of a manifest.

    Attributes:
        name: Section name without brackets (e.g., "Context")
        entries: Entry lines in source order, whitespace-trimmed
    """
    name: str
    entries: tuple[str, ...] = ()


@dataclass(frozen=True)
class Manifest:
    """
    Parsed manifest: sections in source order.

    A section name that occurs more than once is kept as separate
    Section objects; normalization merges them.
    """
    sections: tuple[Section, ...] = ()

    def section_names(self) -> list[str]:
        return [section.name for section in self.sections]

    def get(self, name: str) -> Section | None:
        for section in self.sections:
            if section.name == name:
                return section
        return None

    def pairs(self) -> list[tuple[str, str]]:
        """All (section, entry) pairs in source order."""
        return [(section.name, entry) for section in self.sections for entry in section.entries]


def _normalize_entry(line: str) -> str:
    # "key = value" and "key=value" are the same keyfile entry
    key, sep, value = line.partition("=")
    if not sep:
        return line
    return f"{key.strip()}={value.strip()}"


def parse_manifest(text: str, verbose: bool = False) -> Manifest:
    """
    Parse manifest text into sections.

    Blank lines and comment lines are skipped; lines before the first
    section header are dropped.

    Args:
        text: Raw metadata text
        verbose: Enable verbose logging

    Returns:
        Manifest with one Section per header, in source order
    """
    sections: list[Section] = []
    current: str | None = None
    entries: list[str] = []

    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith(_COMMENT_PREFIXES):
            continue

        match = _SECTION_RE.match(line)
        if match:
            if current is not None:
                sections.append(Section(current, tuple(entries)))
            current = match.group("name").strip()
            entries = []
            continue

        if current is None:
            vlog(f"Ignoring line outside any section: {line!r}", verbose)
            continue

        entries.append(_normalize_entry(line))

    if current is not None:
        sections.append(Section(current, tuple(entries)))

    return Manifest(tuple(sections))


def canonicalize(lines: Iterable[str]) -> list[str]:
    """
    Sort canonical lines into their total order, dropping blank ones.

    Applying canonicalize to its own output returns it unchanged.
    """
    return sorted(line.strip() for line in lines if line.strip())


def normalize(
    manifest: Manifest | str,
    ignored_sections: Iterable[str] = (),
    verbose: bool = False,
) -> list[str]:
    """
    Reduce a manifest to its canonical form.

    Args:
        manifest: Parsed Manifest, or raw metadata text
        ignored_sections: Section names to drop (case-sensitive exact match)
        verbose: Enable verbose logging

    Returns:
        Sorted list of "<section> <entry>" strings; empty when every
        section is ignored
    """
    if isinstance(manifest, str):
        manifest = parse_manifest(manifest, verbose)

    ignored = frozenset(ignored_sections)
    kept = [
        f"{section} {entry}"
        for section, entry in manifest.pairs()
        if section not in ignored
    ]
    dropped = sorted({name for name in manifest.section_names() if name in ignored})
    if dropped:
        vlog(f"Ignored sections: {', '.join(dropped)}", verbose)

    return canonicalize(kept)
