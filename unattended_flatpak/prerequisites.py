"""
Dependency checks run before any upgrade work starts.

A missing required binary aborts the run; a missing optional one only
disables the feature that needs it.
"""

from __future__ import annotations

import shutil
from dataclasses import dataclass

from .common import vlog
from .flatpak import FLATPAK_BINARY
from .notify import NOTIFY_BINARY


# Logical dependency name -> binary to look up in PATH
REQUIRED_BINARIES: dict[str, str] = {
    "flatpak": FLATPAK_BINARY,
}

OPTIONAL_BINARIES: dict[str, str] = {
    "notify-send": NOTIFY_BINARY,
}


class MissingDependencyError(Exception):
    """
    Raised when a required external command is not installed.

    Attributes:
        missing: Names of the missing dependencies
        remediation: Suggested fix for the error
    """
    def __init__(self, missing: list[str], remediation: str | None = None):
        self.missing = missing
        self.remediation = remediation
        super().__init__(f"Missing required dependencies: {', '.join(missing)}")


@dataclass
class DependencyReport:
    """Result of the dependency check."""

    installed: list[str]
    missing_required: list[str]
    missing_optional: list[str]

    @property
    def ok(self) -> bool:
        return not self.missing_required


def is_binary_installed(name: str, verbose: bool = False) -> bool:
    """
    Check if a dependency is available in PATH.

    Args:
        name: Logical dependency name (e.g., "flatpak")
        verbose: Enable verbose logging

    Returns:
        True if the binary is found
    """
    binary = REQUIRED_BINARIES.get(name) or OPTIONAL_BINARIES.get(name) or name
    path = shutil.which(binary)
    if path:
        vlog(f"Found {name} at: {path}", verbose)
        return True

    vlog(f"{name} not found in PATH", verbose)
    return False


def check_dependencies(verbose: bool = False) -> DependencyReport:
    """
    Check required and optional dependencies.

    Returns:
        DependencyReport listing what is installed and what is missing
    """
    installed = []
    missing_required = []
    missing_optional = []

    for name in REQUIRED_BINARIES:
        if is_binary_installed(name, verbose):
            installed.append(name)
        else:
            missing_required.append(name)

    for name in OPTIONAL_BINARIES:
        if is_binary_installed(name, verbose):
            installed.append(name)
        else:
            missing_optional.append(name)

    return DependencyReport(
        installed=installed,
        missing_required=missing_required,
        missing_optional=missing_optional,
    )


def ensure_dependencies(verbose: bool = False) -> DependencyReport:
    """
    Check dependencies and fail if a required one is missing.

    Raises:
        MissingDependencyError: If any required dependency is missing
    """
    report = check_dependencies(verbose)
    if not report.ok:
        raise MissingDependencyError(
            report.missing_required,
            remediation="Install flatpak from your distribution's package manager",
        )
    return report
