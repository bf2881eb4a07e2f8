"""
Configuration file parsing and management.

Supports YAML configuration files (and .json files).
Merges configurations from multiple sources (custom → user → system → defaults).
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

from .common import vlog


def _user_config_dir() -> str:
    base = os.environ.get("XDG_CONFIG_HOME") or os.path.expanduser("~/.config")
    return os.path.join(base, "unattended-flatpak")


# Configuration file locations (in priority order)
CONFIG_LOCATIONS = [
    os.path.join(_user_config_dir(), "config.yml"),   # User global
    os.path.join(_user_config_dir(), "config.yaml"),
    "/etc/unattended-flatpak/config.yml",             # System global
    "/etc/unattended-flatpak/config.yaml",
]

# Sections that never carry sandbox grants
DEFAULT_IGNORED_SECTIONS = frozenset({"Application", "Runtime", "Instance", "Extra Data"})

# Sections holding sandbox grants (filesystem, device, socket, bus access);
# ignoring any of them would let a permission change through unreviewed
PERMISSION_SECTIONS = frozenset({
    "Context",
    "Session Bus Policy",
    "System Bus Policy",
    "Environment",
})

INSTALLATION_SCOPES = ("all", "user", "system")

DEFAULT_LOG_DIR = "~/.logs"


class ConfigError(ValueError):
    """Raised when a configuration source cannot be loaded or is invalid."""


@dataclass(frozen=True)
class Config:
    """
    Complete configuration for the unattended upgrade agent.

    Attributes:
        check_outdated_instances: Run the outdated running-instance pass
        ignored_sections: Manifest sections excluded from the permission comparison
        log_dir: Directory holding the append-only log file
        debug: Verbose logging
        installation: Which Flatpak installation to operate on ('all', 'user', 'system')
        notify: Send desktop notifications for flagged/outdated summaries
        dry_run: Compare and report without applying updates
        source: Path to the configuration file that was loaded
    """
    check_outdated_instances: bool = True
    ignored_sections: frozenset[str] = DEFAULT_IGNORED_SECTIONS
    log_dir: str = DEFAULT_LOG_DIR
    debug: bool = False
    installation: str = "all"
    notify: bool = True
    dry_run: bool = False
    source: str = ""

    def __post_init__(self):
        """Validate config after initialization."""
        if not isinstance(self.ignored_sections, frozenset):
            object.__setattr__(self, "ignored_sections", frozenset(self.ignored_sections))

        protected = sorted(self.ignored_sections & PERMISSION_SECTIONS)
        if protected:
            raise ConfigError(
                f"Invalid ignored_sections: {', '.join(protected)}. "
                "Permission sections cannot be excluded from the comparison"
            )

        if self.installation not in INSTALLATION_SCOPES:
            raise ConfigError(
                f"Invalid installation: {self.installation}. "
                f"Must be one of: {', '.join(INSTALLATION_SCOPES)}"
            )

        if not self.log_dir:
            raise ConfigError("log_dir must not be empty")

    @staticmethod
    def from_dict(data: dict[str, Any], source: str = "") -> Config:
        """Create Config from dictionary."""
        ignored = data.get("ignored_sections", DEFAULT_IGNORED_SECTIONS)
        if isinstance(ignored, str):
            raise ConfigError("ignored_sections must be a list of section names")

        return Config(
            check_outdated_instances=bool(data.get("check_outdated_instances", True)),
            ignored_sections=frozenset(str(name) for name in ignored),
            log_dir=str(data.get("log_dir", DEFAULT_LOG_DIR)),
            debug=bool(data.get("debug", False)),
            installation=data.get("installation", "all"),
            notify=bool(data.get("notify", True)),
            dry_run=bool(data.get("dry_run", False)),
            source=source,
        )

    def with_overrides(self, **overrides: Any) -> Config:
        """Return a copy with the given fields replaced; None values are ignored."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "check_outdated_instances": self.check_outdated_instances,
            "ignored_sections": sorted(self.ignored_sections),
            "log_dir": self.log_dir,
            "debug": self.debug,
            "installation": self.installation,
            "notify": self.notify,
            "dry_run": self.dry_run,
            "source": self.source,
        }


def _load_yaml(file_path: str) -> dict[str, Any] | None:
    """
    Load YAML configuration file.

    Args:
        file_path: Path to YAML file

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return None


def _load_json(file_path: str) -> dict[str, Any] | None:
    """
    Load JSON configuration file.

    Args:
        file_path: Path to JSON file

    Returns:
        Parsed configuration dictionary, or None if file invalid
    """
    try:
        with open(file_path, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except (OSError, json.JSONDecodeError):
        return None


def _read_config_data(file_path: str, verbose: bool = False) -> dict[str, Any] | None:
    """
    Read and validate the raw settings of a single file.

    Returns:
        The keys the file sets, or None if the file does not exist

    Raises:
        ConfigError: If the file exists but is unreadable or invalid
    """
    if not os.path.exists(file_path):
        return None

    vlog(f"Loading config from: {file_path}", verbose)

    if Path(file_path).suffix == ".json":
        data = _load_json(file_path)
    else:
        data = _load_yaml(file_path)

    if data is None:
        raise ConfigError(f"Invalid config file: {file_path}")

    try:
        Config.from_dict(data, source=file_path)
    except (ValueError, TypeError) as e:
        raise ConfigError(f"Config validation failed for {file_path}: {e}") from e

    vlog(f"Loaded config successfully: {file_path}", verbose)
    return data


def load_config_file(file_path: str, verbose: bool = False) -> Config | None:
    """
    Load configuration from a single file.

    Args:
        file_path: Path to configuration file (.yml, .yaml or .json)
        verbose: Enable verbose logging

    Returns:
        Config object, or None if the file does not exist

    Raises:
        ConfigError: If the file exists but is unreadable or invalid
    """
    data = _read_config_data(file_path, verbose)
    if data is None:
        return None
    return Config.from_dict(data, source=file_path)


def load_config(
    custom_path: str | None = None,
    verbose: bool = False,
) -> Config:
    """
    Load and merge configuration from all sources.

    Configuration precedence (highest to lowest):
    1. Custom path (if provided)
    2. User $XDG_CONFIG_HOME/unattended-flatpak/config.yml
    3. System /etc/unattended-flatpak/config.yml
    4. Default configuration

    Only keys a file actually sets take part in the merge, so a
    higher-priority file can restate a default value and still win.
    Lists such as ignored_sections are replaced, not combined.

    Environment variables UNATTENDED_FLATPAK_LOG_DIR and
    UNATTENDED_FLATPAK_DEBUG override the merged file values.

    Args:
        custom_path: Optional path to custom configuration file
        verbose: Enable verbose logging

    Returns:
        Merged Config object (never None, returns defaults if no config found)

    Raises:
        ConfigError: If custom_path is missing or any found file is invalid
    """
    layers: list[tuple[str, dict[str, Any]]] = []

    if custom_path:
        data = _read_config_data(custom_path, verbose)
        if data is None:
            raise ConfigError(f"Could not load config from specified path: {custom_path}")
        layers.append((custom_path, data))

    for location in CONFIG_LOCATIONS:
        data = _read_config_data(location, verbose)
        if data is not None:
            layers.append((location, data))

    merged: dict[str, Any] = {}
    for _, data in reversed(layers):
        merged.update(data)

    if layers:
        vlog(f"Merged {len(layers)} config files", verbose)
        config = Config.from_dict(merged, source=layers[0][0])
    else:
        vlog("No config files found, using defaults", verbose)
        config = Config()

    env_log_dir = os.environ.get("UNATTENDED_FLATPAK_LOG_DIR")
    env_debug = os.environ.get("UNATTENDED_FLATPAK_DEBUG")
    return config.with_overrides(
        log_dir=env_log_dir or None,
        debug=True if env_debug == "1" else None,
    )
