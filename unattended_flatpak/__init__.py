"""
Unattended Flatpak upgrades with permission-change gating.

Core Modules:
- Manifest handling: metadata parsing, normalization and comparison
- Upgrade pass: per-application fetch, compare and update/flag
- Outdated instances: running instances started from an old commit
- Foundation: flatpak command wrappers, config, logging, notifications
"""

__version__ = "1.0.0"

VERSION = __version__

# Manifest handling
from .manifest import Manifest, Section, parse_manifest, normalize, canonicalize
from .detector import Verdict, Comparison, compare

# Foundation
from .common import CommandResult, run_command
from .config import Config, ConfigError, load_config, load_config_file
from .flatpak import AppRecord, RunningInstance, FetchError, FlatpakCli
from .notify import notify, PERMISSION_CHANGE_TITLE, OUTDATED_INSTANCES_TITLE
from .prerequisites import MissingDependencyError, check_dependencies, ensure_dependencies

# Upgrade pass
from .upgrade import (
    AppState,
    AppCheckResult,
    UpgradePassResult,
    check_permissions,
    process_application,
    run_upgrade_pass,
)

# Outdated instances
from .outdated import OutdatedCheckResult, check_outdated_instances, commits_match

# Logging configuration
from .logging_config import setup_logging, get_logger

__all__ = [
    # Version
    "__version__",
    "VERSION",
    # Manifest handling
    "Manifest",
    "Section",
    "parse_manifest",
    "normalize",
    "canonicalize",
    "Verdict",
    "Comparison",
    "compare",
    # Foundation
    "CommandResult",
    "run_command",
    "Config",
    "ConfigError",
    "load_config",
    "load_config_file",
    "AppRecord",
    "RunningInstance",
    "FetchError",
    "FlatpakCli",
    "notify",
    "PERMISSION_CHANGE_TITLE",
    "OUTDATED_INSTANCES_TITLE",
    "MissingDependencyError",
    "check_dependencies",
    "ensure_dependencies",
    # Upgrade pass
    "AppState",
    "AppCheckResult",
    "UpgradePassResult",
    "check_permissions",
    "process_application",
    "run_upgrade_pass",
    # Outdated instances
    "OutdatedCheckResult",
    "check_outdated_instances",
    "commits_match",
    # Logging
    "setup_logging",
    "get_logger",
]
