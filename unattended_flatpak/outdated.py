"""
Detection of running application instances started from an old commit.

After an update the running instance keeps using the commit it was
started from until it is restarted. This pass compares every running
instance with the installed commit and reports the stale ones.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Sequence

from .common import vlog
from .flatpak import FetchError, FlatpakCli, RunningInstance
from .logging_config import get_logger
from .notify import OUTDATED_INSTANCES_TITLE, format_app_list


# Prefix length used to compare commits; flatpak ps abbreviates to 12
COMMIT_PREFIX_LENGTH = 12


@dataclass(frozen=True)
class OutdatedCheckResult:
    """
    Result of the outdated-instance pass.

    Attributes:
        outdated: Application ids with at least one outdated running instance
        checked: Distinct (app_id, commit) pairs that were compared
        errors: Application ids whose installed commit could not be read
        duration_seconds: Total pass time
        notified: Whether the notifier reported the outdated notification as shown
    """
    outdated: tuple[str, ...]
    checked: tuple[tuple[str, str], ...]
    errors: tuple[str, ...] = ()
    duration_seconds: float = 0.0
    notified: bool = False

    def notification(self) -> tuple[str, str] | None:
        """Title and body of the outdated-instances notification, if any."""
        if not self.outdated:
            return None
        return OUTDATED_INSTANCES_TITLE, format_app_list(self.outdated)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "outdated": list(self.outdated),
            "checked": [list(pair) for pair in self.checked],
            "errors": list(self.errors),
            "duration_seconds": self.duration_seconds,
            "notified": self.notified,
        }


def commits_match(running: str, installed: str, prefix_length: int = COMMIT_PREFIX_LENGTH) -> bool:
    """Compare two commit ids on their leading prefix."""
    return running.strip()[:prefix_length] == installed.strip()[:prefix_length]


def distinct_instances(instances: Sequence[RunningInstance]) -> list[tuple[str, str]]:
    """Unique (app_id, commit) pairs, in first-seen order."""
    pairs: list[tuple[str, str]] = []
    for instance in instances:
        pair = (instance.app_id, instance.commit[:COMMIT_PREFIX_LENGTH])
        if pair not in pairs:
            pairs.append(pair)
    return pairs


def check_outdated_instances(
    flatpak: FlatpakCli,
    instances: Sequence[RunningInstance] | None = None,
    notifier: Callable[[str, str], object] | None = None,
    verbose: bool = False,
) -> OutdatedCheckResult:
    """
    Find running instances whose commit differs from the installed one.

    Args:
        flatpak: Flatpak command wrapper
        instances: Running instances; listed from flatpak when None
        notifier: Called once with (title, body) when outdated instances exist;
            returns True if the notification was shown
        verbose: Enable verbose logging

    Returns:
        OutdatedCheckResult listing each outdated application id once

    Raises:
        FetchError: If instances is None and the instance listing fails
    """
    logger = get_logger()
    start_time = time.time()

    if instances is None:
        instances = flatpak.list_running()

    outdated: list[str] = []
    errors: list[str] = []
    checked: list[tuple[str, str]] = []
    # None marks an app whose installed commit could not be read
    installed_commits: dict[str, str | None] = {}

    for app_id, running_commit in distinct_instances(instances):
        if app_id not in installed_commits:
            try:
                installed_commits[app_id] = flatpak.get_installed_commit(app_id)
            except FetchError as e:
                logger.warning(f"{app_id}: cannot check running instance, {e.message}")
                installed_commits[app_id] = None
                errors.append(app_id)

        installed = installed_commits[app_id]
        if installed is None:
            continue

        checked.append((app_id, running_commit))
        if commits_match(running_commit, installed):
            vlog(f"{app_id}: running commit {running_commit} is current", verbose)
            continue

        logger.info(
            f"{app_id}: running commit {running_commit} is outdated "
            f"(installed {installed[:COMMIT_PREFIX_LENGTH]}), restart the application"
        )
        if app_id not in outdated:
            outdated.append(app_id)

    result = OutdatedCheckResult(
        outdated=tuple(outdated),
        checked=tuple(checked),
        errors=tuple(errors),
        duration_seconds=time.time() - start_time,
    )

    payload = result.notification()
    if payload is not None and notifier is not None:
        notified = False
        try:
            notified = bool(notifier(*payload))
        except Exception as e:
            vlog(f"Notification failed: {e}", verbose)
        result = OutdatedCheckResult(
            outdated=result.outdated,
            checked=result.checked,
            errors=result.errors,
            duration_seconds=result.duration_seconds,
            notified=notified,
        )

    return result
