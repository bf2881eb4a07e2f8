"""
Unattended upgrade pass with permission-change gating.

For every application with an available update, the installed and the
remote metadata are compared. Applications whose permissions are
unchanged are updated one at a time; the others are flagged for the user
and reported in a single notification at the end of the pass.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Sequence

from .common import CommandResult, vlog
from .config import Config
from .detector import Comparison, compare
from .flatpak import AppRecord, FetchError, FlatpakCli
from .logging_config import get_logger
from .manifest import normalize
from .notify import PERMISSION_CHANGE_TITLE, format_app_list


Notifier = Callable[[str, str], object]


class AppState(str, Enum):
    UPDATED = "updated"
    UPDATE_FAILED = "update_failed"
    FLAGGED = "flagged"
    SKIPPED = "skipped"
    WOULD_UPDATE = "would_update"


@dataclass(frozen=True)
class AppCheckResult:
    """
    Outcome of one application's cycle.

    Attributes:
        app_id: Application id
        origin: Remote the update comes from
        state: Where the application ended up
        latest_commit: Commit the update would install, if flatpak reported it
        comparison: Permission comparison (None if a fetch failed)
        update: Result of the update invocation (only when one was made)
        error_message: Why the application was skipped or failed
        duration_seconds: Time spent on this application
    """
    app_id: str
    origin: str
    state: AppState
    latest_commit: str | None = None
    comparison: Comparison | None = None
    update: CommandResult | None = None
    error_message: str | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "app_id": self.app_id,
            "origin": self.origin,
            "state": self.state.value,
            "latest_commit": self.latest_commit,
            "comparison": self.comparison.to_dict() if self.comparison else None,
            "update": self.update.to_dict() if self.update else None,
            "error_message": self.error_message,
            "duration_seconds": self.duration_seconds,
        }


@dataclass(frozen=True)
class UpgradePassResult:
    """
    Result of one upgrade pass.

    Attributes:
        results: Per-application outcomes, in processing order
        flagged: Application ids withheld because their permissions changed
        duration_seconds: Total pass time
        notified: Whether the notifier reported the flagged notification as shown
    """
    results: tuple[AppCheckResult, ...]
    flagged: tuple[str, ...]
    duration_seconds: float
    notified: bool = False

    def _ids(self, state: AppState) -> tuple[str, ...]:
        return tuple(r.app_id for r in self.results if r.state is state)

    @property
    def updated(self) -> tuple[str, ...]:
        return self._ids(AppState.UPDATED)

    @property
    def failed(self) -> tuple[str, ...]:
        return self._ids(AppState.UPDATE_FAILED)

    @property
    def skipped(self) -> tuple[str, ...]:
        return self._ids(AppState.SKIPPED)

    @property
    def would_update(self) -> tuple[str, ...]:
        return self._ids(AppState.WOULD_UPDATE)

    def notification(self) -> tuple[str, str] | None:
        """Title and body of the flagged-applications notification, if any."""
        if not self.flagged:
            return None
        return PERMISSION_CHANGE_TITLE, format_app_list(self.flagged)

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "results": [r.to_dict() for r in self.results],
            "flagged": list(self.flagged),
            "updated": list(self.updated),
            "failed": list(self.failed),
            "skipped": list(self.skipped),
            "would_update": list(self.would_update),
            "duration_seconds": self.duration_seconds,
            "notified": self.notified,
        }

    def summary(self) -> str:
        """Human-readable summary."""
        lines = [
            f"updated: {len(self.updated)}",
            f"flagged: {len(self.flagged)}",
            f"failed: {len(self.failed)}",
            f"skipped: {len(self.skipped)}",
        ]
        if self.would_update:
            lines.append(f"would update: {len(self.would_update)}")
        return ", ".join(lines)


def _label(record: AppRecord) -> str:
    if record.latest_commit:
        return f"{record.app_id} ({record.latest_commit[:12]})"
    return record.app_id


def check_permissions(
    record: AppRecord,
    flatpak: FlatpakCli,
    ignored_sections: Iterable[str],
    verbose: bool = False,
) -> Comparison:
    """
    Compare the installed and remote metadata of one application.

    Raises:
        FetchError: If either manifest cannot be fetched
    """
    ignored = frozenset(ignored_sections)
    local = flatpak.get_installed_manifest(record.app_id)
    remote = flatpak.get_remote_manifest(record.app_id, record.origin)
    return compare(
        normalize(local, ignored, verbose),
        normalize(remote, ignored, verbose),
    )


def process_application(
    record: AppRecord,
    flatpak: FlatpakCli,
    config: Config,
    verbose: bool = False,
) -> AppCheckResult:
    """
    Run one application through fetch, compare and update/flag.

    Any failure before the comparison completes leaves the application
    SKIPPED; only an IDENTICAL verdict leads to an update.
    """
    logger = get_logger()
    start_time = time.time()

    try:
        comparison = check_permissions(record, flatpak, config.ignored_sections, verbose)
    except FetchError as e:
        logger.warning(f"{record.app_id}: skipped, {e.message}")
        if e.remediation:
            vlog(f"{record.app_id}: {e.remediation}", verbose)
        return AppCheckResult(
            app_id=record.app_id,
            origin=record.origin,
            latest_commit=record.latest_commit,
            state=AppState.SKIPPED,
            error_message=e.message,
            duration_seconds=time.time() - start_time,
        )
    except Exception as e:
        logger.error(f"{record.app_id}: skipped, unexpected error during permission check: {e}")
        return AppCheckResult(
            app_id=record.app_id,
            origin=record.origin,
            latest_commit=record.latest_commit,
            state=AppState.SKIPPED,
            error_message=f"Unexpected error: {e}",
            duration_seconds=time.time() - start_time,
        )

    if comparison.changed:
        logger.warning(f"{_label(record)}: {comparison.summary()}\n{comparison.diff}")
        logger.warning(f"{record.app_id} has changes, resolve via 'flatpak update {record.app_id}'")
        return AppCheckResult(
            app_id=record.app_id,
            origin=record.origin,
            latest_commit=record.latest_commit,
            state=AppState.FLAGGED,
            comparison=comparison,
            duration_seconds=time.time() - start_time,
        )

    if config.dry_run:
        logger.info(f"{record.app_id}: no permission changes, would update (dry run)")
        return AppCheckResult(
            app_id=record.app_id,
            origin=record.origin,
            latest_commit=record.latest_commit,
            state=AppState.WOULD_UPDATE,
            comparison=comparison,
            duration_seconds=time.time() - start_time,
        )

    vlog(f"{record.app_id}: no permission changes, starting update", verbose)
    try:
        update = flatpak.apply_update(record.app_id)
    except Exception as e:
        update = CommandResult(
            command=(),
            success=False,
            stdout="",
            stderr="",
            exit_code=-1,
            error_message=f"Unexpected error: {e}",
        )

    if update.success:
        logger.info(f"{_label(record)}: updated")
        state = AppState.UPDATED
    else:
        logger.error(f"{record.app_id}: update failed, {update.error_message}")
        state = AppState.UPDATE_FAILED

    return AppCheckResult(
        app_id=record.app_id,
        origin=record.origin,
        latest_commit=record.latest_commit,
        state=state,
        comparison=comparison,
        update=update,
        error_message=None if update.success else update.error_message,
        duration_seconds=time.time() - start_time,
    )


def run_upgrade_pass(
    flatpak: FlatpakCli,
    config: Config,
    records: Sequence[AppRecord] | None = None,
    app_ids: Sequence[str] | None = None,
    notifier: Notifier | None = None,
    verbose: bool = False,
) -> UpgradePassResult:
    """
    Process every application with an available update, one at a time.

    Args:
        flatpak: Flatpak command wrapper
        config: Configuration (ignored sections, dry run)
        records: Update candidates; listed from flatpak when None
        app_ids: Restrict the pass to these application ids
        notifier: Called once with (title, body) when applications were flagged;
            returns True if the notification was shown
        verbose: Enable verbose logging

    Returns:
        UpgradePassResult with per-application outcomes and the flagged list

    Raises:
        FetchError: If records is None and the update listing fails
    """
    logger = get_logger()
    start_time = time.time()

    if records is None:
        records = flatpak.list_updatable()
    if app_ids:
        wanted = set(app_ids)
        records = [r for r in records if r.app_id in wanted]

    if not records:
        logger.info("No application updates available")

    results: list[AppCheckResult] = []
    flagged: list[str] = []
    for record in records:
        result = process_application(record, flatpak, config, verbose)
        results.append(result)
        if result.state is AppState.FLAGGED and result.app_id not in flagged:
            flagged.append(result.app_id)

    pass_result = UpgradePassResult(
        results=tuple(results),
        flagged=tuple(flagged),
        duration_seconds=time.time() - start_time,
    )

    payload = pass_result.notification()
    if payload is not None and notifier is not None:
        notified = False
        try:
            notified = bool(notifier(*payload))
        except Exception as e:
            vlog(f"Notification failed: {e}", verbose)
        pass_result = UpgradePassResult(
            results=pass_result.results,
            flagged=pass_result.flagged,
            duration_seconds=pass_result.duration_seconds,
            notified=notified,
        )

    logger.info(f"Upgrade pass finished: {pass_result.summary()}")
    return pass_result
