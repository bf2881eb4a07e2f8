"""
Desktop notifications via notify-send.

Notifications are best effort: a missing transport or a failing
notify-send never affects the upgrade pass.
"""

from __future__ import annotations

import shutil
import subprocess

from .common import vlog


NOTIFY_BINARY = "notify-send"
APP_NAME = "Unattended Flatpak Upgrades"

PERMISSION_CHANGE_TITLE = "Flatpak updates need review"
OUTDATED_INSTANCES_TITLE = "Outdated Flatpak apps are running"


def notification_available() -> bool:
    """Check whether the notification transport is installed."""
    return shutil.which(NOTIFY_BINARY) is not None


def notify(title: str, body: str, verbose: bool = False) -> bool:
    """
    Show a desktop notification.

    Args:
        title: Notification summary line
        body: Notification body
        verbose: Enable verbose logging

    Returns:
        True if notify-send accepted the notification, False otherwise
    """
    if not notification_available():
        vlog(f"{NOTIFY_BINARY} not available, skipping notification: {title}", verbose)
        return False

    try:
        result = subprocess.run(
            [NOTIFY_BINARY, "--app-name", APP_NAME, "--icon", "software-update-available", title, body],
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        vlog(f"Notification failed: {e}", verbose)
        return False

    if result.returncode != 0:
        vlog(f"Notification failed with exit code {result.returncode}: {result.stderr.strip()}", verbose)
        return False
    return True


def format_app_list(app_ids: list[str] | tuple[str, ...]) -> str:
    """Notification body: one application id per line."""
    return "\n".join(app_ids)
