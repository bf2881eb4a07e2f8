"""
Tests for the permission-gated upgrade pass (unattended_flatpak/upgrade.py).
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from unattended_flatpak.common import CommandResult
from unattended_flatpak.config import Config
from unattended_flatpak.detector import Verdict
from unattended_flatpak.flatpak import AppRecord, FetchError, FlatpakCli
from unattended_flatpak.notify import PERMISSION_CHANGE_TITLE
from unattended_flatpak.upgrade import (
    AppState,
    UpgradePassResult,
    check_permissions,
    process_application,
    run_upgrade_pass,
)


HOME_ONLY = "[Application]\nname={app}\n\n[Context]\nfilesystems=home;\n"
HOME_AND_NETWORK = "[Application]\nname={app}\n\n[Context]\nfilesystems=home;\nshared=network;\n"


def ok_update(app_id: str) -> CommandResult:
    return CommandResult(
        command=("flatpak", "update", "--noninteractive", "--app", app_id),
        success=True,
        stdout="",
        stderr="",
        exit_code=0,
    )


def failed_update(app_id: str) -> CommandResult:
    return CommandResult(
        command=("flatpak", "update", "--noninteractive", "--app", app_id),
        success=False,
        stdout="",
        stderr="error: No space left on device",
        exit_code=1,
        error_message="Command failed with exit code 1: error: No space left on device",
    )


def make_flatpak(installed: dict[str, str], remote: dict[str, str]) -> MagicMock:
    """Flatpak double serving manifests from dicts; missing keys raise FetchError."""
    flatpak = MagicMock(spec=FlatpakCli)

    def get_installed(app_id):
        if app_id not in installed:
            raise FetchError(f"{app_id} is not installed", app_id=app_id)
        return installed[app_id]

    def get_remote(app_id, origin):
        if app_id not in remote:
            raise FetchError(f"Could not read metadata of {app_id} from {origin}", app_id=app_id)
        return remote[app_id]

    flatpak.get_installed_manifest.side_effect = get_installed
    flatpak.get_remote_manifest.side_effect = get_remote
    flatpak.apply_update.side_effect = ok_update
    return flatpak


class TestCheckPermissions:
    """Tests for fetching and comparing one application's manifests."""

    def test_check_permissions_identical(self):
        """Same permissions yield IDENTICAL."""
        app = "org.example.Same"
        flatpak = make_flatpak({app: HOME_ONLY.format(app=app)}, {app: HOME_ONLY.format(app=app)})

        comparison = check_permissions(AppRecord(app, "flathub"), flatpak, Config().ignored_sections)

        assert comparison.verdict is Verdict.IDENTICAL
        flatpak.get_remote_manifest.assert_called_once_with(app, "flathub")

    def test_check_permissions_propagates_fetch_error(self):
        """Fetch failures are raised to the caller."""
        flatpak = make_flatpak({}, {})
        with pytest.raises(FetchError):
            check_permissions(AppRecord("org.example.Missing", "flathub"), flatpak, ())


class TestProcessApplication:
    """Tests for the per-application state machine."""

    def test_identical_is_updated(self):
        """Scenario A: unchanged permissions trigger exactly one update."""
        app = "org.example.A"
        flatpak = make_flatpak({app: HOME_ONLY.format(app=app)}, {app: HOME_ONLY.format(app=app)})

        result = process_application(AppRecord(app, "flathub"), flatpak, Config())

        assert result.state is AppState.UPDATED
        assert result.comparison.verdict is Verdict.IDENTICAL
        flatpak.apply_update.assert_called_once_with(app)

    def test_changed_is_flagged(self):
        """Scenario B: a new permission flags the app and blocks the update."""
        app = "org.example.B"
        flatpak = make_flatpak(
            {app: HOME_ONLY.format(app=app)},
            {app: HOME_AND_NETWORK.format(app=app)},
        )

        result = process_application(AppRecord(app, "flathub"), flatpak, Config())

        assert result.state is AppState.FLAGGED
        assert result.comparison.added == ("Context shared=network;",)
        flatpak.apply_update.assert_not_called()

    def test_fetch_failure_is_skipped(self):
        """A fetch failure skips the app without updating it."""
        app = "org.example.Offline"
        flatpak = make_flatpak({app: HOME_ONLY.format(app=app)}, {})

        result = process_application(AppRecord(app, "flathub"), flatpak, Config())

        assert result.state is AppState.SKIPPED
        assert "Could not read metadata" in result.error_message
        flatpak.apply_update.assert_not_called()

    def test_unexpected_error_is_skipped(self):
        """An unexpected exception before the comparison never leads to an update."""
        flatpak = make_flatpak({}, {})
        flatpak.get_installed_manifest.side_effect = RuntimeError("boom")

        result = process_application(AppRecord("org.example.Boom", "flathub"), flatpak, Config())

        assert result.state is AppState.SKIPPED
        assert "boom" in result.error_message
        flatpak.apply_update.assert_not_called()

    def test_update_failure_is_recorded(self):
        """A failed update invocation is recorded and not retried."""
        app = "org.example.Full"
        flatpak = make_flatpak({app: HOME_ONLY.format(app=app)}, {app: HOME_ONLY.format(app=app)})
        flatpak.apply_update.side_effect = failed_update

        result = process_application(AppRecord(app, "flathub"), flatpak, Config())

        assert result.state is AppState.UPDATE_FAILED
        assert "No space left" in result.error_message
        assert flatpak.apply_update.call_count == 1

    def test_dry_run_does_not_update(self):
        """Dry run reports the app as WOULD_UPDATE."""
        app = "org.example.Dry"
        flatpak = make_flatpak({app: HOME_ONLY.format(app=app)}, {app: HOME_ONLY.format(app=app)})

        result = process_application(AppRecord(app, "flathub"), flatpak, Config(dry_run=True))

        assert result.state is AppState.WOULD_UPDATE
        flatpak.apply_update.assert_not_called()

    def test_ignored_sections_follow_config(self):
        """Sections outside the configured ignore-set are compared."""
        app = "org.example.Ext"
        installed = "[Context]\nshared=ipc;\n[Extension org.example.Ext.Plugin]\ndirectory=lib/plugin\n"
        remote = "[Context]\nshared=ipc;\n[Extension org.example.Ext.Plugin]\ndirectory=lib/plugins\n"
        flatpak = make_flatpak({app: installed}, {app: remote})

        flagged = process_application(AppRecord(app, "flathub"), flatpak, Config())
        assert flagged.state is AppState.FLAGGED

        config = Config(ignored_sections={"Application", "Extension org.example.Ext.Plugin"})
        updated = process_application(AppRecord(app, "flathub"), flatpak, config)
        assert updated.state is AppState.UPDATED


class TestRunUpgradePass:
    """Tests for the full pass over all update candidates."""

    def test_partial_failure_isolation(self):
        """Scenario D: one remote fetch failure does not stop the other apps."""
        same, changed, broken = "org.example.Same", "org.example.Changed", "org.example.Broken"
        flatpak = make_flatpak(
            {
                same: HOME_ONLY.format(app=same),
                changed: HOME_ONLY.format(app=changed),
                broken: HOME_ONLY.format(app=broken),
            },
            {
                same: HOME_ONLY.format(app=same),
                changed: HOME_AND_NETWORK.format(app=changed),
            },
        )
        records = [AppRecord(broken, "flathub"), AppRecord(same, "flathub"), AppRecord(changed, "flathub")]

        result = run_upgrade_pass(flatpak, Config(), records=records)

        assert [r.app_id for r in result.results] == [broken, same, changed]
        assert result.skipped == (broken,)
        assert result.updated == (same,)
        assert result.flagged == (changed,)
        flatpak.apply_update.assert_called_once_with(same)

    def test_updates_are_per_application(self):
        """Every safe app gets its own update invocation."""
        apps = ["org.example.One", "org.example.Two"]
        manifests = {app: HOME_ONLY.format(app=app) for app in apps}
        flatpak = make_flatpak(manifests, dict(manifests))

        result = run_upgrade_pass(flatpak, Config(), records=[AppRecord(app, "flathub") for app in apps])

        assert result.updated == tuple(apps)
        assert [c.args for c in flatpak.apply_update.call_args_list] == [(apps[0],), (apps[1],)]

    def test_notification_once_when_flagged(self):
        """Flagged apps produce exactly one aggregated notification."""
        apps = ["org.example.X", "org.example.Y"]
        flatpak = make_flatpak(
            {app: HOME_ONLY.format(app=app) for app in apps},
            {app: HOME_AND_NETWORK.format(app=app) for app in apps},
        )
        notifier = MagicMock()

        result = run_upgrade_pass(
            flatpak, Config(), records=[AppRecord(app, "flathub") for app in apps], notifier=notifier
        )

        notifier.assert_called_once_with(PERMISSION_CHANGE_TITLE, "org.example.X\norg.example.Y")
        assert result.notified is True

    def test_no_notification_when_nothing_flagged(self):
        """No flagged apps means no notification."""
        app = "org.example.Calm"
        flatpak = make_flatpak({app: HOME_ONLY.format(app=app)}, {app: HOME_ONLY.format(app=app)})
        notifier = MagicMock()

        result = run_upgrade_pass(flatpak, Config(), records=[AppRecord(app, "flathub")], notifier=notifier)

        notifier.assert_not_called()
        assert result.notified is False
        assert result.notification() is None

    def test_notification_failure_is_ignored(self):
        """A failing notifier does not break the pass."""
        app = "org.example.Loud"
        flatpak = make_flatpak({app: HOME_ONLY.format(app=app)}, {app: HOME_AND_NETWORK.format(app=app)})
        notifier = MagicMock(side_effect=OSError("no session bus"))

        result = run_upgrade_pass(flatpak, Config(), records=[AppRecord(app, "flathub")], notifier=notifier)

        assert result.flagged == (app,)
        assert result.notified is False

    def test_notification_not_shown_is_recorded(self):
        """A notifier returning False leaves notified unset."""
        app = "org.example.Quiet"
        flatpak = make_flatpak({app: HOME_ONLY.format(app=app)}, {app: HOME_AND_NETWORK.format(app=app)})
        notifier = MagicMock(return_value=False)

        result = run_upgrade_pass(flatpak, Config(), records=[AppRecord(app, "flathub")], notifier=notifier)

        notifier.assert_called_once()
        assert result.notified is False
        assert result.to_dict()["notified"] is False

    def test_lists_updates_when_no_records_given(self):
        """Without explicit records the pass asks flatpak for update candidates."""
        app = "org.example.Listed"
        flatpak = make_flatpak({app: HOME_ONLY.format(app=app)}, {app: HOME_ONLY.format(app=app)})
        flatpak.list_updatable.return_value = [AppRecord(app, "flathub")]

        result = run_upgrade_pass(flatpak, Config())

        flatpak.list_updatable.assert_called_once_with()
        assert result.updated == (app,)

    def test_app_id_filter(self):
        """Positional app ids restrict the pass."""
        apps = ["org.example.Keep", "org.example.Drop"]
        manifests = {app: HOME_ONLY.format(app=app) for app in apps}
        flatpak = make_flatpak(manifests, dict(manifests))

        result = run_upgrade_pass(
            flatpak,
            Config(),
            records=[AppRecord(app, "flathub") for app in apps],
            app_ids=["org.example.Keep"],
        )

        assert [r.app_id for r in result.results] == ["org.example.Keep"]

    def test_empty_pass(self):
        """No candidates produce an empty result."""
        flatpak = make_flatpak({}, {})
        result = run_upgrade_pass(flatpak, Config(), records=[])
        assert result.results == ()
        assert result.flagged == ()


class TestUpgradePassResult:
    """Tests for UpgradePassResult reporting."""

    def test_to_dict_and_summary(self):
        """Result serializes every list and summarizes counts."""
        app = "org.example.Flag"
        flatpak = make_flatpak({app: HOME_ONLY.format(app=app)}, {app: HOME_AND_NETWORK.format(app=app)})
        result = run_upgrade_pass(flatpak, Config(), records=[AppRecord(app, "flathub")])

        data = result.to_dict()
        assert data["flagged"] == [app]
        assert data["results"][0]["state"] == "flagged"
        assert data["results"][0]["comparison"]["verdict"] == "changed"
        assert "flagged: 1" in result.summary()

    def test_latest_commit_carried_into_results(self):
        """The remote commit reported by the listing is kept per app."""
        app = "org.example.Commit"
        commit = "0123456789abcdef0123"
        flatpak = make_flatpak({app: HOME_ONLY.format(app=app)}, {app: HOME_ONLY.format(app=app)})

        result = run_upgrade_pass(flatpak, Config(), records=[AppRecord(app, "flathub", latest_commit=commit)])

        assert result.results[0].latest_commit == commit
        assert result.to_dict()["results"][0]["latest_commit"] == commit

    def test_notification_payload(self):
        """The payload lists one app id per line under the fixed title."""
        result = UpgradePassResult(results=(), flagged=("a.b.C", "d.e.F"), duration_seconds=0.0)
        assert result.notification() == (PERMISSION_CHANGE_TITLE, "a.b.C\nd.e.F")
