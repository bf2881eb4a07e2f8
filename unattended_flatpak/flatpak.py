"""
Flatpak command wrappers.

Every interaction with the flatpak CLI goes through FlatpakCli: listing
update candidates and running instances, fetching installed and remote
metadata, reading installed commits and applying single-app updates.
Raw exit codes never leave this module; callers get CommandResult values
or FetchError.
"""

from __future__ import annotations

from dataclasses import dataclass

from .common import CommandResult, run_command, vlog


FLATPAK_BINARY = "flatpak"


@dataclass(frozen=True)
class AppRecord:
    """
    Application with an available update.

    Attributes:
        app_id: Reverse-domain application id (e.g., "org.gimp.GIMP")
        origin: Remote the application is installed from
        latest_commit: Commit available on the remote (if reported)
    """
    app_id: str
    origin: str
    latest_commit: str | None = None


@dataclass(frozen=True)
class RunningInstance:
    """
    A running application instance.

    Attributes:
        app_id: Application id of the instance
        commit: Commit the instance was started from
    """
    app_id: str
    commit: str


class FetchError(Exception):
    """
    Raised when Flatpak cannot provide the requested information.

    Attributes:
        message: Human-readable error message
        app_id: Application the query was about
        remediation: Suggested fix for the error
    """
    def __init__(
        self,
        message: str,
        app_id: str | None = None,
        remediation: str | None = None,
    ):
        self.message = message
        self.app_id = app_id
        self.remediation = remediation
        super().__init__(message)


def _parse_columns(output: str, min_columns: int) -> list[list[str]]:
    """Split tab-separated flatpak --columns output, dropping short or header lines."""
    rows = []
    for line in output.splitlines():
        if not line.strip():
            continue
        parts = [part.strip() for part in line.split("\t")]
        if len(parts) < min_columns or not parts[0]:
            continue
        if parts[0].lower() in ("application", "application id"):
            continue
        rows.append(parts)
    return rows


class FlatpakCli:
    """
    Thin wrapper around the flatpak command line.

    Args:
        installation: 'all', 'user' or 'system'; adds --user/--system to every call
        binary: flatpak executable to invoke
        verbose: Enable verbose logging
    """

    def __init__(self, installation: str = "all", binary: str = FLATPAK_BINARY, verbose: bool = False):
        self.installation = installation
        self.binary = binary
        self.verbose = verbose

    def _command(self, *args: str) -> tuple[str, ...]:
        command = [self.binary, args[0]]
        if self.installation == "user":
            command.append("--user")
        elif self.installation == "system":
            command.append("--system")
        command.extend(args[1:])
        return tuple(command)

    def _run(self, *args: str) -> CommandResult:
        return run_command(self._command(*args), self.verbose)

    def _run_global(self, *args: str) -> CommandResult:
        # 'flatpak ps' has no installation options
        return run_command((self.binary,) + args, self.verbose)

    def list_updatable(self) -> list[AppRecord]:
        """
        List installed applications that have an update available.

        Returns:
            One AppRecord per application, in flatpak's order

        Raises:
            FetchError: If the update listing fails
        """
        result = self._run("remote-ls", "--updates", "--app", "--columns=application,origin,commit")
        if not result.success:
            raise FetchError(
                f"Could not list available updates: {result.error_message}",
                remediation="Check network access and 'flatpak remotes'",
            )

        records = []
        seen: set[tuple[str, str]] = set()
        for parts in _parse_columns(result.stdout, 2):
            app_id, origin = parts[0], parts[1]
            if (app_id, origin) in seen:
                continue
            seen.add((app_id, origin))
            latest = parts[2] if len(parts) > 2 and parts[2] else None
            records.append(AppRecord(app_id=app_id, origin=origin, latest_commit=latest))

        vlog(f"{len(records)} application(s) with updates", self.verbose)
        return records

    def list_running(self) -> list[RunningInstance]:
        """
        List running application instances.

        Returns:
            One RunningInstance per running instance (duplicates included)

        Raises:
            FetchError: If the instance listing fails
        """
        result = self._run_global("ps", "--columns=application,commit")
        if not result.success:
            raise FetchError(f"Could not list running instances: {result.error_message}")

        return [
            RunningInstance(app_id=parts[0], commit=parts[1])
            for parts in _parse_columns(result.stdout, 2)
            if parts[1]
        ]

    def get_installed_manifest(self, app_id: str) -> str:
        """
        Get the metadata of the installed version of an application.

        Raises:
            FetchError: If the application is not installed or the query fails
        """
        result = self._run("info", "--show-metadata", app_id)
        if not result.success:
            raise FetchError(
                f"Could not read installed metadata of {app_id}: {result.error_message}",
                app_id=app_id,
            )
        if not result.stdout.strip():
            raise FetchError(f"Installed metadata of {app_id} is empty", app_id=app_id)
        return result.stdout

    def get_remote_manifest(self, app_id: str, origin: str) -> str:
        """
        Get the metadata of the version of an application available on a remote.

        Empty output counts as failure: an application without an update
        should never be asked for.

        Raises:
            FetchError: If the remote or application is unknown or the query fails
        """
        result = self._run("remote-info", "--show-metadata", origin, app_id)
        if not result.success:
            raise FetchError(
                f"Could not read metadata of {app_id} from {origin}: {result.error_message}",
                app_id=app_id,
                remediation=f"Check that remote '{origin}' is reachable",
            )
        if not result.stdout.strip():
            raise FetchError(f"Remote {origin} returned no metadata for {app_id}", app_id=app_id)
        return result.stdout

    def get_installed_commit(self, app_id: str) -> str:
        """
        Get the commit of the installed (active) deployment of an application.

        Raises:
            FetchError: If the application is not installed or the query fails
        """
        result = self._run("info", "--show-commit", app_id)
        commit = result.stdout.strip() if result.success else ""
        if not commit:
            raise FetchError(
                f"Could not read installed commit of {app_id}: "
                f"{result.error_message or 'empty output'}",
                app_id=app_id,
            )
        return commit

    def apply_update(self, app_id: str) -> CommandResult:
        """
        Update exactly one application, non-interactively.

        Returns:
            CommandResult of the update invocation
        """
        return self._run("update", "--noninteractive", "--app", app_id)
