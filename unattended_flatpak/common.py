"""
Common utilities shared across unattended_flatpak modules.
"""

from __future__ import annotations

import os
import subprocess
import sys
from dataclasses import dataclass
from typing import Sequence


@dataclass(frozen=True)
class CommandResult:
    """
    Result of running one external command.

    Attributes:
        command: The command that was executed
        success: Whether the command exited with status 0
        stdout: Standard output from command execution
        stderr: Standard error from command execution
        exit_code: Process exit code (-1 if the command could not be started)
        error_message: Human-readable error message if failed
    """
    command: tuple[str, ...]
    success: bool
    stdout: str
    stderr: str
    exit_code: int
    error_message: str | None = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "command": list(self.command),
            "success": self.success,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "exit_code": self.exit_code,
            "error_message": self.error_message,
        }


def run_command(command: Sequence[str], verbose: bool = False) -> CommandResult:
    """
    Run an external command synchronously and capture its output.

    No timeout is applied: a hanging command blocks the caller until it
    exits or the process is killed.

    Args:
        command: Command and arguments
        verbose: Enable verbose logging

    Returns:
        CommandResult describing the outcome (never raises for command failures)
    """
    command = tuple(command)
    vlog(f"Executing: {' '.join(command)}", verbose)

    try:
        result = subprocess.run(
            command,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError:
        return CommandResult(
            command=command,
            success=False,
            stdout="",
            stderr="",
            exit_code=-1,
            error_message=f"Command not found: {command[0]}",
        )
    except OSError as e:
        return CommandResult(
            command=command,
            success=False,
            stdout="",
            stderr="",
            exit_code=-1,
            error_message=f"Could not execute {command[0]}: {e}",
        )

    success = result.returncode == 0
    error_msg = None
    if not success:
        error_msg = f"Command failed with exit code {result.returncode}"
        if result.stderr:
            error_msg += f": {result.stderr.strip()[:200]}"

    return CommandResult(
        command=command,
        success=success,
        stdout=result.stdout,
        stderr=result.stderr,
        exit_code=result.returncode,
        error_message=error_msg,
    )


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log verbose message using structured logging.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or os.environ.get("UNATTENDED_FLATPAK_DEBUG", "0") == "1":
        try:
            from .logging_config import get_logger
            get_logger().debug(msg)
        except Exception:
            try:
                print(f"[unattended_flatpak] {msg}", file=sys.stderr)
            except Exception:
                pass
