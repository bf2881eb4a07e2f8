"""
Command line entry point.

Runs one unattended pass: dependency check, the permission-gated upgrade
pass and, unless disabled, the outdated running-instance check. Meant to
be started periodically by a systemd timer or cron.
"""

from __future__ import annotations

import argparse
import atexit
import json
import signal
import sys
from functools import partial

from . import __version__
from .config import ConfigError, load_config
from .flatpak import FetchError, FlatpakCli
from .logging_config import get_logger, setup_logging, shutdown_logging
from .notify import notify
from .outdated import check_outdated_instances
from .prerequisites import MissingDependencyError, ensure_dependencies
from .upgrade import run_upgrade_pass


EXIT_OK = 0
EXIT_UPDATE_FAILED = 1
EXIT_FATAL = 2

_finished = True
_atexit_registered = False


def _finish() -> None:
    """Write the closing log line and release the log sink; runs once per pass."""
    global _finished
    if _finished:
        return
    _finished = True
    get_logger().info("done")
    shutdown_logging()


def _terminate(signum, frame) -> None:
    # Turn termination into a normal exit so atexit handlers run
    raise SystemExit(128 + signum)


def _install_exit_handlers() -> None:
    global _atexit_registered
    if not _atexit_registered:
        atexit.register(_finish)
        _atexit_registered = True
    for signum in (signal.SIGTERM, signal.SIGHUP):
        signal.signal(signum, _terminate)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="unattended-flatpak-upgrades",
        description=(
            "Update Flatpak applications unattended, holding back updates "
            "that change sandbox permissions"
        ),
    )
    parser.add_argument(
        "apps",
        nargs="*",
        help="Only consider these application ids",
    )
    parser.add_argument("--config", help="Path to a configuration file")
    parser.add_argument("--log-dir", help="Directory for the log file")
    scope = parser.add_mutually_exclusive_group()
    scope.add_argument("--user", dest="installation", action="store_const", const="user",
                       help="Only operate on the per-user installation")
    scope.add_argument("--system", dest="installation", action="store_const", const="system",
                       help="Only operate on the system-wide installation")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        default=None,
        help="Compare permissions but do not apply updates",
    )
    parser.add_argument(
        "--no-outdated-check",
        dest="check_outdated_instances",
        action="store_false",
        default=None,
        help="Skip the outdated running-instance check",
    )
    parser.add_argument(
        "--no-notify",
        dest="notify",
        action="store_false",
        default=None,
        help="Do not send desktop notifications",
    )
    parser.add_argument("--json", action="store_true", help="Print the pass results as JSON")
    parser.add_argument("--verbose", "-v", dest="debug", action="store_true", default=None,
                        help="Verbose output")
    parser.add_argument("--quiet", "-q", action="store_true", help="No console output, log file only")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for one unattended pass."""
    global _finished

    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config, verbose=bool(args.debug)).with_overrides(
            log_dir=args.log_dir,
            installation=args.installation,
            dry_run=args.dry_run,
            check_outdated_instances=args.check_outdated_instances,
            notify=args.notify,
            debug=args.debug,
        )
    except ConfigError as e:
        print(f"ERR: {e}", file=sys.stderr)
        return EXIT_FATAL

    verbose = config.debug
    # JSON goes to stdout, so the log only goes to the file
    logger = setup_logging(log_dir=config.log_dir, verbose=verbose, quiet=args.quiet or args.json)
    _finished = False
    _install_exit_handlers()

    try:
        logger.info("started")
        if config.source:
            logger.debug(f"Using config: {config.source}")

        try:
            report = ensure_dependencies(verbose)
        except MissingDependencyError as e:
            for name in e.missing:
                logger.error(f"missing {name}")
            logger.error("aborting ...")
            return EXIT_FATAL

        notifier = None
        if config.notify:
            if "notify-send" in report.missing_optional:
                logger.warning("notify-send not found, notifications disabled")
            else:
                notifier = partial(notify, verbose=verbose)

        flatpak = FlatpakCli(installation=config.installation, verbose=verbose)
        exit_code = EXIT_OK
        output: dict = {"config": config.to_dict()}

        try:
            pass_result = run_upgrade_pass(
                flatpak,
                config,
                app_ids=args.apps,
                notifier=notifier,
                verbose=verbose,
            )
        except FetchError as e:
            logger.error(e.message)
            exit_code = EXIT_UPDATE_FAILED
        else:
            output["upgrade"] = pass_result.to_dict()
            if pass_result.failed:
                exit_code = EXIT_UPDATE_FAILED

        if config.check_outdated_instances:
            try:
                outdated_result = check_outdated_instances(flatpak, notifier=notifier, verbose=verbose)
            except FetchError as e:
                logger.warning(e.message)
            else:
                output["outdated"] = outdated_result.to_dict()

        if args.json:
            print(json.dumps(output, indent=2))

        return exit_code
    finally:
        _finish()


if __name__ == "__main__":
    sys.exit(main())
