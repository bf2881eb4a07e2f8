"""
Centralized logging configuration for unattended Flatpak upgrades.

Console output for interactive runs and an append-only, timestamped log
file that records every unattended pass.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


LOGGER_NAME = "unattended_flatpak"
LOG_FILE_NAME = "unattended-flatpak-upgrades"

# Global logger instance
_logger: Optional[logging.Logger] = None


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    verbose: bool = False,
    quiet: bool = False,
    propagate: bool = False,
) -> logging.Logger:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the log file; created if missing
        verbose: Enable verbose (DEBUG) output
        quiet: Suppress console output (log file only)
        propagate: Allow log propagation (useful for testing)

    Returns:
        Configured logger instance
    """
    global _logger

    if verbose:
        effective_level = "DEBUG"
    else:
        effective_level = level.upper()

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, effective_level))

    # Replace handlers from a previous setup, closing their files
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    # Console handler (unless quiet)
    if not quiet:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(getattr(logging, effective_level))
        console_handler.setFormatter(ColoredFormatter(
            "%(levelname_colored)s %(message)s",
            use_colors=sys.stdout.isatty(),
        ))
        logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir).expanduser() / LOG_FILE_NAME
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Append mode: this process never truncates the log
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        ))
        logger.addHandler(file_handler)

    logger.propagate = propagate

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """
    Get the configured logger instance.

    If logging hasn't been set up, initializes with defaults.

    Returns:
        Logger instance
    """
    global _logger
    if _logger is None:
        _logger = setup_logging()
    return _logger


def shutdown_logging() -> None:
    """Flush and close every handler attached to the application logger."""
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        try:
            handler.flush()
        finally:
            logger.removeHandler(handler)
            handler.close()


class ColoredFormatter(logging.Formatter):
    """
    Formatter with colored output for different log levels.
    """

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[1;31m', # Bold Red
    }
    RESET = '\033[0m'

    def __init__(self, fmt: str, use_colors: bool = True):
        super().__init__(fmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors."""
        if self.use_colors:
            color = self.COLORS.get(record.levelname, '')
            record.levelname_colored = f"{color}{record.levelname}{self.RESET}"
        else:
            record.levelname_colored = record.levelname

        return super().format(record)
