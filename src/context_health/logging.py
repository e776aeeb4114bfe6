"""Logging configuration for context-health.

Every module logs through a child of the ``context_health`` logger, so one
call to setup_logging() routes the whole package to a single log file under
~/context-health/logs/ (or the configured log directory).
"""

import logging
import sys
from pathlib import Path

PACKAGE_LOGGER = "context_health"

# Default log directory
DEFAULT_LOG_DIR = Path.home() / "context-health" / "logs"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Route package logging to <log_dir>/<name>.log.

    Handlers are attached to the package logger, not to the named component,
    so records from the parser, storage and session modules end up in the
    same file as the component's own. Calling this again replaces the
    handlers installed by the previous call.

    Args:
        name: Component name (used for the log filename)
        log_dir: Directory for log files (defaults to ~/context-health/logs/)
        level: Logging level (defaults to INFO)
        console: Whether to also log to stderr (defaults to True)

    Returns:
        Logger for the named component
    """
    if log_dir is None:
        log_dir = DEFAULT_LOG_DIR

    log_dir.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(level)
    shutdown_logging()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    file_handler = logging.FileHandler(log_dir / f"{name}.log", encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    return get_logger(name)


def shutdown_logging() -> None:
    """Detach and close the handlers installed by setup_logging()."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(package_logger.handlers):
        package_logger.removeHandler(handler)
        handler.close()


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a context-health module.

    Args:
        name: Logger name (will be prefixed with 'context_health.')

    Returns:
        Logger instance
    """
    return logging.getLogger(f"{PACKAGE_LOGGER}.{name}")
