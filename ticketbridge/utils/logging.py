"""Logging configuration for ticketbridge.

Library modules log through ``logging.getLogger(__name__)`` and never
configure handlers themselves. This module wires the ``ticketbridge``
logger for the CLI, controlled by environment variables.

Environment Variables:
    TICKETBRIDGE_LOG: Set to "true" to enable logging (default: "false")
    TICKETBRIDGE_LOG_FILE: Path to log file (default: ~/.ticketbridge.log)
    TICKETBRIDGE_LOG_LEVEL: Level name for the file handler (default: INFO)
"""

import logging
import os
from pathlib import Path

# Environment variable configuration
LOG_ENABLED = os.environ.get("TICKETBRIDGE_LOG", "false").lower() == "true"
LOG_FILE = Path(
    os.environ.get("TICKETBRIDGE_LOG_FILE", str(Path.home() / ".ticketbridge.log"))
)
LOG_LEVEL = os.environ.get("TICKETBRIDGE_LOG_LEVEL", "INFO").upper()

LOGGER_NAME = "ticketbridge"

# Module-level logger instance
_logger: logging.Logger | None = None


def setup_logging(*, enabled: bool | None = None, log_file: Path | None = None) -> logging.Logger:
    """Configure the package logger.

    Creates a logger that writes to the configured log file when
    TICKETBRIDGE_LOG is set to "true". Otherwise, uses a NullHandler
    to suppress all log output.

    Args:
        enabled: Override for TICKETBRIDGE_LOG (used by the CLI --log flag)
        log_file: Override for TICKETBRIDGE_LOG_FILE

    Returns:
        Configured logger instance
    """
    global _logger

    if _logger is not None and enabled is None and log_file is None:
        return _logger

    logger = logging.getLogger(LOGGER_NAME)

    # Clear any existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    effective_enabled = LOG_ENABLED if enabled is None else enabled
    effective_file = log_file or LOG_FILE

    if effective_enabled:
        effective_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(effective_file)
        file_handler.setFormatter(
            logging.Formatter(
                "[%(asctime)s] %(levelname)s %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)
        logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    else:
        logger.addHandler(logging.NullHandler())

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """Get the configured package logger, creating it if necessary."""
    global _logger
    if _logger is None:
        return setup_logging()
    return _logger


def log_message(message: str) -> None:
    """Log a message if logging is enabled.

    Used by the console helpers so that everything printed to the terminal
    also ends up in the log file.

    Args:
        message: Message to log
    """
    get_logger().info(message)


def log_request(method: str, url: str, status_code: int | None, attempt: int) -> None:
    """Log one HTTP exchange without headers or bodies.

    Args:
        method: HTTP method
        url: Request URL
        status_code: Response status, or None when no response arrived
        attempt: 1-based attempt number
    """
    status = status_code if status_code is not None else "no response"
    get_logger().debug(f"HTTP {method} {url} -> {status} (attempt {attempt})")


__all__ = [
    "LOG_ENABLED",
    "LOG_FILE",
    "LOGGER_NAME",
    "setup_logging",
    "get_logger",
    "log_message",
    "log_request",
]
