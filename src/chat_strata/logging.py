"""Logging configuration for chat-strata.

Provides centralized logging setup with file output to ~/chat-strata/logs/.
"""

import logging
import sys
from pathlib import Path

# Default log directory
DEFAULT_LOG_DIR = Path.home() / "chat-strata" / "logs"


def setup_logging(
    name: str,
    log_dir: Path | None = None,
    level: int | str = logging.INFO,
    console: bool = True,
) -> logging.Logger:
    """Configure logging for a chat-strata component.

    Creates a logger with both file and optional console handlers.
    Log files are written to <log_dir>/<name>.log.

    Args:
        name: Logger name (used for log filename)
        log_dir: Directory for log files (defaults to ~/chat-strata/logs/)
        level: Logging level, as a number or a name such as "DEBUG"
        console: Whether to also log to console (defaults to True)

    Returns:
        Configured logger instance
    """
    if log_dir is None:
        log_dir = DEFAULT_LOG_DIR

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    log_dir.mkdir(parents=True, exist_ok=True)

    # Component loggers propagate here, so handlers live on the package logger
    root = logging.getLogger("chat_strata")
    root.setLevel(level)

    logger = logging.getLogger(f"chat_strata.{name}")

    # Avoid adding duplicate handlers if already configured
    if root.handlers:
        return logger

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    log_file = log_dir / f"{name}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger for a chat-strata component.

    This function returns an existing logger or creates a basic one.
    For full configuration with file output, use setup_logging().

    Args:
        name: Logger name (will be prefixed with 'chat_strata.')

    Returns:
        Logger instance
    """
    return logging.getLogger(f"chat_strata.{name}")
