"""File-based debug logging for the host process.

stdout carries protocol frames, so log records go to a file
(never to stdout). The file is trimmed to its last
MAX_LOG_LINES lines at startup.
"""
from __future__ import annotations

import logging
from pathlib import Path

LOGGER_NAME = "nmhost"
DEFAULT_LOG_FILE = Path.home() / ".local" / "lib" / "nmhost" / "debug.log"
MAX_LOG_LINES = 1000
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%dT%H:%M:%S"


def _truncate_log(log_file: Path, max_lines: int) -> None:
    """Keep only the last max_lines lines of log_file."""
    if not log_file.exists():
        return
    try:
        lines = log_file.read_text(encoding="utf-8").splitlines()
        if len(lines) > max_lines:
            log_file.write_text(
                "\n".join(lines[-max_lines:]) + "\n", encoding="utf-8",
            )
    except OSError:
        pass


def setup_debug_logging(
    log_file: Path | None = None,
    level: int = logging.DEBUG,
) -> logging.Logger:
    """Attach a file handler to the package logger.

    Idempotent: a logger that already has handlers is returned
    unchanged. If the log file cannot be opened the host keeps
    running without file logging.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    # Don't add handlers if already configured
    if logger.handlers:
        return logger

    log_file = log_file or DEFAULT_LOG_FILE
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        _truncate_log(log_file, MAX_LOG_LINES)
        handler = logging.FileHandler(str(log_file), encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(
            logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT),
        )
        logger.addHandler(handler)
    except OSError:
        # If we can't write logs, continue without them
        logger.addHandler(logging.NullHandler())

    return logger
