"""Logging setup for sync runs.

Every run appends to ``<install>/logs/sync.log``; when attached to a terminal
the same records are also rendered on stderr through rich.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class SyncLogFormatter(logging.Formatter):
    """``[2024-01-31 12:00:00] message``, with a level tag for warnings and errors."""

    def __init__(self) -> None:
        super().__init__(datefmt=LOG_DATE_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        message = record.getMessage()
        if record.levelno >= logging.WARNING:
            message = f"{record.levelname}: {message}"
        line = f"[{timestamp}] {message}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(
    log_path: Path | None = None,
    interactive: bool = False,
    level: int = logging.INFO,
) -> logging.Logger:
    """Attach the sync log file and (optionally) a console handler to the package logger.

    Calling it again replaces the handlers installed by a previous call, so the
    CLI can switch to the per-project log file once configuration is loaded.
    If the log file cannot be opened the OSError propagates and the previous
    handlers stay in place.
    """
    handlers: list[logging.Handler] = []
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, mode="a", encoding="utf-8")
        file_handler.setFormatter(SyncLogFormatter())
        handlers.append(file_handler)

    if interactive:
        handlers.append(
            RichHandler(
                console=Console(stderr=True),
                show_path=False,
                log_time_format=f"[{LOG_DATE_FORMAT}]",
            )
        )

    logger = logging.getLogger("ridgesync")
    logger.setLevel(level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)

    return logger


def hand_over_logs(log_dir: Path, user: str) -> None:
    """Make ``user`` the owner of the log directory and the files in it.

    Lets the management user read sync logs without root. Raises LookupError
    for an unknown user and OSError when ownership cannot be changed.
    """
    for path in [log_dir, *log_dir.iterdir()]:
        shutil.chown(path, user=user)
