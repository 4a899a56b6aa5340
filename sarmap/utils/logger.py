"""Logging for sarmap.

Every module asks for its own component logger::

    logger = setup_logger("spatial_folds")

All component loggers share one project logger ("sarmap") that writes to the
console and to size-rotated log files. Records carry the component name so a
single log file can be filtered per pipeline stage. The console shows a level
emoji and, on terminals, ANSI colours; files get plain text.

Environment variables:
- SARMAP_LOG_LEVEL: level used when none is passed (INFO).
- SARMAP_LOG_FILE: log file used when ``log_file`` is not passed.
- NO_COLOR / NO_EMOJI: plain console output.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
from pathlib import Path
import sys
from typing import Any

PROJECT_LOGGER = "sarmap"
DEFAULT_LOG_FILE = Path("logs") / "sarmap.log"
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

# level -> (emoji, ANSI colour)
_LEVEL_STYLE: dict[int, tuple[str, str]] = {
    logging.DEBUG: ("🐞 ", "\x1b[38;5;244m"),
    logging.INFO: ("ℹ️ ", "\x1b[38;5;39m"),
    logging.WARNING: ("⚠️ ", "\x1b[38;5;214m"),
    logging.ERROR: ("❌ ", "\x1b[38;5;196m"),
    logging.CRITICAL: ("🚨 ", "\x1b[48;5;196;38;5;231m"),
}
_ANSI_RESET = "\x1b[0m"


class EmojiFormatter(logging.Formatter):
    """Line formatter with component name, optional level emoji and colour."""

    LINE = "%(asctime)s | %(levelname)-8s | %(component)s | %(marker)s%(message)s"

    def __init__(self, *, colour: bool = False, emoji: bool = False):
        super().__init__(fmt=self.LINE, datefmt="%Y-%m-%d %H:%M:%S")
        self.colour = colour
        self.emoji = emoji

    def format(self, record: logging.LogRecord) -> str:
        record.component = getattr(record, "component", "-")
        # print-style calls, logger.info("R²:", score), have no % placeholders
        if record.args and "%" not in str(record.msg):
            record.msg = " ".join(str(part) for part in (record.msg, *record.args))
            record.args = ()

        marker, ansi = _LEVEL_STYLE.get(record.levelno, ("", ""))
        record.marker = marker if self.emoji else ""
        line = super().format(record)
        return f"{ansi}{line}{_ANSI_RESET}" if self.colour and ansi else line


def _resolve_level(level: int | str | None) -> int:
    if isinstance(level, int):
        return level
    name = str(level or os.getenv("SARMAP_LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _add_file_handler(
    logger: logging.Logger, path: Path, max_bytes: int, backup_count: int
) -> None:
    """Attach a rotating file handler unless one already writes to ``path``."""
    target = str(path.resolve())
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler) and handler.baseFilename == target:
            return
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            target, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
    except OSError:
        logger.exception("Cannot write log file %s, logging to console only", target)
        return
    handler.setFormatter(EmojiFormatter())
    logger.addHandler(handler)


def get_logger(
    name: str = PROJECT_LOGGER, *, level: int | str | None = None
) -> logging.Logger:
    """Return the project logger, adding the console handler on first use.

    Args:
        name: Logger name; modules share the project logger
        level: Level override, applied whenever given

    Returns:
        The ``logging.Logger``
    """
    logger = logging.getLogger(name)
    if level is not None or not logger.handlers:
        logger.setLevel(_resolve_level(level))

    if not any(type(h) is logging.StreamHandler for h in logger.handlers):
        console = logging.StreamHandler()
        console.setFormatter(
            EmojiFormatter(
                colour=sys.stdout.isatty() and "NO_COLOR" not in os.environ,
                emoji="NO_EMOJI" not in os.environ,
            )
        )
        logger.addHandler(console)
        logger.propagate = False
    return logger


class ComponentLogger(logging.LoggerAdapter):
    """Adapter stamping the pipeline component on every record."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        extra = kwargs.setdefault("extra", {})
        extra["component"] = (self.extra or {}).get("component", "-")
        return msg, kwargs


def setup_logger(
    component: str,
    *,
    level: int | str | None = None,
    logger_name: str = PROJECT_LOGGER,
    log_file: str | Path | None = None,
    rotate: bool = True,
    max_bytes: int = MAX_LOG_BYTES,
    backup_count: int = LOG_BACKUPS,
) -> ComponentLogger:
    """Return a logger for one pipeline component.

    Args:
        component: Name written into every record (e.g. "spatial_folds")
        level: Optional level override
        logger_name: Shared project logger
        log_file: Log file; falls back to ``SARMAP_LOG_FILE``, then logs/sarmap.log
        rotate: Also write to a size-rotated log file
        max_bytes: Size at which the log file rotates
        backup_count: Rotated files kept

    Returns:
        ComponentLogger
    """
    logger = get_logger(logger_name, level=level)
    if rotate:
        path = Path(log_file or os.getenv("SARMAP_LOG_FILE") or DEFAULT_LOG_FILE)
        _add_file_handler(logger, path, max_bytes, backup_count)
    return ComponentLogger(logger, {"component": component})


__all__ = ["EmojiFormatter", "ComponentLogger", "get_logger", "setup_logger"]
