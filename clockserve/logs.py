"""Daily JSON log files."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime
from pathlib import Path
from typing import Optional

LOGGER_NAME = "clockserve"
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"
_HANDLER_FLAG = "_clockserve_daily_file"


class _JsonFormatter(logging.Formatter):
    """One JSON object per line with ``level``, ``msg`` and ``time`` keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "level": record.levelname.lower(),
            "msg": record.getMessage(),
            "time": datetime.fromtimestamp(record.created).strftime(TIME_FORMAT),
        }
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def log_file_path(directory: str | Path, day: date) -> Path:
    """Path of the log file for ``day``: ``<directory>/YYYY-MM-DD.log``."""
    return Path(directory) / (day.strftime("%Y-%m-%d") + ".log")


def setup_logger(
    directory: str | Path | None = None,
    now: Optional[datetime] = None,
) -> logging.Logger:
    """Send the package's log records, as JSON lines, to today's log file.

    The directory defaults to ``logs`` under the working directory and is
    created when missing. Calling this again replaces the previous file output.
    """
    folder = Path(directory) if directory is not None else Path.cwd() / "logs"
    folder.mkdir(parents=True, exist_ok=True)
    path = log_file_path(folder, (now or datetime.now()).date())
    path.touch(exist_ok=True)

    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_FLAG, False):
            logger.removeHandler(handler)
            handler.close()

    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setFormatter(_JsonFormatter())
    setattr(handler, _HANDLER_FLAG, True)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    return logger