"""Console and file logging for couchstream runners.

Reads LOG_LEVEL, TIMEZONE and LOG_DIR. Timestamps are rendered in the
configured pytz zone; console lines can be tinted per call with ``color=``.
"""

import logging
import logging.config
import os
from datetime import datetime
from logging import Logger

from pytz import timezone

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_NAME = "couchstream.log"

ANSI_COLORS: dict[str, str] = {
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "magenta": "\033[35m",
    "cyan": "\033[36m",
    "white": "\033[37m",
}
ANSI_RESET = "\033[0m"

LEVEL_MARKERS: dict[int, str] = {
    logging.ERROR: "⛔ ",
    logging.WARNING: "⚠️ ",
}


class ZonedFormatter(logging.Formatter):
    """Formats records with timestamps in a fixed timezone and a level marker."""

    def __init__(self, tz_name: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.zone = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        stamp = datetime.fromtimestamp(record.created, self.zone)
        if datefmt:
            return stamp.strftime(datefmt)
        return stamp.isoformat()

    def format(self, record):
        try:
            text = record.getMessage()
        except (TypeError, ValueError):
            text = str(record.msg)
        # records are shared between handlers
        marked = logging.makeLogRecord(record.__dict__)
        marked.msg = LEVEL_MARKERS.get(record.levelno, "") + text
        marked.args = ()
        return super().format(marked)


class TintedFormatter(ZonedFormatter):
    """Wraps the line in the ANSI code named by the record's ``color`` attribute."""

    def format(self, record) -> str:
        line = super().format(record)
        code = ANSI_COLORS.get(getattr(record, "color", None) or "")
        if not line or not code:
            return line
        return f"{code}{line}{ANSI_RESET}"


def _level_method(level_name: str):
    def emit(self, msg, *args, color: str | None = None, **kwargs):
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        getattr(self._logger, level_name)(msg, *args, **kwargs)

    emit.__name__ = level_name
    return emit


class ColorLogger:
    """Logger proxy whose level methods accept ``color=<name>``.

    The color only reaches the console handler, e.g.
    ``logger.info("change received", color="cyan")``.
    Anything else (handlers, setLevel, ...) is forwarded to the wrapped logger.
    """

    def __init__(self, logger: Logger):
        self._logger = logger

    debug = _level_method("debug")
    info = _level_method("info")
    warning = _level_method("warning")
    error = _level_method("error")
    critical = _level_method("critical")
    exception = _level_method("exception")

    def log(self, level: int, msg, *args, color: str | None = None, **kwargs):
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        self._logger.log(level, msg, *args, **kwargs)

    def __getattr__(self, name):
        return getattr(self._logger, name)


def _formatter(factory: type[logging.Formatter], tz_name: str) -> dict:
    return {"()": factory, "format": LOG_FORMAT, "datefmt": DATE_FORMAT, "tz_name": tz_name}


def setup_logging() -> ColorLogger:
    """Install the console handler (and a file handler when LOG_DIR is set).

    Returns:
        ColorLogger: The "couchstream" logger.
    """
    debug = os.getenv("LOG_LEVEL", "info").strip().lower() == "debug"
    level = logging.DEBUG if debug else logging.INFO
    tz_name = os.getenv("TIMEZONE", "UTC")

    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "tinted",
            "level": level,
            "stream": "ext://sys.stdout",
        },
    }
    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "plain",
            "level": level,
            "filename": os.path.join(log_dir, LOG_FILE_NAME),
            "encoding": "utf-8",
        }

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": _formatter(ZonedFormatter, tz_name),
            "tinted": _formatter(TintedFormatter, tz_name),
        },
        "handlers": handlers,
        "root": {"handlers": list(handlers), "level": level},
    })

    # request lines from httpx only in debug
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)

    return ColorLogger(logging.getLogger("couchstream"))
