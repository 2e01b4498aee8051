"""Logging setup for the chat memory bridge.

Console lines can be colored per call (``logger.info("...", color="green")``),
the optional file log stays plain. Timestamps are rendered in the TIMEZONE
given by the environment.
"""

import logging
import logging.config
import os
from datetime import datetime
from logging import Logger

from pytz import timezone

debug_mode = os.getenv("LOG_LEVEL", "info").lower() == "debug"
loglevel = logging.DEBUG if debug_mode else logging.INFO

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ANSI_RESET = "\033[0m"
ANSI_COLORS: dict[str, str] = {
    "cyan": "\033[36m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "red": "\033[31m",
    "magenta": "\033[35m",
    "blue": "\033[34m",
    "white": "\033[37m",
}

LEVEL_PREFIXES: dict[int, str] = {
    logging.WARNING: "⚠️ ",
    logging.ERROR: "⛔ ",
    logging.CRITICAL: "⛔ ",
}


class TimezoneFormatter(logging.Formatter):
    """Renders timestamps in a pytz timezone and marks warnings and errors."""

    def __init__(self, tz_name: str, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.tz = timezone(tz_name)

    def formatTime(self, record, datefmt=None):
        moment = datetime.fromtimestamp(record.created, self.tz)
        return moment.strftime(datefmt) if datefmt else moment.isoformat()

    def format(self, record):
        # work on a copy, the file handler formats the same record
        record = logging.makeLogRecord(record.__dict__)
        record.msg = LEVEL_PREFIXES.get(record.levelno, "") + record.getMessage()
        record.args = ()
        return super().format(record)


class ColoredFormatter(TimezoneFormatter):
    """Wraps the line in the ANSI color named by the record's ``color`` attribute."""

    def format(self, record) -> str:
        line = super().format(record)
        ansi = ANSI_COLORS.get(getattr(record, "color", None) or "")
        return f"{ansi}{line}{_ANSI_RESET}" if ansi else line


class ColorLogger:
    """Logger wrapper whose log methods accept an optional ``color=`` keyword.

    Every other attribute (setLevel, handlers, ...) is delegated to the
    wrapped :class:`logging.Logger`.
    """

    def __init__(self, logger: Logger):
        self._logger = logger

    def _log(self, level: int, msg, args: tuple, color: str | None, kwargs: dict) -> None:
        if color is not None:
            kwargs["extra"] = {**(kwargs.get("extra") or {}), "color": color}
        kwargs.setdefault("stacklevel", 3)
        self._logger.log(level, msg, *args, **kwargs)

    def debug(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.DEBUG, msg, args, color, kwargs)

    def info(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.INFO, msg, args, color, kwargs)

    def warning(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.WARNING, msg, args, color, kwargs)

    def error(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.ERROR, msg, args, color, kwargs)

    def critical(self, msg, *args, color: str | None = None, **kwargs):
        self._log(logging.CRITICAL, msg, args, color, kwargs)

    def exception(self, msg, *args, color: str | None = None, **kwargs):
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, msg, args, color, kwargs)

    def __getattr__(self, name):
        return getattr(self._logger, name)


def _build_handlers(log_dir: str | None) -> dict:
    handlers: dict = {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "colored",
            "level": loglevel,
            "stream": "ext://sys.stdout",
        },
    }
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "formatter": "standard",
            "level": loglevel,
            "filename": os.path.join(log_dir, "chat_memory.log"),
            "encoding": "utf-8",
        }
    return handlers


def setup_logging(name: str = "chat_memory") -> ColorLogger:
    """Configure root logging and return the application logger.

    A file handler is added when LOG_DIR, or ROOT_DIR/logs, is configured.
    """
    tz_name = os.getenv("TIMEZONE", "Europe/Berlin")
    log_dir = os.getenv("LOG_DIR")
    if not log_dir and os.getenv("ROOT_DIR"):
        log_dir = os.path.join(os.environ["ROOT_DIR"], "logs")

    handlers = _build_handlers(log_dir)
    formatter_options = {"fmt": LOG_FORMAT, "datefmt": DATE_FORMAT, "tz_name": tz_name}
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {"()": TimezoneFormatter, **formatter_options},
            "colored": {"()": ColoredFormatter, **formatter_options},
        },
        "handlers": handlers,
        "root": {"handlers": list(handlers), "level": loglevel},
    })

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug_mode else logging.WARNING)

    return ColorLogger(logging.getLogger(name))
