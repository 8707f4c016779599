"""Log routing for the tracker and seeder processes.

Every logger lives under the ``bitseed`` namespace. Records are tagged with
a correlation id taken from a context variable, so the lines belonging to
one announce or one peer connection can be grepped together. Output goes to
the console, to a rotating file, to both, or to a NullHandler when neither
is configured.
"""

from __future__ import annotations

import json
import logging
import logging.config
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    from bitseed.models import ObservabilityConfig

ROOT_LOGGER = "bitseed"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

CONSOLE_FORMAT = "[%(correlation_id)s] %(threadName)s %(name)s: %(message)s"
FILE_FORMAT = "[%(asctime)s] [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s"

_correlation: ContextVar[str | None] = ContextVar("bitseed_correlation", default=None)

# Attributes every LogRecord carries; anything else was passed through ``extra``.
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "correlation_id",
    "taskName",
}


def _new_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


class CorrelationFilter(logging.Filter):
    """Stamp ``correlation_id`` on each record, ``-`` when none is active."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _correlation.get() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line.

    Fields passed with ``extra=`` (``info_hash``, ``peer``, ...) are copied
    to the top level of the object next to the fixed keys.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES and key not in payload:
                payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _level_name(level: Any) -> str:
    return str(getattr(level, "value", level)).upper()


def create_console_handler(**kwargs: Any) -> RichHandler:
    """RichHandler writing to stderr; it renders the time and level columns."""
    return RichHandler(
        console=Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        log_time_format=f"[{DATE_FORMAT}]",
        **kwargs,
    )


def _console_handler(level: str, structured: bool) -> dict[str, Any]:
    if structured:
        # Plain JSON lines, unrendered.
        return {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "structured",
            "filters": ["correlation"],
            "stream": sys.stderr,
        }
    return {
        "()": create_console_handler,
        "level": level,
        "formatter": "console",
        "filters": ["correlation"],
    }


def _file_handler(level: str, structured: bool, filename: str) -> dict[str, Any]:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": "structured" if structured else "simple",
        "filters": ["correlation"],
        "filename": filename,
        "maxBytes": LOG_FILE_MAX_BYTES,
        "backupCount": LOG_FILE_BACKUPS,
        "encoding": "utf-8",
    }


def build_logging_config(config: ObservabilityConfig) -> dict[str, Any]:
    """Translate the ``[observability]`` section into a ``dictConfig`` dict."""
    level = _level_name(config.log_level)
    structured = config.structured_logging

    handlers: dict[str, dict[str, Any]] = {}
    if config.console:
        handlers["console"] = _console_handler(level, structured)
    if config.log_file:
        handlers["file"] = _file_handler(level, structured, config.log_file)
    if not handlers:
        handlers["blackhole"] = {"class": "logging.NullHandler"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"correlation": {"()": CorrelationFilter}},
        "formatters": {
            "console": {"format": CONSOLE_FORMAT},
            "simple": {"format": FILE_FORMAT, "datefmt": DATE_FORMAT},
            "structured": {"()": StructuredFormatter},
        },
        "handlers": handlers,
        "loggers": {
            ROOT_LOGGER: {"level": level, "handlers": list(handlers), "propagate": False},
        },
    }


def setup_logging(config: ObservabilityConfig) -> None:
    """Apply the observability section to the ``bitseed`` logger tree."""
    if config.log_file:
        Path(config.log_file).parent.mkdir(parents=True, exist_ok=True)
    logging.config.dictConfig(build_logging_config(config))
    if config.log_correlation_id:
        set_correlation_id()


def get_logger(name: str) -> logging.Logger:
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


def set_correlation_id(corr_id: str | None = None) -> str:
    """Bind ``corr_id`` (or a fresh 8 character id) to the current context."""
    corr_id = corr_id or _new_correlation_id()
    _correlation.set(corr_id)
    return corr_id


def get_correlation_id() -> str | None:
    return _correlation.get()


class LoggingContext:
    """Log the start, end and duration of a named operation.

    A fresh correlation id is bound on entry. Exceptions are logged and
    re-raised.
    """

    def __init__(self, operation: str, logger: logging.Logger | None = None, **fields: Any):
        self.operation = operation
        self.fields = fields
        self.logger = logger or get_logger(ROOT_LOGGER)
        self.elapsed = 0.0
        self._started = 0.0

    def __enter__(self) -> LoggingContext:
        set_correlation_id()
        self._started = time.perf_counter()
        self.logger.info("Starting %s", self.operation, extra=self.fields)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.elapsed = time.perf_counter() - self._started
        if exc is None:
            self.logger.info("Completed %s (%.3fs)", self.operation, self.elapsed, extra=self.fields)
        else:
            self.logger.error(
                "Failed %s after %.3fs: %s", self.operation, self.elapsed, exc, extra=self.fields
            )
        return False


def log_exception(logger: logging.Logger, exc: BaseException, context: str) -> None:
    """Log ``exc`` at error level with its traceback and any ``details``."""
    message = getattr(exc, "message", None) or str(exc)
    details = getattr(exc, "details", None)
    extra = {"details": details} if details else None
    logger.error("%s: %s", context, message, exc_info=exc, extra=extra)
