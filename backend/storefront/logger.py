"""
Storefront Backend — Structured Logger
========================================

What:  Namespaced, leveled, contextual logging that emits one JSON object per call.
Why:   Log aggregation pipelines need machine-parseable entries; developers
       need readable ones. Same entry, two renderings.
How:   `Logger` builds a `LogEntry` (timestamp, level, namespaced message,
       merged context, captured error) and hands it to the stdlib logger
       "storefront". `setup_logging()` installs handlers whose
       `StructuredFormatter` (a python-json-logger `JsonFormatter`) renders
       the entry as pretty JSON in development and single-line JSON
       elsewhere.
Who:   Every middleware and route. `logger` is the default "SERVER" instance;
       modules derive their own with `logger.child("...")`.

Log Format (production, one line):
    {"timestamp": "2024-01-15T12:00:00.000Z", "level": "INFO",
     "message": "[SERVER:http] GET /health - 200", "context": {"duration": 1.2}}

Level policy:
    DEBUG  → emitted only in development (stdlib level gate)
    INFO   → always, stdout
    WARN   → always, stderr
    ERROR  → always, stderr
"""

import logging
import sys
import time
import traceback
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

from pythonjsonlogger import jsonlogger

APP_LOGGER_NAME = "storefront"


class LogLevel(str, Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"


_STDLIB_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}


def _level_from_stdlib(levelno: int) -> LogLevel:
    if levelno >= logging.ERROR:
        return LogLevel.ERROR
    if levelno >= logging.WARNING:
        return LogLevel.WARN
    if levelno >= logging.INFO:
        return LogLevel.INFO
    return LogLevel.DEBUG


def iso_timestamp(epoch_seconds: Optional[float] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a `Z` suffix."""
    if epoch_seconds is None:
        moment = datetime.now(timezone.utc)
    else:
        moment = datetime.fromtimestamp(epoch_seconds, tz=timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def capture_error(exc: BaseException) -> Dict[str, str]:
    """Name, message and formatted stack of an exception."""
    return {
        "name": type(exc).__name__,
        "message": str(exc),
        "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }


@dataclass
class LogEntry:
    timestamp: str
    level: LogLevel
    message: str
    context: Dict[str, Any] = field(default_factory=dict)
    error: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "timestamp": self.timestamp,
            "level": self.level.value,
            "message": self.message,
            "context": self.context,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


class StructuredFormatter(jsonlogger.JsonFormatter):
    """
    Renders records as JSON through python-json-logger.

    Records produced by `Logger` carry a ready `log_entry`; records from
    third-party libraries (uvicorn, httpx) are converted on the fly so the
    whole process writes a single format.
    """

    def __init__(self, pretty: bool = False):
        super().__init__(json_indent=2 if pretty else None)
        self.pretty = pretty

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        # The entry is the whole payload; stdlib record attributes are not copied
        entry = getattr(record, "log_entry", None)
        if entry is None:
            entry = LogEntry(
                timestamp=iso_timestamp(record.created),
                level=_level_from_stdlib(record.levelno),
                message=f"[{record.name}] {record.getMessage()}",
            )
            if record.exc_info and record.exc_info[1] is not None:
                entry.error = capture_error(record.exc_info[1])
        log_record.update(entry.to_dict())


class _BelowLevelFilter(logging.Filter):
    """Passes only records strictly below `level` (keeps WARN/ERROR off stdout)."""

    def __init__(self, level: int):
        super().__init__()
        self.level = level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.level


def setup_logging(settings=None) -> None:
    """
    Configure process-wide log output for the given settings.

    What:    Installs stdout/stderr handlers with `StructuredFormatter` on the
             application logger and on the root logger.
    When:    Once at startup (entry point and app factory). Safe to call again;
             handlers are replaced, not stacked.
    Without: Settings that failed to load; output falls back to single-line
             JSON at INFO, the production rendering.
    """
    pretty = settings is not None and settings.is_development
    root_level = settings.log_level if settings is not None else "INFO"
    formatter = StructuredFormatter(pretty=pretty)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.addFilter(_BelowLevelFilter(logging.WARNING))
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.WARNING)
    stderr_handler.setFormatter(formatter)

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.handlers.clear()
    app_logger.addHandler(stdout_handler)
    app_logger.addHandler(stderr_handler)
    # DEBUG entries are suppressed entirely outside development
    app_logger.setLevel(logging.DEBUG if pretty else logging.INFO)
    app_logger.propagate = False

    root_handler = logging.StreamHandler(sys.stdout)
    root_handler.setFormatter(formatter)
    logging.basicConfig(
        level=getattr(logging, root_level, logging.INFO),
        handlers=[root_handler],
        force=True,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


class Logger:
    """
    Namespaced logger with sticky context.

    Usage:
        log = create_logger("SHOP")
        log.set_context(order_id="o-42")
        log.info("Checkout started", {"items": 3})
        log.error("Checkout failed", exc)

    Children share only the namespace prefix; each instance owns its context.
    """

    def __init__(self, namespace: str = "APP"):
        self.namespace = namespace
        self._context: Dict[str, Any] = {}
        self._sink = logging.getLogger(APP_LOGGER_NAME)

    @property
    def context(self) -> Dict[str, Any]:
        return dict(self._context)

    def set_context(self, context: Optional[Mapping[str, Any]] = None, **values: Any) -> None:
        """Merge values into the context attached to every later entry."""
        self._context = {**self._context, **(context or {}), **values}

    def clear_context(self) -> None:
        self._context = {}

    def child(self, label: str) -> "Logger":
        return Logger(f"{self.namespace}:{label}")

    def log(
        self,
        level: Union[LogLevel, str],
        message: str,
        data: Union[Mapping[str, Any], BaseException, None] = None,
    ) -> None:
        level = LogLevel(level)
        stdlib_level = _STDLIB_LEVELS[level]
        if not self._sink.isEnabledFor(stdlib_level):
            return

        entry = LogEntry(
            timestamp=iso_timestamp(),
            level=level,
            message=f"[{self.namespace}] {message}",
            context=dict(self._context),
        )
        if isinstance(data, BaseException):
            entry.error = capture_error(data)
        elif data:
            entry.context.update(data)

        self._sink.log(stdlib_level, entry.message, extra={"log_entry": entry})

    def debug(self, message: str, data: Optional[Mapping[str, Any]] = None) -> None:
        self.log(LogLevel.DEBUG, message, data)

    def info(self, message: str, data: Optional[Mapping[str, Any]] = None) -> None:
        self.log(LogLevel.INFO, message, data)

    def warn(self, message: str, data: Optional[Mapping[str, Any]] = None) -> None:
        self.log(LogLevel.WARN, message, data)

    warning = warn

    def error(
        self,
        message: str,
        error: Union[BaseException, Mapping[str, Any], None] = None,
    ) -> None:
        self.log(LogLevel.ERROR, message, error)


def create_logger(namespace: str) -> Logger:
    return Logger(namespace)


# Default logger instance
logger = create_logger("SERVER")


def log_request(
    method: str,
    path: str,
    status_code: int,
    duration: float,
    **context: Any,
) -> None:
    """Access-log one request; 5xx → ERROR, 4xx → WARN, else INFO."""
    if status_code >= 500:
        level = LogLevel.ERROR
    elif status_code >= 400:
        level = LogLevel.WARN
    else:
        level = LogLevel.INFO

    logger.log(
        level,
        f"{method} {path} - {status_code}",
        {
            "method": method,
            "path": path,
            "statusCode": status_code,
            "duration": duration,
            **context,
        },
    )


class PerformanceTimer:
    """
    Measures elapsed wall time with a monotonic clock.

        timer = start_timer("render portfolio")
        ...
        elapsed_ms = timer.end()   # also emitted as a debug entry
    """

    def __init__(self, label: str, log: Optional[Logger] = None):
        self.label = label
        self._logger = log or logger
        self._start = time.perf_counter()

    def end(self) -> float:
        duration = round((time.perf_counter() - self._start) * 1000, 2)
        self._logger.debug(f"{self.label} took {duration}ms", {"duration": duration})
        return duration


def start_timer(label: str, log: Optional[Logger] = None) -> PerformanceTimer:
    return PerformanceTimer(label, log)
