"""
Structured Logging for lexilot-jobs.

This module provides:
- Structured JSON logging with consistent fields
- Job context correlation (job_id, owner_id, job_type)
- Timing helpers for handler execution
- Text output for local development
"""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any

ROOT_LOGGER_NAME = "lexilot_jobs"


# =============================================================================
# Log Context
# =============================================================================


@dataclass
class LogContext:
    """Context information attached to log records."""

    trace_id: str | None = None
    job_id: str | None = None
    owner_id: str | None = None
    job_type: str | None = None
    operation: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = {k: v for k, v in asdict(self).items() if v is not None and k != "extra"}
        d.update(self.extra)
        return d

    def with_update(self, **kwargs) -> LogContext:
        """Create a new context with updated values."""
        return LogContext(
            trace_id=kwargs.get("trace_id", self.trace_id),
            job_id=kwargs.get("job_id", self.job_id),
            owner_id=kwargs.get("owner_id", self.owner_id),
            job_type=kwargs.get("job_type", self.job_type),
            operation=kwargs.get("operation", self.operation),
            extra={**self.extra, **kwargs.get("extra", {})},
        )


# Task-local context shared by every StructuredLogger
_log_context: ContextVar[LogContext] = ContextVar("lexilot_log_context", default=LogContext())


# =============================================================================
# Structured Logger
# =============================================================================


class StructuredLogger:
    """
    Logger with structured JSON output and context tracking.

    Example:
        ```python
        logger = get_logger("lexilot_jobs.dispatcher")

        with logger.job_context(job_id=job.job_id, job_type=job.job_type):
            logger.info("Job started")
        ```
    """

    def __init__(
        self,
        name: str = ROOT_LOGGER_NAME,
        level: str | None = None,
        json_output: bool = True,
        attach_handler: bool = False,
    ):
        self.name = name
        self.json_output = json_output

        self._logger = logging.getLogger(name)
        if level is not None:
            self._logger.setLevel(getattr(logging, level.upper()))

        if attach_handler:
            for existing in list(self._logger.handlers):
                if getattr(existing, "_lexilot_handler", False):
                    self._logger.removeHandler(existing)
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(JSONFormatter() if json_output else TextFormatter())
            handler._lexilot_handler = True  # type: ignore[attr-defined]
            self._logger.addHandler(handler)

    @property
    def context(self) -> LogContext:
        return _log_context.get()

    @contextmanager
    def job_context(self, trace_id: str | None = None, **kwargs) -> Iterator[str]:
        """
        Context manager correlating every record with one job.

        Args:
            trace_id: Trace ID (auto-generated if not provided)
            **kwargs: Context fields (job_id, owner_id, job_type, operation)

        Yields:
            The trace ID
        """
        trace_id = trace_id or generate_trace_id()
        token = _log_context.set(_log_context.get().with_update(trace_id=trace_id, **kwargs))
        try:
            yield trace_id
        finally:
            _log_context.reset(token)

    def _log(
        self,
        level: int,
        message: str,
        event_type: str | None = None,
        data: dict[str, Any] | None = None,
        exc_info: bool = False,
    ) -> None:
        """Internal logging method."""
        record_data = {
            "message": message,
            **_log_context.get().to_dict(),
        }

        if event_type:
            record_data["event_type"] = event_type

        if data:
            record_data.update(data)

        if self.json_output:
            self._logger.log(level, json.dumps(record_data, default=str), exc_info=exc_info)
        else:
            extras = " ".join(f"{k}={v}" for k, v in record_data.items() if k != "message")
            self._logger.log(level, f"{message} {extras}".rstrip(), exc_info=exc_info)

    def debug(self, message: str, **kwargs) -> None:
        self._log(logging.DEBUG, message, data=kwargs)

    def info(self, message: str, **kwargs) -> None:
        self._log(logging.INFO, message, data=kwargs)

    def warning(self, message: str, **kwargs) -> None:
        self._log(logging.WARNING, message, data=kwargs)

    def error(self, message: str, **kwargs) -> None:
        self._log(logging.ERROR, message, data=kwargs)

    def exception(self, message: str, **kwargs) -> None:
        """Log at ERROR level with the active exception's traceback."""
        self._log(logging.ERROR, message, data=kwargs, exc_info=True)

    def log_event(self, event_type: str, message: str, level: int = logging.INFO, **kwargs) -> None:
        """Log a typed lifecycle event (job.created, monitor.notified, ...)."""
        self._log(level, message, event_type=event_type, data=kwargs)


# =============================================================================
# Formatters
# =============================================================================


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JSONFormatter(logging.Formatter):
    """One JSON object per line; payloads written by StructuredLogger are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        entry: dict[str, Any] = {
            "timestamp": _record_time(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        payload: Any = None
        if message.startswith("{"):
            try:
                payload = json.loads(message)
            except json.JSONDecodeError:
                payload = None
        if isinstance(payload, dict):
            entry.update(payload)
        else:
            entry["message"] = message

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Single-line output for local runs."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = _record_time(record).strftime("%H:%M:%S.%f")[:-3]
        line = f"{stamp} {record.levelname:<7} [{record.name}] {record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


# =============================================================================
# Utilities
# =============================================================================


def generate_trace_id() -> str:
    return f"trace_{uuid.uuid4().hex[:16]}"


def truncate_for_log(text: str, max_length: int = 200) -> str:
    """Shorten payload text (handler errors, results) before it is logged."""
    if len(text) > max_length:
        return f"{text[:max_length]}... ({len(text)} chars total)"
    return text


@dataclass
class Timer:
    """Wall-clock duration of a block, in milliseconds."""

    start_time: float = field(default_factory=time.perf_counter)
    end_time: float | None = None

    @property
    def elapsed_ms(self) -> float:
        end = time.perf_counter() if self.end_time is None else self.end_time
        return (end - self.start_time) * 1000.0


@contextmanager
def timed() -> Iterator[Timer]:
    """Time the enclosed block; ``elapsed_ms`` is frozen on exit."""
    timer = Timer()
    try:
        yield timer
    finally:
        timer.end_time = time.perf_counter()


# =============================================================================
# Global Loggers
# =============================================================================

_loggers: dict[str, StructuredLogger] = {}
_json_output: bool = True


def get_logger(name: str = ROOT_LOGGER_NAME) -> StructuredLogger:
    """Get or create a structured logger.

    Child loggers propagate to the ``lexilot_jobs`` logger, which receives its
    handler from :func:`configure_logging`.
    """
    logger = _loggers.get(name)
    if logger is None:
        logger = StructuredLogger(name, json_output=_json_output)
        _loggers[name] = logger
    return logger


def configure_logging(
    level: str = "INFO",
    json_output: bool = True,
) -> StructuredLogger:
    """Configure the package logger and the output format of every logger."""
    global _json_output
    _json_output = json_output
    for logger in _loggers.values():
        logger.json_output = json_output

    root = StructuredLogger(
        ROOT_LOGGER_NAME,
        level=level,
        json_output=json_output,
        attach_handler=True,
    )
    _loggers[ROOT_LOGGER_NAME] = root
    return root


__all__ = [
    "LogContext",
    "StructuredLogger",
    "JSONFormatter",
    "TextFormatter",
    "Timer",
    "timed",
    "generate_trace_id",
    "truncate_for_log",
    "get_logger",
    "configure_logging",
]
