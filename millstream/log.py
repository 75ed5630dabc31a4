"""Structured logging adapters: a no-op logger, a stream logger and a capturing logger."""

from __future__ import annotations

import inspect
import os
import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Mapping, TextIO


class LogFields(dict):
    """Key-value fields attached to a log entry."""

    def add(self, new_fields: Mapping[str, Any] | None) -> "LogFields":
        """Return a new LogFields holding these fields overridden by ``new_fields``."""
        result = LogFields(self)
        if new_fields:
            result.update(new_fields)
        return result

    def copy(self) -> "LogFields":
        """Return a shallow copy."""
        return LogFields(self)


def _as_fields(fields: Mapping[str, Any] | None) -> LogFields:
    return LogFields(fields or {})


class LoggerAdapter(ABC):
    """Interface every logger used by the package implements."""

    @abstractmethod
    def error(self, msg: str, err: BaseException | None, fields: Mapping[str, Any] | None = None) -> None:
        """Log an error."""

    @abstractmethod
    def info(self, msg: str, fields: Mapping[str, Any] | None = None) -> None:
        """Log an informational message."""

    @abstractmethod
    def debug(self, msg: str, fields: Mapping[str, Any] | None = None) -> None:
        """Log a debug message."""

    @abstractmethod
    def trace(self, msg: str, fields: Mapping[str, Any] | None = None) -> None:
        """Log a trace message."""

    @abstractmethod
    def with_fields(self, fields: Mapping[str, Any] | None) -> "LoggerAdapter":
        """Return a logger that adds ``fields`` to every entry."""


class NopLogger(LoggerAdapter):
    """Logger that discards everything."""

    def error(self, msg, err, fields=None):
        pass

    def info(self, msg, fields=None):
        pass

    def debug(self, msg, fields=None):
        pass

    def trace(self, msg, fields=None):
        pass

    def with_fields(self, fields):
        return self


class _StreamWriter:
    """Writes prefixed, timestamped lines to a text stream."""

    def __init__(self, out: TextIO, prefix: str = "[millstream] ") -> None:
        self._out = out
        self._prefix = prefix
        self._lock = threading.Lock()

    def write(self, location: str, text: str) -> None:
        stamp = datetime.now().strftime("%Y/%m/%d %H:%M:%S.%f")
        line = f"{self._prefix}{stamp} {location}: {text}\n"
        with self._lock:
            self._out.write(line)
            flush = getattr(self._out, "flush", None)
            if flush is not None:
                flush()


def _format_value(value: Any) -> str:
    if value is None:
        return "<nil>"
    return str(value)


def _caller_location() -> str:
    # Skips this helper, the adapter's _log and the public level method.
    frame = inspect.currentframe()
    try:
        for _ in range(3):
            if frame is None:
                return "???:0"
            frame = frame.f_back
        if frame is None:
            return "???:0"
        return f"{os.path.basename(frame.f_code.co_filename)}:{frame.f_lineno}"
    finally:
        del frame


@dataclass
class StdLoggerAdapter(LoggerAdapter):
    """Logger writing ``key=value`` lines to a stream; a level without a writer is disabled."""

    error_logger: _StreamWriter | None = None
    info_logger: _StreamWriter | None = None
    debug_logger: _StreamWriter | None = None
    trace_logger: _StreamWriter | None = None
    fields: LogFields = field(default_factory=LogFields)

    def error(self, msg, err, fields=None):
        self._log(self.error_logger, "ERROR", msg, _as_fields(fields).add({"err": err}))

    def info(self, msg, fields=None):
        self._log(self.info_logger, "INFO ", msg, _as_fields(fields))

    def debug(self, msg, fields=None):
        self._log(self.debug_logger, "DEBUG", msg, _as_fields(fields))

    def trace(self, msg, fields=None):
        self._log(self.trace_logger, "TRACE", msg, _as_fields(fields))

    def with_fields(self, fields):
        return StdLoggerAdapter(
            error_logger=self.error_logger,
            info_logger=self.info_logger,
            debug_logger=self.debug_logger,
            trace_logger=self.trace_logger,
            fields=LogFields(self.fields).add(fields),
        )

    def _log(self, writer: _StreamWriter | None, level: str, msg: str, fields: LogFields) -> None:
        if writer is None:
            return
        all_fields = LogFields(self.fields).add(fields)
        parts = []
        for key in sorted(all_fields):
            value = _format_value(all_fields[key])
            if " " in value:
                value = f'"{value}"'
            parts.append(f"{key}={value} ")
        writer.write(_caller_location(), f'\tlevel={level} msg="{msg}" {"".join(parts)}')


def new_std_logger(debug: bool, trace: bool) -> LoggerAdapter:
    """Create a StdLoggerAdapter writing to standard error."""
    return new_std_logger_with_out(sys.stderr, debug, trace)


def new_std_logger_with_out(out: TextIO, debug: bool, trace: bool) -> LoggerAdapter:
    """Create a StdLoggerAdapter writing to ``out``."""
    writer = _StreamWriter(out)
    return StdLoggerAdapter(
        error_logger=writer,
        info_logger=writer,
        debug_logger=writer if debug else None,
        trace_logger=writer if trace else None,
    )


class LogLevel(IntEnum):
    TRACE = 1
    DEBUG = 2
    INFO = 3
    ERROR = 4


@dataclass
class CapturedMessage:
    """A single captured log entry."""

    level: LogLevel
    fields: Mapping[str, Any] | None
    msg: str
    err: BaseException | None = None


class CaptureLoggerAdapter(LoggerAdapter):
    """Logger that keeps every entry in memory, grouped by level."""

    def __init__(self) -> None:
        self._captured: dict[LogLevel, list[CapturedMessage]] = {}
        self._fields = LogFields()
        self._lock = threading.Lock()

    def with_fields(self, fields):
        child = CaptureLoggerAdapter()
        child._captured = self._captured
        child._lock = self._lock
        child._fields = self._fields.add(fields)
        return child

    def _capture(self, message: CapturedMessage) -> None:
        with self._lock:
            self._captured.setdefault(message.level, []).append(message)

    def captured(self) -> dict[LogLevel, list[CapturedMessage]]:
        """Return the captured entries by level."""
        with self._lock:
            return {level: list(messages) for level, messages in self._captured.items()}

    def has(self, msg: CapturedMessage) -> bool:
        """Tell whether an entry equal to ``msg`` was captured."""
        with self._lock:
            return any(msg == captured for captured in self._captured.get(msg.level, []))

    def has_error(self, err: BaseException) -> bool:
        """Tell whether an error entry carrying this very exception was captured."""
        with self._lock:
            return any(captured.err is err for captured in self._captured.get(LogLevel.ERROR, []))

    def error(self, msg, err, fields=None):
        self._capture(CapturedMessage(LogLevel.ERROR, self._fields.add(fields), msg, err))

    def info(self, msg, fields=None):
        self._capture(CapturedMessage(LogLevel.INFO, self._fields.add(fields), msg))

    def debug(self, msg, fields=None):
        self._capture(CapturedMessage(LogLevel.DEBUG, self._fields.add(fields), msg))

    def trace(self, msg, fields=None):
        self._capture(CapturedMessage(LogLevel.TRACE, self._fields.add(fields), msg))