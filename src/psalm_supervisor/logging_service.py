"""
Output channel for user-visible server messages.

Lines are level-filtered, timestamped and kept in a bounded in-memory buffer so
that the ``psalm.showOutput`` command and issue reports can display them. Every
accepted line is also forwarded to the standard ``logging`` machinery.
"""

import logging
import threading
import time
from collections import deque
from enum import IntEnum
from typing import Any

log = logging.getLogger("psalm_supervisor.output")


class LogLevel(IntEnum):
    NONE = 0
    ERROR = 1
    WARN = 2
    INFO = 3
    DEBUG = 4

    @classmethod
    def parse(cls, value: "str | LogLevel | None", default: "LogLevel | None" = None) -> "LogLevel":
        if isinstance(value, LogLevel):
            return value
        if value:
            name = str(value).strip().upper()
            if name == "WARNING":
                name = "WARN"
            if name in cls.__members__:
                return cls[name]
            log.warning("Unknown log level %r", value)
        return default if default is not None else cls.INFO


_STDLIB_LEVELS: dict[LogLevel, int] = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARN: logging.WARNING,
    LogLevel.INFO: logging.INFO,
    LogLevel.DEBUG: logging.DEBUG,
}


class LoggingService:
    """Level-filtered output channel (thread-safe)."""

    def __init__(self, level: LogLevel = LogLevel.INFO, max_lines: int = 2000) -> None:
        self._level = level
        self._lock = threading.Lock()
        self._lines: deque[str] = deque(maxlen=max_lines)

    @property
    def level(self) -> LogLevel:
        return self._level

    def set_output_level(self, level: "LogLevel | str | None") -> None:
        self._level = LogLevel.parse(level)

    def log_debug(self, message: str, data: Any = None) -> None:
        self._log(LogLevel.DEBUG, message, data)

    def log_info(self, message: str, data: Any = None) -> None:
        self._log(LogLevel.INFO, message, data)

    def log_warning(self, message: str, data: Any = None) -> None:
        self._log(LogLevel.WARN, message, data)

    def log_error(self, message: str, error: BaseException | None = None) -> None:
        if error is not None and str(error) and str(error) != message:
            message = f"{message}: {error}"
        self._log(LogLevel.ERROR, message, None)

    def lines(self, num_lines: int | None = None) -> list[str]:
        """Return the buffered output, most recent last."""
        with self._lock:
            lines = list(self._lines)
        if num_lines is not None:
            return lines[-num_lines:] if num_lines > 0 else []
        return lines

    def clear(self) -> None:
        with self._lock:
            self._lines.clear()

    def _log(self, level: LogLevel, message: str, data: Any) -> None:
        if level > self._level or self._level == LogLevel.NONE:
            return
        timestamp = time.strftime("%H:%M:%S")
        line = f"[{level.name} - {timestamp}] {message}"
        if data is not None:
            line = f"{line}\n{self._format_data(data)}"
        with self._lock:
            self._lines.append(line)
        log.log(_STDLIB_LEVELS[level], line)

    @staticmethod
    def _format_data(data: Any) -> str:
        if isinstance(data, (list, tuple, set, frozenset)):
            return "\n".join(f"  {item}" for item in data)
        return f"  {data}"
