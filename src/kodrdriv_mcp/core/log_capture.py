"""In-memory log capture for MCP tool execution.

Attaches an extra handler to the shared ``kodrdriv`` logger for the
duration of one tool call, so whatever the wrapped operation logs can be
scraped for progress and returned to the client. Other handlers on the
logger are left alone.
"""
from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from typing import List

from kodrdriv_mcp.core.logging_config import get_logger

_ANSI_RE = re.compile(r"\x1B\[[0-9;]*[mGK]")
_LEVEL_PREFIX_RE = re.compile(r"^(info|warn|warning|error|debug|verbose):\s*", re.IGNORECASE)

LEVEL_INDICATORS = {
    "error": "❌",
    "warn": "⚠️ ",
    "info": "ℹ️ ",
    "debug": "🔍",
    "verbose": "📝",
}


@dataclass(frozen=True)
class CapturedLogLine:
    level: str
    message: str

    def render(self) -> str:
        return f"{LEVEL_INDICATORS.get(self.level, '  ')} {self.message}"


def clean_message(raw: str) -> str:
    """Strip color codes and a leading ``level:`` prefix."""
    return _LEVEL_PREFIX_RE.sub("", _ANSI_RE.sub("", raw).strip()).strip()


def classify_level(raw: str, levelno: int = logging.INFO) -> str:
    """Pick a level from the text itself, falling back to the record level."""
    text = _ANSI_RE.sub("", raw).lower()
    if "error:" in text:
        return "error"
    if "warn:" in text or "warning:" in text:
        return "warn"
    if "debug:" in text:
        return "debug"
    if "verbose:" in text:
        return "verbose"
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.WARNING:
        return "warn"
    if levelno < logging.INFO:
        return "debug"
    return "info"


class _CaptureHandler(logging.Handler):
    def __init__(self, sink: List[CapturedLogLine], lock: threading.Lock) -> None:
        super().__init__(level=logging.INFO)
        self._sink = sink
        self._lock = lock

    def emit(self, record: logging.LogRecord) -> None:
        try:
            raw = record.getMessage()
        except Exception:  # noqa: BLE001
            self.handleError(record)
            return
        message = clean_message(raw)
        if not message:
            return
        line = CapturedLogLine(level=classify_level(raw, record.levelno), message=message)
        with self._lock:
            self._sink.append(line)


class LogCapture:
    """Handle returned by :func:`install_log_capture`."""

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger
        self._lines: List[CapturedLogLine] = []
        self._lock = threading.Lock()
        self._handler = _CaptureHandler(self._lines, self._lock)
        self._installed = False

    def install(self) -> "LogCapture":
        self._logger.addHandler(self._handler)
        self._installed = True
        return self

    @property
    def lines(self) -> List[CapturedLogLine]:
        with self._lock:
            return list(self._lines)

    def read(self) -> List[str]:
        """Snapshot of captured lines, oldest first, with level indicators."""
        return [line.render() for line in self.lines]

    def teardown(self) -> None:
        """Detach the handler. Safe to call more than once."""
        if not self._installed:
            return
        self._logger.removeHandler(self._handler)
        self._installed = False


def install_log_capture(logger: logging.Logger | None = None) -> LogCapture:
    """Start capturing everything logged to *logger* (default: ``kodrdriv``)."""
    return LogCapture(logger or get_logger()).install()
