"""In-process ring buffer of recent log lines for on-device diagnostics."""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, List, Optional

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
    logging.CRITICAL: "ERROR",
}


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    level: str
    message: str

    @property
    def formatted(self) -> str:
        return f"[{self.timestamp:%m/%d %H:%M:%S}] [{self.level}] {self.message}"


class DebugLogBuffer(logging.Handler):
    def __init__(self, max_entries: int = 500, level: int = logging.INFO):
        super().__init__(level=level)
        self._entries: Deque[LogEntry] = deque(maxlen=max_entries)
        self._entries_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = LogEntry(
                timestamp=datetime.fromtimestamp(record.created),
                level=_LEVEL_NAMES.get(record.levelno, record.levelname),
                message=record.getMessage(),
            )
        except Exception:
            self.handleError(record)
            return
        with self._entries_lock:
            self._entries.append(entry)

    @property
    def entries(self) -> List[LogEntry]:
        with self._entries_lock:
            return list(self._entries)

    def export_text(self) -> str:
        return "\n".join(e.formatted for e in self.entries)

    def clear(self) -> None:
        with self._entries_lock:
            self._entries.clear()


_buffer: Optional[DebugLogBuffer] = None


def install_debug_log(max_entries: Optional[int] = None) -> DebugLogBuffer:
    """Attach one shared buffer to the ``sweep_alert`` logger (idempotent)."""
    global _buffer
    if _buffer is None:
        if max_entries is None:
            from sweep_alert.config import settings

            max_entries = settings.debug_log_max_entries
        _buffer = DebugLogBuffer(max_entries=max_entries)
        pkg = logging.getLogger("sweep_alert")
        pkg.addHandler(_buffer)
        if pkg.level == logging.NOTSET or pkg.level > logging.INFO:
            pkg.setLevel(logging.INFO)
    return _buffer
