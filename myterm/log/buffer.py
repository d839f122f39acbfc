import threading
from collections import deque
from typing import Deque, Dict, List, Optional

from myterm.local.config import effective_settings as config
from myterm.local.supervisor.models import LogRecord, LogStream, ProcessKey

STDERR_PREFIX = "[stderr] "


class LogBuffer:
    """
    Keeps the most recent output lines of every supervised process.

    Subscribe `append` to the supervisor's log channel. Retention is per
    process; `clear()` only drops lines already stored, records published
    afterwards are kept as usual.
    """

    def __init__(self, max_lines: Optional[int] = None) -> None:
        self.max_lines = max_lines or config.LOG_HISTORY_COUNT
        self._lines: Dict[ProcessKey, Deque[LogRecord]] = {}
        self._lock = threading.Lock()

    def append(self, record: LogRecord) -> None:
        with self._lock:
            lines = self._lines.get(record.key)
            if lines is None:
                lines = self._lines[record.key] = deque(maxlen=self.max_lines)
            lines.append(record)

    def records(self, key: ProcessKey, limit: Optional[int] = None) -> List[LogRecord]:
        with self._lock:
            records = list(self._lines.get(key, ()))
        if limit is not None and limit >= 0:
            records = records[-limit:] if limit else []
        return records

    def lines(self, key: ProcessKey, limit: Optional[int] = None) -> List[str]:
        """Stored lines as displayed: stderr lines carry a `[stderr]` prefix."""
        return [format_record(r) for r in self.records(key, limit)]

    def clear(self, key: ProcessKey) -> int:
        """Drops the stored lines of one process. Returns how many were dropped."""
        with self._lock:
            lines = self._lines.get(key)
            if not lines:
                return 0
            count = len(lines)
            lines.clear()
            return count

    def forget(self, project_path: str) -> None:
        """Drops everything stored for a project."""
        with self._lock:
            for key in [k for k in self._lines if k.project_path == project_path]:
                del self._lines[key]


def format_record(record: LogRecord) -> str:
    if record.stream is LogStream.STDERR:
        return f"{STDERR_PREFIX}{record.text}"
    return record.text
