import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .models import ProcessKey, ProcessSpec, ProcessStatus
from .process_utils import ProcessHandle


@dataclass
class ManagedProcess:
    """
    Runtime record of one supervised command.

    All fields are mutated only while holding `lock`; status events for the
    entry are emitted under the same lock so they leave in transition order.
    """
    key: ProcessKey
    spec: ProcessSpec
    status: ProcessStatus = ProcessStatus.STOPPED
    handle: Optional[ProcessHandle] = None
    stop_requested: bool = False
    generation: int = 0
    restart_timer: Optional[threading.Timer] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def cancel_restart(self) -> bool:
        """Cancels a pending automatic restart. Returns True if one was pending."""
        timer, self.restart_timer = self.restart_timer, None
        if timer is None:
            return False
        timer.cancel()
        return True


class ProcessRegistry:
    """
    The set of managed processes, keyed by (project path, process name).

    The registry lock only guards membership; per-process state is guarded by
    each entry's own lock, so a slow operation on one process never blocks
    another.
    """

    def __init__(self) -> None:
        self._entries: Dict[ProcessKey, ManagedProcess] = {}
        self._lock = threading.Lock()

    def get(self, key: ProcessKey) -> Optional[ManagedProcess]:
        with self._lock:
            return self._entries.get(key)

    def ensure(self, key: ProcessKey, spec: ProcessSpec) -> ManagedProcess:
        """Returns the entry for `key`, creating it in Stopped state if needed."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                entry = ManagedProcess(key=key, spec=spec)
                self._entries[key] = entry
            return entry

    def entries(self, project_path: Optional[str] = None) -> List[ManagedProcess]:
        with self._lock:
            return [
                e for e in self._entries.values()
                if project_path is None or e.key.project_path == project_path
            ]

    def projects(self) -> List[str]:
        with self._lock:
            return sorted({k.project_path for k in self._entries})

    def remove(self, key: ProcessKey) -> Optional[ManagedProcess]:
        with self._lock:
            return self._entries.pop(key, None)

    def __contains__(self, key: ProcessKey) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
