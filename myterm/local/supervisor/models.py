import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional


class ProcessStatus(str, Enum):
    """Lifecycle state of a managed process."""
    STOPPED = "stopped"
    RUNNING = "running"
    CRASHED = "crashed"


class LogStream(str, Enum):
    STDOUT = "stdout"
    STDERR = "stderr"


class ProcessKey(NamedTuple):
    """Identity of a managed process: the owning project directory and the process name."""
    project_path: str
    process_name: str

    def __str__(self) -> str:
        return f"{self.project_path}::{self.process_name}"


@dataclass(frozen=True)
class ProcessSpec:
    """Immutable description of one supervised command, as supplied by the project config."""
    name: str
    command: str
    autostart: bool = False
    autorestart: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProcessSpec":
        return cls(
            name=str(data.get("name") or "").strip(),
            command=str(data.get("command") or ""),
            autostart=bool(data.get("autostart", False)),
            autorestart=bool(data.get("autorestart", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "command": self.command,
            "autostart": self.autostart,
            "autorestart": self.autorestart,
        }


@dataclass(frozen=True)
class ProjectConfig:
    """Normalized project description: a display name and its process specs."""
    name: str
    processes: List[ProcessSpec] = field(default_factory=list)

    def get(self, process_name: str) -> Optional[ProcessSpec]:
        for spec in self.processes:
            if spec.name == process_name:
                return spec
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "processes": [p.to_dict() for p in self.processes]}


@dataclass(frozen=True)
class ExitOutcome:
    """
    How a process ended, as reported by `subprocess.Popen.returncode`.

    A negative return code means the process was killed by that signal number.
    """
    returncode: Optional[int]

    @property
    def signal(self) -> Optional[int]:
        if self.returncode is not None and self.returncode < 0:
            return -self.returncode
        return None

    @property
    def success(self) -> bool:
        return self.returncode == 0

    def describe(self) -> str:
        if self.returncode is None:
            return "[exit] unknown"
        if self.signal is not None:
            return f"[exit] terminated by signal {self.signal}"
        return f"[exit] code {self.returncode}"


@dataclass(frozen=True)
class LogRecord:
    """One line of output from a supervised process."""
    project_path: str
    process_name: str
    stream: LogStream
    text: str
    generation: int = 0
    timestamp: float = field(default_factory=time.time)

    @property
    def key(self) -> ProcessKey:
        return ProcessKey(self.project_path, self.process_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "log",
            "project_path": self.project_path,
            "process_name": self.process_name,
            "stream": self.stream.value,
            "line": self.text,
            "generation": self.generation,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class StatusEvent:
    """A status transition of a managed process."""
    project_path: str
    process_name: str
    status: ProcessStatus
    generation: int = 0
    pid: Optional[int] = None
    returncode: Optional[int] = None

    @property
    def key(self) -> ProcessKey:
        return ProcessKey(self.project_path, self.process_name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "status",
            "project_path": self.project_path,
            "process_name": self.process_name,
            "status": self.status.value,
            "generation": self.generation,
            "pid": self.pid,
            "returncode": self.returncode,
        }


@dataclass(frozen=True)
class ProcessInfo:
    """Point-in-time view of a managed process, safe to hand to callers."""
    key: ProcessKey
    spec: ProcessSpec
    status: ProcessStatus
    generation: int
    pid: Optional[int] = None
    pgid: Optional[int] = None
    stop_requested: bool = False
    restart_pending: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_path": self.key.project_path,
            "process_name": self.key.process_name,
            "command": self.spec.command,
            "autostart": self.spec.autostart,
            "autorestart": self.spec.autorestart,
            "status": self.status.value,
            "generation": self.generation,
            "pid": self.pid,
            "pgid": self.pgid,
            "stop_requested": self.stop_requested,
            "restart_pending": self.restart_pending,
        }
