"""
Errors raised by the process supervisor.

Every error carries the key of the process it concerns (when there is one) so
callers such as the console or the control API can report it without parsing
messages.
"""
from typing import Optional

from .models import ProcessKey


class SupervisorError(Exception):
    """Base class for all supervisor errors."""
    code = "supervisor_error"

    def __init__(self, message: str, key: Optional[ProcessKey] = None) -> None:
        super().__init__(message)
        self.key = key


class UnknownProcess(SupervisorError):
    code = "unknown_process"

    def __init__(self, key: ProcessKey) -> None:
        super().__init__(f"No process named '{key.process_name}' in project '{key.project_path}'", key)


class AlreadyRunning(SupervisorError):
    code = "already_running"

    def __init__(self, key: ProcessKey) -> None:
        super().__init__(f"Process '{key.process_name}' is already running", key)


class NotRunning(SupervisorError):
    code = "not_running"

    def __init__(self, key: ProcessKey) -> None:
        super().__init__(f"Process '{key.process_name}' is not running", key)


class SpawnFailed(SupervisorError):
    code = "spawn_failed"

    def __init__(self, key: ProcessKey, cause: BaseException) -> None:
        super().__init__(f"Failed to start '{key.process_name}': {cause}", key)
        self.cause = cause


class SignalFailed(SupervisorError):
    """
    A signal could not be delivered to a process group.

    `gone` is True when the group no longer exists, which callers treat as a
    successful termination.
    """
    code = "signal_failed"

    def __init__(self, pgid: int, signum: int, cause: BaseException, key: Optional[ProcessKey] = None) -> None:
        super().__init__(f"Failed to send signal {signum} to process group {pgid}: {cause}", key)
        self.pgid = pgid
        self.signum = signum
        self.cause = cause
        self.gone = isinstance(cause, ProcessLookupError)


class WriteFailed(SupervisorError):
    code = "write_failed"

    def __init__(self, key: ProcessKey, cause: BaseException) -> None:
        super().__init__(f"Failed to write to stdin of '{key.process_name}': {cause}", key)
        self.cause = cause


class InvalidConfig(SupervisorError):
    code = "invalid_config"


class SupervisorClosed(SupervisorError):
    code = "supervisor_closed"

    def __init__(self) -> None:
        super().__init__("Supervisor is shutting down; no new processes can be started.")
