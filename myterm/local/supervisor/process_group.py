import os
import sys
import signal
import psutil
import logging
import threading
import subprocess
from typing import Any, Dict, Iterable, List, Set

from .errors import SignalFailed

log = logging.getLogger(__name__)


class ProcessGroupController:
    """
    Creates process groups and delivers signals to a whole group.

    The supervisor only ever talks to a group through this interface so the
    rest of the core does not depend on the host operating system.
    """

    def popen_kwargs(self) -> Dict[str, Any]:
        """Returns the extra `subprocess.Popen` arguments that start a new group."""
        raise NotImplementedError

    def group_id(self, process: subprocess.Popen) -> int:
        """Returns the identifier used to signal the group the process leads."""
        raise NotImplementedError

    def terminate(self, pgid: int) -> None:
        """Sends the graceful termination request to every member of the group."""
        raise NotImplementedError

    def kill(self, pgid: int) -> None:
        """Sends the uncatchable kill to every member of the group."""
        raise NotImplementedError

    def is_alive(self, pgid: int) -> bool:
        """Non-destructive liveness probe for the group."""
        raise NotImplementedError

    def live_groups(self, pgids: Iterable[int]) -> List[int]:
        """Returns the groups of `pgids` that are still alive, in order."""
        return [pgid for pgid in pgids if self.is_alive(pgid)]

    def release(self, pgid: int) -> None:
        """Drops any state kept for a group whose exit has been recorded."""


class PosixGroupController(ProcessGroupController):
    """
    POSIX implementation: each child calls `setsid()` so its pid is also its
    process group id, and signals go to `-pgid` through `os.killpg`.
    """

    def popen_kwargs(self) -> Dict[str, Any]:
        return {"start_new_session": True}

    def group_id(self, process: subprocess.Popen) -> int:
        return process.pid

    def _signal(self, pgid: int, signum: int) -> None:
        if pgid <= 0:
            raise SignalFailed(pgid, signum, ProcessLookupError("invalid process group id"))
        try:
            os.killpg(pgid, signum)
        except OSError as e:
            raise SignalFailed(pgid, signum, e) from e

    def terminate(self, pgid: int) -> None:
        log.debug(f"Sending SIGTERM to process group {pgid}")
        self._signal(pgid, signal.SIGTERM)

    def kill(self, pgid: int) -> None:
        log.debug(f"Sending SIGKILL to process group {pgid}")
        self._signal(pgid, signal.SIGKILL)

    def _probe(self, pgid: int) -> bool:
        """`killpg(pgid, 0)`: ESRCH means gone, EPERM means the group exists but is not ours."""
        if pgid <= 0:
            return False
        try:
            os.killpg(pgid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def is_alive(self, pgid: int) -> bool:
        return bool(self.live_groups([pgid]))

    def live_groups(self, pgids: Iterable[int]) -> List[int]:
        answered = [pgid for pgid in pgids if self._probe(pgid)]
        # Orphaned zombies still answer signal 0 until their new parent reaps them.
        unsure = {pgid for pgid in answered if not _leader_running(pgid)}
        dead = _zombie_only_groups(unsure) if unsure else set()
        return [pgid for pgid in answered if pgid not in dead]


class PsutilTreeController(ProcessGroupController):
    """
    Fallback for platforms without POSIX process groups.

    The "group" is the root process plus every descendant psutil can see at
    signal time. Descendants are remembered so that liveness keeps tracking
    them after the root has exited.
    """

    def __init__(self) -> None:
        self._members: Dict[int, Set[psutil.Process]] = {}
        self._lock = threading.Lock()

    def popen_kwargs(self) -> Dict[str, Any]:
        if sys.platform == "win32":
            return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
        return {}

    def group_id(self, process: subprocess.Popen) -> int:
        return process.pid

    def _collect(self, pgid: int) -> List[psutil.Process]:
        with self._lock:
            members = self._members.setdefault(pgid, set())
            try:
                root = psutil.Process(pgid)
                members.add(root)
                members.update(root.children(recursive=True))
            except psutil.NoSuchProcess:
                pass
            return [p for p in members if p.is_running()]

    def _signal(self, pgid: int, signum: int, method: str) -> None:
        procs = self._collect(pgid)
        if not procs:
            raise SignalFailed(pgid, signum, ProcessLookupError(f"process tree {pgid} no longer exists"))
        for proc in procs:
            try:
                getattr(proc, method)()
            except psutil.NoSuchProcess:
                continue
            except psutil.AccessDenied as e:
                raise SignalFailed(pgid, signum, PermissionError(str(e))) from e

    def terminate(self, pgid: int) -> None:
        log.debug(f"Terminating process tree rooted at {pgid}")
        self._signal(pgid, signal.SIGTERM, "terminate")

    def kill(self, pgid: int) -> None:
        log.debug(f"Killing process tree rooted at {pgid}")
        self._signal(pgid, getattr(signal, "SIGKILL", signal.SIGTERM), "kill")

    def is_alive(self, pgid: int) -> bool:
        with self._lock:
            members = set(self._members.get(pgid, set()))
        if not members:
            return psutil.pid_exists(pgid)
        return any(_is_live(p) for p in members)

    def release(self, pgid: int) -> None:
        with self._lock:
            self._members.pop(pgid, None)


def _is_live(proc: psutil.Process) -> bool:
    try:
        return proc.is_running() and proc.status() != psutil.STATUS_ZOMBIE
    except psutil.Error:
        return False


def _leader_running(pgid: int) -> bool:
    """True while the group leader itself is a live, non-zombie process."""
    try:
        return psutil.Process(pgid).status() != psutil.STATUS_ZOMBIE
    except psutil.Error:
        return False


def _zombie_only_groups(pgids: Set[int]) -> Set[int]:
    """
    Scans the process table once and returns the groups of `pgids` whose
    visible members are all zombies. A group with no visible member is not
    included (e.g. restricted /proc): the signal probe is trusted for it.
    """
    live: Set[int] = set()
    zombie: Set[int] = set()
    for proc in psutil.process_iter(["status"]):
        try:
            pgid = os.getpgid(proc.pid)
        except OSError:
            continue
        if pgid not in pgids:
            continue
        if proc.info["status"] == psutil.STATUS_ZOMBIE:
            zombie.add(pgid)
        else:
            live.add(pgid)
    return zombie - live


def get_group_controller() -> ProcessGroupController:
    """Returns the controller for the current platform."""
    if os.name == "posix":
        return PosixGroupController()
    return PsutilTreeController()
