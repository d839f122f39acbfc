import os
import logging
import threading
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Sequence, Union

from myterm.local.config import effective_settings as config
from .errors import (AlreadyRunning, InvalidConfig, NotRunning, SpawnFailed, SupervisorClosed,
                     UnknownProcess, WriteFailed)
from .events import EventChannel
from .log_broadcaster import LogBroadcaster
from .models import (LogRecord, LogStream, ProcessInfo, ProcessKey, ProcessSpec, ProcessStatus,
                     ProjectConfig, StatusEvent)
from .process_group import ProcessGroupController, get_group_controller
from .process_utils import ProcessHandle, spawn_process
from .registry import ManagedProcess, ProcessRegistry
from .restart_policy import decide
from .shutdown import ShutdownCoordinator, ShutdownReport, TerminationResult, terminate_groups

log = logging.getLogger(__name__)


def make_key(project_path: Union[str, os.PathLike], process_name: str) -> ProcessKey:
    """Builds the registry key, normalizing the project path to an absolute path."""
    return ProcessKey(os.path.abspath(os.fspath(project_path)), process_name)


def validate_project(project: ProjectConfig) -> None:
    """
    Checks that every process has a name and a command and that names are unique.

    :raises InvalidConfig: On the first problem found.
    """
    seen = set()
    for spec in project.processes:
        if not spec.name:
            raise InvalidConfig(f"Project '{project.name}' has a process without a name.")
        if not spec.command.strip():
            raise InvalidConfig(f"Process '{spec.name}' in project '{project.name}' has no command.")
        if spec.name in seen:
            raise InvalidConfig(f"Process name '{spec.name}' is used twice in project '{project.name}'.")
        seen.add(spec.name)


class ProcessSupervisor:
    """
    Supervises long-running commands grouped by project.

    Each process runs in its own OS process group. A monitor thread per spawn
    waits for the exit, publishes it and applies the restart policy. Output
    lines are published on `logs`, status transitions on `statuses`.
    """

    def __init__(
        self,
        controller: Optional[ProcessGroupController] = None,
        shell: Optional[str] = None,
        shell_flags: Optional[Sequence[str]] = None,
        restart_delay: Optional[float] = None,
        graceful_timeout: Optional[float] = None,
        force_kill_wait: Optional[float] = None,
        poll_interval: Optional[float] = None,
        drain_timeout: Optional[float] = None,
    ) -> None:
        self.registry = ProcessRegistry()
        self.controller = controller or get_group_controller()
        self.logs: EventChannel[LogRecord] = EventChannel("logs")
        self.statuses: EventChannel[StatusEvent] = EventChannel("statuses")
        self.broadcaster = LogBroadcaster(self.logs)

        self.shell = shell or config.SHELL
        self.shell_flags = list(shell_flags if shell_flags is not None else config.SHELL_FLAGS)
        self.restart_delay = config.RESTART_DELAY_SECONDS if restart_delay is None else restart_delay
        self.graceful_timeout = config.GRACEFUL_SHUTDOWN_TIMEOUT if graceful_timeout is None else graceful_timeout
        self.force_kill_wait = config.FORCE_KILL_WAIT if force_kill_wait is None else force_kill_wait
        self.poll_interval = config.LIVENESS_POLL_INTERVAL if poll_interval is None else poll_interval
        self.drain_timeout = config.READER_DRAIN_TIMEOUT if drain_timeout is None else drain_timeout

        self.shutdown_coordinator = ShutdownCoordinator(self)
        self._closed = threading.Event()

    @property
    def stop_timeout(self) -> float:
        return self.graceful_timeout + self.force_kill_wait

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Refuses any further start. Pending restarts are discarded when they fire."""
        self._closed.set()

    #* --- Projects ---
    def register_project(self, project_path: Union[str, os.PathLike], project: ProjectConfig) -> List[ProcessInfo]:
        """
        Registers (or re-registers after a config reload) the processes of a project.

        New names get a Stopped entry; existing entries get the new spec, which a
        running process only picks up on its next start. Entries whose name
        disappeared are dropped unless they are running.

        :raises InvalidConfig: If the config has missing or duplicate names.
        """
        validate_project(project)
        project_path = os.path.abspath(os.fspath(project_path))
        names = set()
        for spec in project.processes:
            names.add(spec.name)
            entry = self.registry.ensure(ProcessKey(project_path, spec.name), spec)
            with entry.lock:
                entry.spec = spec

        for entry in self.registry.entries(project_path):
            if entry.key.process_name in names:
                continue
            with entry.lock:
                if entry.status is ProcessStatus.RUNNING:
                    log.info(f"Process '{entry.key.process_name}' was removed from the config but is running; "
                             "keeping it until it is stopped.")
                    continue
                entry.cancel_restart()
                self.registry.remove(entry.key)
                log.debug(f"Dropped {entry.key} after config reload.")

        log.info(f"Registered project '{project.name}' at {project_path} with {len(project.processes)} process(es).")
        return self.list_processes(project_path)

    def remove_project(self, project_path: Union[str, os.PathLike]) -> TerminationResult:
        """Stops every running process of the project, then removes its entries."""
        project_path = os.path.abspath(os.fspath(project_path))
        entries = self.registry.entries(project_path)
        result = self._stop_entries(entries)
        for entry in entries:
            with entry.lock:
                entry.cancel_restart()
                self.registry.remove(entry.key)
        log.info(f"Removed project at {project_path} ({len(entries)} process(es)).")
        return result

    def start_autostart(self, project_path: Union[str, os.PathLike]) -> Dict[str, Optional[Exception]]:
        """Starts every non-running process whose spec has `autostart` set."""
        return self._start_many(e for e in self.registry.entries(os.path.abspath(os.fspath(project_path)))
                                if e.spec.autostart)

    def start_all(self, project_path: Union[str, os.PathLike]) -> Dict[str, Optional[Exception]]:
        """Starts every process of the project that is not already running."""
        return self._start_many(self.registry.entries(os.path.abspath(os.fspath(project_path))))

    def stop_all(self, project_path: Union[str, os.PathLike]) -> TerminationResult:
        """Stops every running process of the project with one shared termination sequence."""
        return self._stop_entries(self.registry.entries(os.path.abspath(os.fspath(project_path))))

    def _start_many(self, entries: Iterable[ManagedProcess]) -> Dict[str, Optional[Exception]]:
        results: Dict[str, Optional[Exception]] = {}
        for entry in entries:
            if entry.status is ProcessStatus.RUNNING:
                continue
            try:
                self.start(entry.key.project_path, entry.key.process_name)
                results[entry.key.process_name] = None
            except (AlreadyRunning, SpawnFailed, SupervisorClosed) as e:
                log.error(f"Could not start '{entry.key.process_name}': {e}")
                results[entry.key.process_name] = e
        return results

    def terminate_owned(self, handles: List[ProcessHandle]) -> TerminationResult:
        """
        Runs the two-phase termination over handles whose `begin_termination()`
        returned True, then releases the groups whose exit is already recorded.
        """
        try:
            result = terminate_groups(self.controller, [h.pgid for h in handles], self.graceful_timeout, self.poll_interval)
            keys = {h.pgid: h.key for h in handles}
            for failure in result.failures:
                failure.key = failure.key or keys.get(failure.pgid)
            return result
        finally:
            for handle in handles:
                if handle.end_termination():
                    self.controller.release(handle.pgid)

    def _stop_entries(self, entries: List[ManagedProcess]) -> TerminationResult:
        handles: List[ProcessHandle] = []
        for entry in entries:
            with entry.lock:
                entry.stop_requested = True
                entry.cancel_restart()
                if entry.handle is not None:
                    handles.append(entry.handle)
        if not handles:
            return TerminationResult()

        result = self.terminate_owned([h for h in handles if h.begin_termination()])
        for handle in handles:
            if not handle.settled.wait(self.stop_timeout):
                log.warning(f"Process {handle.key} did not settle within {self.stop_timeout:.1f}s.")
        return result

    #* --- Process Operations ---
    def start(
        self,
        project_path: Union[str, os.PathLike],
        process_name: str,
        command: Optional[str] = None,
        autorestart: Optional[bool] = None,
    ) -> ProcessInfo:
        """
        Starts a process.

        :param project_path: The project directory; also the working directory of the command.
        :param process_name: The process name within the project.
        :param command: If given, registers or replaces the spec's command before starting.
        :param autorestart: If given, overrides the spec's auto-restart flag.
        :return ProcessInfo: The state right after the spawn.
        :raises UnknownProcess: If the process is not registered and no command was given.
        :raises AlreadyRunning: If the process is running.
        :raises SpawnFailed: If the OS could not create the process.
        :raises SupervisorClosed: After `shutdown_all()`.
        """
        key = make_key(project_path, process_name)
        entry = self.registry.get(key)
        if entry is None:
            if command is None:
                raise UnknownProcess(key)
            entry = self.registry.ensure(key, ProcessSpec(process_name, command, autorestart=bool(autorestart)))

        with entry.lock:
            if self.closed:
                raise SupervisorClosed()
            if entry.status is ProcessStatus.RUNNING:
                raise AlreadyRunning(key)

            if command is not None:
                entry.spec = replace(entry.spec, command=command)
            if autorestart is not None:
                entry.spec = replace(entry.spec, autorestart=autorestart)
            if entry.cancel_restart():
                log.debug(f"Manual start of {key} cancelled a pending automatic restart.")
            entry.stop_requested = False
            self._spawn_locked(entry)
            return self._info(entry)

    def stop(self, project_path: Union[str, os.PathLike], process_name: str,
             timeout: Optional[float] = None) -> ProcessStatus:
        """
        Stops a running process with the two-phase termination sequence.

        Concurrent calls share one sequence; each returns once the exit has been
        recorded or `timeout` (default: grace period plus kill wait) elapsed.

        :return ProcessStatus: The status after the call.
        :raises NotRunning: If the process is not running.
        :raises SignalFailed: If a signal could not be delivered for a reason other than the group being gone.
        """
        key = make_key(project_path, process_name)
        entry = self._require(key)
        with entry.lock:
            if entry.status is not ProcessStatus.RUNNING or entry.handle is None:
                raise NotRunning(key)
            entry.stop_requested = True
            entry.cancel_restart()
            handle = entry.handle

        failures = []
        if handle.begin_termination():
            log.info(f"Stopping '{process_name}' (process group {handle.pgid})...")
            failures = self.terminate_owned([handle]).failures

        wait_for = self.stop_timeout if timeout is None else timeout
        if not handle.settled.wait(wait_for):
            log.warning(f"'{process_name}' did not confirm its exit within {wait_for:.1f}s.")
        if failures:
            raise failures[0]
        return entry.status

    def restart(self, project_path: Union[str, os.PathLike], process_name: str) -> ProcessInfo:
        """Stops the process if it is running, then starts it again immediately."""
        try:
            self.stop(project_path, process_name)
        except NotRunning:
            pass
        return self.start(project_path, process_name)

    def write_input(self, project_path: Union[str, os.PathLike], process_name: str, data: Union[bytes, str]) -> int:
        """
        Writes to the stdin of a running process.

        :return int: The number of bytes written.
        :raises NotRunning: If the process is not running; nothing is written.
        :raises WriteFailed: If the pipe is closed or broken.
        """
        key = make_key(project_path, process_name)
        entry = self._require(key)
        if isinstance(data, str):
            data = data.encode("utf-8")
        with entry.lock:
            if entry.status is not ProcessStatus.RUNNING or entry.handle is None:
                raise NotRunning(key)
            handle = entry.handle
        try:
            handle.write(data)
        except OSError as e:
            log.warning(f"Write to '{process_name}' failed: {e}")
            raise WriteFailed(key, e) from e
        return len(data)

    #* --- Queries ---
    def status(self, project_path: Union[str, os.PathLike], process_name: str) -> ProcessStatus:
        return self._require(make_key(project_path, process_name)).status

    def list_statuses(self, project_path: Union[str, os.PathLike]) -> Dict[str, ProcessStatus]:
        project_path = os.path.abspath(os.fspath(project_path))
        return {e.key.process_name: e.status for e in self.registry.entries(project_path)}

    def snapshot(self) -> Dict[ProcessKey, ProcessStatus]:
        """Status of every registered process across all projects."""
        return {e.key: e.status for e in self.registry.entries()}

    def info(self, project_path: Union[str, os.PathLike], process_name: str) -> ProcessInfo:
        return self._info(self._require(make_key(project_path, process_name)))

    def list_processes(self, project_path: Optional[Union[str, os.PathLike]] = None) -> List[ProcessInfo]:
        if project_path is not None:
            project_path = os.path.abspath(os.fspath(project_path))
        entries = sorted(self.registry.entries(project_path), key=lambda e: e.key)
        return [self._info(e) for e in entries]

    def shutdown_all(self) -> ShutdownReport:
        """Stops every supervised process; blocks until they settled or the bounded wait elapsed."""
        return self.shutdown_coordinator.shutdown()

    #* --- Internals ---
    def _require(self, key: ProcessKey) -> ManagedProcess:
        entry = self.registry.get(key)
        if entry is None:
            raise UnknownProcess(key)
        return entry

    @staticmethod
    def _info(entry: ManagedProcess) -> ProcessInfo:
        handle = entry.handle
        return ProcessInfo(
            key=entry.key,
            spec=entry.spec,
            status=entry.status,
            generation=entry.generation,
            pid=handle.pid if handle else None,
            pgid=handle.pgid if handle else None,
            stop_requested=entry.stop_requested,
            restart_pending=entry.restart_timer is not None,
        )

    def _emit_status(self, entry: ManagedProcess, pid: Optional[int] = None, returncode: Optional[int] = None) -> None:
        """Publishes the entry's current status. Callers hold `entry.lock`."""
        self.statuses.publish(StatusEvent(
            entry.key.project_path, entry.key.process_name, entry.status, entry.generation, pid, returncode,
        ))

    def _spawn_locked(self, entry: ManagedProcess) -> ProcessHandle:
        """Spawns the entry's current spec as a new generation. Callers hold `entry.lock`."""
        generation = entry.generation + 1
        try:
            handle = spawn_process(
                entry.key, entry.spec, self.controller, generation,
                self.shell, self.shell_flags, cwd=entry.key.project_path,
            )
        except OSError as e:
            log.error(f"Failed to start process '{entry.key.process_name}': {e}")
            self.broadcaster.emit(entry.key, LogStream.STDERR, f"Failed to start: {e}", generation)
            raise SpawnFailed(entry.key, e) from e

        entry.generation = generation
        entry.handle = handle
        entry.status = ProcessStatus.RUNNING
        self._emit_status(entry, pid=handle.pid)
        self.broadcaster.attach(handle)
        threading.Thread(
            target=self._monitor,
            args=(entry, handle),
            daemon=True,
            name=f"Monitor-{entry.key.process_name}-{generation}",
        ).start()
        return handle

    def _monitor(self, entry: ManagedProcess, handle: ProcessHandle) -> None:
        """Waits for one spawn to exit and records the outcome if it is still current."""
        try:
            outcome = handle.wait()
            self.broadcaster.drain(handle, self.drain_timeout)
            handle.close_stdin()
            self.broadcaster.emit(handle.key, LogStream.STDOUT, outcome.describe(), handle.generation)

            with entry.lock:
                if entry.generation != handle.generation or entry.handle is not handle:
                    log.debug(f"Discarding exit of superseded generation {handle.generation} of {handle.key}.")
                    return

                entry.handle = None
                decision = decide(outcome, entry.stop_requested, handle.spec.autorestart, self.restart_delay)
                entry.status = decision.status
                self._emit_status(entry, returncode=outcome.returncode)

                if decision.status is ProcessStatus.CRASHED:
                    log.warning(f"Process '{handle.key.process_name}' crashed ({outcome.describe()}).")
                else:
                    log.info(f"Process '{handle.key.process_name}' stopped ({outcome.describe()}).")

                if decision.restart and not self.closed:
                    self._schedule_restart(entry, decision.delay)
        except Exception as e:
            log.critical(f"Monitor for {handle.key} failed: {e}", exc_info=True)
            with entry.lock:
                if (entry.generation == handle.generation and entry.handle in (handle, None)
                        and entry.status is ProcessStatus.RUNNING):
                    entry.handle = None
                    entry.status = ProcessStatus.CRASHED
                    self._emit_status(entry)
        finally:
            if handle.exit_recorded():
                self.controller.release(handle.pgid)
            handle.settled.set()

    def _schedule_restart(self, entry: ManagedProcess, delay: float) -> None:
        """Arms the delayed restart for the entry's current generation. Callers hold `entry.lock`."""
        timer = threading.Timer(delay, self._restart_fired, args=(entry, entry.generation))
        timer.daemon = True
        timer.name = f"Restart-{entry.key.process_name}"
        entry.restart_timer = timer
        log.info(f"Restarting '{entry.key.process_name}' in {delay:.1f}s.")
        timer.start()

    def _restart_fired(self, entry: ManagedProcess, generation: int) -> None:
        with entry.lock:
            if (self.closed or entry.generation != generation or entry.stop_requested
                    or entry.status is not ProcessStatus.CRASHED or self.registry.get(entry.key) is not entry):
                log.debug(f"Discarding stale restart of {entry.key} (generation {generation}).")
                return
            entry.restart_timer = None
            try:
                self._spawn_locked(entry)
            except SpawnFailed:
                if entry.spec.autorestart:
                    self._schedule_restart(entry, self.restart_delay)
