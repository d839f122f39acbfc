import os
import logging
import threading
import subprocess
from typing import List, Optional, Sequence, Union

from .models import ExitOutcome, ProcessKey, ProcessSpec
from .process_group import ProcessGroupController

log = logging.getLogger(__name__)


#* --- Process Handle ---
class ProcessHandle:
    """
    One spawned OS process: its group id, its stdin pipe and its exit state.

    The supervisor's monitor thread is the only caller of `wait()`. Everyone
    else waits on `settled`, which the monitor sets once the exit has been
    recorded in the registry.
    """

    def __init__(self, key: ProcessKey, spec: ProcessSpec, process: subprocess.Popen, pgid: int, generation: int) -> None:
        self.key = key
        self.spec = spec
        self.process = process
        self.pid = process.pid
        self.pgid = pgid
        self.generation = generation
        self.readers: List[threading.Thread] = []
        self.settled = threading.Event()
        self._stdin_lock = threading.Lock()
        self._termination_lock = threading.Lock()
        self._termination_started = False
        self._terminating = False
        self._exit_recorded = False

    def wait(self) -> ExitOutcome:
        """Blocks until the root process exits and returns how it ended."""
        return ExitOutcome(self.process.wait())

    def write(self, data: bytes) -> None:
        """
        Writes bytes verbatim to the process's stdin and flushes.

        :raises OSError: If the pipe is broken or already closed.
        """
        with self._stdin_lock:
            stdin = self.process.stdin
            if stdin is None or stdin.closed:
                raise BrokenPipeError("stdin is closed")
            try:
                stdin.write(data)
                stdin.flush()
            except ValueError as e:
                # Raised by a file object closed concurrently by close_stdin().
                raise BrokenPipeError(str(e)) from e

    def close_stdin(self) -> None:
        with self._stdin_lock:
            stdin = self.process.stdin
            if stdin is None or stdin.closed:
                return
            try:
                stdin.close()
            except OSError as e:
                log.debug(f"Closing stdin of {self.key} failed: {e}")

    def begin_termination(self) -> bool:
        """Returns True for the first caller only, so concurrent stops share one sequence."""
        with self._termination_lock:
            if self._termination_started:
                return False
            self._termination_started = True
            self._terminating = True
            return True

    def end_termination(self) -> bool:
        """Marks the termination sequence done. Returns True if the group can now be released."""
        with self._termination_lock:
            self._terminating = False
            return self._exit_recorded

    def exit_recorded(self) -> bool:
        """Marks the exit as recorded. Returns True if the group can now be released."""
        with self._termination_lock:
            self._exit_recorded = True
            return not self._terminating

    def __repr__(self) -> str:
        return f"<ProcessHandle {self.key} pid={self.pid} pgid={self.pgid} gen={self.generation}>"


#* --- Process Creation ---
def build_shell_args(command: str, shell: str, shell_flags: Sequence[str]) -> List[str]:
    """
    Returns the argv that hands `command` verbatim to the shell.

    :param command: The command line as written in the project config.
    :param shell: Path of the shell executable.
    :param shell_flags: Flags placed before the command, ending with `-c` (e.g. `-ilc`).
    :return list: The argument vector for `subprocess.Popen`.
    """
    return [shell, *shell_flags, command]


def spawn_process(
    key: ProcessKey,
    spec: ProcessSpec,
    controller: ProcessGroupController,
    generation: int,
    shell: str,
    shell_flags: Sequence[str],
    cwd: Optional[Union[str, os.PathLike]] = None,
) -> ProcessHandle:
    """
    Launches `spec.command` in a new process group with all three standard streams piped.

    :param key: The key of the managed process being started.
    :param spec: The spec being started; the handle keeps it for its whole life.
    :param controller: Supplies the platform-specific group creation arguments.
    :param generation: The spawn generation this handle belongs to.
    :param shell: Shell executable used to run the command.
    :param shell_flags: Flags passed to the shell before the command.
    :param cwd: Working directory; the project directory.
    :return ProcessHandle: The handle for the new process.
    :raises OSError: If the OS could not create the process.
    """
    args = build_shell_args(spec.command, shell, shell_flags)
    popen_kwargs = controller.popen_kwargs()
    log.debug(f"Spawning {key} (generation {generation}): {args!r} in {cwd}")

    p = subprocess.Popen(
        args,
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=str(cwd) if cwd is not None else None,
        **popen_kwargs,
    )
    handle = ProcessHandle(key, spec, p, controller.group_id(p), generation)
    log.info(f"Started '{key.process_name}' with PID {p.pid} (process group {handle.pgid}).")
    return handle
