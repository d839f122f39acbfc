import time
import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, List

from .errors import SignalFailed
from .models import ProcessKey
from .process_group import ProcessGroupController
from .process_utils import ProcessHandle

if TYPE_CHECKING:
    from .supervisor import ProcessSupervisor

log = logging.getLogger(__name__)


@dataclass
class TerminationResult:
    """Outcome of one two-phase termination over a set of process groups."""
    exited: List[int] = field(default_factory=list)
    forced: List[int] = field(default_factory=list)
    failures: List[SignalFailed] = field(default_factory=list)


@dataclass
class ShutdownReport:
    stopped: List[ProcessKey] = field(default_factory=list)
    forced: List[ProcessKey] = field(default_factory=list)
    still_alive: List[ProcessKey] = field(default_factory=list)
    failures: List[SignalFailed] = field(default_factory=list)
    elapsed: float = 0.0


def _send(controller: ProcessGroupController, pgid: int, force: bool, result: TerminationResult) -> bool:
    """Sends one signal. Returns False when the group is already gone."""
    try:
        if force:
            controller.kill(pgid)
        else:
            controller.terminate(pgid)
        return True
    except SignalFailed as e:
        if e.gone:
            log.debug(f"Process group {pgid} already exited before signal {e.signum}.")
            return False
        log.error(f"{e}")
        result.failures.append(e)
        return True


def terminate_groups(
    controller: ProcessGroupController,
    pgids: Iterable[int],
    grace: float,
    poll_interval: float,
) -> TerminationResult:
    """
    Two-phase termination: SIGTERM every group at once, wait up to `grace`
    seconds, then SIGKILL every group that is still alive.

    A group is considered alive while the controller's non-destructive probe
    says so. A group that has already disappeared counts as exited.

    :param controller: Delivers group signals and answers liveness probes.
    :param pgids: The process groups to terminate.
    :param grace: Seconds allowed for a graceful exit.
    :param poll_interval: Seconds between liveness probes.
    :return TerminationResult: Which groups exited, which were killed and any delivery failures.
    """
    result = TerminationResult()
    pgids = list(dict.fromkeys(pgids))
    if not pgids:
        return result

    signalled = [pgid for pgid in pgids if _send(controller, pgid, False, result)]
    result.exited.extend(p for p in pgids if p not in signalled)

    deadline = time.monotonic() + grace
    alive = list(signalled)
    while alive:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        time.sleep(min(poll_interval, remaining))
        alive = controller.live_groups(alive)
    if alive:
        # Re-probe at the deadline so a group that exited during the last sleep is spared.
        alive = controller.live_groups(alive)

    result.exited.extend(p for p in signalled if p not in alive)
    if not alive:
        return result

    log.warning(f"{len(alive)} process group(s) did not terminate gracefully. Forcing shutdown...")
    for pgid in alive:
        if _send(controller, pgid, True, result):
            result.forced.append(pgid)
        else:
            result.exited.append(pgid)
    return result


class ShutdownCoordinator:
    """
    Drives the application-exit shutdown of every supervised process.

    `shutdown()` blocks the caller until every process has settled or the
    bounded wait after the force-kill has elapsed.
    """

    def __init__(self, supervisor: "ProcessSupervisor") -> None:
        self.supervisor = supervisor
        self._lock = threading.Lock()
        self._completed = False

    def _collect_running(self) -> List[ProcessHandle]:
        """Marks every entry as stop-requested and returns the handles of running ones."""
        handles: List[ProcessHandle] = []
        for entry in self.supervisor.registry.entries():
            with entry.lock:
                entry.stop_requested = True
                entry.cancel_restart()
                if entry.handle is not None:
                    handles.append(entry.handle)
        return handles

    def shutdown(self) -> ShutdownReport:
        """
        Runs the full shutdown sequence.

        :return ShutdownReport: What was stopped, what had to be killed and what survived.
        """
        with self._lock:
            started = time.monotonic()
            self.supervisor.close()
            handles = self._collect_running()
            report = ShutdownReport()

            if not handles:
                if not self._completed:
                    log.info("No running processes to stop.")
                self._completed = True
                return report

            log.info(f"Initiating graceful shutdown for {len(handles)} processes...")
            owned = [h for h in handles if h.begin_termination()]
            sup = self.supervisor
            result = sup.terminate_owned(owned)
            report.failures.extend(result.failures)

            by_pgid = {h.pgid: h.key for h in handles}
            report.forced.extend(by_pgid[p] for p in result.forced if p in by_pgid)

            # Handles stopped by a concurrent stop() call are still running their own
            # sequence, so they get the full grace period on top of the kill wait.
            budget = sup.force_kill_wait + (sup.graceful_timeout if len(owned) < len(handles) else 0.0)
            deadline = time.monotonic() + budget
            for handle in handles:
                handle.settled.wait(max(0.0, deadline - time.monotonic()))

            for handle in handles:
                if handle.settled.is_set() or not sup.controller.is_alive(handle.pgid):
                    report.stopped.append(handle.key)
                else:
                    report.still_alive.append(handle.key)

            report.elapsed = time.monotonic() - started
            if report.still_alive:
                log.error(f"Shutdown finished with {len(report.still_alive)} process group(s) still alive: "
                          f"{', '.join(str(k) for k in report.still_alive)}")
            else:
                log.info(f"All {len(handles)} processes stopped in {report.elapsed:.2f} seconds.")
            self._completed = True
            return report
