import os
import time
import signal
import threading
import subprocess

import pytest

from conftest import posix_only
from myterm.local.supervisor import process_group
from myterm.local.supervisor.errors import SignalFailed
from myterm.local.supervisor.process_group import PosixGroupController, ProcessGroupController
from myterm.local.supervisor.shutdown import terminate_groups


class FakeGroupController(ProcessGroupController):
    """
    Records every signal. Groups listed in `obeys_term` die on SIGTERM, all
    others only die on SIGKILL. Groups in `gone` no longer exist.
    """

    def __init__(self, obeys_term=(), gone=(), denied=()):
        self.obeys_term = set(obeys_term)
        self.gone = set(gone)
        self.denied = set(denied)
        self.dead = set(gone)
        self.signals = []
        self._lock = threading.Lock()

    def _deliver(self, pgid, signum):
        if pgid in self.gone:
            raise SignalFailed(pgid, signum, ProcessLookupError("no such group"))
        if pgid in self.denied:
            raise SignalFailed(pgid, signum, PermissionError("not permitted"))
        with self._lock:
            self.signals.append((time.monotonic(), pgid, signum))
            if signum == signal.SIGKILL or pgid in self.obeys_term:
                self.dead.add(pgid)

    def terminate(self, pgid):
        self._deliver(pgid, signal.SIGTERM)

    def kill(self, pgid):
        self._deliver(pgid, signal.SIGKILL)

    def is_alive(self, pgid):
        with self._lock:
            return pgid not in self.dead

    def sent(self, signum):
        return [(t, pgid) for t, pgid, s in self.signals if s == signum]


@pytest.mark.basic
def test_group_that_exits_in_grace_is_never_killed():
    controller = FakeGroupController(obeys_term={10})
    started = time.monotonic()
    result = terminate_groups(controller, [10], grace=0.8, poll_interval=0.05)

    assert result.exited == [10]
    assert result.forced == []
    assert controller.sent(signal.SIGKILL) == []
    # Returns as soon as the group is gone, not after the full grace period.
    assert time.monotonic() - started < 0.5


@pytest.mark.basic
def test_terms_all_groups_before_any_kill_and_waits_the_grace_period():
    controller = FakeGroupController(obeys_term={1})
    result = terminate_groups(controller, [1, 2], grace=0.8, poll_interval=0.05)

    terms = controller.sent(signal.SIGTERM)
    kills = controller.sent(signal.SIGKILL)
    assert [pgid for _, pgid in terms] == [1, 2]
    assert [pgid for _, pgid in kills] == [2]
    assert max(t for t, _ in terms) <= min(t for t, _ in kills)
    assert kills[0][0] - terms[1][0] >= 0.8
    assert result.exited == [1]
    assert result.forced == [2]


@pytest.mark.basic
def test_already_gone_group_counts_as_exited():
    controller = FakeGroupController(gone={7})
    result = terminate_groups(controller, [7], grace=0.8, poll_interval=0.05)
    assert result.exited == [7]
    assert result.forced == []
    assert result.failures == []


@pytest.mark.basic
def test_permission_failure_is_reported():
    controller = FakeGroupController(denied={5})
    result = terminate_groups(controller, [5], grace=0.1, poll_interval=0.02)
    assert len(result.failures) >= 1
    assert all(not f.gone for f in result.failures)
    assert result.failures[0].pgid == 5


@pytest.mark.basic
def test_duplicate_and_empty_group_lists():
    controller = FakeGroupController(obeys_term={3})
    assert terminate_groups(controller, [], grace=0.8, poll_interval=0.05).exited == []
    result = terminate_groups(controller, [3, 3], grace=0.8, poll_interval=0.05)
    assert result.exited == [3]
    assert len(controller.sent(signal.SIGTERM)) == 1


class BatchCountingController(FakeGroupController):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.rounds = []

    def live_groups(self, pgids):
        pgids = list(pgids)
        self.rounds.append(pgids)
        return super().live_groups(pgids)


@pytest.mark.basic
def test_liveness_is_probed_once_per_round_for_all_groups():
    controller = BatchCountingController()
    result = terminate_groups(controller, [1, 2, 3], grace=0.2, poll_interval=0.05)

    assert sorted(result.forced) == [1, 2, 3]
    assert controller.rounds
    assert all(sorted(r) == [1, 2, 3] for r in controller.rounds)


def _group_without_leader():
    """A new process group whose leader has exited while a child keeps running."""
    leader = subprocess.Popen(["/bin/sh", "-c", "sleep 30 & exit 0"], start_new_session=True,
                              stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    leader.wait()
    return leader.pid


@posix_only
@pytest.mark.integration
def test_running_leader_skips_the_process_table_scan(monkeypatch):
    proc = subprocess.Popen(["sleep", "30"], start_new_session=True)
    try:
        def no_scan(*args, **kwargs):
            raise AssertionError("process table scanned")

        monkeypatch.setattr(process_group.psutil, "process_iter", no_scan)
        assert PosixGroupController().is_alive(proc.pid)
    finally:
        proc.kill()
        proc.wait()


@posix_only
@pytest.mark.integration
def test_leaderless_groups_share_one_scan(monkeypatch):
    pgids = [_group_without_leader(), _group_without_leader()]
    scans = []
    real_iter = process_group.psutil.process_iter

    def counting_iter(*args, **kwargs):
        scans.append(1)
        return real_iter(*args, **kwargs)

    monkeypatch.setattr(process_group.psutil, "process_iter", counting_iter)
    try:
        assert PosixGroupController().live_groups(pgids) == pgids
        assert len(scans) == 1
    finally:
        for pgid in pgids:
            os.killpg(pgid, signal.SIGKILL)
