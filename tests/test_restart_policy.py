import pytest

from myterm.local.supervisor.models import ExitOutcome, ProcessStatus
from myterm.local.supervisor.restart_policy import RestartAction, decide


@pytest.mark.basic
@pytest.mark.parametrize("returncode", [0, 1, -15, -9])
def test_stop_requested_always_ends_stopped(returncode):
    decision = decide(ExitOutcome(returncode), stop_requested=True, autorestart=True, delay=1.0)
    assert decision.action is RestartAction.STOPPED
    assert decision.status is ProcessStatus.STOPPED
    assert not decision.restart


@pytest.mark.basic
def test_clean_exit_is_stopped_even_with_autorestart():
    decision = decide(ExitOutcome(0), stop_requested=False, autorestart=True, delay=1.0)
    assert decision.status is ProcessStatus.STOPPED
    assert not decision.restart


@pytest.mark.basic
@pytest.mark.parametrize("returncode", [1, 127, -9])
def test_failure_without_autorestart_is_crashed(returncode):
    decision = decide(ExitOutcome(returncode), stop_requested=False, autorestart=False, delay=1.0)
    assert decision.action is RestartAction.CRASHED
    assert decision.status is ProcessStatus.CRASHED


@pytest.mark.basic
def test_failure_with_autorestart_schedules_fixed_delay():
    decision = decide(ExitOutcome(3), stop_requested=False, autorestart=True, delay=1.0)
    assert decision.restart
    assert decision.delay == 1.0
    # The process is reported as crashed until the restart fires.
    assert decision.status is ProcessStatus.CRASHED


@pytest.mark.basic
def test_exit_outcome_descriptions():
    assert ExitOutcome(0).describe() == "[exit] code 0"
    assert ExitOutcome(2).describe() == "[exit] code 2"
    assert ExitOutcome(-9).describe() == "[exit] terminated by signal 9"
    assert ExitOutcome(-9).signal == 9
    assert ExitOutcome(None).describe() == "[exit] unknown"
