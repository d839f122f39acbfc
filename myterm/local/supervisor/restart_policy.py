"""
Decides what happens after a supervised process exits.

The policy is a pure function so it can be tested without spawning anything.
A crash with auto-restart enabled always schedules a relaunch after the same
fixed delay: there is no backoff and no retry limit, so a command that fails
immediately is relaunched once per delay for as long as it keeps failing.
"""
from enum import Enum
from dataclasses import dataclass

from .models import ExitOutcome, ProcessStatus


class RestartAction(str, Enum):
    STOPPED = "stopped"
    CRASHED = "crashed"
    SCHEDULE_RESTART = "schedule_restart"


@dataclass(frozen=True)
class RestartDecision:
    action: RestartAction
    delay: float = 0.0

    @property
    def status(self) -> ProcessStatus:
        """The status the process takes right after the exit."""
        if self.action is RestartAction.STOPPED:
            return ProcessStatus.STOPPED
        return ProcessStatus.CRASHED

    @property
    def restart(self) -> bool:
        return self.action is RestartAction.SCHEDULE_RESTART


def decide(outcome: ExitOutcome, stop_requested: bool, autorestart: bool, delay: float) -> RestartDecision:
    """
    :param outcome: How the process ended.
    :param stop_requested: Whether the exit followed an explicit stop.
    :param autorestart: The spec's auto-restart flag.
    :param delay: Settle delay before a restart, in seconds.
    :return RestartDecision: Stopped, Crashed, or a scheduled restart.
    """
    if stop_requested or outcome.success:
        return RestartDecision(RestartAction.STOPPED)
    if autorestart:
        return RestartDecision(RestartAction.SCHEDULE_RESTART, delay)
    return RestartDecision(RestartAction.CRASHED)
