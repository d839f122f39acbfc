import os
import time
import tempfile
import threading
from typing import Callable, List

import pytest

# Settings are read at import time; keep tests away from the user's ~/.myterm.
os.environ.setdefault("MYTERM_DATA_DIR", tempfile.mkdtemp(prefix="myterm-test-"))
os.environ["MYTERM_WATCH_CONFIG"] = "0"
os.environ["MYTERM_CONTROL_API"] = "0"

from myterm.local.supervisor import ProcessSupervisor  # noqa: E402

posix_only = pytest.mark.skipif(os.name != "posix" or not os.path.exists("/bin/sh"), reason="needs POSIX /bin/sh")


def wait_until(predicate: Callable[[], bool], *, timeout_s: float = 6.0, poll_s: float = 0.02) -> None:
    end = time.time() + float(timeout_s)
    while time.time() < end:
        if predicate():
            return
        time.sleep(float(poll_s))
    raise AssertionError("timeout waiting for condition")


class Recorder:
    """Collects events from a channel together with their arrival time."""

    def __init__(self) -> None:
        self.items: List = []
        self.times: List[float] = []
        self._lock = threading.Lock()

    def __call__(self, event) -> None:
        with self._lock:
            self.items.append(event)
            self.times.append(time.monotonic())

    def snapshot(self) -> List:
        with self._lock:
            return list(self.items)


@pytest.fixture
def recorder_factory():
    return Recorder


@pytest.fixture
def supervisor():
    sup = ProcessSupervisor(shell="/bin/sh", shell_flags=["-c"])
    yield sup
    sup.shutdown_all()
