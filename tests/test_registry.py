import threading

import pytest

from myterm.local.supervisor.models import ProcessKey, ProcessSpec, ProcessStatus
from myterm.local.supervisor.registry import ProcessRegistry


@pytest.mark.basic
def test_ensure_creates_stopped_entry_once():
    registry = ProcessRegistry()
    key = ProcessKey("/p", "web")
    first = registry.ensure(key, ProcessSpec("web", "run"))
    second = registry.ensure(key, ProcessSpec("web", "other"))
    assert first is second
    assert first.status is ProcessStatus.STOPPED
    assert first.spec.command == "run"
    assert key in registry
    assert len(registry) == 1


@pytest.mark.basic
def test_entries_are_filtered_by_project():
    registry = ProcessRegistry()
    registry.ensure(ProcessKey("/a", "web"), ProcessSpec("web", "x"))
    registry.ensure(ProcessKey("/a", "worker"), ProcessSpec("worker", "x"))
    registry.ensure(ProcessKey("/b", "web"), ProcessSpec("web", "x"))

    assert {e.key.process_name for e in registry.entries("/a")} == {"web", "worker"}
    assert len(registry.entries()) == 3
    assert registry.projects() == ["/a", "/b"]

    registry.remove(ProcessKey("/a", "web"))
    assert ProcessKey("/a", "web") not in registry
    assert registry.remove(ProcessKey("/a", "web")) is None


@pytest.mark.basic
def test_cancel_restart_reports_pending_timer():
    registry = ProcessRegistry()
    entry = registry.ensure(ProcessKey("/a", "web"), ProcessSpec("web", "x"))
    fired = threading.Event()
    entry.restart_timer = threading.Timer(5, fired.set)
    entry.restart_timer.start()

    assert entry.cancel_restart() is True
    assert entry.restart_timer is None
    assert entry.cancel_restart() is False
    assert not fired.wait(0.05)


@pytest.mark.basic
def test_concurrent_ensure_yields_single_entry():
    registry = ProcessRegistry()
    key = ProcessKey("/a", "web")
    results = []

    def worker():
        results.append(registry.ensure(key, ProcessSpec("web", "x")))

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len({id(e) for e in results}) == 1
