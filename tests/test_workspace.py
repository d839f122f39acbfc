import os
import time
import signal

import pytest

from conftest import posix_only, wait_until
from myterm.local.console import execute_command
from myterm.local.project_config import ConfigError
from myterm.local.project_watcher import ConfigChangeHandler
from myterm.local.supervisor import ProcessStatus, ProcessSupervisor, make_key
from myterm.local.supervisor.errors import SignalFailed
from myterm.local.supervisor.process_group import PosixGroupController
from myterm.local.workspace import UnknownProject, Workspace

pytestmark = posix_only

CONFIG = """\
name: shop
processes:
  - name: web
    command: sleep 30
    autostart: true
  - name: once
    command: echo done
"""


@pytest.fixture
def workspace():
    ws = Workspace(
        supervisor=ProcessSupervisor(shell="/bin/sh", shell_flags=["-c"]),
        watch_configs=False,
        forward_logs=False,
        register_atexit=False,
    )
    yield ws
    ws.shutdown()


@pytest.mark.integration
def test_open_reload_close(workspace, tmp_path):
    (tmp_path / "myterm.yml").write_text(CONFIG)
    project = workspace.open_project(tmp_path)
    path = os.path.abspath(tmp_path)

    assert project.name == "shop"
    assert workspace.find_project("shop") == path
    assert workspace.find_project(str(tmp_path)) == path
    assert workspace.supervisor.status(path, "web") is ProcessStatus.RUNNING
    assert workspace.supervisor.status(path, "once") is ProcessStatus.STOPPED

    (tmp_path / "myterm.yml").write_text(CONFIG.replace("sleep 30", "sleep 40").replace("name: shop", "name: store"))
    assert workspace.reload_project("shop").name == "store"
    assert workspace.find_project("store") == path
    assert workspace.supervisor.info(path, "web").spec.command == "sleep 40"

    pgid = workspace.supervisor.info(path, "web").pgid
    workspace.close_project("store")
    assert not workspace.supervisor.controller.is_alive(pgid)
    assert workspace.list_projects() == []
    with pytest.raises(UnknownProject):
        workspace.find_project("store")


@pytest.mark.basic
def test_open_errors(workspace, tmp_path):
    with pytest.raises(ConfigError):
        workspace.open_project(tmp_path / "missing")
    with pytest.raises(ConfigError):
        workspace.open_project(tmp_path)


@pytest.mark.integration
def test_init_creates_config_and_opens(workspace, tmp_path):
    (tmp_path / "Procfile").write_text("web: sleep 30\n")
    project = workspace.init_project(tmp_path)
    assert [p.name for p in project.processes] == ["web"]
    assert (tmp_path / "myterm.yml").exists()
    # Guessed processes never autostart.
    assert workspace.supervisor.status(tmp_path, "web") is ProcessStatus.STOPPED


@pytest.mark.integration
def test_shutdown_is_idempotent(workspace, tmp_path):
    (tmp_path / "myterm.yml").write_text(CONFIG)
    workspace.open_project(tmp_path)
    report = workspace.shutdown()
    assert [k.process_name for k in report.stopped] == ["web"]
    assert workspace.is_shut_down
    assert workspace.shutdown() is report


@pytest.mark.integration
def test_console_commands_drive_the_workspace(workspace, tmp_path, capsys):
    (tmp_path / "myterm.yml").write_text(CONFIG)
    assert execute_command(workspace, "open", [str(tmp_path)]) is False
    assert "Opened 'shop'" in capsys.readouterr().out

    execute_command(workspace, "start", ["shop", "once"])
    wait_until(lambda: workspace.supervisor.status(tmp_path, "once") is ProcessStatus.STOPPED)
    execute_command(workspace, "logs", ["shop", "once"])
    out = capsys.readouterr().out
    assert "done" in out and "[exit] code 0" in out

    execute_command(workspace, "clear", ["shop", "once"])
    assert workspace.log_buffer.lines(make_key(tmp_path, "once")) == []

    execute_command(workspace, "stop-all", ["shop"])
    assert workspace.supervisor.status(tmp_path, "web") is ProcessStatus.STOPPED

    # Errors are reported, not raised.
    assert execute_command(workspace, "stop", ["shop", "web"]) is False
    assert execute_command(workspace, "start", ["nope", "web"]) is False
    assert execute_command(workspace, "start", ["shop"]) is False
    assert "Usage: start <project> <name>" in capsys.readouterr().out

    assert execute_command(workspace, "exit", []) is True


@pytest.mark.basic
def test_config_change_handler_debounces(tmp_path):
    calls = []
    handler = ConfigChangeHandler(str(tmp_path), calls.append, debounce_interval=0.1)

    class Event:
        is_directory = False
        event_type = "modified"

        def __init__(self, path):
            self.src_path = path

    for _ in range(5):
        handler.on_any_event(Event(str(tmp_path / "myterm.yml")))
    handler.on_any_event(Event(str(tmp_path / "README.md")))
    time.sleep(0.4)
    assert calls == [str(tmp_path)]


class RefusingTermController(PosixGroupController):
    """SIGTERM delivery fails with EPERM; SIGKILL still works."""

    def terminate(self, pgid):
        raise SignalFailed(pgid, signal.SIGTERM, PermissionError("operation not permitted"))


@pytest.fixture
def refusing_workspace():
    ws = Workspace(
        supervisor=ProcessSupervisor(controller=RefusingTermController(), shell="/bin/sh", shell_flags=["-c"]),
        watch_configs=False,
        forward_logs=False,
        register_atexit=False,
    )
    yield ws
    ws.shutdown()


@pytest.mark.integration
def test_close_reports_signal_failures_after_cleanup(refusing_workspace, tmp_path):
    (tmp_path / "myterm.yml").write_text(CONFIG)
    refusing_workspace.open_project(tmp_path)
    pgid = refusing_workspace.supervisor.info(tmp_path, "web").pgid

    with pytest.raises(SignalFailed) as excinfo:
        refusing_workspace.close_project("shop")

    assert excinfo.value.key == make_key(tmp_path, "web")
    assert refusing_workspace.list_projects() == []
    assert not refusing_workspace.supervisor.controller.is_alive(pgid)


@pytest.mark.integration
def test_stop_all_prints_signal_failures(refusing_workspace, tmp_path, capsys):
    (tmp_path / "myterm.yml").write_text(CONFIG)
    refusing_workspace.open_project(tmp_path)

    execute_command(refusing_workspace, "stop-all", ["shop"])

    out = capsys.readouterr().out
    assert "1 forcefully" in out
    assert "Could not stop 'web'" in out
    assert refusing_workspace.supervisor.status(tmp_path, "web") is ProcessStatus.STOPPED
