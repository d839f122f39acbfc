import logging
from typing import Callable, Dict, List

from myterm.local.control_client import ControlClient, ControlClientError
from myterm.local.project_config import ConfigError
from myterm.local.supervisor import SupervisorError
from myterm.local.workspace import UnknownProject, Workspace
from myterm.local.console.handler import (display_status, format_process_line, handle_clear_command,
                                          handle_config_command, handle_logs_command, print_help,
                                          toggle_verbose_logging)

log = logging.getLogger(__name__)

# Minimum number of arguments per command
COMMAND_ARITY = {
    "open": 1, "init": 1, "close": 1, "reload": 1,
    "start": 2, "stop": 2, "restart": 2, "start-all": 1, "stop-all": 1,
    "write": 3, "logs": 2, "clear": 2,
}

USAGE = {
    "open": "open <path>",
    "init": "init <path>",
    "close": "close <project>",
    "reload": "reload <project>",
    "start": "start <project> <name>",
    "stop": "stop <project> <name>",
    "restart": "restart <project> <name>",
    "start-all": "start-all <project>",
    "stop-all": "stop-all <project>",
    "write": "write <project> <name> <text>",
    "logs": "logs <project> <name> [lines] [-f]",
    "clear": "clear <project> <name>",
}


def _check_args(command: str, args: List[str]) -> bool:
    if len(args) < COMMAND_ARITY.get(command, 0):
        print(f"Usage: {USAGE[command]}")
        return False
    return True


def _start_all(workspace: Workspace, ref: str) -> None:
    results = workspace.supervisor.start_all(workspace.find_project(ref))
    started = [name for name, error in results.items() if error is None]
    print(f"Started {len(started)} process(es)" + (f": {', '.join(started)}" if started else "."))


def _stop_all(workspace: Workspace, ref: str) -> None:
    result = workspace.supervisor.stop_all(workspace.find_project(ref))
    print(f"Stopped {len(result.exited) + len(result.forced)} process group(s)"
          + (f", {len(result.forced)} forcefully." if result.forced else "."))
    for failure in result.failures:
        name = failure.key.process_name if failure.key else f"group {failure.pgid}"
        print(f"  Could not stop '{name}': {failure}")


def _open(workspace: Workspace, path: str, init: bool = False) -> None:
    project = workspace.init_project(path) if init else workspace.open_project(path)
    print(f"Opened '{project.name}' with {len(project.processes)} process(es): "
          f"{', '.join(p.name for p in project.processes)}")


def _write(workspace: Workspace, args: List[str]) -> None:
    written = workspace.supervisor.write_input(workspace.find_project(args[0]), args[1], " ".join(args[2:]) + "\n")
    log.debug(f"Wrote {written} bytes to '{args[1]}'.")


def execute_command(workspace: Workspace, command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param workspace: The workspace the console controls.
    :param command: The main command string (e.g., 'start', 'config').
    :param args: A list of arguments for the command.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    supervisor = workspace.supervisor
    command_map: Dict[str, Callable[[], object]] = {
        "open": lambda: _open(workspace, args[0]),
        "init": lambda: _open(workspace, args[0], init=True),
        "close": lambda: print(f"Closed '{workspace.close_project(args[0]).name}'."),
        "reload": lambda: print(f"Reloaded '{workspace.reload_project(args[0]).name}'."),
        "start": lambda: print(format_process_line(supervisor.start(workspace.find_project(args[0]), args[1]))),
        "stop": lambda: print(f"'{args[1]}' is now {supervisor.stop(workspace.find_project(args[0]), args[1]).value}."),
        "restart": lambda: print(format_process_line(supervisor.restart(workspace.find_project(args[0]), args[1]))),
        "start-all": lambda: _start_all(workspace, args[0]),
        "stop-all": lambda: _stop_all(workspace, args[0]),
        "write": lambda: _write(workspace, args),
        "status": lambda: display_status(workspace, args[0] if args else None),
        "logs": lambda: handle_logs_command(workspace, args),
        "clear": lambda: handle_clear_command(workspace, args),
        "config": lambda: handle_config_command(args),
        "verbose": toggle_verbose_logging,
        "help": print_help,
        "exit": lambda: True,
    }

    if command not in command_map:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
        return False
    if command in COMMAND_ARITY and not _check_args(command, args):
        return False

    try:
        return command_map[command]() is True and command == "exit"
    except (SupervisorError, ConfigError, UnknownProject) as e:
        log.error(f"{command} failed: {e}")
    return False


#* --- Non-interactive mode ---
def _print_processes(processes: List[dict]) -> None:
    for p in processes:
        pid = f" | PID {p['pid']}" if p.get("pid") else ""
        print(f"  - {p['process_name']:<20} : {p['status'].upper():<8}{pid}  ({p['project_path']})")


def execute_remote_command(client: ControlClient, command: str, args: List[str]) -> bool:
    """
    Executes a command against a running console through its control API.

    :return bool: True if the command succeeded.
    """
    if command in COMMAND_ARITY and not _check_args(command, args):
        return False
    try:
        if command in ("open", "init"):
            result = client.open_project(args[0], init=command == "init")
            print(f"Opened '{result['project']['name']}' ({result['project_path']}).")
        elif command == "close":
            print(f"Closed '{client.close_project(args[0])['closed']}'.")
        elif command == "projects":
            for project in client.list_projects():
                print(f"  - {project['name']:<20} : {project['project_path']}")
        elif command == "status":
            _print_processes(client.list_processes(args[0] if args else None))
        elif command == "start":
            _print_processes([client.start(args[0], args[1])])
        elif command == "stop":
            print(f"'{args[1]}' is now {client.stop(args[0], args[1])['status']}.")
        elif command == "restart":
            _print_processes([client.restart(args[0], args[1])])
        elif command == "start-all":
            for p in client.list_processes(args[0]):
                if p["status"] != "running":
                    _print_processes([client.start(args[0], p["process_name"])])
        elif command == "stop-all":
            for p in client.list_processes(args[0]):
                if p["status"] == "running":
                    print(f"'{p['process_name']}' is now {client.stop(args[0], p['process_name'])['status']}.")
        elif command == "write":
            client.write_input(args[0], args[1], " ".join(args[2:]) + "\n")
        elif command == "logs":
            lines = int(args[2]) if len(args) > 2 and args[2].isdigit() else None
            for line in client.logs(args[0], args[1], lines):
                print(line)
        elif command == "help":
            print_help()
        else:
            print(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
            return False
    except ControlClientError as e:
        log.error(f"{command} failed: {e}")
        return False
    return True
