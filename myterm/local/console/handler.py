import os
import sys
import time
import queue
import psutil
import logging
from typing import List, Optional, Tuple

from myterm.local.config import effective_settings as config
from myterm.local.supervisor import ProcessInfo, ProcessStatus, make_key
from myterm.local.workspace import Workspace
from myterm.log.buffer import format_record

#* --- Platform-specific non-blocking keypress detection ---
if os.name == "nt":
    import msvcrt

    def is_keypress_waiting() -> bool:
        return msvcrt.kbhit()

    def clear_keypress_buffer() -> None:
        while msvcrt.kbhit():
            msvcrt.getch()
else:
    import select
    import termios
    import tty

    def is_keypress_waiting() -> bool:
        return select.select([sys.stdin], [], [], 0) == ([sys.stdin], [], [])

    def clear_keypress_buffer() -> None:
        if not sys.stdin.isatty():
            return
        # Raw mode lets us read the pending characters without Enter
        old_settings = termios.tcgetattr(sys.stdin)
        try:
            tty.setcbreak(sys.stdin.fileno())
            while is_keypress_waiting():
                sys.stdin.read(1)
        finally:
            termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)

log = logging.getLogger(__name__)


#* --- Status ---
def _group_usage(pid: int) -> Tuple[float, int]:
    """CPU percent and RSS bytes of a process and all of its descendants."""
    try:
        root = psutil.Process(pid)
        members = [root] + root.children(recursive=True)
    except psutil.Error:
        return 0.0, 0

    for p in members:
        try:
            p.cpu_percent(interval=None)
        except psutil.Error:
            pass
    time.sleep(0.1)

    cpu, mem = 0.0, 0
    for p in members:
        try:
            cpu += p.cpu_percent(interval=None)
            mem += p.memory_info().rss
        except psutil.Error:
            continue
    return cpu, mem


def format_process_line(info: ProcessInfo, usage: Optional[Tuple[float, int]] = None) -> str:
    flags = []
    if info.spec.autostart:
        flags.append("autostart")
    if info.spec.autorestart:
        flags.append("autorestart")
    if info.restart_pending:
        flags.append("restart pending")
    line = f"  - {info.key.process_name:<20} : {info.status.value.upper():<8}"
    if info.pid is not None:
        line += f" | PID {info.pid:<8}"
    if usage is not None:
        cpu, mem = usage
        line += f" | CPU: {cpu:.1f}% | MEM: {mem/1024/1024:.1f} MB"
    if flags:
        line += f" | {', '.join(flags)}"
    return line


def display_status(workspace: Workspace, project_ref: Optional[str] = None) -> None:
    """Displays the status of every process of every open project, including resource usage."""
    paths = [workspace.find_project(project_ref)] if project_ref else [p["project_path"] for p in workspace.list_projects()]
    if not paths:
        print("\nNo open projects. Use 'open <path>' to add one.\n")
        return

    total_cpu, total_mem = 0.0, 0
    print("\n--- Process Status ---")
    for path in paths:
        project = workspace.projects.get(path)
        print(f"{project.name if project else path} ({path})")
        for info in workspace.supervisor.list_processes(path):
            usage = None
            if info.status is ProcessStatus.RUNNING and info.pid is not None:
                usage = _group_usage(info.pid)
                total_cpu += usage[0]
                total_mem += usage[1]
            print(format_process_line(info, usage))
    print(f"\nTOTAL CPU: {total_cpu:.1f}%  |  TOTAL MEMORY: {total_mem/1024/1024:.1f} MB")
    print("-" * 22 + "\n")


#* --- Logs ---
def handle_logs_command(workspace: Workspace, args: List[str]) -> None:
    """
    Prints the stored output of one process; with `-f`, keeps tailing new lines
    until a key is pressed.
    """
    follow = "-f" in args
    args = [a for a in args if a != "-f"]
    if len(args) < 2:
        print("Usage: logs <project> <process> [lines] [-f]")
        return

    path = workspace.find_project(args[0])
    key = make_key(path, args[1])
    if key not in workspace.supervisor.registry:
        print(f"Unknown process '{args[1]}' in project '{args[0]}'.")
        return
    limit = int(args[2]) if len(args) > 2 and args[2].isdigit() else config.LOG_HISTORY_COUNT

    print(f"\n--- Last {limit} lines of '{args[1]}' ---")
    if not follow:
        for line in workspace.log_buffer.lines(key, limit):
            print(line)
        print("---\n")
        return

    # Process output is echoed by the forwarder too; mute it while tailing.
    workspace.forwarder.detach()
    subscription = workspace.supervisor.logs.listen()
    try:
        for line in workspace.log_buffer.lines(key, limit):
            print(line)
        print("\n--- Now tailing new lines (Press any key to stop) ---\n")
        while not is_keypress_waiting():
            try:
                record = subscription.get(timeout=config.LOG_TAIL_POLL_INTERVAL)
            except queue.Empty:
                continue
            if record.key == key:
                print(format_record(record))
        clear_keypress_buffer()
        print("\n--- Log tailing stopped. Returning to console. ---")
    except (KeyboardInterrupt, SystemExit):
        print("\n--- Log tailing interrupted. Returning to console. ---")
        raise
    finally:
        subscription.close()
        workspace.forwarder.attach(workspace.supervisor.logs)


def handle_clear_command(workspace: Workspace, args: List[str]) -> None:
    if len(args) < 2:
        print("Usage: clear <project> <process>")
        return
    key = make_key(workspace.find_project(args[0]), args[1])
    dropped = workspace.log_buffer.clear(key)
    print(f"Cleared {dropped} stored line(s) of '{args[1]}'.")


#* --- Config ---
def _config_show() -> None:
    print("\n--- Current Application Configuration ---")
    print(f"(Overrides file: {config.OVERRIDES_JSON_PATH})")
    for key, value in config.modifiable().items():
        print(f"  {key} = {value}")
    print("---")
    print("Use 'config set <KEY> <VALUE>' to change a setting.")
    print("---------------------------------------\n")


def _config_set(args: List[str]) -> None:
    if len(args) < 2:
        print("Usage: config set <SETTING_NAME> <VALUE>")
        return
    key, value_str = args[0].upper(), " ".join(args[1:])
    success, message = config.update_setting(key, value_str)
    print(message if success else f"Error: {message}")


def _config_help() -> None:
    print("\nConfig Command Help:")
    print("  config show                - Display all modifiable settings.")
    print("  config set KEY VALUE       - Change and persist a setting.")
    print("  config help                - Show this help message.")


def handle_config_command(args: List[str]) -> None:
    """
    Handles all sub-commands for the 'config' command-line interface.

    :param args: A list of string arguments following the 'config' command.
    """
    sub_command = args[0].lower() if args else "show"

    if sub_command == "show":
        _config_show()
    elif sub_command == "set":
        _config_set(args[1:])
    elif sub_command == "help":
        _config_help()
    else:
        print(f"Unknown config sub-command: '{sub_command}'. Type 'config help' for available commands.")


#* --- Misc ---
def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    config.VERBOSE_LOGGING = not config.VERBOSE_LOGGING
    new_level = logging.DEBUG if config.VERBOSE_LOGGING else logging.INFO

    root_logger = logging.getLogger()
    found_handler = False
    for handler in root_logger.handlers:
        # FileHandler subclasses StreamHandler; only the console handler changes level.
        if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
            handler.setLevel(new_level)
            found_handler = True
            break

    status = "ON" if config.VERBOSE_LOGGING else "OFF"
    if found_handler:
        print(f"Verbose console logging is now {status}.")
        log.debug("Debug logging test: This message should only appear when verbose is ON.")
    else:
        print("Could not find console handler to modify level.")


def print_help() -> None:
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  open <path>                   - Open a project (reads its myterm.yml, starts autostart processes).")
    print("  init <path>                   - Create a myterm.yml for a project and open it.")
    print("  close <project>               - Stop all processes of a project and close it.")
    print("  reload <project>              - Re-read a project's myterm.yml.")
    print("  start <project> <name>        - Start a process.")
    print("  stop <project> <name>         - Stop a process gracefully.")
    print("  restart <project> <name>      - Stop and then start a process.")
    print("  start-all <project>           - Start every process of a project.")
    print("  stop-all <project>            - Stop every process of a project.")
    print("  write <project> <name> <text> - Send a line of input to a running process.")
    print("  status [project]              - Show the status and resource usage of processes.")
    print("  logs <project> <name> [n] [-f]- Show stored output; -f keeps tailing.")
    print("  clear <project> <name>        - Clear the stored output of a process.")
    print("  config <cmd>                  - Manage configuration. Use 'config help' for more details.")
    print("  verbose                       - Toggle detailed DEBUG log output in the console.")
    print("  exit                          - Stop every process and exit the console.")
    print()
