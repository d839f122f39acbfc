import sys
import signal
import logging
import threading

# Basic console logger for messages BEFORE full setup is complete.
# This logger will be replaced by the full setup later.
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)-8s - [console] - %(message)s',
    stream=sys.stdout
)
log = logging.getLogger("console")

import setproctitle

import myterm.local.console as console
from myterm.local.config import effective_settings as config
from myterm.local.control_client import ControlClient
from myterm.local.workspace import Workspace
from myterm.log.setup import setup_logging
from myterm.web.service import ControlAPIService

# --- Global State ---
CONSOLE_LOCK = threading.Lock()


def _exit_on_sigterm(signum, frame) -> None:
    raise SystemExit(128 + signum)


def run_remote(command: str, args) -> int:
    """Runs one command against the console already running on this machine."""
    client = ControlClient()
    if not client.is_available():
        log.error(f"No MyTerm console is running on {client.base_url}. Start one with 'myterm'.")
        return 1
    return 0 if console.execute_remote_command(client, command, args) else 1


def run_console(paths) -> None:
    """The interactive console: owns the workspace until the user exits."""
    setproctitle.setproctitle(config.PROCESS_TITLE)
    signal.signal(signal.SIGTERM, _exit_on_sigterm)

    workspace = Workspace()
    api = None
    if config.CONTROL_API_ENABLED:
        if ControlClient().is_available():
            log.warning("Another MyTerm console already serves the control API; this one will not.")
        else:
            api = ControlAPIService(workspace)
            api.start()

    print("--- MyTerm Process Console ---")
    print("Type 'help' for a list of commands.")
    for path in paths:
        console.execute_command(workspace, "open", [path])

    try:
        while True:
            try:
                # The input prompt must be outside the lock to not block background threads
                command_line_str = input("> ")
            except EOFError:
                break
            with CONSOLE_LOCK:
                command_line = command_line_str.strip().split()
                if not command_line:
                    continue
                command, args = command_line[0].lower(), command_line[1:]
                log.debug(f"Received command: {command}, args: {args}")
                try:
                    if console.execute_command(workspace, command, args):
                        break
                except Exception as e:
                    log.error(f"An unexpected error occurred in the console: {e}", exc_info=True)
    except KeyboardInterrupt:
        with CONSOLE_LOCK:
            log.warning("\nExiting console due to KeyboardInterrupt.")
    finally:
        # Nothing may outlive the console: stop every process before returning.
        report = workspace.shutdown()
        if report.still_alive:
            log.error(f"{len(report.still_alive)} process group(s) could not be stopped.")
        if api is not None:
            api.stop()


def main() -> None:
    """The main entry point for the console application."""
    args = sys.argv[1:]
    verbose = "--verbose" in args
    args = [a for a in args if a != "--verbose"]

    setup_logging(logging.DEBUG if verbose else logging.INFO)
    config.VERBOSE_LOGGING = verbose

    # Non-interactive mode for one-off commands against a running console
    if args and args[0] != "console":
        sys.exit(run_remote(args[0].lower(), args[1:]))

    run_console(args[1:])
    print("Exiting MyTerm. See you next time!")


if __name__ == "__main__":
    main()
