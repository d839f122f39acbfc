"""
This module contains the configuration settings for the MyTerm application.
It defines paths, supervisor timings, logging configuration and the local control API.
It is used throughout the application to ensure consistent settings and paths.
"""

import os
import pathlib
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv(override=False)

#* --- Core Paths ---
BASE_DIR = pathlib.Path(__file__).resolve().parent.parent  # Project Root
DATA_DIR = pathlib.Path(os.getenv("MYTERM_DATA_DIR", str(pathlib.Path.home() / ".myterm")))
LOGS_DIR = DATA_DIR / "logs"

#* --- Application File Paths ---
LOG_FILE_PATH = LOGS_DIR / "myterm.log"
OVERRIDES_JSON_PATH = DATA_DIR / "overrides.json"

#* --- Project Config Files ---
# Looked up in this order inside a project directory.
PROJECT_CONFIG_FILE_NAMES = ("myterm.yml", "myterm.yaml")
DEFAULT_PROJECT_CONFIG_FILE_NAME = PROJECT_CONFIG_FILE_NAMES[0]

#* --- Shell Configuration ---
# Every command is handed verbatim to the user's shell. An interactive login shell
# picks up the same PATH (nvm, pyenv, ...) the developer has in a terminal.
SHELL = os.getenv("MYTERM_SHELL") or os.getenv("SHELL") or "/bin/sh"
SHELL_FLAGS = os.getenv("MYTERM_SHELL_FLAGS", "-ilc").split()

#* --- Supervisor Settings ---
GRACEFUL_SHUTDOWN_TIMEOUT = 0.8   # seconds between SIGTERM and SIGKILL
FORCE_KILL_WAIT = 0.8             # seconds to wait for exits after SIGKILL on shutdown
RESTART_DELAY_SECONDS = 1.0       # settle delay before an automatic restart
LIVENESS_POLL_INTERVAL = 0.05     # seconds between group liveness probes
READER_DRAIN_TIMEOUT = 0.5        # seconds the monitor waits for output readers on exit
STOP_TIMEOUT = GRACEFUL_SHUTDOWN_TIMEOUT + FORCE_KILL_WAIT

#* --- Control API Settings ---
CONTROL_API_ENABLED = os.getenv("MYTERM_CONTROL_API", "True").lower() in ('true', '1', 't')
CONTROL_API_HOST = "127.0.0.1"
CONTROL_API_PORT = int(os.getenv("MYTERM_CONTROL_API_PORT", "7717"))

#* --- Application variables ---
PROCESS_TITLE = "MyTerm - Console"
VERBOSE_LOGGING = False

#* --- MODIFIABLE SETTINGS (Changeable at runtime via 'config' command) ---
MODIFIABLE_SETTINGS = {
    # Logging
    "LOG_HISTORY_COUNT", "LOG_FILE_MAX_BYTES", "LOG_FILE_BACKUP_COUNT",
    # Config watching
    "WATCH_PROJECT_CONFIG", "WATCHDOG_DEBOUNCE_SECONDS",
    # Console
    "LOG_TAIL_POLL_INTERVAL",
}

#* --- Default Values for Modifiable Settings ---
LOG_HISTORY_COUNT = 500
LOG_FILE_MAX_BYTES = 5 * 1024 * 1024
LOG_FILE_BACKUP_COUNT = 3
WATCH_PROJECT_CONFIG = os.getenv("MYTERM_WATCH_CONFIG", "True").lower() in ('true', '1', 't')
WATCHDOG_DEBOUNCE_SECONDS = 0.5
LOG_TAIL_POLL_INTERVAL = 0.5
