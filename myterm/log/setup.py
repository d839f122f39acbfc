import sys
import logging
from logging.handlers import RotatingFileHandler

from myterm.local.config import effective_settings as config

APP_FORMAT = '%(asctime)s - %(levelname)-8s - [%(name)s] - %(message)s'


class MainFormatter(logging.Formatter):
    """
    Formats application messages with time, level and logger name, and output
    of supervised processes (`proc.*` loggers) as `[name] line`.

    :param stamp_process_output: Also prefix process lines with the time; used
        for the log file, where lines of different processes interleave.
    """

    def __init__(self, stamp_process_output: bool = False) -> None:
        super().__init__(APP_FORMAT)
        self.stamp_process_output = stamp_process_output

    def format(self, record):
        if not record.name.startswith('proc.'):
            return super().format(record)
        line = f"[{getattr(record, 'process_name', record.name[5:])}] {record.getMessage()}"
        if self.stamp_process_output:
            return f"{self.formatTime(record)} {line}"
        return line


def setup_logging(console_level: int = logging.INFO, log_file: bool = True) -> None:
    """
    Configures the root logger: console output at `console_level` and a
    rotating DEBUG log file under LOGS_DIR. Previously configured handlers
    are removed so repeated calls do not duplicate output.

    :param console_level: The logging level for the console output (e.g., logging.INFO).
    :param log_file: Whether to also write the rotating log file.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    #* --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(MainFormatter())
    root_logger.addHandler(console_handler)

    #* --- File Handler ---
    if not log_file:
        return
    try:
        config.LOGS_DIR.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            config.LOG_FILE_PATH,
            maxBytes=config.LOG_FILE_MAX_BYTES,
            backupCount=config.LOG_FILE_BACKUP_COUNT,
            encoding="utf-8",
        )
    except OSError as e:
        root_logger.error(f"Could not open log file {config.LOG_FILE_PATH}: {e}. File logging is disabled.")
        return
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(MainFormatter(stamp_process_output=True))
    root_logger.addHandler(file_handler)
