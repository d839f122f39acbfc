import os
import logging
from typing import Callable, Dict, Optional

from myterm.local.supervisor.events import EventChannel
from myterm.local.supervisor.models import LogRecord, LogStream


class ProcessLogForwarder:
    """
    Re-emits supervised process output through the logging system.

    Each process gets a `proc.<project>.<process>` logger, which MainFormatter
    prints raw. stdout lines are logged at INFO, stderr lines at ERROR.
    """

    def __init__(self, project_names: Optional[Dict[str, str]] = None) -> None:
        self.project_names = project_names if project_names is not None else {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    def logger_for(self, record: LogRecord) -> logging.Logger:
        project = self.project_names.get(record.project_path) or os.path.basename(record.project_path)
        return logging.getLogger(f"proc.{project}.{record.process_name}")

    def __call__(self, record: LogRecord) -> None:
        level = logging.ERROR if record.stream is LogStream.STDERR else logging.INFO
        self.logger_for(record).log(level, record.text, extra={"process_name": record.process_name})

    def attach(self, channel: EventChannel[LogRecord]) -> None:
        self.detach()
        self._unsubscribe = channel.subscribe(self)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
