import time
import logging
import threading
from typing import IO, Optional

from .events import EventChannel
from .models import LogRecord, LogStream, ProcessKey
from .process_utils import ProcessHandle

log = logging.getLogger(__name__)


def decode_line(line_bytes: bytes) -> str:
    """Decodes one raw output line, dropping the line terminator."""
    return line_bytes.decode("utf-8", errors="replace").rstrip("\r\n")


class LogBroadcaster:
    """
    Turns a process's stdout/stderr pipes into `LogRecord`s on a channel.

    One reader thread per stream publishes lines in the order they complete
    on that stream. The two streams are independent, so no ordering is
    promised between stdout and stderr. A reader ends when its pipe closes.
    """

    def __init__(self, channel: EventChannel[LogRecord]) -> None:
        self.channel = channel

    def emit(self, key: ProcessKey, stream: LogStream, text: str, generation: int = 0) -> None:
        """Publishes a single line on behalf of a process (used for supervisor notices)."""
        self.channel.publish(LogRecord(key.project_path, key.process_name, stream, text, generation))

    def _read_pipe(self, pipe: IO[bytes], key: ProcessKey, stream: LogStream, generation: int) -> None:
        """Target function for reader threads. Publishes every line read from the pipe."""
        try:
            for line_bytes in iter(pipe.readline, b""):
                self.emit(key, stream, decode_line(line_bytes), generation)
        except (OSError, ValueError) as e:
            log.warning(f"Output reader for {key} ({stream.value}) stopped: {e}")
        finally:
            try:
                pipe.close()
            except OSError:
                pass

    def attach(self, handle: ProcessHandle) -> None:
        """Starts background threads consuming the handle's stdout and stderr."""
        pipes = ((handle.process.stdout, LogStream.STDOUT), (handle.process.stderr, LogStream.STDERR))
        for pipe, stream in pipes:
            if pipe is None:
                continue
            reader = threading.Thread(
                target=self._read_pipe,
                args=(pipe, handle.key, stream, handle.generation),
                daemon=True,
                name=f"Reader-{handle.key.process_name}-{stream.value}",
            )
            handle.readers.append(reader)
            reader.start()

    def drain(self, handle: ProcessHandle, timeout: Optional[float]) -> bool:
        """
        Waits for the handle's readers to reach end of stream.

        Descendants that outlive the root process can keep a pipe open, so the
        wait is bounded.

        :return: True if every reader finished within the timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        for reader in handle.readers:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            reader.join(remaining)
        drained = not any(r.is_alive() for r in handle.readers)
        if not drained:
            log.debug(f"Output readers of {handle.key} still open after exit; continuing.")
        return drained
