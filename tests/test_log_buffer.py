import logging
import threading

import pytest

from myterm.local.supervisor.events import EventChannel
from myterm.local.supervisor.models import LogRecord, LogStream, ProcessKey
from myterm.log.buffer import LogBuffer
from myterm.log.forwarder import ProcessLogForwarder
from myterm.log.setup import MainFormatter

KEY = ProcessKey("/proj", "web")


def _record(text, stream=LogStream.STDOUT, key=KEY):
    return LogRecord(key.project_path, key.process_name, stream, text)


@pytest.mark.basic
def test_buffer_keeps_most_recent_lines():
    buffer = LogBuffer(max_lines=3)
    for i in range(5):
        buffer.append(_record(f"line{i}"))
    assert buffer.lines(KEY) == ["line2", "line3", "line4"]
    assert buffer.lines(KEY, limit=1) == ["line4"]
    assert buffer.lines(KEY, limit=0) == []
    assert buffer.lines(ProcessKey("/proj", "other")) == []


@pytest.mark.basic
def test_stderr_lines_are_prefixed():
    buffer = LogBuffer()
    buffer.append(_record("ok"))
    buffer.append(_record("bad", LogStream.STDERR))
    assert buffer.lines(KEY) == ["ok", "[stderr] bad"]
    assert buffer.max_lines == 500


@pytest.mark.basic
def test_clear_only_drops_stored_lines():
    channel = EventChannel("logs")
    buffer = LogBuffer()
    channel.subscribe(buffer.append)
    channel.publish(_record("before"))

    assert buffer.clear(KEY) == 1
    channel.publish(_record("after"))
    assert buffer.lines(KEY) == ["after"]


@pytest.mark.basic
def test_clear_during_concurrent_publication_keeps_later_records():
    channel = EventChannel("logs")
    buffer = LogBuffer(max_lines=10_000)
    channel.subscribe(buffer.append)
    done = threading.Event()

    def publisher():
        for i in range(2000):
            channel.publish(_record(str(i)))
        done.set()

    thread = threading.Thread(target=publisher)
    thread.start()
    while not done.is_set():
        buffer.clear(KEY)
    thread.join()

    channel.publish(_record("last"))
    remaining = buffer.lines(KEY)
    assert remaining[-1] == "last"
    numbers = [int(x) for x in remaining[:-1]]
    assert numbers == sorted(numbers)


@pytest.mark.basic
def test_forget_drops_a_whole_project():
    buffer = LogBuffer()
    buffer.append(_record("a"))
    buffer.append(_record("b", key=ProcessKey("/other", "web")))
    buffer.forget("/proj")
    assert buffer.lines(KEY) == []
    assert buffer.lines(ProcessKey("/other", "web")) == ["b"]


@pytest.mark.basic
def test_forwarder_logs_under_process_logger(caplog):
    forwarder = ProcessLogForwarder({"/proj": "shop"})
    with caplog.at_level(logging.INFO, logger="proc"):
        forwarder(_record("hello"))
        forwarder(_record("broken", LogStream.STDERR))

    records = [(r.name, r.levelno, r.getMessage()) for r in caplog.records if r.name.startswith("proc.")]
    assert records == [
        ("proc.shop.web", logging.INFO, "hello"),
        ("proc.shop.web", logging.ERROR, "broken"),
    ]


@pytest.mark.basic
def test_main_formatter_prints_process_output_raw():
    formatter = MainFormatter()
    proc_record = logging.LogRecord("proc.shop.web", logging.INFO, __file__, 1, "listening", None, None)
    proc_record.process_name = "web"
    assert formatter.format(proc_record) == "[web] listening"

    app_record = logging.LogRecord("myterm.x", logging.WARNING, __file__, 1, "careful", None, None)
    formatted = formatter.format(app_record)
    assert "WARNING" in formatted and "[myterm.x]" in formatted and formatted.endswith("careful")


@pytest.mark.basic
def test_file_formatter_stamps_process_output():
    record = logging.LogRecord("proc.shop.worker", logging.ERROR, __file__, 1, "boom", None, None)
    formatted = MainFormatter(stamp_process_output=True).format(record)
    assert formatted.endswith("[shop.worker] boom")
    assert not formatted.startswith("[")
