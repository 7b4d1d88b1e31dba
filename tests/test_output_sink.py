"""Tests for output sinks."""

import threading

import pytest
from loguru import logger

from conftest import RecordingSink, wait_until
from hls_batch.domain.models import OutputChunk
from hls_batch.services.output_sink import BoundedSink, LoggerSink, NullSink


@pytest.fixture
def loguru_records():
    records = []
    handler_id = logger.add(lambda message: records.append(message.record), level="TRACE")
    yield records
    logger.remove(handler_id)


class TestLoggerSink:
    """Tests for LoggerSink."""

    def test_logs_lines_with_job_context(self, loguru_records):
        """Test each chunk is logged once with job id and stream bound."""
        sink = LoggerSink(level="INFO")

        sink(OutputChunk("clip-1", "stderr", "frame=  120 fps=30\n"))

        assert len(loguru_records) == 1
        record = loguru_records[0]
        assert record["level"].name == "INFO"
        assert record["extra"]["job_id"] == "clip-1"
        assert record["extra"]["stream"] == "stderr"
        assert record["message"] == "[clip-1:stderr] frame=  120 fps=30"

    def test_blank_lines_are_skipped(self, loguru_records):
        """Test empty output lines are not logged."""
        LoggerSink()(OutputChunk("clip-1", "stdout", "\r\n"))

        assert loguru_records == []


class TestNullSink:
    def test_accepts_anything(self):
        assert NullSink()(OutputChunk("a", "stdout", "ignored\n")) is None


class TestBoundedSink:
    """Tests for BoundedSink."""

    def test_delivers_in_order_and_flushes_on_close(self):
        """Test chunks reach the inner sink in order and close() drains them."""
        inner = RecordingSink()
        sink = BoundedSink(inner, max_pending=100)

        for i in range(50):
            sink(OutputChunk("job", "stdout", f"line {i}\n"))
        sink.close()

        assert [c.text for c in inner.chunks] == [f"line {i}\n" for i in range(50)]
        assert sink.dropped == 0

    def test_drops_oldest_when_inner_is_slow(self):
        """Test a stuck inner sink never blocks the caller and the oldest chunks go first."""
        gate = threading.Event()
        inner = RecordingSink()

        def slow_inner(chunk):
            gate.wait(10)
            inner(chunk)

        sink = BoundedSink(slow_inner, max_pending=3)
        sink(OutputChunk("job", "stdout", "first\n"))
        # The delivery thread takes "first" and blocks on the gate.
        assert wait_until(lambda: sink.pending == 0)

        for i in range(10):
            sink(OutputChunk("job", "stdout", f"burst {i}\n"))

        assert sink.pending == 3
        assert sink.dropped == 7
        gate.set()
        sink.close()

        assert [c.text for c in inner.chunks] == ["first\n", "burst 7\n", "burst 8\n", "burst 9\n"]

    def test_inner_failure_does_not_stop_delivery(self):
        """Test an exception in the inner sink is logged and later chunks still arrive."""
        delivered = []

        def flaky(chunk):
            if chunk.text == "bad\n":
                raise RuntimeError("cannot write")
            delivered.append(chunk.text)

        with BoundedSink(flaky) as sink:
            sink(OutputChunk("job", "stdout", "bad\n"))
            sink(OutputChunk("job", "stdout", "good\n"))

        assert delivered == ["good\n"]

    def test_chunks_after_close_are_ignored(self):
        """Test a closed sink silently discards new chunks."""
        inner = RecordingSink()
        sink = BoundedSink(inner)
        sink.close()

        sink(OutputChunk("job", "stdout", "late\n"))

        assert inner.chunks == []
        assert sink.pending == 0

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            BoundedSink(RecordingSink(), max_pending=0)
