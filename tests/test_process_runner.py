"""Tests for the process runner, using real Python subprocesses."""

import os
import sys
import threading
import time

import pytest

from conftest import RecordingSink, python_cmd, wait_until
from hls_batch.domain.exceptions import RunCancelledException
from hls_batch.domain.models import CommandSpec, Failure, FailureReason, Success
from hls_batch.services.process_runner import ProcessRunner
from hls_batch.utils.cancel import CancellationToken


@pytest.fixture
def runner():
    return ProcessRunner(terminate_grace=2.0, poll_interval=0.05)


class TestProcessRunner:
    """Tests for ProcessRunner.run."""

    def test_success_captures_output(self, runner):
        """Test a zero exit yields Success with the captured output."""
        outcome = runner.run(python_cmd("print('hello from child')"), job_id="ok")

        assert isinstance(outcome, Success)
        assert outcome.succeeded
        assert "hello from child" in outcome.captured_output

    def test_nonzero_exit_is_execution_failure(self, runner):
        """Test a non-zero exit yields Failure with exit code and output."""
        script = "import sys; print('partial work'); sys.stderr.write('boom\\n'); sys.exit(3)"

        outcome = runner.run(python_cmd(script), job_id="bad")

        assert isinstance(outcome, Failure)
        assert outcome.reason is FailureReason.EXECUTION
        assert outcome.exit_code == 3
        assert "partial work" in outcome.captured_output
        assert "boom" in outcome.captured_output
        assert "exit code 3" in outcome.describe()
        assert "boom" in outcome.describe()

    def test_missing_executable_is_launch_failure(self, runner, tmp_path):
        """Test an executable that does not exist yields Failure(LAUNCH)."""
        spec = CommandSpec(str(tmp_path / "definitely-not-here"), ("-i", "x"))

        outcome = runner.run(spec, job_id="missing")

        assert isinstance(outcome, Failure)
        assert outcome.reason is FailureReason.LAUNCH
        assert outcome.exit_code is None
        assert "definitely-not-here" in outcome.message

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permission bits")
    def test_non_executable_file_is_launch_failure(self, runner, tmp_path):
        """Test a file without execute permission yields Failure(LAUNCH)."""
        script = tmp_path / "not_executable.sh"
        script.write_text("#!/bin/sh\necho hi\n")
        script.chmod(0o644)

        outcome = runner.run(CommandSpec(str(script)), job_id="perm")

        assert isinstance(outcome, Failure)
        assert outcome.reason is FailureReason.LAUNCH

    def test_streams_are_tagged(self, runner):
        """Test stdout and stderr lines reach the sink with their stream kind."""
        sink = RecordingSink()
        script = (
            "import sys\n"
            "print('to-out', flush=True)\n"
            "sys.stderr.write('to-err\\n'); sys.stderr.flush()\n"
        )

        outcome = runner.run(python_cmd(script), job_id="tagged", sink=sink)

        assert outcome.succeeded
        assert "to-out" in sink.text_for("tagged", "stdout")
        assert "to-err" in sink.text_for("tagged", "stderr")
        assert "to-out" not in sink.text_for("tagged", "stderr")
        assert "to-out" in outcome.captured_output
        assert "to-err" in outcome.captured_output

    def test_output_is_streamed_before_exit_and_cancel_terminates(self, runner):
        """Test lines arrive while the process runs, and cancel kills it."""
        first_line_seen = threading.Event()
        token = CancellationToken()
        result = {}

        def sink(chunk):
            if "started" in chunk.text:
                first_line_seen.set()

        script = "import time\nprint('started', flush=True)\ntime.sleep(60)\n"

        def target():
            try:
                result["outcome"] = runner.run(
                    python_cmd(script), job_id="slow", sink=sink, cancel_token=token
                )
            except RunCancelledException as e:
                result["cancelled"] = e

        started = time.monotonic()
        t = threading.Thread(target=target)
        t.start()

        assert first_line_seen.wait(15), "output was not streamed while the process was running"
        assert t.is_alive()

        token.cancel("test")
        t.join(15)

        assert not t.is_alive()
        assert "cancelled" in result
        assert "outcome" not in result
        assert time.monotonic() - started < 30

    def test_cancelled_token_prevents_launch(self, runner, tmp_path):
        """Test an already-cancelled token raises before spawning."""
        token = CancellationToken()
        token.cancel()
        marker = tmp_path / "ran.txt"

        with pytest.raises(RunCancelledException):
            runner.run(python_cmd(f"open({str(marker)!r}, 'w').close()"), cancel_token=token)

        assert not marker.exists()

    def test_invalid_utf8_does_not_fail_the_job(self, runner):
        """Test undecodable bytes are replaced rather than raising."""
        script = "import sys; sys.stdout.buffer.write(b'\\xff\\xfe ok\\n'); sys.stdout.flush()"

        outcome = runner.run(python_cmd(script), job_id="bytes")

        assert outcome.succeeded
        assert "ok" in outcome.captured_output
        assert "\ufffd" in outcome.captured_output

    def test_broken_sink_does_not_change_outcome(self, runner):
        """Test a sink that raises is ignored for the job's result."""

        def broken_sink(chunk):
            raise RuntimeError("sink exploded")

        outcome = runner.run(
            python_cmd("print('a'); print('b')"), job_id="sinkless", sink=broken_sink
        )

        assert outcome.succeeded
        assert "a" in outcome.captured_output

    def test_runs_in_requested_directory(self, runner, tmp_path):
        """Test CommandSpec.cwd is honoured."""
        spec = CommandSpec(sys.executable, ("-c", "import os; print(os.getcwd())"), cwd=tmp_path)

        outcome = runner.run(spec, job_id="cwd")

        assert outcome.succeeded
        assert tmp_path.name in outcome.captured_output

    def test_large_output_is_fully_captured(self, runner):
        """Test a process writing a lot to both pipes neither deadlocks nor loses lines."""
        script = (
            "import sys\n"
            "for i in range(5000):\n"
            "    print(f'out {i}')\n"
            "    sys.stderr.write(f'err {i}\\n')\n"
        )

        outcome = runner.run(python_cmd(script), job_id="big")

        assert outcome.succeeded
        assert "out 4999" in outcome.captured_output
        assert "err 4999" in outcome.captured_output
        assert outcome.captured_output.count("\n") == 10000


SPAWN_GRANDCHILD = (
    "import subprocess, sys\n"
    "child = subprocess.Popen([sys.executable, '-c', "
    "'import os, time; print(os.getpid(), flush=True); time.sleep(30)'])\n"
    "{after_spawn}\n"
)


def _process_gone(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return True
    # Still listed; it may be a zombie waiting for init to reap it.
    try:
        with open(f"/proc/{pid}/stat") as f:
            return f.read().split(")")[-1].split()[0] == "Z"
    except OSError:
        return False


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX process groups")
class TestProcessGroups:
    """Tests that a job's whole process tree is stopped and teardown stays bounded."""

    def test_cancel_stops_a_wrappers_worker(self):
        """Test cancelling an `sh -c` wrapper returns promptly instead of waiting for its worker."""
        runner = ProcessRunner(terminate_grace=0.5, poll_interval=0.05)
        token = CancellationToken()
        threading.Timer(0.5, token.cancel).start()
        started = time.monotonic()

        with pytest.raises(RunCancelledException):
            runner.run(CommandSpec("/bin/sh", ("-c", "sleep 30; echo done")), job_id="wrapped", cancel_token=token)

        assert time.monotonic() - started < 10

    def test_cancel_kills_grandchild_holding_stdout(self):
        """Test a grandchild that inherited the pipes is terminated with its parent."""
        runner = ProcessRunner(terminate_grace=0.5, poll_interval=0.05)
        token = CancellationToken()
        sink = RecordingSink()
        script = SPAWN_GRANDCHILD.format(after_spawn="child.wait()")

        def cancel_once_started():
            assert wait_until(lambda: sink.text_for("tree", "stdout").strip(), timeout=15)
            token.cancel("test")

        canceller = threading.Thread(target=cancel_once_started)
        canceller.start()
        started = time.monotonic()

        with pytest.raises(RunCancelledException):
            runner.run(python_cmd(script), job_id="tree", sink=sink, cancel_token=token)
        canceller.join(5)

        assert time.monotonic() - started < 15
        grandchild_pid = int(sink.text_for("tree", "stdout").split()[0])
        assert wait_until(lambda: _process_gone(grandchild_pid), timeout=5)

    def test_teardown_is_bounded_when_grandchild_outlives_parent(self):
        """Test a finished command whose leftover child holds stdout still resolves quickly."""
        runner = ProcessRunner(terminate_grace=0.5, poll_interval=0.05)
        script = SPAWN_GRANDCHILD.format(after_spawn="print('parent done', flush=True)")
        started = time.monotonic()

        outcome = runner.run(python_cmd(script), job_id="leftover")

        assert outcome.succeeded
        assert "parent done" in outcome.captured_output
        assert time.monotonic() - started < 10


class TestCarriageReturnOutput:
    """Tests for progress output that ends lines with a carriage return."""

    def test_progress_is_forwarded_while_running(self, runner):
        """Test "\\r"-terminated status lines reach the sink before the process exits."""
        sink = RecordingSink()
        token = CancellationToken()
        script = (
            "import sys, time\n"
            "for i in range(5):\n"
            "    sys.stderr.write(f'frame={i}\\r')\n"
            "sys.stderr.flush()\n"
            "time.sleep(60)\n"
        )
        result = {}

        def target():
            try:
                result["outcome"] = runner.run(python_cmd(script), job_id="enc", sink=sink, cancel_token=token)
            except RunCancelledException as e:
                result["cancelled"] = e

        t = threading.Thread(target=target)
        t.start()
        try:
            assert wait_until(lambda: "frame=4" in sink.text_for("enc", "stderr"), timeout=15)
            assert t.is_alive()
            stderr_chunks = [c.text for c in sink.chunks if c.job_id == "enc" and c.stream == "stderr"]
            assert stderr_chunks == [f"frame={i}\r" for i in range(5)]
        finally:
            token.cancel("test")
            t.join(15)
        assert "cancelled" in result

    def test_crlf_split_across_writes_is_one_line(self, runner):
        """Test a "\\r\\n" arriving in two pieces does not produce an empty line."""
        sink = RecordingSink()
        script = (
            "import sys, time\n"
            "sys.stdout.write('first\\r'); sys.stdout.flush()\n"
            "time.sleep(0.3)\n"
            "sys.stdout.write('\\nsecond\\n'); sys.stdout.flush()\n"
        )

        outcome = runner.run(python_cmd(script), job_id="crlf", sink=sink)

        assert outcome.succeeded
        assert [c.text for c in sink.chunks if c.stream == "stdout"] == ["first\r", "second\n"]
        assert outcome.captured_output == "first\r\nsecond\n"

    def test_unterminated_tail_is_delivered_at_exit(self, runner):
        """Test output without a final line break is still forwarded and captured."""
        sink = RecordingSink()

        outcome = runner.run(
            python_cmd("import sys; sys.stdout.write('no newline')"), job_id="tail", sink=sink
        )

        assert outcome.captured_output == "no newline"
        assert sink.text_for("tail", "stdout") == "no newline"
