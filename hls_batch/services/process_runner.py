"""
Runs one external command for one job and resolves it to a single outcome.

The runner streams the process's stdout and stderr to an output sink while the
process is running, one line at a time, captures everything into one merged
buffer, and returns `Success` or `Failure` once the process has exited and both
streams are drained. It never raises for a job-level problem; the only
exception that leaves `run` is `RunCancelledException`, after the process has
been terminated.

On POSIX each command runs in its own session, so the process and anything it
starts (e.g. the worker behind an `sh -c` wrapper) form one process group that
is signalled as a whole on cancellation.
"""

import codecs
import os
import signal
import subprocess
import threading
import time
from datetime import datetime
from typing import IO, List, Optional

from loguru import logger

from ..config.common import PIPE_READ_SIZE, PROCESS_POLL_INTERVAL, TERMINATE_GRACE_SECONDS
from ..domain.exceptions import ProcessLaunchException, RunCancelledException
from ..domain.models import CommandSpec, Failure, FailureReason, OutputChunk, RunOutcome, Success
from ..utils.cancel import CancellationToken
from .output_sink import OutputSink

_POSIX = os.name == "posix"


def _terminate_group(process: subprocess.Popen) -> None:
    """Sends SIGTERM to the process and everything in its process group."""
    try:
        if _POSIX:
            os.killpg(process.pid, signal.SIGTERM)
        else:
            process.terminate()
    except (ProcessLookupError, PermissionError) as e:
        logger.trace(f"Process group {process.pid} already gone: {e}")


def _kill_group(process: subprocess.Popen) -> None:
    """Sends SIGKILL to the process and everything left in its process group."""
    try:
        if _POSIX:
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except (ProcessLookupError, PermissionError) as e:
        logger.trace(f"Process group {process.pid} already gone: {e}")


class CapturedOutput:
    """Thread-safe accumulator for the merged output of one process."""

    def __init__(self):
        self._parts: List[str] = []
        self._lock = threading.Lock()

    def append(self, text: str) -> None:
        with self._lock:
            self._parts.append(text)

    def getvalue(self) -> str:
        with self._lock:
            return "".join(self._parts)


class _StreamPump:
    """
    Reads one pipe as data arrives, captures it and forwards it line by line.

    A line ends at "\\n", "\\r" or "\\r\\n", so carriage-return progress updates
    such as FFmpeg's "frame=... time=..." reach the sink while the process is
    still running. The pipe is read with `os.read` on its descriptor, never
    through the buffered file object, so closing the file object cannot wait
    on a blocked reader.
    """

    def __init__(
        self,
        pipe: IO[bytes],
        stream_name: str,
        job_id: str,
        captured: CapturedOutput,
        sink: Optional[OutputSink],
        sink_errors: dict,
    ):
        self.pipe = pipe
        self.stream_name = stream_name
        self.job_id = job_id
        self.captured = captured
        self.sink = sink
        self.sink_errors = sink_errors
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._pending = b""
        self._after_cr = False
        self._stopped = threading.Event()
        self.thread = threading.Thread(
            target=self._pump, name=f"{job_id or 'job'}-{stream_name}", daemon=True
        )

    def start(self) -> None:
        self.thread.start()

    def stop(self) -> None:
        self._stopped.set()

    def _pump(self) -> None:
        try:
            fd = self.pipe.fileno()
            while not self._stopped.is_set():
                data = os.read(fd, PIPE_READ_SIZE)
                if not data:
                    break
                self._feed(data)
        except (ValueError, OSError) as e:
            # The pipe was closed under us, which only happens on teardown.
            logger.trace(f"Stream {self.stream_name} of {self.job_id} closed while reading: {e}")
        finally:
            tail = self._decoder.decode(self._pending, final=True)
            self._pending = b""
            self._emit(tail)

    def _feed(self, data: bytes) -> None:
        if self._after_cr and data.startswith(b"\n"):
            # Second half of a "\r\n" that was split across two reads.
            self.captured.append("\n")
            data = data[1:]

        self._pending += data
        pieces = self._pending.splitlines(keepends=True)
        if pieces and not pieces[-1].endswith((b"\n", b"\r")):
            self._pending = pieces.pop()
        else:
            self._pending = b""
        if len(self._pending) >= PIPE_READ_SIZE:
            pieces.append(self._pending)
            self._pending = b""

        for piece in pieces:
            self._emit(self._decoder.decode(piece))
        self._after_cr = bool(pieces) and pieces[-1].endswith(b"\r") and not self._pending

    def _emit(self, text: str) -> None:
        if not text:
            return
        self.captured.append(text)
        self._forward(text)

    def _forward(self, text: str) -> None:
        if self.sink is None:
            return
        try:
            self.sink(OutputChunk(job_id=self.job_id, stream=self.stream_name, text=text))
        except Exception as e:
            # Report a broken sink once per job; the job itself is unaffected.
            if not self.sink_errors.get("reported"):
                self.sink_errors["reported"] = True
                logger.error(f"Output sink failed for job {self.job_id}: {e}")

    def join(self, timeout: Optional[float]) -> bool:
        self.thread.join(timeout)
        return not self.thread.is_alive()

    def is_alive(self) -> bool:
        return self.thread.is_alive()


class ProcessRunner:
    """
    Spawns commands and turns their termination into a `RunOutcome`.

    Args:
        terminate_grace: Seconds between SIGTERM and SIGKILL when a running
                         process is cancelled. Also bounds how long teardown
                         waits for the output pipes to close.
        poll_interval: How often the cancellation token is checked while
                       waiting for the process.
    """

    def __init__(
        self,
        terminate_grace: float = TERMINATE_GRACE_SECONDS,
        poll_interval: float = PROCESS_POLL_INTERVAL,
    ):
        self.terminate_grace = terminate_grace
        self.poll_interval = poll_interval

    def run(
        self,
        spec: CommandSpec,
        job_id: str = "",
        sink: Optional[OutputSink] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RunOutcome:
        """
        Runs `spec` to completion.

        Args:
            spec: The command to execute.
            job_id: Used to tag streamed output and log messages.
            sink: Receives each line of output as it is produced.
            cancel_token: If cancelled while the process runs, the process and
                          its process group are terminated and
                          `RunCancelledException` is raised.

        Returns:
            `Success` with the captured output if the process exits with 0;
            `Failure(LAUNCH)` if it could not be started; `Failure(EXECUTION)`
            with the exit code and captured output otherwise.

        Raises:
            RunCancelledException: The token was cancelled before or while the
                                   process ran. No outcome exists for the job.
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        started = datetime.now()
        captured = CapturedOutput()
        logger.debug(f"[{job_id}] Launching: {spec.display()}")

        try:
            process = self._launch(spec)
        except ProcessLaunchException as e:
            logger.error(f"[{job_id}] {e}")
            return Failure(
                reason=FailureReason.LAUNCH,
                message=str(e),
                elapsed=datetime.now() - started,
            )

        sink_errors: dict = {}
        pumps = [
            _StreamPump(process.stdout, "stdout", job_id, captured, sink, sink_errors),
            _StreamPump(process.stderr, "stderr", job_id, captured, sink, sink_errors),
        ]
        for pump in pumps:
            pump.start()

        was_cancelled = False
        try:
            was_cancelled = self._wait(process, cancel_token, job_id)
        finally:
            if process.poll() is None:
                # Reached only if waiting itself blew up (e.g. KeyboardInterrupt).
                self._terminate(process, job_id)
            self._teardown(process, pumps, job_id)

        elapsed = datetime.now() - started
        if was_cancelled:
            logger.warning(f"[{job_id}] Process terminated due to cancellation (pid {process.pid}).")
            raise RunCancelledException(f"job {job_id} cancelled while running")

        output = captured.getvalue()
        exit_code = process.returncode
        if exit_code == 0:
            logger.debug(f"[{job_id}] Process exited successfully.")
            return Success(captured_output=output, elapsed=elapsed)

        logger.debug(f"[{job_id}] Process exited with code {exit_code}.")
        return Failure(
            reason=FailureReason.EXECUTION,
            message=f"{spec.executable} exited with code {exit_code}",
            exit_code=exit_code,
            captured_output=output,
            elapsed=elapsed,
        )

    @staticmethod
    def _launch(spec: CommandSpec) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                spec.argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(spec.cwd) if spec.cwd else None,
                env=dict(spec.env) if spec.env is not None else None,
                shell=False,
                start_new_session=_POSIX,
            )
        except FileNotFoundError as e:
            raise ProcessLaunchException(
                f"Command not found: '{spec.executable}'. Ensure it is installed and on your PATH. ({e})"
            ) from e
        except PermissionError as e:
            raise ProcessLaunchException(
                f"Permission denied launching '{spec.executable}': {e}"
            ) from e
        except (OSError, ValueError) as e:
            raise ProcessLaunchException(
                f"Could not launch '{spec.executable}': {type(e).__name__} - {e}"
            ) from e

    def _wait(
        self, process: subprocess.Popen, cancel_token: Optional[CancellationToken], job_id: str
    ) -> bool:
        """Waits for exit; returns True if the process was terminated by cancellation."""
        if cancel_token is None:
            process.wait()
            return False

        while True:
            if cancel_token.cancelled:
                if process.poll() is not None:
                    # Finished on its own just as cancellation arrived; keep the result.
                    return False
                self._terminate(process, job_id)
                return True
            try:
                process.wait(timeout=self.poll_interval)
                return False
            except subprocess.TimeoutExpired:
                continue

    def _terminate(self, process: subprocess.Popen, job_id: str) -> None:
        _terminate_group(process)
        try:
            process.wait(timeout=self.terminate_grace)
        except subprocess.TimeoutExpired:
            logger.warning(
                f"[{job_id}] Process {process.pid} ignored SIGTERM for {self.terminate_grace}s; killing it."
            )
        # Whatever is left of the group goes too, including the leader if it
        # ignored SIGTERM.
        _kill_group(process)
        process.wait()

    def _join_all(self, pumps: List[_StreamPump]) -> bool:
        deadline = time.monotonic() + self.terminate_grace
        for pump in pumps:
            pump.join(max(0.0, deadline - time.monotonic()))
        return not any(pump.is_alive() for pump in pumps)

    def _teardown(self, process: subprocess.Popen, pumps: List[_StreamPump], job_id: str) -> None:
        # Readers finish at EOF, once every holder of the pipes has exited. A
        # child the command left behind can keep them open, so it is killed.
        if not self._join_all(pumps):
            logger.warning(
                f"[{job_id}] Output pipes still held after process {process.pid} exited; "
                f"killing leftover processes."
            )
            _kill_group(process)
            self._join_all(pumps)

        for pump in pumps:
            pump.stop()
            if pump.is_alive():
                # Held by a process outside the group. The descriptor stays open
                # so the blocked read cannot land on a reused one.
                logger.warning(f"[{job_id}] {pump.stream_name} is still held open; leaving its reader behind.")
                continue
            try:
                pump.pipe.close()
            except OSError as e:
                logger.trace(f"[{job_id}] Error closing pipe: {e}")
        if process.returncode is None:
            process.wait()
