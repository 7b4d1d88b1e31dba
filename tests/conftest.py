from __future__ import annotations

import sys
import threading
import time
from pathlib import Path

import pytest

# Ensure `import hls_batch` and `import main` work when running `pytest` from repo root.
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))

from hls_batch.domain.models import CommandSpec, Failure, FailureReason, Job, Success  # noqa: E402


def python_cmd(script: str, *args: str) -> CommandSpec:
    """A CommandSpec that runs `script` with the current interpreter."""
    return CommandSpec(sys.executable, ("-c", script, *args))


def wait_until(predicate, timeout: float = 10.0, interval: float = 0.02) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RecordingSink:
    """Thread-safe sink that keeps every chunk it receives."""

    def __init__(self):
        self.chunks = []
        self._lock = threading.Lock()

    def __call__(self, chunk):
        with self._lock:
            self.chunks.append(chunk)

    def text_for(self, job_id: str, stream: str | None = None) -> str:
        with self._lock:
            return "".join(
                c.text for c in self.chunks
                if c.job_id == job_id and (stream is None or c.stream == stream)
            )


class StubRunner:
    """
    Stands in for ProcessRunner without spawning anything.

    A command whose args contain "fail" yields a Failure(EXECUTION, exit 1),
    anything else a Success. It measures how many runs overlap.
    """

    def __init__(self, delay: float = 0.02):
        self.delay = delay
        self.current = 0
        self.peak = 0
        self.calls = []
        self._lock = threading.Lock()

    def run(self, spec, job_id="", sink=None, cancel_token=None):
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)
            self.calls.append(job_id)
        try:
            time.sleep(self.delay)
            if "fail" in spec.args:
                return Failure(
                    reason=FailureReason.EXECUTION,
                    message="stub failure",
                    exit_code=1,
                    captured_output="stub output\n",
                )
            return Success(captured_output=f"{job_id} done\n")
        finally:
            with self._lock:
                self.current -= 1


def make_jobs(count: int, prefix: str = "job"):
    return [Job(job_id=f"{prefix}-{i}", payload=i) for i in range(1, count + 1)]


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def stub_runner():
    return StubRunner()
