"""
Destinations for streamed process output.

A sink is any callable taking an `OutputChunk`. The process runner calls it from
its stream reader threads as output arrives, independently of the job's final
result. A slow sink must not hold up the process: `BoundedSink` moves delivery
to a background thread and drops the oldest pending chunks when it falls
behind.
"""

import threading
from collections import deque
from typing import Callable, Deque, Optional

from loguru import logger

from ..config.common import DEFAULT_SINK_MAX_PENDING
from ..domain.models import OutputChunk

OutputSink = Callable[[OutputChunk], None]


class NullSink:
    """Discards all output."""

    def __call__(self, chunk: OutputChunk) -> None:
        return None


class LoggerSink:
    """
    Forwards each line of process output to loguru.

    Lines are logged at `level` (DEBUG by default, so FFmpeg's chatter stays out
    of normal runs) with `job_id` and `stream` bound as extra fields.
    """

    def __init__(self, level: str = "DEBUG"):
        self.level = level

    def __call__(self, chunk: OutputChunk) -> None:
        text = chunk.text.rstrip("\r\n")
        if not text:
            return
        logger.bind(job_id=chunk.job_id, stream=chunk.stream).log(
            self.level, f"[{chunk.job_id}:{chunk.stream}] {text}"
        )


class BoundedSink:
    """
    Decouples a possibly slow sink from the process runners.

    Chunks are put on a bounded deque and delivered to `inner` by a daemon
    thread. When `max_pending` chunks are already waiting, the oldest one is
    dropped and counted in `dropped`. Calling the sink never blocks on `inner`.

    Use it as a context manager, or call `close()` to flush and stop the
    delivery thread.
    """

    def __init__(self, inner: OutputSink, max_pending: int = DEFAULT_SINK_MAX_PENDING):
        if max_pending <= 0:
            raise ValueError("max_pending must be positive.")
        self.inner = inner
        self.max_pending = max_pending
        self.dropped = 0
        self._pending: Deque[OutputChunk] = deque()
        self._cond = threading.Condition()
        self._closed = False
        self._thread = threading.Thread(target=self._deliver, name="output-sink", daemon=True)
        self._thread.start()

    @property
    def pending(self) -> int:
        with self._cond:
            return len(self._pending)

    def __call__(self, chunk: OutputChunk) -> None:
        with self._cond:
            if self._closed:
                return
            if len(self._pending) >= self.max_pending:
                self._pending.popleft()
                self.dropped += 1
            self._pending.append(chunk)
            self._cond.notify()

    def _deliver(self) -> None:
        while True:
            with self._cond:
                while not self._pending and not self._closed:
                    self._cond.wait()
                if not self._pending and self._closed:
                    return
                chunk = self._pending.popleft()
            try:
                self.inner(chunk)
            except Exception as e:
                logger.error(f"Output sink {self.inner!r} failed for job {chunk.job_id}: {e}")

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Stops accepting chunks, delivers what is pending, and joins the thread."""
        with self._cond:
            if self._closed:
                return
            self._closed = True
            self._cond.notify_all()
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Output sink did not drain within the timeout.")
        if self.dropped:
            logger.warning(f"Output sink dropped {self.dropped} chunk(s) because it fell behind.")

    def __enter__(self) -> "BoundedSink":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
