"""
Cooperative cancellation shared between the orchestrator, the limiter and the
process runners.
"""

import threading
from typing import Callable, List

from loguru import logger

from ..domain.exceptions import RunCancelledException


class CancellationToken:
    """
    A one-way, thread-safe cancellation flag.

    Once `cancel()` is called the token stays cancelled. Callbacks registered
    with `add_callback` run exactly once, on the thread that cancels (or
    immediately, if the token is already cancelled when they are added).
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []
        self.reason: str = ""

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancel requested") -> None:
        with self._lock:
            if self._event.is_set():
                return
            self.reason = reason
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        logger.debug(f"Cancellation requested: {reason}")
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Cancellation callback {callback!r} failed: {e}")

    def add_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Forgets a callback that has not run yet. Unknown callbacks are ignored."""
        with self._lock:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

    def wait(self, timeout: float | None = None) -> bool:
        """Blocks until cancelled or `timeout` elapses; returns `cancelled`."""
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RunCancelledException(self.reason or "run cancelled")
