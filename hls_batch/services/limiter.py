"""
Bounds how many jobs are in flight at the same time.

The limiter is the orchestrator's only backpressure point. Admission is strictly
first-come, first-served: every caller takes a ticket, and a ticket is admitted
only when it is at the head of the queue and a slot is free. A caller that
arrives later can never take a slot ahead of one that has been waiting longer.
"""

import itertools
import threading
from collections import deque
from contextlib import contextmanager
from typing import Deque, Iterator, Optional

from loguru import logger

from ..config.common import PROCESS_POLL_INTERVAL
from ..domain.exceptions import InvalidConfigurationException, RunCancelledException
from ..utils.cancel import CancellationToken


def validate_max_concurrency(max_concurrency) -> int:
    # bool is an int subclass and is rejected explicitly.
    if isinstance(max_concurrency, bool) or not isinstance(max_concurrency, int):
        raise InvalidConfigurationException(
            f"max_concurrency must be a positive integer, got {max_concurrency!r}"
        )
    if max_concurrency <= 0:
        raise InvalidConfigurationException(
            f"max_concurrency must be a positive integer, got {max_concurrency}"
        )
    return max_concurrency


class Slot:
    """Token returned by `ConcurrencyLimiter.acquire`; release it exactly once."""

    __slots__ = ("ticket", "_limiter", "released")

    def __init__(self, ticket: int, limiter: "ConcurrencyLimiter"):
        self.ticket = ticket
        self._limiter = limiter
        self.released = False

    def release(self) -> None:
        self._limiter.release(self)

    def __repr__(self) -> str:
        return f"Slot(ticket={self.ticket}, released={self.released})"


class ConcurrencyLimiter:
    """
    A FIFO counting gate with cancellation.

    Attributes:
        max_concurrency (int): Fixed upper bound on `in_flight`.
        in_flight (int): Slots currently held.
        peak_in_flight (int): Highest `in_flight` ever observed.
        admitted_total (int): Slots handed out since creation.
    """

    def __init__(self, max_concurrency: int):
        self.max_concurrency = validate_max_concurrency(max_concurrency)
        self._cond = threading.Condition()
        self._waiters: Deque[int] = deque()
        self._tickets = itertools.count(1)
        self._cancelled = False
        self.in_flight = 0
        self.peak_in_flight = 0
        self.admitted_total = 0

    @property
    def waiting(self) -> int:
        with self._cond:
            return len(self._waiters)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def acquire(self, cancel_token: Optional[CancellationToken] = None) -> Slot:
        """
        Blocks until a slot is free and this caller is first in line.

        Args:
            cancel_token: Optional token; if it is cancelled while waiting the
                          call gives up its place and raises.

        Returns:
            A `Slot` that must be passed to `release` (or released via
            `Slot.release`) exactly once.

        Raises:
            RunCancelledException: The limiter or the token was cancelled
                                   before a slot was granted.
        """
        with self._cond:
            ticket = next(self._tickets)
            self._waiters.append(ticket)
            try:
                while True:
                    if self._cancelled or (cancel_token is not None and cancel_token.cancelled):
                        raise RunCancelledException("slot acquisition cancelled")
                    if self._waiters[0] == ticket and self.in_flight < self.max_concurrency:
                        break
                    # The timeout lets a token cancelled from elsewhere be noticed
                    # even if nobody notifies this condition.
                    self._cond.wait(PROCESS_POLL_INTERVAL if cancel_token is not None else None)
            except BaseException:
                self._waiters.remove(ticket)
                # The head may have changed; let the next waiter re-check.
                self._cond.notify_all()
                raise

            self._waiters.popleft()
            self.in_flight += 1
            self.admitted_total += 1
            if self.in_flight > self.peak_in_flight:
                self.peak_in_flight = self.in_flight
            logger.trace(
                f"Slot {ticket} admitted ({self.in_flight}/{self.max_concurrency} in flight, {len(self._waiters)} waiting)"
            )
            # The next ticket may also fit if more than one slot is free.
            self._cond.notify_all()
            return Slot(ticket, self)

    def release(self, slot: Slot) -> None:
        with self._cond:
            if slot._limiter is not self:
                raise ValueError(f"{slot!r} does not belong to this limiter.")
            if slot.released:
                raise ValueError(f"{slot!r} was already released.")
            slot.released = True
            self.in_flight -= 1
            logger.trace(
                f"Slot {slot.ticket} released ({self.in_flight}/{self.max_concurrency} in flight)"
            )
            self._cond.notify_all()

    @contextmanager
    def slot(self, cancel_token: Optional[CancellationToken] = None) -> Iterator[Slot]:
        acquired = self.acquire(cancel_token)
        try:
            yield acquired
        finally:
            self.release(acquired)

    def cancel(self) -> None:
        """Wakes every waiter with a cancellation; later acquisitions fail immediately."""
        with self._cond:
            if self._cancelled:
                return
            self._cancelled = True
            logger.debug(f"Limiter cancelled with {len(self._waiters)} waiter(s) pending.")
            self._cond.notify_all()
