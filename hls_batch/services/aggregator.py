"""
Collects per-job outcomes into the final `AggregateReport`.

The aggregator is the only state written by several job threads at once, so
every mutation happens under one lock. Each job may contribute exactly one
outcome; a second `record` for the same job is rejected rather than counted.
"""

import threading
from datetime import timedelta
from typing import Dict, List, Optional

from loguru import logger

from ..domain.exceptions import AggregatorClosedException, DuplicateOutcomeException
from ..domain.models import AggregateReport, Failure, JobFailure, RunOutcome


class ResultAggregator:
    def __init__(self):
        self._lock = threading.Lock()
        self._total = 0
        self._succeeded_ids: List[str] = []
        self._failures: List[JobFailure] = []
        self._outcomes: Dict[str, RunOutcome] = {}
        self._closed = False

    def note_submitted(self) -> None:
        """Counts a job handed over by the producer, before its outcome exists."""
        with self._lock:
            if self._closed:
                raise AggregatorClosedException("Cannot add jobs to a finalized report.")
            self._total += 1

    def record(self, job_id: str, outcome: RunOutcome) -> None:
        """
        Adds one job's outcome to the report.

        Safe to call from any number of threads.

        Raises:
            DuplicateOutcomeException: `job_id` already has an outcome.
            AggregatorClosedException: `finalize` has already been called.
        """
        with self._lock:
            if self._closed:
                raise AggregatorClosedException(
                    f"Outcome for {job_id} arrived after the report was finalized."
                )
            if job_id in self._outcomes:
                raise DuplicateOutcomeException(f"Job {job_id} already has a recorded outcome.")
            self._outcomes[job_id] = outcome
            if isinstance(outcome, Failure):
                self._failures.append(JobFailure.from_outcome(job_id, outcome))
            else:
                self._succeeded_ids.append(job_id)
            if len(self._outcomes) > self._total:
                # Keeps recorded <= total when used without note_submitted().
                self._total = len(self._outcomes)

    def outcome_for(self, job_id: str) -> Optional[RunOutcome]:
        with self._lock:
            return self._outcomes.get(job_id)

    @property
    def recorded(self) -> int:
        with self._lock:
            return len(self._outcomes)

    @property
    def closed(self) -> bool:
        return self._closed

    def finalize(self, cancelled: bool = False, elapsed: timedelta = timedelta(0)) -> AggregateReport:
        """
        Closes the aggregator and returns an immutable snapshot.

        Call it only once every job has either been recorded or abandoned by
        cancellation; later `record` calls raise.
        """
        with self._lock:
            self._closed = True
            report = AggregateReport(
                total=self._total,
                succeeded=len(self._succeeded_ids),
                failed=len(self._failures),
                failures=tuple(self._failures),
                succeeded_ids=tuple(self._succeeded_ids),
                cancelled=cancelled,
                elapsed=elapsed,
            )
        logger.debug(
            f"Report finalized: total={report.total}, succeeded={report.succeeded}, "
            f"failed={report.failed}, incomplete={report.incomplete}, cancelled={report.cancelled}"
        )
        return report
