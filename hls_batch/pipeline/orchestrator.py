import concurrent.futures
import threading
import traceback
from datetime import datetime
from typing import Callable, Dict, Iterable, Optional

from loguru import logger

from ..config.common import PROCESS_POLL_INTERVAL
from ..domain.exceptions import (
    InvalidStateTransition,
    JobSourceException,
    RunCancelledException,
    SetupException,
)
from ..domain.models import (
    JOB_STATE_TRANSITIONS,
    AggregateReport,
    CommandSpec,
    Failure,
    FailureReason,
    Job,
    JobState,
    RunOutcome,
)
from ..services.aggregator import ResultAggregator
from ..services.limiter import ConcurrencyLimiter, Slot, validate_max_concurrency
from ..services.output_sink import OutputSink
from ..services.process_runner import ProcessRunner
from ..utils.cancel import CancellationToken
from ..utils.format_utils import format_timedelta

JobExecutor = Callable[[Job], CommandSpec]


class JobStateTracker:
    """Keeps each job's lifecycle state and refuses backward or skipped moves."""

    def __init__(self):
        self._lock = threading.Lock()
        self._states: Dict[str, JobState] = {}

    def start(self, job_id: str) -> None:
        with self._lock:
            if job_id in self._states:
                raise InvalidStateTransition(f"Job {job_id} is already tracked.")
            self._states[job_id] = JobState.PENDING

    def advance(self, job_id: str, new_state: JobState) -> None:
        with self._lock:
            current = self._states.get(job_id)
            if current is None:
                raise InvalidStateTransition(f"Job {job_id} is not tracked.")
            if new_state not in JOB_STATE_TRANSITIONS[current]:
                raise InvalidStateTransition(
                    f"Job {job_id} cannot move from {current.value} to {new_state.value}."
                )
            self._states[job_id] = new_state

    def state_of(self, job_id: str) -> Optional[JobState]:
        with self._lock:
            return self._states.get(job_id)

    def states(self) -> Dict[str, JobState]:
        with self._lock:
            return dict(self._states)


class JobOrchestrator:
    """
    Runs a batch of jobs with at most `max_concurrency` processes at a time.

    The calling thread walks the job producer and acquires a limiter slot for
    each job before handing it to a worker thread, so the limiter is the only
    thing that slows iteration down. Workers build the command, run it, record
    the outcome and release their slot.

    After `run_all` returns, `limiter`, `aggregator` and `tracker` still refer
    to the objects of the last run, for inspection.
    """

    def __init__(self, runner: Optional[ProcessRunner] = None, sink: Optional[OutputSink] = None):
        self.runner = runner or ProcessRunner()
        self.sink = sink
        self.limiter: Optional[ConcurrencyLimiter] = None
        self.aggregator: Optional[ResultAggregator] = None
        self.tracker: Optional[JobStateTracker] = None

    def run_all(
        self,
        jobs: Iterable[Job],
        executor: JobExecutor,
        max_concurrency: int,
        cancel_token: Optional[CancellationToken] = None,
    ) -> AggregateReport:
        """
        Runs every job produced by `jobs` and returns the aggregate report.

        Args:
            jobs: Lazy or eager iterable of `Job`. Job ids must be unique.
            executor: Builds the `CommandSpec` for a job. Anything it raises is
                      recorded as a translation failure for that job.
            max_concurrency: Maximum number of jobs running at once.
            cancel_token: Cancelling it stops admission, terminates running
                          processes and makes the report come back with
                          `cancelled=True`. The same token may be passed to
                          several runs; each run detaches from it when it ends.

        Returns:
            The final `AggregateReport`. On cancellation it holds only the
            jobs that finished before the run stopped.

        Raises:
            InvalidConfigurationException: `max_concurrency` is not a positive int.
            JobSourceException: The producer failed or repeated a job id. Jobs
                                already running are cancelled first; the partial
                                report is attached as the exception's `report`.
        """
        max_concurrency = validate_max_concurrency(max_concurrency)
        token = cancel_token or CancellationToken()
        limiter = ConcurrencyLimiter(max_concurrency)
        aggregator = ResultAggregator()
        tracker = JobStateTracker()
        self.limiter, self.aggregator, self.tracker = limiter, aggregator, tracker
        token.add_callback(limiter.cancel)

        started = datetime.now()
        futures: Dict[concurrent.futures.Future, str] = {}
        setup_error: Optional[SetupException] = None

        logger.info(f"Starting run with max_concurrency={max_concurrency}.")

        try:
            with concurrent.futures.ThreadPoolExecutor(
                max_workers=max_concurrency, thread_name_prefix="job"
            ) as pool:
                try:
                    self._submit_all(jobs, executor, pool, futures, token)
                except RunCancelledException:
                    logger.warning("Run cancelled. No further jobs will be admitted.")
                except KeyboardInterrupt:
                    logger.warning("Run interrupted by user. Cancelling in-flight jobs.")
                    token.cancel("interrupted by user")
                except SetupException as e:
                    logger.error(f"Setup error, cancelling in-flight jobs: {e}")
                    setup_error = e
                    token.cancel(f"setup error: {e}")
                self._wait_for(futures, token)
        finally:
            # A token may outlive the run; it must not keep this run's limiter.
            token.remove_callback(limiter.cancel)

        report = aggregator.finalize(cancelled=token.cancelled, elapsed=datetime.now() - started)
        logger.info(
            f"Run finished in {format_timedelta(report.elapsed)}: {report.succeeded} succeeded, "
            f"{report.failed} failed, {report.incomplete} not completed (of {report.total})."
        )
        if setup_error is not None:
            setup_error.report = report
            raise setup_error
        return report

    def _submit_all(
        self,
        jobs: Iterable[Job],
        executor: JobExecutor,
        pool: concurrent.futures.ThreadPoolExecutor,
        futures: Dict[concurrent.futures.Future, str],
        token: CancellationToken,
    ) -> None:
        try:
            iterator = iter(jobs)
        except TypeError as e:
            raise JobSourceException(f"Job producer is not iterable: {e}") from e

        seen_ids = set()
        while True:
            token.raise_if_cancelled()
            try:
                job = next(iterator)
            except StopIteration:
                break
            except SetupException:
                raise
            except Exception as e:
                raise JobSourceException(f"Job producer failed: {type(e).__name__} - {e}") from e

            if not isinstance(job, Job):
                raise JobSourceException(f"Job producer yielded {type(job).__name__}, expected Job.")
            if job.job_id in seen_ids:
                raise JobSourceException(f"Job producer yielded duplicate job id: {job.job_id}")
            seen_ids.add(job.job_id)
            self.tracker.start(job.job_id)
            self.aggregator.note_submitted()

            slot = self.limiter.acquire(token)
            self.tracker.advance(job.job_id, JobState.ADMITTED)
            logger.debug(
                f"[{job.job_id}] Admitted ({self.limiter.in_flight}/{self.limiter.max_concurrency} in flight)."
            )
            try:
                future = pool.submit(self._run_job, job, executor, slot, token)
            except BaseException:
                self.limiter.release(slot)
                raise
            futures[future] = job.job_id

    def _run_job(
        self,
        job: Job,
        executor: JobExecutor,
        slot: Slot,
        token: CancellationToken,
    ) -> Optional[RunOutcome]:
        try:
            outcome = self._execute(job, executor, token)
            self.aggregator.record(job.job_id, outcome)
            self.tracker.advance(job.job_id, JobState.RECORDED)
            self._log_outcome(job.job_id, outcome)
            return outcome
        except RunCancelledException:
            logger.info(f"[{job.job_id}] Cancelled before completion. No outcome recorded.")
            return None
        finally:
            self.limiter.release(slot)

    def _execute(self, job: Job, executor: JobExecutor, token: CancellationToken) -> RunOutcome:
        try:
            spec = executor(job)
            if not isinstance(spec, CommandSpec):
                raise TypeError(f"executor returned {type(spec).__name__}, expected CommandSpec")
        except Exception as e:
            self.tracker.advance(job.job_id, JobState.FAILED)
            return Failure(
                reason=FailureReason.TRANSLATION,
                message=f"Could not build a command for {job.job_id}: {e}",
            )

        token.raise_if_cancelled()
        self.tracker.advance(job.job_id, JobState.RUNNING)
        try:
            outcome = self.runner.run(spec, job_id=job.job_id, sink=self.sink, cancel_token=token)
        except RunCancelledException:
            raise
        except Exception as e:
            tb_str = traceback.format_exception(e)
            logger.error(
                f"[{job.job_id}] Unexpected error while running the process:\n"
                f"Exception type: {type(e).__name__}\n"
                f"Exception message: {e}\n"
                f"Traceback: {''.join(tb_str)}"
            )
            outcome = Failure(
                reason=FailureReason.EXECUTION,
                message=f"Unexpected error while running {spec.executable}: {type(e).__name__} - {e}",
            )
        self.tracker.advance(
            job.job_id, JobState.SUCCEEDED if outcome.succeeded else JobState.FAILED
        )
        return outcome

    @staticmethod
    def _log_outcome(job_id: str, outcome: RunOutcome) -> None:
        if outcome.succeeded:
            logger.info(f"[{job_id}] Completed in {format_timedelta(outcome.elapsed)}.")
        else:
            logger.error(f"[{job_id}] Failed: {outcome.describe()}")

    @staticmethod
    def _wait_for(futures: Dict[concurrent.futures.Future, str], token: CancellationToken) -> None:
        pending = set(futures)
        while pending:
            try:
                _, pending = concurrent.futures.wait(
                    pending, timeout=PROCESS_POLL_INTERVAL * 10
                )
            except KeyboardInterrupt:
                logger.warning("Interrupted while waiting for jobs. Cancelling in-flight jobs.")
                token.cancel("interrupted by user")

        for future, job_id in futures.items():
            exc = future.exception()
            if exc is not None:
                tb_str = traceback.format_exception(exc)
                logger.error(
                    f"Error processing task for {job_id} in pool:\n"
                    f"Exception type: {type(exc).__name__}\n"
                    f"Exception message: {exc}\n"
                    f"Traceback: {''.join(tb_str)}"
                )


def run_all(
    jobs: Iterable[Job],
    executor: JobExecutor,
    max_concurrency: int,
    sink: Optional[OutputSink] = None,
    cancel_token: Optional[CancellationToken] = None,
    runner: Optional[ProcessRunner] = None,
) -> AggregateReport:
    """Runs `jobs` through a fresh `JobOrchestrator`. See `JobOrchestrator.run_all`."""
    return JobOrchestrator(runner=runner, sink=sink).run_all(
        jobs, executor, max_concurrency, cancel_token=cancel_token
    )
