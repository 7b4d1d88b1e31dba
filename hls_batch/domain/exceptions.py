"""
Defines custom exception types for the HLS batch converter.

The tree separates run-level problems from per-job problems. Run-level errors
(`SetupException` and its subclasses) stop the whole run and reach the caller
of `run_all`. Per-job errors (`JobException` and its subclasses) are caught at
the job boundary and turned into `Failure` outcomes, so they never unwind into
sibling jobs.

All custom exceptions inherit from the base `HlsBatchException`.
"""


class HlsBatchException(Exception):
    """Base class for all custom exceptions in the HLS batch converter."""

    pass


# --- Run-Level (Setup) Exceptions ---
class SetupException(HlsBatchException):
    """Base class for errors that are fatal to the whole run."""

    pass


class InvalidConfigurationException(SetupException):
    """
    Raised when a configuration value cannot be used.

    Typical causes are a non-positive concurrency bound or a non-positive HLS
    segment duration.
    """

    pass


class JobSourceException(SetupException):
    """
    Raised when the job producer cannot be iterated.

    This covers a missing or unreadable source directory, an exception raised
    by the producer mid-iteration, and a producer that yields the same job id
    twice.
    """

    pass


# --- Per-Job Exceptions ---
class JobException(HlsBatchException):
    """Base class for errors confined to a single job."""

    pass


class JobTranslationException(JobException):
    """
    Raised when a job cannot be turned into a runnable command.

    For HLS jobs this happens when no output folder name can be derived from the
    file name, or when the output folder cannot be created.
    """

    pass


class ProcessLaunchException(JobException):
    """Raised when the external executable cannot be started."""

    pass


# --- Cancellation ---
class RunCancelledException(HlsBatchException):
    """
    Raised when the run was asked to stop.

    Pending slot acquisitions and running processes raise it so that the
    orchestrator can wind down without recording outcomes for unfinished jobs.
    """

    pass


# --- Aggregation / Bookkeeping ---
class AggregatorException(HlsBatchException):
    """Base class for misuse of the result aggregator."""

    pass


class DuplicateOutcomeException(AggregatorException):
    """Raised when a second outcome is recorded for the same job."""

    pass


class AggregatorClosedException(AggregatorException):
    """Raised when an outcome is recorded after the report was finalized."""

    pass


class InvalidStateTransition(HlsBatchException):
    """Raised when a job would move backwards or skip through its lifecycle."""

    pass
