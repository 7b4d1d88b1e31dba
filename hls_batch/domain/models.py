"""
Core data models for batch process orchestration.

These types are what flows between the job producer, the executor, the
process runner and the result aggregator. They carry no knowledge of video or
FFmpeg: a `Job` is an opaque token, and a `CommandSpec` is just an executable
plus its arguments.
"""

import os
import shlex
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from ..config.common import OUTPUT_TAIL_LINES


@dataclass(frozen=True)
class Job:
    """
    A unit of work handed to the orchestrator.

    Attributes:
        job_id: Identifier used in logs, output tagging and the final report.
                Must be unique within a run.
        payload: Whatever the executor needs to build the command. The core
                 never looks at it.
    """

    job_id: str
    payload: Any = None


@dataclass(frozen=True)
class CommandSpec:
    """An executable and its ordered arguments. Immutable once built."""

    executable: str
    args: Tuple[str, ...] = ()
    cwd: Optional[Path] = None
    env: Optional[Mapping[str, str]] = None

    def __post_init__(self):
        # Accept any sequence for args but store a tuple so the command stays immutable.
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))
        object.__setattr__(self, "executable", str(self.executable))

    @classmethod
    def from_argv(cls, argv: List[str], **kwargs) -> "CommandSpec":
        if not argv:
            raise ValueError("argv must contain at least the executable.")
        return cls(executable=argv[0], args=tuple(argv[1:]), **kwargs)

    @property
    def argv(self) -> List[str]:
        return [self.executable, *self.args]

    def display(self) -> str:
        """Returns the command quoted for the current platform, for logs."""
        if os.name == "nt":
            return subprocess.list2cmdline(self.argv)
        return shlex.join(self.argv)


class FailureReason(str, Enum):
    TRANSLATION = "translation"  # The executor could not build a command.
    LAUNCH = "launch"  # The executable could not be started.
    EXECUTION = "execution"  # The process ran and exited non-zero.


def output_tail(text: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    """Returns the last `lines` lines of `text`."""
    if not text:
        return ""
    return "\n".join(text.rstrip("\n").splitlines()[-lines:])


@dataclass(frozen=True)
class Success:
    captured_output: str = ""
    elapsed: timedelta = timedelta(0)

    @property
    def succeeded(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    reason: FailureReason
    message: str
    exit_code: Optional[int] = None
    captured_output: str = ""
    elapsed: timedelta = timedelta(0)

    @property
    def succeeded(self) -> bool:
        return False

    def describe(self) -> str:
        """
        Builds the human-readable failure description used in the report.

        The description names the failure kind, the exit code when there is one,
        the message, and the tail of the captured output so that a failed job can
        be diagnosed without re-running it.
        """
        parts = [f"[{self.reason.value}]"]
        if self.exit_code is not None:
            parts.append(f"exit code {self.exit_code}:")
        parts.append(self.message)
        description = " ".join(parts)
        tail = output_tail(self.captured_output)
        if tail:
            description += f"\n--- output (last {OUTPUT_TAIL_LINES} lines) ---\n{tail}"
        return description


RunOutcome = Union[Success, Failure]


class JobState(str, Enum):
    PENDING = "pending"
    ADMITTED = "admitted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RECORDED = "recorded"


# Allowed forward moves of a job. ADMITTED -> FAILED covers executor failures,
# which never spawn a process.
JOB_STATE_TRANSITIONS: Dict[JobState, Tuple[JobState, ...]] = {
    JobState.PENDING: (JobState.ADMITTED,),
    JobState.ADMITTED: (JobState.RUNNING, JobState.FAILED),
    JobState.RUNNING: (JobState.SUCCEEDED, JobState.FAILED),
    JobState.SUCCEEDED: (JobState.RECORDED,),
    JobState.FAILED: (JobState.RECORDED,),
    JobState.RECORDED: (),
}


@dataclass(frozen=True)
class OutputChunk:
    """A piece of streamed process output, tagged with its job and stream."""

    job_id: str
    stream: str  # "stdout" or "stderr"
    text: str


@dataclass(frozen=True)
class JobFailure:
    """One entry of the report's failure list."""

    job_id: str
    reason: FailureReason
    message: str
    exit_code: Optional[int] = None
    captured_output: str = ""

    @classmethod
    def from_outcome(cls, job_id: str, outcome: Failure) -> "JobFailure":
        return cls(
            job_id=job_id,
            reason=outcome.reason,
            message=outcome.message,
            exit_code=outcome.exit_code,
            captured_output=outcome.captured_output,
        )

    def describe(self) -> str:
        return Failure(
            reason=self.reason,
            message=self.message,
            exit_code=self.exit_code,
            captured_output=self.captured_output,
        ).describe()


@dataclass(frozen=True)
class AggregateReport:
    """
    Final, read-only summary of an orchestration run.

    Attributes:
        total: Number of jobs the producer handed to the orchestrator.
        succeeded: Jobs recorded as `Success`.
        failed: Jobs recorded as `Failure`.
        failures: One entry per failed job, in completion order.
        succeeded_ids: Ids of the successful jobs, in completion order.
        cancelled: True if the run was cancelled before every job finished.
        elapsed: Wall-clock duration of the run.
        ended_datetime: ISO 8601 timestamp of when the report was finalized.
    """

    total: int
    succeeded: int
    failed: int
    failures: Tuple[JobFailure, ...] = ()
    succeeded_ids: Tuple[str, ...] = ()
    cancelled: bool = False
    elapsed: timedelta = timedelta(0)
    ended_datetime: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def recorded(self) -> int:
        return self.succeeded + self.failed

    @property
    def incomplete(self) -> int:
        return self.total - self.recorded

    @property
    def ok(self) -> bool:
        return not self.cancelled and self.failed == 0 and self.incomplete == 0

    @property
    def failed_ids(self) -> Tuple[str, ...]:
        return tuple(f.job_id for f in self.failures)

    def to_dict(self) -> Dict[str, Any]:
        """Returns a plain mapping suitable for `yaml.safe_dump`."""
        return {
            "ended_datetime": self.ended_datetime,
            "elapsed_seconds": round(self.elapsed.total_seconds(), 3),
            "cancelled": self.cancelled,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "incomplete": self.incomplete,
            "succeeded_jobs": list(self.succeeded_ids),
            "failures": [
                {
                    "job_id": f.job_id,
                    "reason": f.reason.value,
                    "exit_code": f.exit_code,
                    "message": f.message,
                    "output_tail": output_tail(f.captured_output),
                }
                for f in self.failures
            ],
        }
