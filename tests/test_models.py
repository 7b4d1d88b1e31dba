"""Tests for the domain models."""

import dataclasses
import sys
from datetime import timedelta

import pytest

from hls_batch.config.common import OUTPUT_TAIL_LINES
from hls_batch.domain.models import (
    JOB_STATE_TRANSITIONS,
    AggregateReport,
    CommandSpec,
    Failure,
    FailureReason,
    JobFailure,
    JobState,
    Success,
    output_tail,
)
from hls_batch.utils.format_utils import format_timedelta, pluralize


class TestCommandSpec:
    """Tests for CommandSpec."""

    def test_args_are_stored_as_strings_in_a_tuple(self, tmp_path):
        """Test any sequence of arguments is frozen into a tuple of str."""
        spec = CommandSpec(tmp_path / "tool", ["-n", 3, tmp_path])

        assert spec.executable == str(tmp_path / "tool")
        assert spec.args == ("-n", "3", str(tmp_path))
        assert spec.argv == [str(tmp_path / "tool"), "-n", "3", str(tmp_path)]

    def test_is_immutable(self):
        spec = CommandSpec("ffmpeg", ("-i", "in.mp4"))

        with pytest.raises(dataclasses.FrozenInstanceError):
            spec.executable = "other"

    def test_from_argv(self):
        spec = CommandSpec.from_argv(["ffmpeg", "-i", "in.mp4", "out.m3u8"])

        assert spec.executable == "ffmpeg"
        assert spec.args == ("-i", "in.mp4", "out.m3u8")

    def test_from_empty_argv_is_rejected(self):
        with pytest.raises(ValueError):
            CommandSpec.from_argv([])

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX quoting")
    def test_display_quotes_arguments(self):
        """Test arguments with spaces are shell-quoted for logs."""
        spec = CommandSpec("ffmpeg", ("-i", "01 My clip.mp4"))

        assert spec.display() == "ffmpeg -i '01 My clip.mp4'"


class TestOutcomes:
    """Tests for Success, Failure and their descriptions."""

    def test_success_and_failure_flags(self):
        assert Success().succeeded is True
        assert Failure(FailureReason.LAUNCH, "not found").succeeded is False

    def test_describe_includes_reason_exit_code_and_tail(self):
        """Test a failure description is enough to diagnose the job."""
        output = "".join(f"line {i}\n" for i in range(50))
        failure = Failure(FailureReason.EXECUTION, "ffmpeg exited", exit_code=187, captured_output=output)

        description = failure.describe()

        assert description.startswith("[execution] exit code 187: ffmpeg exited")
        assert "line 49" in description
        assert f"line {49 - OUTPUT_TAIL_LINES}\n" not in description

    def test_describe_without_exit_code_or_output(self):
        failure = Failure(FailureReason.TRANSLATION, "bad name")

        assert failure.describe() == "[translation] bad name"

    def test_job_failure_from_outcome(self):
        outcome = Failure(FailureReason.EXECUTION, "boom", exit_code=2, captured_output="x\n")

        entry = JobFailure.from_outcome("clip", outcome)

        assert entry.job_id == "clip"
        assert entry.describe() == outcome.describe()

    def test_output_tail(self):
        assert output_tail("") == ""
        assert output_tail("a\nb\nc\n", lines=2) == "b\nc"


class TestAggregateReport:
    """Tests for AggregateReport."""

    def _report(self, **overrides):
        values = dict(
            total=3,
            succeeded=1,
            failed=1,
            failures=(JobFailure("b", FailureReason.LAUNCH, "missing ffmpeg"),),
            succeeded_ids=("a",),
            elapsed=timedelta(seconds=1.23456),
            ended_datetime="2026-01-02T03:04:05",
        )
        values.update(overrides)
        return AggregateReport(**values)

    def test_derived_counts(self):
        report = self._report()

        assert report.recorded == 2
        assert report.incomplete == 1
        assert report.failed_ids == ("b",)
        assert report.ok is False

    def test_ok_requires_complete_successful_run(self):
        report = self._report(total=1, failed=0, failures=())

        assert report.ok is True
        assert self._report(total=1, failed=0, failures=(), cancelled=True).ok is False

    def test_to_dict(self):
        """Test the report converts to plain YAML-friendly values."""
        data = self._report().to_dict()

        assert data["ended_datetime"] == "2026-01-02T03:04:05"
        assert data["elapsed_seconds"] == 1.235
        assert data["incomplete"] == 1
        assert data["succeeded_jobs"] == ["a"]
        assert data["failures"] == [
            {
                "job_id": "b",
                "reason": "launch",
                "exit_code": None,
                "message": "missing ffmpeg",
                "output_tail": "",
            }
        ]


class TestJobStateTransitions:
    def test_every_state_has_an_entry(self):
        assert set(JOB_STATE_TRANSITIONS) == set(JobState)

    def test_recorded_is_terminal_and_reachable_from_both_outcomes(self):
        assert JOB_STATE_TRANSITIONS[JobState.RECORDED] == ()
        assert JobState.RECORDED in JOB_STATE_TRANSITIONS[JobState.SUCCEEDED]
        assert JobState.RECORDED in JOB_STATE_TRANSITIONS[JobState.FAILED]


class TestFormatUtils:
    @pytest.mark.parametrize(
        "delta, expected",
        [
            (timedelta(seconds=5), "00:00:05"),
            (timedelta(hours=1, minutes=2, seconds=3, microseconds=500000), "01:02:03"),
        ],
    )
    def test_format_timedelta(self, delta, expected):
        assert format_timedelta(delta) == expected

    def test_pluralize(self):
        assert pluralize(1, "file") == "1 file"
        assert pluralize(0, "file") == "0 files"
        assert pluralize(3, "file") == "3 files"
