"""
HLS batch converter.

A bounded-concurrency runner for external processes, with a ready-made job
producer and command builder for converting MP4/MOV files to HLS with FFmpeg.

    from hls_batch import run_all, discover_video_jobs, HlsCommandBuilder

    report = run_all(
        discover_video_jobs(source_dir),
        HlsCommandBuilder(source_dir / "hls"),
        max_concurrency=4,
    )
"""

from .domain.exceptions import RunCancelledException, SetupException
from .domain.models import AggregateReport, CommandSpec, Failure, FailureReason, Job, Success
from .pipeline.orchestrator import JobOrchestrator, run_all
from .services.hls_jobs import HlsCommandBuilder, discover_video_jobs
from .utils.cancel import CancellationToken

__all__ = [
    "AggregateReport",
    "CancellationToken",
    "CommandSpec",
    "Failure",
    "FailureReason",
    "HlsCommandBuilder",
    "Job",
    "JobOrchestrator",
    "RunCancelledException",
    "SetupException",
    "Success",
    "discover_video_jobs",
    "run_all",
]
