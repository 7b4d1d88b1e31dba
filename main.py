"""
Main entry point for the HLS batch converter.

This script configures logging, parses command-line arguments, and converts
every MP4/MOV file in the given folder to HLS, running several FFmpeg
processes at once. It finishes by writing the run logs and returning an exit
code that reflects the outcome of the batch.
"""

import sys
from typing import List, Optional

from loguru import logger

from hls_batch.cli import get_args
from hls_batch.config.common import (
    EXIT_CANCELLED,
    EXIT_JOB_FAILURES,
    EXIT_OK,
    EXIT_SETUP_ERROR,
    LOGGER_FORMAT,
)
from hls_batch.domain.exceptions import SetupException
from hls_batch.domain.models import AggregateReport
from hls_batch.pipeline.orchestrator import run_all
from hls_batch.services.hls_jobs import HlsCommandBuilder, discover_video_jobs
from hls_batch.services.logging_service import ErrorLog, ReportLog
from hls_batch.services.output_sink import BoundedSink, LoggerSink
from hls_batch.utils.format_utils import format_timedelta, pluralize


# Configure the logger for initial setup.
# The level is overridden once command-line arguments are parsed.
logger.remove()
logger.add(sys.stderr, level="INFO", format=LOGGER_FORMAT)


def log_summary(report: AggregateReport) -> None:
    """Logs the end-of-run summary, one line per failed job."""
    logger.info(
        f"Processed {pluralize(report.recorded, 'file')} of {report.total} in {format_timedelta(report.elapsed)}: "
        f"{report.succeeded} succeeded, {report.failed} failed."
    )
    for failure in report.failures:
        logger.error(f"  {failure.job_id}: [{failure.reason.value}] {failure.message}")
    if report.cancelled:
        logger.warning(
            f"Run was cancelled; {pluralize(report.incomplete, 'file')} did not finish and can be converted again."
        )


def write_run_logs(report: AggregateReport, args) -> None:
    if report.failures:
        error_log = ErrorLog(args.output_dir)
        error_log.write_report_failures(report)
        logger.info(f"Failure details written to {error_log.log_file_path}")
    ReportLog(args.report_file or args.output_dir).write(report)


def exit_code_for(report: AggregateReport) -> int:
    if report.cancelled:
        return EXIT_CANCELLED
    if report.failed:
        return EXIT_JOB_FAILURES
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    """
    Runs one conversion batch.

    Steps:
    1. Parse command-line arguments and re-configure the logger.
    2. Build the job producer (files in the source folder) and the FFmpeg HLS
       command builder.
    3. Run all jobs with the requested concurrency, forwarding FFmpeg output
       to the logger through a bounded, non-blocking sink.
    4. Write the error log and the YAML run report, and log a summary.

    Returns:
        One of the `EXIT_*` codes from `hls_batch.config.common`.
    """
    args = get_args(argv)

    logger.remove()
    logger.add(sys.stderr, level=args.log_level, format=LOGGER_FORMAT)
    logger.debug(f"Parsed arguments: {args}")

    logger.info(f"Source directory: {args.source_dir}")
    logger.info(f"HLS output directory: {args.output_dir}")

    try:
        builder = HlsCommandBuilder(
            args.output_dir,
            ffmpeg_path=args.ffmpeg_path,
            segment_duration=args.segment_duration,
            video_codec=args.video_codec,
            preset=args.preset,
            video_bitrate=args.video_bitrate,
            hwaccel=args.hwaccel,
        )
        jobs = discover_video_jobs(args.source_dir, extensions=args.extensions)
        sink_level = "INFO" if args.show_output else "DEBUG"
        with BoundedSink(LoggerSink(level=sink_level), max_pending=args.sink_max_pending) as sink:
            report = run_all(jobs, builder, args.max_concurrency, sink=sink)
    except SetupException as e:
        logger.error(f"Run could not complete: {e}")
        partial_report: Optional[AggregateReport] = getattr(e, "report", None)
        if partial_report is not None and partial_report.recorded:
            log_summary(partial_report)
            write_run_logs(partial_report, args)
        return EXIT_SETUP_ERROR

    log_summary(report)
    write_run_logs(report, args)

    if report.ok:
        logger.success("All files have been processed successfully.")
    return exit_code_for(report)


if __name__ == "__main__":
    sys.exit(main())
