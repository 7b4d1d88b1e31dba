"""
This module provides classes for writing run logs to disk.

It separates the concerns into an error log (ErrorLog) and a run report
(ReportLog). Failures are written as human-readable text so a failed conversion
can be diagnosed by reading one file, while the run report is YAML, which keeps
it machine-readable for scripts that check batch results.

The run report file accumulates runs: each new report is appended to the list
already in the file, and the list is kept sorted by `ended_datetime` with a
sequential `index`.
"""

from pathlib import Path
from typing import Dict, List, Union

import yaml
from loguru import logger

from ..config.common import ERROR_LOG_FILE_NAME, REPORT_FILE_NAME
from ..domain.models import AggregateReport, JobFailure, output_tail


class Log:
    """
    A base class for all run log writers.

    It resolves the log directory from a base path and makes sure that
    directory exists.
    """

    # A decorative separator line used in text-based logs for better readability.
    linesep_marker: str = "=" * 50

    def __init__(self, log_base_path: Path):
        """
        Args:
            log_base_path: The base path for logging. If it's a directory,
                           log files will be created inside it. If it's a file path,
                           its parent will be used as the log directory.
        """
        self.log_file_path: Path  # To be defined by the subclass.
        if log_base_path.is_dir() or not log_base_path.suffix:
            self.log_dir: Path = log_base_path.resolve()
        else:
            self.log_dir: Path = log_base_path.parent.resolve()
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def write(self, log_content: Union[dict, list, str]):
        raise NotImplementedError("Subclasses must implement the write() method.")


class ErrorLog(Log):
    """
    Appends human-readable error entries to a plain text file.

    Each entry is a block of lines followed by a separator, giving a
    chronological record of every failed job.
    """

    def __init__(self, error_log_dir: Path, filename: str = ERROR_LOG_FILE_NAME):
        super().__init__(error_log_dir)
        self.log_file_path = self.log_dir / filename

    def write(self, *error_messages: str):
        """
        Writes one or more error messages to the log file, one per line.

        If the file cannot be written, the messages are sent to the console
        logger instead so they are not lost.
        """
        if not error_messages:
            return

        content_to_write = "\n".join(error_messages) + "\n" + self.linesep_marker + "\n"

        try:
            with self.log_file_path.open("a", encoding="utf-8") as f:
                f.write(content_to_write)
        except OSError as e:
            logger.error(f"Failed to write to error log {self.log_file_path}: {e}")
            logger.error("Original error messages attempted to log:")
            for msg in error_messages:
                logger.error(f"  - {msg}")

    def write_failure(self, failure: JobFailure, ended_datetime: str = ""):
        """Writes one failed job of a run report."""
        lines = [
            f"Job: {failure.job_id}",
            f"Reason: {failure.reason.value}",
        ]
        if ended_datetime:
            lines.append(f"Run ended: {ended_datetime}")
        if failure.exit_code is not None:
            lines.append(f"Exit code: {failure.exit_code}")
        lines.append(f"Message: {failure.message}")
        tail = output_tail(failure.captured_output)
        if tail:
            lines.append("Output (tail):")
            lines.append(tail)
        self.write(*lines)

    def write_report_failures(self, report: AggregateReport):
        for failure in report.failures:
            self.write_failure(failure, ended_datetime=report.ended_datetime)


class ReportLog(Log):
    """
    Keeps a YAML list of run reports.

    Attributes:
        log_file_path (Path): The YAML file holding the list of runs.
    """

    def __init__(self, report_path: Path):
        super().__init__(report_path)
        # A path with a suffix names the file; anything else is a directory.
        self.log_file_path = self.log_dir / (report_path.name if report_path.suffix else REPORT_FILE_NAME)

    def read_entries(self) -> List[Dict]:
        if not self.log_file_path.is_file():
            return []
        try:
            with self.log_file_path.open("r", encoding="utf-8") as f:
                loaded_entries = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(
                f"Error reading/parsing run report {self.log_file_path}: {e}. Starting a new report list."
            )
            return []
        if loaded_entries is None:
            return []
        if not isinstance(loaded_entries, list):
            logger.warning(
                f"Run report {self.log_file_path} contained unexpected data. Starting a new report list."
            )
            return []
        return [entry for entry in loaded_entries if isinstance(entry, dict)]

    def write(self, new_log_entry: Union[dict, AggregateReport]):
        """
        Appends a run to the YAML file, re-sorting and re-indexing all runs.

        Args:
            new_log_entry: An `AggregateReport` or an already-converted mapping.
        """
        if isinstance(new_log_entry, AggregateReport):
            new_log_entry = new_log_entry.to_dict()
        if not isinstance(new_log_entry, dict):
            logger.error("ReportLog.write expects an AggregateReport or a dictionary.")
            return

        entries = self.read_entries()
        entries.append(dict(new_log_entry))
        entries.sort(key=lambda x: str(x.get("ended_datetime", "")))
        for i, entry in enumerate(entries, start=1):
            entry["index"] = i

        try:
            with self.log_file_path.open("w", encoding="utf-8") as f:
                yaml.safe_dump(
                    entries,
                    f,
                    default_flow_style=False,
                    sort_keys=False,
                    allow_unicode=True,
                    indent=4,
                    width=220,
                )
            logger.info(f"Run report written to {self.log_file_path} ({len(entries)} run(s) on record).")
        except OSError as e:
            logger.error(f"Failed to write run report {self.log_file_path}: {e}")
