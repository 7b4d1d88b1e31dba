"""
Common configuration settings used throughout the application.

This module contains globally shared configuration settings and constants that are
used across the HLS batch converter. It centralizes parameters for logging,
concurrency defaults, process termination and exit codes. It also handles the
loading of user-specific configuration from an external YAML file, allowing for
easy customization without modifying the source code.
"""
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from loguru import logger

# --- User-Defined Configuration ---
# This block loads user-specific settings from a 'config.user.yaml' file located
# at the project root. It allows users to point at a specific FFmpeg build and to
# change the default concurrency without passing flags every time.

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
USER_CONFIG_PATH = PROJECT_ROOT / "config.user.yaml"

# Built-in defaults, used for every key the user config leaves out.
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_SEGMENT_DURATION = 10
DEFAULT_TERMINATE_GRACE_SECONDS = 5.0
DEFAULT_SINK_MAX_PENDING = 1000


@dataclass(frozen=True)
class UserConfig:
    """Settings read from `config.user.yaml`, with defaults filled in."""

    module_path: Optional[Path] = None
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    segment_duration: int = DEFAULT_SEGMENT_DURATION
    terminate_grace_seconds: float = DEFAULT_TERMINATE_GRACE_SECONDS
    sink_max_pending: int = DEFAULT_SINK_MAX_PENDING


def _positive(value: Any, key: str, default, cast):
    try:
        converted = cast(value)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid '{key}' in user config: {value!r}")
        return default
    if converted <= 0:
        logger.warning(f"Ignoring non-positive '{key}' in user config: {value!r}")
        return default
    return converted


def load_user_config(config_path: Path = USER_CONFIG_PATH) -> UserConfig:
    """
    Loads `config.user.yaml` and returns the effective settings.

    The expected layout is::

        paths:
          ffmpeg_dir: /usr/local/bin
        defaults:
          max_concurrency: 4
          segment_duration: 10
          terminate_grace_seconds: 5
          sink_max_pending: 1000

    A missing file yields the defaults. A file that cannot be read or parsed is
    reported as a warning and also yields the defaults; a broken user config
    never prevents the converter from starting.

    Args:
        config_path: The YAML file to read.

    Returns:
        A `UserConfig` instance.
    """
    if not config_path.is_file():
        logger.debug(f"User config '{config_path}' not found. Using built-in defaults.")
        return UserConfig()

    try:
        with config_path.open("r", encoding="utf-8") as f:
            user_config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Could not load or parse '{config_path}': {e}")
        return UserConfig()

    if not isinstance(user_config, dict):
        logger.warning(f"User config '{config_path}' is not a mapping. Using built-in defaults.")
        return UserConfig()

    paths_config: Dict[str, Any] = user_config.get("paths") or {}
    defaults_config: Dict[str, Any] = user_config.get("defaults") or {}

    ffmpeg_dir_str = paths_config.get("ffmpeg_dir")
    return UserConfig(
        module_path=Path(ffmpeg_dir_str) if ffmpeg_dir_str else None,
        max_concurrency=_positive(
            defaults_config.get("max_concurrency", DEFAULT_MAX_CONCURRENCY),
            "max_concurrency", DEFAULT_MAX_CONCURRENCY, int,
        ),
        segment_duration=_positive(
            defaults_config.get("segment_duration", DEFAULT_SEGMENT_DURATION),
            "segment_duration", DEFAULT_SEGMENT_DURATION, int,
        ),
        terminate_grace_seconds=_positive(
            defaults_config.get("terminate_grace_seconds", DEFAULT_TERMINATE_GRACE_SECONDS),
            "terminate_grace_seconds", DEFAULT_TERMINATE_GRACE_SECONDS, float,
        ),
        sink_max_pending=_positive(
            defaults_config.get("sink_max_pending", DEFAULT_SINK_MAX_PENDING),
            "sink_max_pending", DEFAULT_SINK_MAX_PENDING, int,
        ),
    )


USER_CONFIG = load_user_config()

# The directory containing the FFmpeg executable. If None, the application
# assumes ffmpeg is available in the system's PATH.
MODULE_PATH: Path | None = USER_CONFIG.module_path


# --- Logging Configuration ---

# The format string for the Loguru logger. Jobs run on worker threads, so the
# thread name is shown where the encoder showed the process id.
LOGGER_FORMAT = (
    "<green>{time:MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
    "{thread.name} - <level>{message}</level>"
)

# Number of trailing lines of captured process output kept in failure messages
# and in the error log.
OUTPUT_TAIL_LINES = 20


# --- Process Handling ---

# How often (seconds) a runner re-checks its cancellation token while waiting
# for a process to exit.
PROCESS_POLL_INTERVAL = 0.1

# Largest number of bytes taken from a process pipe in one read. Output is
# forwarded as soon as it is available, not only when a read fills up.
PIPE_READ_SIZE = 65536

# Seconds a cancelled process is given to exit after SIGTERM before SIGKILL.
TERMINATE_GRACE_SECONDS = USER_CONFIG.terminate_grace_seconds


# --- Run Logs ---

# Plain-text error log written next to the HLS output.
ERROR_LOG_FILE_NAME = "error.txt"

# YAML run report written after each run.
REPORT_FILE_NAME = "run_report.yaml"


# --- Exit Codes ---
EXIT_OK = 0  # Every job succeeded.
EXIT_JOB_FAILURES = 1  # The run finished but at least one job failed.
EXIT_SETUP_ERROR = 2  # The run could not start or the job source broke.
EXIT_CANCELLED = 130  # The run was interrupted.
