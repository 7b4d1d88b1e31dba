"""
Command-Line Interface (CLI) setup for the HLS batch converter.

This module uses Python's `argparse` to define and parse the command-line
arguments that control a conversion run.
"""
import argparse
from pathlib import Path
from typing import List, Optional

from .config.common import USER_CONFIG
from .config.hls import (
    DEFAULT_PRESET,
    DEFAULT_VIDEO_BITRATE,
    DEFAULT_VIDEO_CODEC,
    HLS_OUTPUT_DIR_NAME,
    VIDEO_EXTENSIONS,
)
from .services.hls_jobs import normalize_extensions


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got '{value}'")
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {number}")
    return number


def get_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parses command-line arguments for the HLS batch converter.

    Defaults for the concurrency bound and segment duration come from
    `config.user.yaml` when it sets them.

    Args:
        argv: Arguments to parse; `sys.argv[1:]` when None.

    Returns:
        argparse.Namespace: The parsed arguments. `source_dir` and `output_dir`
                            are resolved `Path` objects, `extensions` is a
                            tuple of lower-case suffixes.
    """
    parser = argparse.ArgumentParser(
        description="Convert every MP4/MOV file in a folder to HLS, several files at a time."
    )
    parser.add_argument(
        "source_dir", type=str, help="Folder containing the MP4/MOV files to convert."
    )
    parser.add_argument(
        "--output-dir", type=str, default=None,
        help=f"Where to write the HLS folders. Defaults to '<source_dir>/{HLS_OUTPUT_DIR_NAME}'."
    )
    parser.add_argument(
        "--max-concurrency", type=_positive_int, default=USER_CONFIG.max_concurrency,
        help="Number of FFmpeg processes to run at the same time."
    )
    parser.add_argument(
        "--segment-duration", type=_positive_int, default=USER_CONFIG.segment_duration,
        help="Target HLS segment length in seconds."
    )
    parser.add_argument(
        "--ffmpeg-path", type=str, default=None,
        help="FFmpeg executable to use. Defaults to config.user.yaml's ffmpeg_dir, then PATH."
    )
    parser.add_argument(
        "--video-codec", type=str, default=DEFAULT_VIDEO_CODEC, help="Video encoder passed to -vcodec."
    )
    parser.add_argument(
        "--preset", type=str, default=DEFAULT_PRESET,
        help="Encoder preset. Pass an empty string to omit -preset (e.g. for hardware encoders)."
    )
    parser.add_argument(
        "--video-bitrate", type=str, default=DEFAULT_VIDEO_BITRATE, help="Target video bitrate (-b:v)."
    )
    parser.add_argument(
        "--hwaccel", type=str, default=None,
        help="Hardware decoding method, e.g. 'videotoolbox' or 'cuda'."
    )
    parser.add_argument(
        "--extensions", type=str, default=",".join(VIDEO_EXTENSIONS),
        help="Comma-separated list of source file extensions."
    )
    parser.add_argument(
        "--show-output", action="store_true", help="Show FFmpeg output at INFO level while jobs run."
    )
    parser.add_argument(
        "--sink-max-pending", type=_positive_int,
        default=USER_CONFIG.sink_max_pending,
        help="Output lines buffered before the oldest are dropped."
    )
    parser.add_argument(
        "--report-file", type=str, default=None,
        help="YAML run report path. Defaults to '<output_dir>/run_report.yaml'."
    )
    parser.add_argument(
        "--log-level", type=str, default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set the logging level."
    )
    parser.add_argument(
        "--debug", action="store_true", help="Shortcut for --log-level DEBUG."
    )

    args = parser.parse_args(argv)

    args.source_dir = Path(args.source_dir).resolve()
    args.output_dir = (
        Path(args.output_dir).resolve() if args.output_dir else args.source_dir / HLS_OUTPUT_DIR_NAME
    )
    args.report_file = Path(args.report_file).resolve() if args.report_file else None
    args.preset = args.preset or None

    extensions = normalize_extensions(args.extensions.split(","))
    if not extensions:
        parser.error("--extensions must name at least one extension.")
    args.extensions = extensions

    if args.debug:
        args.log_level = "DEBUG"

    return args
