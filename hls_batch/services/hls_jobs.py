"""
Provides the job producer and job executor for MP4/MOV -> HLS conversion.

This is the only module that knows about video files, HLS and FFmpeg. It plugs
into the orchestrator through the generic interfaces:

- `discover_video_jobs` is the job producer: it lists a source directory and
  yields one `Job` per video file.
- `HlsCommandBuilder` is the job executor: it turns a `Job` into the FFmpeg
  command that writes `<output_root>/<folder>/index.m3u8` plus its segments.

The output folder for a file is the first space-separated token of its name,
so "03 Introduction.mov" is written to "<output_root>/03/".
"""

import os
import threading
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional, Union

import ffmpeg
from loguru import logger

from ..config.hls import (
    DEFAULT_PRESET,
    DEFAULT_VIDEO_BITRATE,
    DEFAULT_VIDEO_CODEC,
    HLS_LIST_SIZE,
    HLS_SEGMENT_DURATION,
    HLS_START_NUMBER,
    PLAYLIST_NAME,
    VIDEO_EXTENSIONS,
)
from ..domain.exceptions import (
    InvalidConfigurationException,
    JobSourceException,
    JobTranslationException,
)
from ..domain.models import CommandSpec, Job
from ..utils.ffmpeg_utils import resolve_ffmpeg


def normalize_extensions(extensions: Iterable[str]) -> tuple:
    """Lower-cases extensions and makes sure each starts with a dot."""
    normalized = []
    for ext in extensions:
        ext = ext.strip().lower()
        if not ext:
            continue
        normalized.append(ext if ext.startswith(".") else f".{ext}")
    return tuple(normalized)


def discover_video_jobs(
    source_dir: Union[str, Path],
    extensions: Iterable[str] = VIDEO_EXTENSIONS,
) -> Iterator[Job]:
    """
    Yields one job per video file directly inside `source_dir`.

    The directory is checked and listed on the first `next()`, not at call time;
    any problem surfaces as a `JobSourceException` while the orchestrator
    iterates. Files are yielded in name order so that runs are repeatable.
    Subdirectories (including the HLS output folder) are never descended into.

    Args:
        source_dir: Directory containing the source videos.
        extensions: Accepted file extensions, matched case-insensitively.

    Yields:
        `Job(job_id=<file name>, payload=<absolute file path>)`.

    Raises:
        JobSourceException: The directory does not exist or cannot be listed.
    """
    source_path = Path(source_dir)
    wanted = normalize_extensions(extensions)

    if not source_path.is_dir():
        raise JobSourceException(f"Source directory does not exist: {source_path}")

    try:
        with os.scandir(source_path) as entries:
            files = sorted(
                (Path(entry.path) for entry in entries if entry.is_file()),
                key=lambda p: p.name,
            )
    except OSError as e:
        raise JobSourceException(f"Could not list source directory {source_path}: {e}") from e

    found = 0
    for file_path in files:
        if file_path.suffix.lower() not in wanted:
            logger.trace(f"Skipping non-video file: {file_path.name}")
            continue
        found += 1
        yield Job(job_id=file_path.name, payload=file_path.resolve())

    if not found:
        logger.warning(f"No {'/'.join(wanted)} files found in {source_path}.")


def output_folder_name(file_path: Union[str, Path]) -> str:
    """
    Derives the per-file output folder from the file name.

    The folder is the first whitespace-separated token of the stem, e.g.
    "12 Closures in depth.mp4" -> "12". A name without such a token cannot be
    mapped to an output folder.

    Raises:
        JobTranslationException: The stem is empty or blank.
    """
    stem = Path(file_path).stem
    tokens = stem.split()
    if not tokens:
        raise JobTranslationException(
            f"Unable to extract folder number from file name: '{Path(file_path).name}'"
        )
    return tokens[0]


class HlsCommandBuilder:
    """
    Builds the FFmpeg HLS command for a video job.

    The arguments are compiled with ffmpeg-python, producing the equivalent of::

        ffmpeg [-hwaccel H] -i IN -f hls -b:v 5M -hls_list_size 0
               -hls_time 10 -preset slow -start_number 0 -vcodec libx264
               OUT/<folder>/index.m3u8

    Each output folder belongs to the first job that asks for it; a later job
    mapping to the same folder is refused with `JobTranslationException`.

    Attributes:
        output_root (Path): Directory that receives one subfolder per source file.
        ffmpeg_path (str): Executable placed at the front of every command.
        segment_duration (int): Target HLS segment length in seconds.
        video_codec (str): Value for `-vcodec`.
        preset (Optional[str]): Value for `-preset`; omitted when None.
        video_bitrate (str): Value for `-b:v`.
        hwaccel (Optional[str]): Input `-hwaccel` method, e.g. "videotoolbox".
    """

    def __init__(
        self,
        output_root: Union[str, Path],
        ffmpeg_path: Optional[Union[str, Path]] = None,
        segment_duration: int = HLS_SEGMENT_DURATION,
        video_codec: str = DEFAULT_VIDEO_CODEC,
        preset: Optional[str] = DEFAULT_PRESET,
        video_bitrate: str = DEFAULT_VIDEO_BITRATE,
        hwaccel: Optional[str] = None,
    ):
        if isinstance(segment_duration, bool) or not isinstance(segment_duration, int) or segment_duration <= 0:
            raise InvalidConfigurationException(
                f"segment_duration must be a positive integer, got {segment_duration!r}"
            )
        self.output_root = Path(output_root)
        self.ffmpeg_path = resolve_ffmpeg(ffmpeg_path)
        self.segment_duration = segment_duration
        self.video_codec = video_codec
        self.preset = preset
        self.video_bitrate = video_bitrate
        self.hwaccel = hwaccel
        self._claimed: Dict[Path, str] = {}
        self._claim_lock = threading.Lock()

    def playlist_path(self, source: Path) -> Path:
        return self.output_root / output_folder_name(source) / PLAYLIST_NAME

    def _claim(self, folder: Path, job_id: str) -> None:
        # Two sources with the same leading token would overwrite one playlist.
        with self._claim_lock:
            owner = self._claimed.setdefault(folder, job_id)
        if owner != job_id:
            raise JobTranslationException(
                f"Output folder {folder} is already used by '{owner}'; skipping '{job_id}'"
            )

    def __call__(self, job: Job) -> CommandSpec:
        source = Path(job.payload) if job.payload is not None else Path(job.job_id)
        playlist = self.playlist_path(source)
        self._claim(playlist.parent, job.job_id)

        try:
            playlist.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise JobTranslationException(
                f"Could not create output folder {playlist.parent}: {e}"
            ) from e

        input_kwargs = {}
        if self.hwaccel:
            input_kwargs["hwaccel"] = self.hwaccel

        output_kwargs = {
            "format": "hls",
            "vcodec": self.video_codec,
            "video_bitrate": self.video_bitrate,
            "start_number": HLS_START_NUMBER,
            "hls_time": self.segment_duration,
            "hls_list_size": HLS_LIST_SIZE,
        }
        if self.preset:
            output_kwargs["preset"] = self.preset

        stream = ffmpeg.input(str(source), **input_kwargs).output(str(playlist), **output_kwargs)
        argv = stream.compile(cmd=self.ffmpeg_path)
        logger.trace(f"[{job.job_id}] HLS output: {playlist}")
        return CommandSpec.from_argv(argv)
