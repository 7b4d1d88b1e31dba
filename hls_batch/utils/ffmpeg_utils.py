"""
This module provides helpers for locating the FFmpeg executable.
"""

import shutil
from pathlib import Path
from typing import Optional, Union

from loguru import logger

from ..config.common import MODULE_PATH
from ..config.hls import FFMPEG_EXECUTABLE_NAME


def resolve_ffmpeg(
    ffmpeg_path: Optional[Union[str, Path]] = None,
    module_path: Optional[Path] = MODULE_PATH,
) -> str:
    """
    Decides which FFmpeg executable the converter will launch.

    The lookup order is:
    1. An explicit path (from `--ffmpeg-path`), used as given.
    2. `ffmpeg` inside the `ffmpeg_dir` configured in `config.user.yaml`.
    3. `ffmpeg` found on the system PATH.
    4. The bare executable name.

    A missing FFmpeg is not treated as a setup error here. Each job will then
    fail to launch and be reported individually.

    Args:
        ffmpeg_path: Explicit executable path, if the user gave one.
        module_path: Directory configured as `paths.ffmpeg_dir`.

    Returns:
        The executable to put at the front of each FFmpeg command.
    """
    if ffmpeg_path:
        return str(ffmpeg_path)

    if module_path:
        candidate = Path(module_path) / FFMPEG_EXECUTABLE_NAME
        if candidate.is_file():
            logger.debug(f"Using FFmpeg from configured ffmpeg_dir: {candidate}")
            return str(candidate)
        logger.warning(
            f"Configured ffmpeg_dir '{module_path}' does not contain {FFMPEG_EXECUTABLE_NAME}. Falling back to PATH."
        )

    found = shutil.which(FFMPEG_EXECUTABLE_NAME)
    if found:
        logger.debug(f"Using FFmpeg found on PATH: {found}")
        return found

    logger.warning(
        f"{FFMPEG_EXECUTABLE_NAME} was not found on PATH. Jobs will fail to launch unless it becomes available."
    )
    return FFMPEG_EXECUTABLE_NAME
