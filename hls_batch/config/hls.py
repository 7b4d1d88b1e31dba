"""
Configuration settings related to HLS conversion.

This module defines the source file extensions, the output layout and the
FFmpeg encoding parameters used when turning MP4/MOV files into HLS playlists.
"""
import sys

from .common import DEFAULT_SEGMENT_DURATION

# --- Source Files ---
VIDEO_EXTENSIONS = (".mp4", ".mov")

# --- Output Layout ---
HLS_OUTPUT_DIR_NAME = "hls"
PLAYLIST_NAME = "index.m3u8"

# --- Encoder Settings ---
FFMPEG_EXECUTABLE_NAME = "ffmpeg.exe" if sys.platform == "win32" else "ffmpeg"
DEFAULT_VIDEO_CODEC = "libx264"
DEFAULT_PRESET = "slow"
DEFAULT_VIDEO_BITRATE = "5M"

# --- HLS Muxer Settings ---
HLS_SEGMENT_DURATION = DEFAULT_SEGMENT_DURATION
HLS_START_NUMBER = 0
HLS_LIST_SIZE = 0  # 0 keeps every segment in the playlist (VOD).
