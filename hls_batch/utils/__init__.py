"""
Utilities Package for the HLS batch converter.

Modules:
    - cancel.py: The `CancellationToken` shared by the orchestrator, the
      concurrency limiter and the process runners.
    - ffmpeg_utils.py: Locates the FFmpeg executable.
    - format_utils.py: Formatting helpers for log messages and summaries.
"""
