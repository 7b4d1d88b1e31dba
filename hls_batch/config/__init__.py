"""
Configuration Package for the HLS batch converter.

This package centralizes the static configuration settings for the application:
- Common settings such as the logging format, concurrency defaults, process
  termination timing, run log file names and exit codes.
- User-overridable values loaded from `config.user.yaml` (FFmpeg location and
  default concurrency).
- HLS-specific settings: source extensions, output layout and FFmpeg
  encoding parameters.
"""
