"""
Services Package for the HLS batch converter.

This package contains the service layer: the building blocks the orchestrator
wires together, plus the HLS-specific collaborators.

- **Process Runner (`ProcessRunner`):** spawns one external command, streams its
  output to a sink and resolves to a single `Success` or `Failure`.

- **Concurrency Limiter (`ConcurrencyLimiter`):** a first-come, first-served
  gate that bounds how many jobs run at once.

- **Result Aggregator (`ResultAggregator`):** thread-safe collection of
  per-job outcomes into the final `AggregateReport`.

- **Output Sinks (`LoggerSink`, `BoundedSink`, `NullSink`):** where streamed
  process output goes while jobs are running.

- **HLS Jobs (`discover_video_jobs`, `HlsCommandBuilder`):** the job producer
  and job executor for MP4/MOV to HLS conversion.

- **Logging Service (`ErrorLog`, `ReportLog`):** run logs on disk, a text
  error log and a YAML run report, separate from real-time console logging.
"""
