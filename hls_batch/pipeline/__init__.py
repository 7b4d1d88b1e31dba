"""
This package contains the job orchestrator of the HLS batch converter.

The orchestrator drives a whole run: it walks the job producer, admits jobs
through the concurrency limiter, runs them on worker threads and collects their
outcomes into the aggregate report.
"""
