"""
This package contains the core domain models of the HLS batch converter.

The domain layer describes batch process orchestration in its own terms: jobs,
command specifications, run outcomes and the aggregate report. It is
independent of the CLI, of FFmpeg and of the file system.

Modules:
    exceptions.py: The exception tree. Setup errors stop a run; job errors are
                   confined to one job; cancellation has its own type.
    models.py: `Job`, `CommandSpec`, the `Success`/`Failure` outcomes, the job
               lifecycle states, output chunks and the `AggregateReport`.
"""
