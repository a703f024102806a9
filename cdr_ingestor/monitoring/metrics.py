"""Prometheus metrics definitions for the CDR ingestion pipeline."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

FILES_PROCESSED = Counter(
    "cdr_files_processed_total",
    "Total CDR files that reached a terminal status, by source category.",
    labelnames=("source", "status"),
)

FILE_ERRORS = Counter(
    "cdr_file_errors_total",
    "Total file-scoped errors grouped by reason.",
    labelnames=("reason",),
)

ROWS_STAGED = Counter(
    "cdr_rows_staged_total",
    "Total rows loaded into staging tables.",
    labelnames=("source",),
)

ROWS_INSERTED = Counter(
    "cdr_rows_inserted_total",
    "Total detail records inserted by the transform.",
    labelnames=("source",),
)

ROWS_REJECTED = Counter(
    "cdr_rows_rejected_total",
    "Total staged rows rejected by the transform row filter.",
    labelnames=("source",),
)

FILE_PROCESSING_DURATION = Histogram(
    "cdr_file_processing_seconds",
    "Distribution of per-file processing durations in seconds.",
    buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300, 900),
)


def record_file_outcome(source: str, status: str) -> None:
    """Increment the processed-files counter with the supplied labels."""

    FILES_PROCESSED.labels(source=source, status=status).inc()


def record_file_error(reason: str) -> None:
    """Increment the file errors counter for the provided reason."""

    FILE_ERRORS.labels(reason=reason).inc()


def record_row_counts(source: str, *, staged: int = 0, inserted: int = 0, rejected: int = 0) -> None:
    """Add one file's row accounting to the row counters."""

    ROWS_STAGED.labels(source=source).inc(max(staged, 0))
    ROWS_INSERTED.labels(source=source).inc(max(inserted, 0))
    ROWS_REJECTED.labels(source=source).inc(max(rejected, 0))


def observe_file_duration(duration_seconds: float) -> None:
    FILE_PROCESSING_DURATION.observe(max(duration_seconds, 0.0))
