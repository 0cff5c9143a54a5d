"""Prometheus metrics for LabPulse."""

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Application info
app_info = Info("labpulse_app", "LabPulse application information")
app_info.info({"version": "0.4.0", "name": "LabPulse"})

# Collection metrics
collection_runs_total = Counter(
    "labpulse_collection_runs_total", "Collection passes executed"
)
collection_skipped_total = Counter(
    "labpulse_collection_skipped_total",
    "Collection ticks skipped because the previous pass was still running",
)
collection_outcomes_total = Counter(
    "labpulse_collection_outcomes_total",
    "Per-source collection outcomes",
    ["family", "outcome"],
)
collection_duration = Histogram(
    "labpulse_collection_duration_seconds",
    "Duration of a full collection pass",
    buckets=[0.1, 0.25, 0.5, 1, 2, 5, 10, 30],
)

# Storage metrics
records_written_total = Counter(
    "labpulse_records_written_total", "Metric records inserted", ["family"]
)
record_failures_total = Counter(
    "labpulse_record_failures_total", "Metric records rejected or failed to insert", ["family"]
)
records_pruned_total = Counter(
    "labpulse_records_pruned_total", "Metric records deleted by retention", ["family"]
)
cleanup_failures_total = Counter(
    "labpulse_cleanup_failures_total", "Retention cleanups that failed", ["family"]
)

# Scheduler state
scheduler_running = Gauge(
    "labpulse_scheduler_running", "1 while the metrics scheduler is running"
)


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    return generate_latest()


def get_content_type() -> str:
    """Get Prometheus content type."""
    return CONTENT_TYPE_LATEST
