"""Observability module for the data lifecycle engine.

Provides structured logging with run ID correlation and Prometheus metrics.
"""

from .logging_config import configure_logging, get_logger
from .metrics import (
    RetentionMetricsRecorder,
    partition_archive_bytes_total,
    partition_archives_total,
    retention_anomalies_total,
    retention_job_paused,
    retention_last_run_timestamp_seconds,
    retention_policies_processed_total,
    retention_rows_affected_total,
)
from .run_context import bind_run_id, generate_run_id, get_run_id, run_id_var

__all__ = [
    # Logging
    "configure_logging",
    "get_logger",
    # Run context
    "bind_run_id",
    "generate_run_id",
    "get_run_id",
    "run_id_var",
    # Metrics
    "RetentionMetricsRecorder",
    "partition_archive_bytes_total",
    "partition_archives_total",
    "retention_anomalies_total",
    "retention_job_paused",
    "retention_last_run_timestamp_seconds",
    "retention_policies_processed_total",
    "retention_rows_affected_total",
]
