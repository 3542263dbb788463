"""Prometheus metrics for the data lifecycle engine.

Defines operational metrics for monitoring and alerting on retention sweeps
and partition archival.
"""

from datetime import datetime
from typing import Iterable

from prometheus_client import Counter, Gauge

# Retention metrics
retention_policies_processed_total = Counter(
    "lifecycle_retention_policies_processed_total",
    "Total retention policy executions by outcome",
    ["status"]  # executed|failed|skipped-inactive|skipped-unsupported|skipped-legal-hold
)

retention_rows_affected_total = Counter(
    "lifecycle_retention_rows_affected_total",
    "Rows deleted or soft-deleted by committed retention runs",
    ["entity_name", "action"]
)

retention_last_run_timestamp_seconds = Gauge(
    "lifecycle_retention_last_run_timestamp_seconds",
    "Unix timestamp of the last successful retention cycle"
)

retention_job_paused = Gauge(
    "lifecycle_retention_job_paused",
    "1 while the retention job is paused awaiting backoff or approval"
)

retention_anomalies_total = Counter(
    "lifecycle_retention_anomalies_total",
    "Committed policy executions at or above the alert threshold"
)

# Partition metrics
partition_archives_total = Counter(
    "lifecycle_partition_archives_total",
    "Partition archival outcomes",
    ["status"]  # archived|dropped|skipped|failed|planned-archive|planned-drop
)

partition_archive_bytes_total = Counter(
    "lifecycle_partition_archive_bytes_total",
    "Bytes exported to object storage by partition archival"
)


class RetentionMetricsRecorder:
    """Thin wrapper so the retention job can be tested without global counters."""

    def record_cycle(self, results: Iterable, completed_at: datetime) -> None:
        for result in results:
            retention_policies_processed_total.labels(status=result.status).inc()
            if not result.dry_run and result.affected_rows:
                retention_rows_affected_total.labels(
                    entity_name=result.entity_name, action=result.action
                ).inc(result.affected_rows)
        retention_last_run_timestamp_seconds.set(completed_at.timestamp())

    def record_anomalies(self, count: int) -> None:
        if count:
            retention_anomalies_total.inc(count)

    def set_paused(self, paused: bool) -> None:
        retention_job_paused.set(1 if paused else 0)
