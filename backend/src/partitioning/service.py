"""Partition rotation service.

Keeps monthly range-partitioned tables provisioned ahead of need and retires
expired partitions after exporting them:

1. Ensure: create missing partitions for months in [-lookbehind, +lookahead]
2. Archive: walk expired partitions oldest-first, export each one, record its
   manifest, then drop it, never leaving fewer than ``min_active_partitions``

A manifest without ``dropped_at`` marks a partition whose drop is still pending;
the next rotation finishes the drop without exporting again.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from config import PartitioningConfig
from observability.metrics import partition_archive_bytes_total, partition_archives_total
from observability.run_context import bind_run_id, generate_run_id
from .exceptions import PartitionAlreadyExistsError
from .exporter import PartitionArchiveExporter, normalize_archive_prefix
from .schemas import (
    MONTHLY_RANGE,
    ArchiveRecord,
    EnsuredPartition,
    PartitionArchiveOutcome,
    PartitionDescriptor,
    PartitionPolicy,
    PartitionPolicyOutcome,
    PartitionRunSummary,
    decode_partition_label,
    month_start,
    monthly_partition,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class DataPartitionService:
    """Rotate partitions for every configured ``monthly_range`` policy.

    Example:
        service = DataPartitionService(
            repository=SqlPartitionRepository(SessionLocal, schema="public"),
            exporter=PartitionArchiveExporter(repository, storage, config),
            config=settings.partitioning_config(),
        )
        summary = service.rotate(dry_run=True)
    """

    def __init__(
        self,
        repository,
        exporter: PartitionArchiveExporter,
        config: Optional[PartitioningConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.exporter = exporter
        self.config = config or PartitioningConfig()
        self.clock = clock

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def list_archives(
        self,
        table_name: Optional[str] = None,
        limit: int = 25,
        include_dropped: bool = False,
    ) -> List[ArchiveRecord]:
        """Return archive manifests newest-first."""
        return self.repository.list_archives(
            table_name=table_name, limit=limit, include_dropped=include_dropped
        )

    def rotate(self, dry_run: Optional[bool] = None) -> PartitionRunSummary:
        """Ensure future partitions and archive expired ones for every policy.

        A failure for one policy is recorded in its outcome and rotation
        continues with the next policy. Errors loading the policies propagate.
        """
        dry_run = self.config.dry_run if dry_run is None else bool(dry_run)
        run_id = generate_run_id()

        if not self.enabled:
            logger.warning("Data partitioning disabled; skipping rotation cycle")
            return PartitionRunSummary(run_id=run_id, dry_run=dry_run, status="disabled", results=[])

        with bind_run_id(run_id):
            results: List[PartitionPolicyOutcome] = []

            for policy in self.repository.fetch_policies():
                if policy.strategy != MONTHLY_RANGE:
                    logger.debug(
                        f"Skipping unsupported partitioning strategy {policy.strategy}",
                        extra={"policy_id": policy.id, "table_name": policy.table_name},
                    )
                    continue

                outcome = PartitionPolicyOutcome(policy_id=policy.id, table_name=policy.table_name)
                try:
                    partitions = list(self.repository.fetch_partitions(policy.table_name))
                    outcome.ensured = self.ensure_future_partitions(policy, partitions, dry_run)
                    outcome.archived = self.archive_expired_partitions(policy, partitions, dry_run, run_id)
                except Exception as e:
                    outcome.status = "failed"
                    outcome.error = str(e)
                    logger.error(
                        "Failed to manage partitions for policy",
                        exc_info=True,
                        extra={"policy_id": policy.id, "table_name": policy.table_name},
                    )

                results.append(outcome)

            summary = PartitionRunSummary(
                run_id=run_id,
                dry_run=dry_run,
                executed_at=self.clock(),
                results=results,
            )

            logger.info(
                f"Data partition rotation completed for {len(results)} policies",
                extra={"dry_run": dry_run},
            )

        return summary

    def ensure_future_partitions(
        self,
        policy: PartitionPolicy,
        partitions: List[PartitionDescriptor],
        dry_run: bool,
    ) -> List[EnsuredPartition]:
        """Create missing partitions in the look-behind/look-ahead window.

        Newly created descriptors are appended to ``partitions``.
        """
        additions: List[EnsuredPartition] = []
        existing = {partition.name for partition in partitions}
        base = month_start(self.clock())

        for offset in range(-self.config.lookbehind_months, self.config.lookahead_months + 1):
            descriptor = monthly_partition(month_start(base, offset))
            if descriptor.name in existing:
                continue

            if dry_run:
                additions.append(EnsuredPartition(partition=descriptor.name, status="planned"))
                continue

            try:
                self.repository.add_partition(policy.table_name, descriptor)
            except PartitionAlreadyExistsError:
                logger.debug(
                    "Partition already exists",
                    extra={"table_name": policy.table_name, "partition": descriptor.name},
                )
                existing.add(descriptor.name)
                continue

            additions.append(EnsuredPartition(partition=descriptor.name, status="created"))
            partitions.append(descriptor)
            existing.add(descriptor.name)
            logger.info(
                "Created future partition",
                extra={"table_name": policy.table_name, "partition": descriptor.name},
            )

        return additions

    def compute_cutoff(self, total_days: int) -> datetime:
        """Midnight UTC today minus ``total_days`` days."""
        now = _as_utc(self.clock())
        today = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
        return today - timedelta(days=max(0, int(total_days)))

    def archive_expired_partitions(
        self,
        policy: PartitionPolicy,
        partitions: List[PartitionDescriptor],
        dry_run: bool,
        run_id: str,
    ) -> List[PartitionArchiveOutcome]:
        results: List[PartitionArchiveOutcome] = []
        metadata = policy.metadata
        grace_days = int(metadata.get("archiveGraceDays", self.config.archive_grace_days) or 0)
        min_active = int(metadata.get("minActivePartitions", self.config.min_active_partitions) or 0)
        cutoff = self.compute_cutoff(policy.retention_days + grace_days)

        sortable = []
        for partition in partitions:
            descriptor = partition if partition.is_bounded else decode_partition_label(partition.name)
            if descriptor is not None:
                sortable.append(descriptor)
        sortable.sort(key=lambda descriptor: _as_utc(descriptor.start))

        remaining = len(sortable)

        for partition in sortable:
            if remaining <= min_active:
                break

            if _as_utc(partition.end) > cutoff:
                continue

            log_extra = {"table_name": policy.table_name, "partition": partition.name}
            summary = PartitionArchiveOutcome(
                partition=partition.name,
                start=partition.start,
                end=partition.end,
            )

            if policy.manual_approval_required:
                summary.reason = "manual_approval_required"
                self._finish(results, summary)
                continue

            existing = self.repository.find_archive(policy.table_name, partition.name)

            if existing is not None:
                if existing.dropped_at is not None:
                    summary.reason = "already_dropped"
                    self._finish(results, summary)
                    continue

                if dry_run:
                    summary.status = "archived" if policy.skip_drop else "planned-drop"
                    summary.reason = "archive_record_present"
                    self._finish(results, summary)
                    continue

                self._copy_manifest(summary, existing)

                if policy.skip_drop:
                    summary.status = "archived"
                    summary.reason = "drop_disabled"
                    self._finish(results, summary)
                    continue

                try:
                    self.repository.drop_partition(policy.table_name, partition.name)
                    self.repository.mark_archive_dropped(existing.id)
                except Exception as e:
                    summary.status = "failed"
                    summary.reason = str(e)
                    self._finish(results, summary)
                    logger.error("Failed to drop previously archived partition", exc_info=True, extra=log_extra)
                    continue

                summary.status = "dropped"
                summary.reason = "archive_record_present"
                self._finish(results, summary)
                remaining -= 1
                logger.info("Dropped partition after confirming prior archive", extra=log_extra)
                continue

            if dry_run:
                summary.status = "planned-archive"
                summary.reason = "retention_window_elapsed"
                self._finish(results, summary)
                continue

            try:
                archive = self.exporter.export(
                    policy=policy,
                    partition=partition,
                    bucket=metadata.get("archiveBucket") or self.config.archive.bucket,
                    prefix=normalize_archive_prefix(
                        metadata.get("archivePrefix"), self.config.archive.prefix
                    ),
                    visibility=metadata.get("archiveVisibility") or self.config.archive.visibility,
                    run_id=run_id,
                )
                partition_archive_bytes_total.inc(archive.byte_size)

                summary.status = "archived"
                summary.bucket = archive.bucket
                summary.key = archive.key
                summary.row_count = archive.row_count
                summary.byte_size = archive.byte_size
                summary.checksum = archive.checksum

                if policy.skip_drop:
                    summary.reason = "drop_disabled"
                else:
                    self.repository.drop_partition(policy.table_name, partition.name)
                    self.repository.mark_archive_dropped(archive.archive_id)
                    remaining -= 1
                    logger.info("Archived and dropped partition following retention window", extra=log_extra)

                self._finish(results, summary)
            except Exception as e:
                summary.status = "failed"
                summary.reason = str(e)
                self._finish(results, summary)
                logger.error("Failed to archive partition", exc_info=True, extra=log_extra)

        return results

    def _copy_manifest(self, summary: PartitionArchiveOutcome, record: ArchiveRecord) -> None:
        summary.bucket = record.storage_bucket
        summary.key = record.storage_key
        summary.row_count = record.row_count
        summary.byte_size = record.byte_size
        summary.checksum = record.checksum

    def _finish(self, results: List[PartitionArchiveOutcome], summary: PartitionArchiveOutcome) -> None:
        results.append(summary)
        partition_archives_total.labels(status=summary.status).inc()
