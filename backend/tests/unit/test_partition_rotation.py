"""Unit tests for DataPartitionService rotation.

Uses the in-memory partition repository together with the real exporter
writing to in-memory storage.
"""

from datetime import datetime, timezone

import pytest

from config import ArchiveConfig, PartitioningConfig
from fixtures.lifecycle import FakePartitionRepository, FakeStorage
from partitioning.exporter import PartitionArchiveExporter
from partitioning.schemas import (
    ArchiveRecord,
    PartitionDescriptor,
    PartitionPolicy,
    decode_partition_label,
    month_start,
    monthly_partition,
)
from partitioning.service import DataPartitionService


def _policy(policy_id=1, table_name="events", retention_days=30, strategy="monthly_range", **metadata):
    return PartitionPolicy(
        id=policy_id,
        table_name=table_name,
        date_column="created_at",
        strategy=strategy,
        retention_days=retention_days,
        metadata=metadata,
    )


def _partitions(*names):
    return [decode_partition_label(name) for name in names]


def _manifest(partition_name, dropped_at=None, record_id=1):
    descriptor = decode_partition_label(partition_name)
    return ArchiveRecord(
        id=record_id,
        table_name="events",
        partition_name=partition_name,
        range_start=descriptor.start,
        range_end=descriptor.end,
        retention_days=30,
        archived_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        dropped_at=dropped_at,
        storage_bucket="cold-archives",
        storage_key=f"archives/events/{partition_name}/prior.ndjson",
        row_count=12,
        byte_size=1024,
        checksum="abc123",
    )


def _build(repository, storage, clock, **config):
    config.setdefault("enabled", True)
    config.setdefault("archive", ArchiveConfig(bucket="cold-archives"))
    partitioning_config = PartitioningConfig(**config)
    exporter = PartitionArchiveExporter(repository, storage, partitioning_config, clock=clock)
    return DataPartitionService(repository, exporter, partitioning_config, clock=clock)


def _archived(summary, policy_index=0):
    return summary.results[policy_index].archived


class TestPartitionHelpers:
    """Test monthly partition naming."""

    def test_monthly_partition_bounds(self):
        descriptor = monthly_partition(datetime(2024, 12, 31, 23, 59, tzinfo=timezone.utc))

        assert descriptor.name == "p202412"
        assert descriptor.start == datetime(2024, 12, 1, tzinfo=timezone.utc)
        assert descriptor.end == datetime(2025, 1, 1, tzinfo=timezone.utc)

    def test_month_start_offsets_cross_years(self):
        base = datetime(2024, 1, 15, tzinfo=timezone.utc)

        assert month_start(base, -1) == datetime(2023, 12, 1, tzinfo=timezone.utc)
        assert month_start(base, 12) == datetime(2025, 1, 1, tzinfo=timezone.utc)

    @pytest.mark.parametrize("name", ["pmax", "p202413", "events_2024", "", None])
    def test_undecodable_labels(self, name):
        assert decode_partition_label(name) is None


class TestEnsureFuturePartitions:
    """Test provisioning of upcoming partitions."""

    def test_creates_current_and_lookahead_months(self, storage, clock):
        repository = FakePartitionRepository([_policy()])
        repository.partitions["events"] = _partitions("p202406")
        service = _build(repository, storage, clock, lookahead_months=2)

        summary = service.rotate()

        assert [(e.partition, e.status) for e in summary.results[0].ensured] == [
            ("p202407", "created"),
            ("p202408", "created"),
        ]
        assert repository.added == [("events", "p202407"), ("events", "p202408")]

    def test_lookbehind_months(self, storage, clock):
        repository = FakePartitionRepository([_policy()])
        service = _build(repository, storage, clock, lookahead_months=0, lookbehind_months=1)

        summary = service.rotate()

        assert [e.partition for e in summary.results[0].ensured] == ["p202405", "p202406"]

    def test_existing_partition_race_tolerated(self, storage, clock):
        repository = FakePartitionRepository([_policy()])
        repository.existing_on_add = {"p202407"}
        service = _build(repository, storage, clock, lookahead_months=2)

        summary = service.rotate()

        outcome = summary.results[0]
        assert outcome.status == "ok"
        assert [e.partition for e in outcome.ensured] == ["p202406", "p202408"]

    def test_dry_run_plans_without_creating(self, storage, clock):
        repository = FakePartitionRepository([_policy()])
        service = _build(repository, storage, clock, lookahead_months=1)

        summary = service.rotate(dry_run=True)

        assert summary.dry_run is True
        assert [(e.partition, e.status) for e in summary.results[0].ensured] == [
            ("p202406", "planned"),
            ("p202407", "planned"),
        ]
        assert repository.added == []


class TestArchiveExpiredPartitions:
    """Test export-then-drop of expired partitions."""

    def test_expired_partition_archived_and_dropped(self, storage, clock):
        """January partition with 30-day retention is exported, recorded and dropped on 2024-06-15."""
        repository = FakePartitionRepository([_policy()])
        repository.partitions["events"] = _partitions("p202401", "p202405", "p202406")
        repository.rows["events"] = [
            {"id": 1, "created_at": datetime(2024, 1, 3, tzinfo=timezone.utc)},
            {"id": 2, "created_at": datetime(2024, 1, 20, tzinfo=timezone.utc)},
            {"id": 3, "created_at": datetime(2024, 5, 20, tzinfo=timezone.utc)},
        ]
        service = _build(repository, storage, clock)

        summary = service.rotate()

        archived = _archived(summary)
        assert [(a.partition, a.status) for a in archived] == [("p202401", "archived")]
        assert archived[0].bucket == "cold-archives"
        assert archived[0].row_count == 2
        assert archived[0].checksum
        assert len(storage.uploads) == 1
        assert ("events", "p202401") in repository.dropped
        manifest = repository.find_archive("events", "p202401")
        assert manifest.dropped_at is not None
        assert manifest.row_count == 2

    def test_manual_approval_required_skips(self, storage, clock):
        repository = FakePartitionRepository([_policy(manualApprovalRequired=True)])
        repository.partitions["events"] = _partitions("p202401", "p202406")
        service = _build(repository, storage, clock)

        summary = service.rotate()

        archived = _archived(summary)
        assert [(a.partition, a.status, a.reason) for a in archived] == [
            ("p202401", "skipped", "manual_approval_required")
        ]
        assert storage.uploads == []
        assert repository.dropped == []

    def test_min_active_partitions_respected(self, storage, clock):
        repository = FakePartitionRepository([_policy(minActivePartitions=3)])
        repository.partitions["events"] = _partitions("p202401", "p202402", "p202403", "p202406")
        service = _build(repository, storage, clock, lookahead_months=0)

        summary = service.rotate()

        assert [a.partition for a in _archived(summary)] == ["p202401"]
        assert repository.dropped == [("events", "p202401")]

    def test_grace_days_extend_retention(self, storage, clock):
        repository = FakePartitionRepository([_policy(retention_days=30, archiveGraceDays=120)])
        repository.partitions["events"] = _partitions("p202401", "p202406")
        service = _build(repository, storage, clock, lookahead_months=0)

        summary = service.rotate()

        assert _archived(summary) == []

    def test_tail_partition_never_archived(self, storage, clock):
        repository = FakePartitionRepository([_policy(retention_days=0)])
        repository.partitions["events"] = _partitions("p202401") + [PartitionDescriptor(name="pmax")]
        service = _build(repository, storage, clock, lookahead_months=0, min_active_partitions=0)

        summary = service.rotate()

        assert "pmax" not in [a.partition for a in _archived(summary)]
        assert ("events", "pmax") not in repository.dropped

    def test_existing_manifest_finishes_pending_drop(self, storage, clock):
        repository = FakePartitionRepository([_policy()])
        repository.partitions["events"] = _partitions("p202401", "p202406")
        repository.archives[("events", "p202401")] = _manifest("p202401")
        service = _build(repository, storage, clock, lookahead_months=0)

        summary = service.rotate()

        archived = _archived(summary)[0]
        assert archived.status == "dropped"
        assert archived.reason == "archive_record_present"
        assert archived.key == "archives/events/p202401/prior.ndjson"
        assert storage.uploads == []
        assert repository.dropped == [("events", "p202401")]
        assert repository.find_archive("events", "p202401").dropped_at is not None

    def test_already_dropped_manifest_skipped(self, storage, clock):
        repository = FakePartitionRepository([_policy()])
        repository.partitions["events"] = _partitions("p202401", "p202406")
        repository.archives[("events", "p202401")] = _manifest(
            "p202401", dropped_at=datetime(2024, 5, 2, tzinfo=timezone.utc)
        )
        service = _build(repository, storage, clock, lookahead_months=0)

        summary = service.rotate()

        assert [(a.status, a.reason) for a in _archived(summary)] == [("skipped", "already_dropped")]
        assert repository.dropped == []

    def test_skip_drop_keeps_partition(self, storage, clock):
        repository = FakePartitionRepository([_policy(skipDrop=True)])
        repository.partitions["events"] = _partitions("p202401", "p202406")
        service = _build(repository, storage, clock, lookahead_months=0)

        summary = service.rotate()

        archived = _archived(summary)[0]
        assert (archived.status, archived.reason) == ("archived", "drop_disabled")
        assert len(storage.uploads) == 1
        assert repository.dropped == []
        assert repository.find_archive("events", "p202401").dropped_at is None

    def test_policy_archive_destination_overrides(self, storage, clock):
        repository = FakePartitionRepository([
            _policy(archiveBucket="legal-vault", archivePrefix="/events/cold/", archiveVisibility="private")
        ])
        repository.partitions["events"] = _partitions("p202401", "p202406")
        service = _build(repository, storage, clock, lookahead_months=0)

        service.rotate()

        upload = storage.uploads[0]
        assert upload["bucket"] == "legal-vault"
        assert upload["key"].startswith("events/cold/events/p202401/")
        assert upload["visibility"] == "private"

    def test_dry_run_plans_archives(self, storage, clock):
        repository = FakePartitionRepository([_policy()])
        repository.partitions["events"] = _partitions("p202401", "p202402", "p202406")
        repository.archives[("events", "p202402")] = _manifest("p202402")
        service = _build(repository, storage, clock, lookahead_months=0)

        summary = service.rotate(dry_run=True)

        assert [(a.partition, a.status) for a in _archived(summary)] == [
            ("p202401", "planned-archive"),
            ("p202402", "planned-drop"),
        ]
        assert storage.uploads == []
        assert repository.dropped == []

    def test_export_failure_reported(self, clock):
        repository = FakePartitionRepository([_policy()])
        repository.partitions["events"] = _partitions("p202401", "p202406")
        storage = FakeStorage(fail=True)
        service = _build(repository, storage, clock, lookahead_months=0)

        summary = service.rotate()

        archived = _archived(summary)[0]
        assert archived.status == "failed"
        assert archived.reason == "storage rejected upload"
        assert repository.archives == {}
        assert repository.dropped == []


class TestRotationRun:
    """Test run-level behaviour."""

    def test_disabled(self, storage, clock):
        repository = FakePartitionRepository([_policy()])
        service = _build(repository, storage, clock, enabled=False)

        summary = service.rotate()

        assert summary.status == "disabled"
        assert summary.results == []
        assert repository.added == []

    def test_config_dry_run_default(self, storage, clock):
        repository = FakePartitionRepository([_policy()])
        service = _build(repository, storage, clock, dry_run=True)

        assert service.rotate().dry_run is True
        assert service.rotate(dry_run=False).dry_run is False

    def test_unsupported_strategy_ignored(self, storage, clock):
        repository = FakePartitionRepository([_policy(strategy="hash")])
        service = _build(repository, storage, clock)

        summary = service.rotate()

        assert summary.results == []
        assert repository.added == []

    def test_policy_failure_isolated(self, storage, clock):
        repository = FakePartitionRepository([
            _policy(policy_id=1, table_name="broken_events"),
            _policy(policy_id=2, table_name="events"),
        ])
        repository.fail_partitions_for = {"broken_events"}
        service = _build(repository, storage, clock, lookahead_months=0)

        summary = service.rotate()

        assert [(r.table_name, r.status) for r in summary.results] == [
            ("broken_events", "failed"),
            ("events", "ok"),
        ]
        assert "cannot read partitions" in summary.results[0].error

    def test_executed_at_and_run_id(self, storage, clock):
        service = _build(FakePartitionRepository([]), storage, clock)

        summary = service.rotate()

        assert summary.executed_at == clock()
        assert summary.run_id

    def test_list_archives_newest_first(self, storage, clock):
        repository = FakePartitionRepository([])
        older = _manifest("p202401", record_id=1)
        newer = _manifest("p202402", record_id=2).model_copy(
            update={"archived_at": datetime(2024, 6, 1, tzinfo=timezone.utc)}
        )
        repository.archives[("events", "p202401")] = older
        repository.archives[("events", "p202402")] = newer
        service = _build(repository, storage, clock)

        assert [r.partition_name for r in service.list_archives()] == ["p202402", "p202401"]
