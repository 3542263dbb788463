"""In-memory collaborators for lifecycle engine tests.

Each fake implements the same interface as its production counterpart and
records the calls it receives so tests can assert on them.
"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from domain.governance.ports import (
    ApprovalRecord,
    ApprovalStorePort,
    ChangeDataCapturePort,
    ChangeEvent,
    ObjectStoragePort,
    UploadedObject,
)
from partitioning.exceptions import PartitionAlreadyExistsError
from partitioning.schemas import ArchiveRecord, PartitionDescriptor, PartitionPolicy
from retention.schemas import (
    MODE_SIMULATE,
    STATUS_EXECUTED,
    VERIFICATION_CLEARED,
    VERIFICATION_SIMULATED,
    RetentionExecutionResult,
    RetentionPolicy,
    RetentionRunSummary,
    VerificationResult,
)
from retention.service import RetentionAlert


class FakeClock:
    """Mutable clock returning a fixed UTC instant."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeChangeDataCapture(ChangeDataCapturePort):
    def __init__(self, fail: bool = False):
        self.events: List[ChangeEvent] = []
        self.fail = fail
        self._ids = itertools.count(1)

    def record_event(self, domain, entity_name, entity_id, operation, payload=None, dry_run=False):
        if self.fail:
            raise RuntimeError("cdc sink unavailable")
        event = ChangeEvent(
            id=next(self._ids),
            domain=domain,
            entity_name=entity_name,
            entity_id=str(entity_id) if entity_id is not None else None,
            operation=operation,
            payload=payload or {},
            dry_run=dry_run,
        )
        self.events.append(event)
        return event

    def operations(self) -> List[str]:
        return [event.operation for event in self.events]


class FakeApprovalStore(ApprovalStorePort):
    def __init__(self):
        self.values: Dict[str, Dict[str, Any]] = {}
        self.fail_reads = False

    def find_by_key(self, key):
        if self.fail_reads:
            raise RuntimeError("approval store unavailable")
        if key not in self.values:
            return None
        return ApprovalRecord(key=key, value=dict(self.values[key]))

    def upsert(self, key, value):
        self.values[key] = dict(value)
        return ApprovalRecord(key=key, value=dict(value))


class FakeAuditService:
    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def record(self, event_type, entity_type=None, entity_id=None, severity="info", metadata=None):
        entry = {
            "event_type": event_type,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "severity": severity,
            "metadata": metadata,
        }
        self.events.append(entry)
        return entry


class FakeMetrics:
    def __init__(self):
        self.cycles: List[List[RetentionExecutionResult]] = []
        self.anomalies = 0
        self.paused: Optional[bool] = None

    def record_cycle(self, results, completed_at):
        self.cycles.append(list(results))

    def record_anomalies(self, count):
        self.anomalies += count

    def set_paused(self, paused):
        self.paused = paused


class FakeJob:
    def __init__(self, job_id):
        self.id = job_id


class FakeScheduler:
    """Records APScheduler ``add_job`` calls without running anything."""

    def __init__(self):
        self.jobs: Dict[str, Dict[str, Any]] = {}
        self.running = False

    def add_job(self, func, trigger=None, args=None, id=None, **kwargs):
        self.jobs[id] = {"func": func, "trigger": trigger, "args": args or [], **kwargs}
        return FakeJob(id)

    def remove_job(self, job_id):
        self.jobs.pop(job_id, None)

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False


class FakeExecutor:
    """Stand-in for ``RetentionEnforcementService.enforce``.

    Returns ``results`` with dry_run/verification adjusted to the requested mode.
    """

    def __init__(self, results: Optional[List[RetentionExecutionResult]] = None, error: Exception = None):
        self.results = results or []
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self._runs = itertools.count(1)

    def __call__(self, **kwargs) -> RetentionRunSummary:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error

        mode = kwargs.get("mode")
        dry_run = mode == MODE_SIMULATE
        run_id = f"run-{next(self._runs)}"
        results = []
        for result in self.results:
            verification = result.verification
            if dry_run and result.status == STATUS_EXECUTED:
                verification = VerificationResult(
                    status=VERIFICATION_SIMULATED, remaining_rows=result.affected_rows
                )
            results.append(result.model_copy(update={"dry_run": dry_run, "verification": verification}))

        on_alert = kwargs.get("on_alert")
        threshold = kwargs.get("alert_threshold") or 500
        if on_alert is not None and not dry_run:
            for result in results:
                if result.affected_rows >= threshold:
                    on_alert(RetentionAlert(run_id=run_id, policy=_policy_for(result), result=result, mode=mode))

        now = datetime(2024, 6, 15, 3, 0, tzinfo=timezone.utc)
        return RetentionRunSummary(
            run_id=run_id,
            mode=mode,
            dry_run=dry_run,
            results=results,
            started_at=now,
            completed_at=now,
        )


def _policy_for(result: RetentionExecutionResult) -> RetentionPolicy:
    return RetentionPolicy(
        id=result.policy_id,
        entity_name=result.entity_name,
        action=result.action,
        retention_period_days=30,
    )


def executed_result(policy_id=1, entity_name="unit_records", affected_rows=2, verification_status=VERIFICATION_CLEARED):
    return RetentionExecutionResult(
        policy_id=policy_id,
        entity_name=entity_name,
        action="hard-delete",
        status=STATUS_EXECUTED,
        affected_rows=affected_rows,
        pre_run_count=affected_rows,
        sample_ids=list(range(1, min(affected_rows, 5) + 1)),
        verification=VerificationResult(status=verification_status, remaining_rows=0),
    )


class FakeStorage(ObjectStoragePort):
    """Reads uploaded streams to EOF and keeps the bytes in memory."""

    def __init__(self, default_bucket: str = "default-archives", fail: bool = False):
        self.default_bucket = default_bucket
        self.fail = fail
        self.objects: Dict[tuple, Dict[str, Any]] = {}
        self.uploads: List[Dict[str, Any]] = []
        self.deleted: List[tuple] = []

    def upload_stream(self, bucket, key, stream, content_type, visibility=None, metadata=None):
        target = bucket or self.default_bucket
        self.uploads.append({
            "bucket": target,
            "key": key,
            "content_type": content_type,
            "visibility": visibility,
            "metadata": dict(metadata or {}),
        })
        body = stream.read()
        if self.fail:
            raise RuntimeError("storage rejected upload")
        self.objects[(target, key)] = {"body": body, "content_type": content_type, "metadata": metadata}
        return UploadedObject(bucket=target, key=key)

    def delete_file(self, bucket, key):
        self.deleted.append((bucket, key))
        return self.objects.pop((bucket, key), None) is not None


class FakePartitionRepository:
    """Partition policies, partitions, rows and manifests held in dicts."""

    def __init__(self, policies: List[PartitionPolicy] = None):
        self.policies = list(policies or [])
        self.partitions: Dict[str, List[PartitionDescriptor]] = {}
        self.rows: Dict[str, List[Dict[str, Any]]] = {}
        self.archives: Dict[tuple, ArchiveRecord] = {}
        self.added: List[tuple] = []
        self.dropped: List[tuple] = []
        self.existing_on_add: set = set()
        self.fail_partitions_for: set = set()
        self.fail_record = False
        self._ids = itertools.count(1)

    def fetch_policies(self):
        return list(self.policies)

    def fetch_partitions(self, table_name):
        if table_name in self.fail_partitions_for:
            raise RuntimeError(f"cannot read partitions of {table_name}")
        return list(self.partitions.get(table_name, []))

    def add_partition(self, table_name, descriptor):
        if descriptor.name in self.existing_on_add:
            raise PartitionAlreadyExistsError(table_name, descriptor.name)
        self.added.append((table_name, descriptor.name))
        self.partitions.setdefault(table_name, []).append(descriptor)

    def drop_partition(self, table_name, partition_name):
        self.dropped.append((table_name, partition_name))
        self.partitions[table_name] = [
            p for p in self.partitions.get(table_name, []) if p.name != partition_name
        ]

    def stream_partition_rows(self, table_name, date_column, start, end, batch_size=1000):
        for row in sorted(self.rows.get(table_name, []), key=lambda r: r[date_column]):
            if start <= row[date_column] < end:
                yield row

    def find_archive(self, table_name, partition_name):
        return self.archives.get((table_name, partition_name))

    def record_archive(self, record):
        if self.fail_record:
            raise RuntimeError("manifest insert failed")
        stored = record.model_copy(update={"id": next(self._ids)})
        self.archives[(record.table_name, record.partition_name)] = stored
        return stored

    def mark_archive_dropped(self, archive_id, dropped_at=None):
        for key, record in self.archives.items():
            if record.id == archive_id:
                self.archives[key] = record.model_copy(
                    update={"dropped_at": dropped_at or datetime.now(timezone.utc)}
                )
                return

    def list_archives(self, table_name=None, limit=25, include_dropped=False):
        records = [
            record for record in self.archives.values()
            if (table_name is None or record.table_name == table_name)
            and (include_dropped or record.dropped_at is None)
        ]
        return sorted(records, key=lambda r: r.archived_at, reverse=True)[:limit]
