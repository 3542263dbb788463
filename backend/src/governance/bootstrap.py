"""Composition root.

Builds every collaborator of the lifecycle engine from ``Settings`` and wires
them together explicitly. Nothing else in the codebase constructs shared
instances; Celery tasks and the supervisor process go through
``get_container()``.
"""

import logging
import signal
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from audit.service import GovernanceAuditService
from config import Settings, get_settings
from database import advisory_lock, build_engine, create_session_factory
from domain.governance.ports import ObjectStoragePort
from infrastructure.approvals.settings_store import PlatformSettingsApprovalStore
from infrastructure.cdc.change_data_capture import SqlChangeDataCaptureService
from infrastructure.storage.s3_storage_adapter import S3StorageAdapter
from infrastructure.storage.storage_config import storage_config_from_settings
from observability.logging_config import configure_logging
from observability.metrics import RetentionMetricsRecorder
from partitioning.exporter import PartitionArchiveExporter
from partitioning.repository import SqlPartitionRepository
from partitioning.service import DataPartitionService
from retention.job import JOB_ID, DataRetentionJob
from retention.policy_cache import RetentionPolicyCache
from retention.repository import RetentionPolicyRepository
from retention.service import RetentionEnforcementService
from retention.strategies import RetentionStrategyRegistry, build_default_registry

logger = logging.getLogger(__name__)


@dataclass
class LifecycleContainer:
    """Every wired collaborator, for entrypoints and tests."""
    settings: Settings
    engine: Engine
    session_factory: sessionmaker
    registry: RetentionStrategyRegistry
    policy_cache: RetentionPolicyCache
    enforcement_service: RetentionEnforcementService
    retention_job: DataRetentionJob
    approval_store: PlatformSettingsApprovalStore
    change_data_capture: SqlChangeDataCaptureService
    audit_service: GovernanceAuditService
    partition_service: DataPartitionService


def build_storage(settings: Settings) -> S3StorageAdapter:
    """Create the archive storage adapter.

    Raises:
        ValueError: If the storage configuration is incomplete
    """
    config = storage_config_from_settings(settings)
    return S3StorageAdapter(
        endpoint_url=config.endpoint_url,
        access_key=config.access_key,
        secret_key=config.secret_key,
        bucket_name=config.bucket_name,
        region=config.region,
    )


def build_container(
    settings: Optional[Settings] = None,
    engine: Optional[Engine] = None,
    registry: Optional[RetentionStrategyRegistry] = None,
    storage: Optional[ObjectStoragePort] = None,
    scheduler=None,
) -> LifecycleContainer:
    """Wire the lifecycle engine.

    Args:
        settings: Application settings (default: ``get_settings()``)
        engine: Database engine (default: built from DATABASE_URL)
        registry: Strategy registry (default: built-in strategies)
        storage: Archive storage (default: S3 adapter when partitioning is enabled)
        scheduler: APScheduler scheduler for the retention job

    Raises:
        ValueError: If partitioning is enabled without a usable storage configuration
    """
    settings = settings or get_settings()
    engine = engine or build_engine(settings.DATABASE_URL)
    session_factory = create_session_factory(engine)
    registry = registry or build_default_registry()

    job_config = settings.retention_job_config()
    partition_config = settings.partitioning_config()

    policy_repository = RetentionPolicyRepository(session_factory)
    policy_cache = RetentionPolicyCache(
        policy_repository.list_active_policies,
        refresh_interval_seconds=job_config.policy_cache_seconds,
    )
    change_data_capture = SqlChangeDataCaptureService(session_factory)
    approval_store = PlatformSettingsApprovalStore(session_factory)
    audit_service = GovernanceAuditService(session_factory)

    enforcement_service = RetentionEnforcementService(
        session_factory=session_factory,
        registry=registry,
        policy_repository=policy_repository,
        change_data_capture=change_data_capture,
        default_alert_threshold=job_config.alert_threshold,
    )

    lock_factory = None
    if job_config.advisory_lock_enabled:
        lock_factory = lambda: advisory_lock(engine, JOB_ID)  # noqa: E731

    retention_job = DataRetentionJob(
        executor=enforcement_service.enforce,
        policy_cache=policy_cache,
        config=job_config,
        scheduler=scheduler,
        approval_store=approval_store,
        change_data_capture=change_data_capture,
        audit_service=audit_service,
        metrics=RetentionMetricsRecorder(),
        lock_factory=lock_factory,
    )

    partition_repository = SqlPartitionRepository(session_factory, schema=partition_config.schema_name)
    if storage is None and partition_config.enabled:
        storage = build_storage(settings)
    exporter = None
    if storage is not None:
        exporter = PartitionArchiveExporter(partition_repository, storage, partition_config)
    partition_service = DataPartitionService(
        repository=partition_repository,
        exporter=exporter,
        config=partition_config,
    )

    return LifecycleContainer(
        settings=settings,
        engine=engine,
        session_factory=session_factory,
        registry=registry,
        policy_cache=policy_cache,
        enforcement_service=enforcement_service,
        retention_job=retention_job,
        approval_store=approval_store,
        change_data_capture=change_data_capture,
        audit_service=audit_service,
        partition_service=partition_service,
    )


@lru_cache()
def get_container() -> LifecycleContainer:
    """Process-wide container.

    Cached so supervisor state (failure counters, pause window) survives
    across Celery task invocations within one worker process.
    """
    return build_container()


def serve() -> None:
    """Run the retention supervisor until SIGINT or SIGTERM."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)

    container = get_container()
    stop_event = threading.Event()

    def _shutdown(signum, frame):
        logger.info(f"Received signal {signum}; stopping data retention job")
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    container.retention_job.start()
    try:
        stop_event.wait()
    finally:
        container.retention_job.stop()
        container.engine.dispose()


if __name__ == "__main__":
    serve()
