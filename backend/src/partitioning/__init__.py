"""Partition rotation and archival.

This module provides:
- Monthly range partition provisioning ahead of need
- Export of expired partitions to object storage as NDJSON with a sha256 checksum
- Durable archive manifests and resumable drops

Tasks are imported lazily to avoid circular dependencies
Use: from partitioning.tasks import partition_rotate_task
"""

from .exceptions import (
    ExportLimitExceededError,
    PartitionAlreadyExistsError,
    PartitionError,
    PartitionNotFoundError,
)
from .schemas import ArchiveRecord, PartitionDescriptor, PartitionPolicy, PartitionRunSummary

__all__ = [
    "ExportLimitExceededError",
    "PartitionAlreadyExistsError",
    "PartitionError",
    "PartitionNotFoundError",
    "ArchiveRecord",
    "PartitionDescriptor",
    "PartitionPolicy",
    "PartitionRunSummary",
]
