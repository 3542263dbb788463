"""Pydantic schemas for partition policies, descriptors, manifests and run summaries.

This module defines partitioning-related schemas:
- PartitionPolicy: read-only view of a configured partition policy
- PartitionDescriptor: one monthly range segment ``pYYYYMM`` of a table
- ArchiveRecord: durable manifest of an exported partition
- PartitionRunSummary: outcome of one ``rotate()`` call
"""

import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

MONTHLY_RANGE = "monthly_range"
TAIL_PARTITION = "pmax"

_PARTITION_LABEL = re.compile(r"^p(\d{4})(\d{2})$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PartitionPolicy(_CamelModel):
    """Rule describing how a time-partitioned table is provisioned and retired.

    Metadata keys (camelCase, all optional): archiveBucket, archivePrefix,
    archiveVisibility, archiveGraceDays, minActivePartitions,
    manualApprovalRequired, skipDrop.
    """

    id: Union[int, str]
    table_name: str
    date_column: str
    strategy: str = MONTHLY_RANGE
    retention_days: int = Field(default=0, ge=0)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata", mode="before")
    @classmethod
    def parse_metadata(cls, v):
        if v is None or v == "":
            return {}
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except ValueError:
                logger.warning("Failed to parse partition policy metadata", extra={"raw": v})
                return {}
            return parsed if isinstance(parsed, dict) else {}
        return v

    @property
    def manual_approval_required(self) -> bool:
        return self.metadata.get("manualApprovalRequired") is True

    @property
    def skip_drop(self) -> bool:
        return self.metadata.get("skipDrop") is True


class PartitionDescriptor(BaseModel):
    """One contiguous ``[start, end)`` time-range segment of a partitioned table.

    ``start`` and ``end`` are None only for segments whose bounds cannot be
    derived from the name (the ``pmax`` tail or foreign names).
    """

    model_config = ConfigDict(frozen=True)

    name: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def is_bounded(self) -> bool:
        return self.start is not None and self.end is not None


def month_start(value: datetime, offset: int = 0) -> datetime:
    """First instant (UTC) of the month ``offset`` months from ``value``."""
    index = value.year * 12 + (value.month - 1) + offset
    return datetime(index // 12, index % 12 + 1, 1, tzinfo=timezone.utc)


def monthly_partition(value: datetime) -> PartitionDescriptor:
    """Descriptor of the monthly partition containing ``value``."""
    start = month_start(value)
    return PartitionDescriptor(
        name=f"p{start.year:04d}{start.month:02d}",
        start=start,
        end=month_start(start, 1),
    )


def decode_partition_label(name: Optional[str]) -> Optional[PartitionDescriptor]:
    """Decode ``pYYYYMM`` into its bounds. Returns None for pmax and foreign names."""
    if not name or name == TAIL_PARTITION:
        return None
    match = _PARTITION_LABEL.match(name)
    if not match:
        return None
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        return None
    return monthly_partition(datetime(year, month, 1, tzinfo=timezone.utc))


class ArchiveRecord(BaseModel):
    """Durable manifest row. ``dropped_at`` is set only after the physical drop."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    table_name: str
    partition_name: str
    range_start: datetime
    range_end: datetime
    retention_days: int = 0
    archived_at: Optional[datetime] = None
    dropped_at: Optional[datetime] = None
    storage_bucket: str
    storage_key: str
    row_count: int = 0
    byte_size: int = 0
    checksum: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ArchiveResult(BaseModel):
    """What the exporter hands back to the rotation engine."""

    archive_id: Optional[int]
    bucket: str
    key: str
    row_count: int
    byte_size: int
    checksum: str


class EnsuredPartition(BaseModel):
    partition: str
    status: str  # planned|created


class PartitionArchiveOutcome(BaseModel):
    """Per-partition outcome of the archive phase."""

    partition: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: str = "skipped"  # skipped|planned-archive|planned-drop|archived|dropped|failed
    reason: Optional[str] = None
    bucket: Optional[str] = None
    key: Optional[str] = None
    row_count: Optional[int] = None
    byte_size: Optional[int] = None
    checksum: Optional[str] = None


class PartitionPolicyOutcome(BaseModel):
    policy_id: Union[int, str]
    table_name: str
    status: str = "ok"  # ok|failed
    ensured: List[EnsuredPartition] = Field(default_factory=list)
    archived: List[PartitionArchiveOutcome] = Field(default_factory=list)
    error: Optional[str] = None


class PartitionRunSummary(BaseModel):
    run_id: str
    dry_run: bool
    status: str = "completed"  # completed|disabled
    executed_at: Optional[datetime] = None
    results: List[PartitionPolicyOutcome] = Field(default_factory=list)
