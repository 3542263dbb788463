"""Partition policy and partition archive manifest SQLAlchemy models"""

from sqlalchemy import Column, Index, Integer, BigInteger, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.sql import func

from .base import Base, CreatedAtMixin, PortableJSONB


class DataPartitionPolicy(CreatedAtMixin, Base):
    """Rule describing how a time-partitioned table is provisioned and retired.

    ``metadata`` is reserved by SQLAlchemy's declarative base, so the column is
    mapped to the ``policy_metadata`` attribute.
    """
    __tablename__ = "data_partition_policies"

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(Text, nullable=False, unique=True)
    date_column = Column(Text, nullable=False)
    strategy = Column(Text, nullable=False, default="monthly_range")
    retention_days = Column(Integer, nullable=False, default=0)
    policy_metadata = Column("metadata", PortableJSONB, nullable=True)


class DataPartitionArchive(Base):
    """Durable manifest proving a partition was exported before it was dropped.

    A row without ``dropped_at`` means the export is durable but the drop is
    still pending and safe to retry.
    """
    __tablename__ = "data_partition_archives"
    __table_args__ = (
        UniqueConstraint("table_name", "partition_name", name="uq_data_partition_archives_table_partition"),
        Index("ix_data_partition_archives_archived_at", "archived_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    table_name = Column(Text, nullable=False)
    partition_name = Column(Text, nullable=False)
    range_start = Column(TIMESTAMP(timezone=True), nullable=False)
    range_end = Column(TIMESTAMP(timezone=True), nullable=False)
    retention_days = Column(Integer, nullable=False, default=0)
    archived_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())
    dropped_at = Column(TIMESTAMP(timezone=True), nullable=True)
    storage_bucket = Column(Text, nullable=False)
    storage_key = Column(Text, nullable=False)
    row_count = Column(BigInteger, nullable=False, default=0)
    byte_size = Column(BigInteger, nullable=False, default=0)
    checksum = Column(Text, nullable=False)
    archive_metadata = Column("metadata", PortableJSONB, nullable=True)
