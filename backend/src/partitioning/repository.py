"""Configuration and DDL access for partitioned tables.

Partition DDL targets PostgreSQL declarative range partitioning. Partition
``pYYYYMM`` of table ``events`` is the child table ``events_pYYYYMM``; the
catch-all tail is the DEFAULT partition ``events_pmax``.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import DateTime, bindparam, select, text
from sqlalchemy.exc import ProgrammingError
from sqlalchemy.orm import sessionmaker

from database import get_db_session
from models.data_partition import DataPartitionArchive, DataPartitionPolicy
from .exceptions import PartitionAlreadyExistsError, PartitionNotFoundError
from .schemas import (
    TAIL_PARTITION,
    ArchiveRecord,
    PartitionDescriptor,
    PartitionPolicy,
    decode_partition_label,
)

DUPLICATE_TABLE_SQLSTATE = "42P07"

_LIST_PARTITIONS_SQL = text(
    """
    SELECT child.relname AS name
    FROM pg_inherits
    JOIN pg_class parent ON pg_inherits.inhparent = parent.oid
    JOIN pg_class child ON pg_inherits.inhrelid = child.oid
    JOIN pg_namespace ns ON parent.relnamespace = ns.oid
    WHERE ns.nspname = :schema AND parent.relname = :table_name
    ORDER BY child.relname
    """
)


def map_archive_row(row: DataPartitionArchive) -> ArchiveRecord:
    return ArchiveRecord(
        id=row.id,
        table_name=row.table_name,
        partition_name=row.partition_name,
        range_start=row.range_start,
        range_end=row.range_end,
        retention_days=row.retention_days or 0,
        archived_at=row.archived_at,
        dropped_at=row.dropped_at,
        storage_bucket=row.storage_bucket,
        storage_key=row.storage_key,
        row_count=int(row.row_count or 0),
        byte_size=int(row.byte_size or 0),
        checksum=row.checksum,
        metadata=row.archive_metadata or {},
    )


class SqlPartitionRepository:
    """Partition policies, partition DDL and archive manifests over SQLAlchemy.

    Args:
        session_factory: Session factory bound to the application database
        schema: Schema holding the partitioned tables (None leaves names unqualified)
    """

    def __init__(self, session_factory: sessionmaker, schema: Optional[str] = "public"):
        self.session_factory = session_factory
        self.schema = schema

    def _quote(self, session, identifier: str) -> str:
        preparer = session.get_bind().dialect.identifier_preparer
        if self.schema:
            return f"{preparer.quote_identifier(self.schema)}.{preparer.quote_identifier(identifier)}"
        return preparer.quote_identifier(identifier)

    # Policies

    def fetch_policies(self) -> List[PartitionPolicy]:
        with get_db_session(self.session_factory) as session:
            rows = session.execute(
                select(DataPartitionPolicy).order_by(DataPartitionPolicy.id)
            ).scalars().all()
            return [
                PartitionPolicy(
                    id=row.id,
                    table_name=row.table_name,
                    date_column=row.date_column,
                    strategy=row.strategy,
                    retention_days=int(row.retention_days or 0),
                    metadata=row.policy_metadata,
                )
                for row in rows
            ]

    # Partitions

    def fetch_partitions(self, table_name: str) -> List[PartitionDescriptor]:
        """List attached partitions of ``table_name`` by their ``pYYYYMM`` label."""
        prefix = f"{table_name}_"
        with get_db_session(self.session_factory) as session:
            names = session.execute(
                _LIST_PARTITIONS_SQL,
                {"schema": self.schema or "public", "table_name": table_name},
            ).scalars().all()

        partitions = []
        for name in names:
            label = name[len(prefix):] if name.startswith(prefix) else name
            decoded = decode_partition_label(label)
            partitions.append(decoded or PartitionDescriptor(name=label))
        return partitions

    def add_partition(self, table_name: str, descriptor: PartitionDescriptor) -> None:
        """Attach a new monthly range partition.

        Raises:
            PartitionAlreadyExistsError: If the child table already exists
        """
        with get_db_session(self.session_factory) as session:
            parent = self._quote(session, table_name)
            child = self._quote(session, f"{table_name}_{descriptor.name}")
            if descriptor.name == TAIL_PARTITION:
                statement = f"CREATE TABLE {child} PARTITION OF {parent} DEFAULT"
            else:
                statement = (
                    f"CREATE TABLE {child} PARTITION OF {parent} "
                    f"FOR VALUES FROM ('{descriptor.start.isoformat()}') "
                    f"TO ('{descriptor.end.isoformat()}')"
                )
            try:
                session.execute(text(statement))
            except ProgrammingError as e:
                if getattr(e.orig, "pgcode", None) == DUPLICATE_TABLE_SQLSTATE:
                    raise PartitionAlreadyExistsError(table_name, descriptor.name) from e
                raise

    def drop_partition(self, table_name: str, partition_name: str) -> None:
        """Drop a partition. Dropping a missing partition is a no-op."""
        with get_db_session(self.session_factory) as session:
            child = self._quote(session, f"{table_name}_{partition_name}")
            session.execute(text(f"DROP TABLE IF EXISTS {child}"))

    def stream_partition_rows(
        self,
        table_name: str,
        date_column: str,
        start: datetime,
        end: datetime,
        batch_size: int = 1000,
    ) -> Iterator[Dict[str, Any]]:
        """Yield rows with ``start <= date_column < end`` ordered by date_column.

        Rows are fetched through a server-side cursor in batches of ``batch_size``.
        """
        with get_db_session(self.session_factory) as session:
            qualified = self._quote(session, table_name)
            column = session.get_bind().dialect.identifier_preparer.quote_identifier(date_column)
            statement = text(
                f"SELECT * FROM {qualified} "
                f"WHERE {column} >= :start AND {column} < :end "
                f"ORDER BY {column} ASC"
            ).bindparams(
                bindparam("start", type_=DateTime(timezone=True)),
                bindparam("end", type_=DateTime(timezone=True)),
            )
            connection = session.connection().execution_options(stream_results=True)
            result = connection.execute(statement, {"start": start, "end": end})
            for row in result.yield_per(batch_size):
                yield dict(row._mapping)

    # Archive manifests

    def find_archive(self, table_name: str, partition_name: str) -> Optional[ArchiveRecord]:
        with get_db_session(self.session_factory) as session:
            row = session.execute(
                select(DataPartitionArchive).where(
                    DataPartitionArchive.table_name == table_name,
                    DataPartitionArchive.partition_name == partition_name,
                )
            ).scalar_one_or_none()
            return map_archive_row(row) if row else None

    def record_archive(self, record: ArchiveRecord) -> ArchiveRecord:
        with get_db_session(self.session_factory) as session:
            row = DataPartitionArchive(
                table_name=record.table_name,
                partition_name=record.partition_name,
                range_start=record.range_start,
                range_end=record.range_end,
                retention_days=record.retention_days,
                archived_at=record.archived_at or datetime.now(timezone.utc),
                storage_bucket=record.storage_bucket,
                storage_key=record.storage_key,
                row_count=record.row_count,
                byte_size=record.byte_size,
                checksum=record.checksum,
                archive_metadata=record.metadata,
            )
            session.add(row)
            session.flush()  # Get ID without committing transaction
            return map_archive_row(row)

    def mark_archive_dropped(self, archive_id: int, dropped_at: Optional[datetime] = None) -> None:
        """Stamp ``dropped_at`` on a manifest.

        Raises:
            PartitionNotFoundError: If no manifest has this id
        """
        with get_db_session(self.session_factory) as session:
            row = session.get(DataPartitionArchive, archive_id)
            if row is None:
                raise PartitionNotFoundError(f"Archive manifest {archive_id} not found")
            row.dropped_at = dropped_at or datetime.now(timezone.utc)

    def list_archives(
        self,
        table_name: Optional[str] = None,
        limit: int = 25,
        include_dropped: bool = False,
    ) -> List[ArchiveRecord]:
        """Return manifests newest-first."""
        query = select(DataPartitionArchive)
        if table_name:
            query = query.where(DataPartitionArchive.table_name == table_name)
        if not include_dropped:
            query = query.where(DataPartitionArchive.dropped_at.is_(None))
        query = query.order_by(
            DataPartitionArchive.archived_at.desc(), DataPartitionArchive.id.desc()
        ).limit(limit)

        with get_db_session(self.session_factory) as session:
            return [map_archive_row(row) for row in session.execute(query).scalars().all()]
