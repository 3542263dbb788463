"""Partition archive exporter.

Streams the rows of one partition as newline-delimited JSON into object
storage while hashing them, then records the archive manifest.

Serialization runs on the calling thread and the upload runs on a worker
thread; the two are joined by a bounded chunk pipe so a partition is never
held in memory as a whole.
"""

import hashlib
import io
import json
import logging
import queue
import uuid
from contextlib import closing
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Optional

from config import PartitioningConfig
from domain.governance.ports import ObjectStoragePort
from .exceptions import ExportLimitExceededError, PartitionError
from .schemas import ArchiveRecord, ArchiveResult, PartitionDescriptor, PartitionPolicy

logger = logging.getLogger(__name__)

NDJSON_CONTENT_TYPE = "application/x-ndjson"
DEFAULT_CHUNK_BYTES = 64 * 1024

_EOF = object()


class _PipeClosed(Exception):
    """The upload stopped reading before the export finished writing."""


class _ChunkPipe(io.RawIOBase):
    """Readable end of a bounded producer/consumer byte pipe."""

    def __init__(self, max_chunks: int = 16):
        super().__init__()
        self._queue: "queue.Queue" = queue.Queue(maxsize=max_chunks)
        self._buffer = b""
        self._eof = False

    def readable(self) -> bool:
        return True

    def readinto(self, b) -> int:
        while not self._buffer and not self._eof:
            item = self._queue.get()
            if item is _EOF:
                self._eof = True
            elif isinstance(item, BaseException):
                raise item
            else:
                self._buffer = item

        if not self._buffer:
            return 0

        size = min(len(b), len(self._buffer))
        b[:size] = self._buffer[:size]
        self._buffer = self._buffer[size:]
        return size

    def put(self, item, reader_gone: Callable[[], bool]) -> None:
        while True:
            try:
                self._queue.put(item, timeout=0.1)
                return
            except queue.Full:
                if reader_gone():
                    raise _PipeClosed()

    def abort(self, error: BaseException) -> None:
        """Make the next read raise ``error``."""
        while True:
            try:
                self._queue.get_nowait()
            except queue.Empty:
                break
        self._queue.put_nowait(error)


def normalize_archive_prefix(prefix: Optional[str], fallback: str = "") -> str:
    source = (prefix if prefix is not None else fallback or "").strip()
    if not source:
        return fallback or ""
    return source.strip("/")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PartitionArchiveExporter:
    """Export one partition to object storage and record its manifest.

    Args:
        repository: Partition repository (row streaming and manifest writes)
        storage: Object storage exposing ``upload_stream``
        config: Export ceilings and archive defaults
        clock: Returns the current UTC time (used in object keys)
        chunk_bytes: Bytes accumulated before a chunk is handed to the upload

    Raises:
        ValueError: If storage does not expose upload_stream()
    """

    def __init__(
        self,
        repository,
        storage: ObjectStoragePort,
        config: Optional[PartitioningConfig] = None,
        clock: Callable[[], datetime] = _utcnow,
        chunk_bytes: int = DEFAULT_CHUNK_BYTES,
    ):
        if storage is None or not callable(getattr(storage, "upload_stream", None)):
            raise ValueError("PartitionArchiveExporter requires a storage service exposing upload_stream()")

        self.repository = repository
        self.storage = storage
        self.config = config or PartitioningConfig()
        self.clock = clock
        self.chunk_bytes = chunk_bytes

    def build_key(self, prefix: str, table_name: str, partition_name: str) -> str:
        sanitized = f"{prefix}/" if prefix else ""
        epoch_ms = int(self.clock().timestamp() * 1000)
        return (
            f"{sanitized}{table_name}/{partition_name}/"
            f"{table_name}-{partition_name}-{epoch_ms}-{uuid.uuid4()}.ndjson"
        )

    def export(
        self,
        policy: PartitionPolicy,
        partition: PartitionDescriptor,
        bucket: Optional[str],
        prefix: Optional[str],
        visibility: str,
        run_id: str,
    ) -> ArchiveResult:
        """Stream ``partition`` to storage and persist its ArchiveRecord.

        Raises:
            ExportLimitExceededError: If the row or byte ceiling is passed
            StorageError: If the upload fails
            Exception: If the manifest cannot be recorded (the uploaded object is removed)
        """
        archive_prefix = normalize_archive_prefix(prefix, self.config.archive.prefix)
        key = self.build_key(archive_prefix, policy.table_name, partition.name)
        max_rows = self.config.max_export_rows
        max_bytes = self.config.max_export_bytes

        hasher = hashlib.sha256()
        row_count = 0
        byte_count = 0
        pipe = _ChunkPipe()
        log_extra = {"table_name": policy.table_name, "partition": partition.name}

        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="archive-upload") as pool:
            upload = pool.submit(
                self.storage.upload_stream,
                bucket=bucket,
                key=key,
                stream=pipe,
                content_type=NDJSON_CONTENT_TYPE,
                visibility=visibility,
                metadata={
                    "partition-table": policy.table_name,
                    "partition-name": partition.name,
                    "retention-days": str(policy.retention_days),
                    "run-id": run_id,
                },
            )

            try:
                pending = []
                pending_bytes = 0
                rows = closing(self.repository.stream_partition_rows(
                    policy.table_name, policy.date_column, partition.start, partition.end
                ))
                with rows as stream:
                    for row in stream:
                        line = (json.dumps(row, default=str) + "\n").encode("utf-8")
                        row_count += 1
                        byte_count += len(line)
                        hasher.update(line)

                        if max_rows and row_count > max_rows:
                            raise ExportLimitExceededError(
                                f"Partition export exceeded maximum row limit ({max_rows})"
                            )
                        if max_bytes and byte_count > max_bytes:
                            raise ExportLimitExceededError(
                                f"Partition export exceeded maximum size limit ({max_bytes} bytes)"
                            )

                        pending.append(line)
                        pending_bytes += len(line)
                        if pending_bytes >= self.chunk_bytes:
                            pipe.put(b"".join(pending), upload.done)
                            pending = []
                            pending_bytes = 0

                if pending:
                    pipe.put(b"".join(pending), upload.done)
                pipe.put(_EOF, upload.done)
            except _PipeClosed:
                upload.result()
                raise PartitionError("Upload finished before the partition export was complete")
            except Exception as e:
                pipe.abort(e)
                upload_error = upload.exception()
                if upload_error is not None and upload_error is not e:
                    logger.debug(f"Upload aborted after export failure: {upload_error}", extra=log_extra)
                raise

            uploaded = upload.result()

        checksum = hasher.hexdigest()

        try:
            record = self.repository.record_archive(ArchiveRecord(
                table_name=policy.table_name,
                partition_name=partition.name,
                range_start=partition.start,
                range_end=partition.end,
                retention_days=policy.retention_days,
                archived_at=self.clock(),
                storage_bucket=uploaded.bucket,
                storage_key=uploaded.key,
                row_count=row_count,
                byte_size=byte_count,
                checksum=checksum,
                metadata={
                    "policyId": policy.id,
                    "strategy": policy.strategy,
                    "visibility": visibility,
                    "prefix": archive_prefix,
                    "runId": run_id,
                },
            ))
        except Exception:
            logger.error("Failed to record archive manifest; removing uploaded object", exc_info=True, extra=log_extra)
            self._remove_orphan(uploaded.bucket, uploaded.key)
            raise

        logger.info(
            f"Exported {row_count} rows ({byte_count} bytes) to {uploaded.bucket}/{uploaded.key}",
            extra=log_extra,
        )

        return ArchiveResult(
            archive_id=record.id,
            bucket=uploaded.bucket,
            key=uploaded.key,
            row_count=row_count,
            byte_size=byte_count,
            checksum=checksum,
        )

    def _remove_orphan(self, bucket: str, key: str) -> None:
        delete_file = getattr(self.storage, "delete_file", None)
        if delete_file is None:
            return
        try:
            delete_file(bucket, key)
        except Exception:
            logger.error(f"Failed to remove orphaned archive object {bucket}/{key}", exc_info=True)
