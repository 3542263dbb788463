"""Object Storage Port - Domain interface for streaming archive uploads.

Adapters must implement this interface to provide S3, MinIO, or other storage
backends for partition archives.

Architecture: Hexagonal - Port interface in domain layer
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Dict, Optional


@dataclass
class UploadedObject:
    """Location of an object after a successful upload.

    Attributes:
        bucket: Bucket the object was written to
        key: Object key inside the bucket
    """
    bucket: str
    key: str


class ObjectStoragePort(ABC):
    """Port interface for S3-compatible streaming uploads.

    Key Design Principles:
    - The stream is consumed incrementally; adapters must not buffer the whole
      payload in memory before sending it
    - An exception raised by ``stream.read()`` aborts the upload and must
      propagate to the caller; no partial object may remain visible

    Example Usage:
        storage = S3StorageAdapter(...)
        uploaded = storage.upload_stream(
            bucket="archives",
            key="archives/events/p202401/events-p202401.ndjson",
            stream=reader,
            content_type="application/x-ndjson",
        )
    """

    @abstractmethod
    def upload_stream(
        self,
        bucket: Optional[str],
        key: str,
        stream: BinaryIO,
        content_type: str,
        visibility: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> UploadedObject:
        """Upload a readable binary stream to object storage.

        Args:
            bucket: Target bucket (None selects the adapter's default bucket)
            key: Object key
            stream: Readable binary stream, read until EOF
            content_type: MIME type stored with the object
            visibility: Access tier label (e.g. 'workspace', 'private')
            metadata: User metadata stored with the object

        Returns:
            UploadedObject: Final bucket and key

        Raises:
            StorageError: If the upload fails
        """
        pass
