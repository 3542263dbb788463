"""S3 Storage Adapter - Implementation of ObjectStoragePort using boto3.

Provides S3-compatible streaming uploads for AWS S3, MinIO, and other
S3-compatible services. Partition archives are uploaded through
``upload_fileobj`` so the payload is sent in parts as it is produced.

Architecture: Hexagonal - Adapter implementation in infrastructure layer
"""

import logging
from typing import BinaryIO, Dict, Optional

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import ClientError, NoCredentialsError

from domain.governance.ports import ObjectStoragePort, UploadedObject

logger = logging.getLogger(__name__)

# Visibility labels that map onto canned ACLs; anything else keeps the bucket default
VISIBILITY_ACLS = {
    "public": "public-read",
    "private": "private",
}


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class S3StorageAdapter(ObjectStoragePort):
    """S3-compatible storage adapter using boto3.

    Features:
    - Multipart streaming uploads (no full in-memory buffering)
    - Per-call bucket override with a configured default bucket
    - Visibility label stored as object metadata and mapped to canned ACLs

    Example:
        config = storage_config_from_settings(get_settings())
        storage = S3StorageAdapter(
            endpoint_url=config.endpoint_url,
            access_key=config.access_key,
            secret_key=config.secret_key,
            bucket_name=config.bucket_name,
            region=config.region,
        )
        uploaded = storage.upload_stream(
            bucket=None,
            key="archives/events/p202401/events-p202401.ndjson",
            stream=reader,
            content_type="application/x-ndjson",
        )
    """

    def __init__(
        self,
        endpoint_url: Optional[str],
        access_key: str,
        secret_key: str,
        bucket_name: str,
        region: str = "us-east-1",
        multipart_chunk_bytes: int = 8 * 1024 * 1024,
    ):
        """Initialize S3 storage adapter.

        Args:
            endpoint_url: S3 endpoint URL (None for AWS S3, URL for MinIO)
            access_key: S3 access key ID
            secret_key: S3 secret access key
            bucket_name: Default bucket name
            region: AWS region (default: 'us-east-1')
            multipart_chunk_bytes: Part size for multipart uploads

        Raises:
            StorageError: If S3 client initialization fails
        """
        try:
            self.s3_client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
            )
            self.bucket_name = bucket_name
            self.region = region
            self.transfer_config = TransferConfig(
                multipart_threshold=multipart_chunk_bytes,
                multipart_chunksize=multipart_chunk_bytes,
                use_threads=False,
            )

            logger.info(
                f"Initialized S3 storage adapter: bucket={bucket_name}, "
                f"endpoint={endpoint_url or 'AWS S3'}, region={region}"
            )
        except NoCredentialsError as e:
            raise StorageError(f"Invalid S3 credentials: {e}")
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    def upload_stream(
        self,
        bucket: Optional[str],
        key: str,
        stream: BinaryIO,
        content_type: str,
        visibility: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> UploadedObject:
        """Upload a readable stream to S3 using multipart transfer.

        Errors raised while reading ``stream`` abort the multipart upload and
        are re-raised unchanged so callers can tell producer failures (e.g.
        export ceilings) apart from storage failures.

        Raises:
            StorageError: If S3 rejects the upload
        """
        target_bucket = bucket or self.bucket_name
        object_metadata = {str(k): str(v) for k, v in (metadata or {}).items()}
        if visibility:
            object_metadata["visibility"] = visibility

        extra_args = {
            "ContentType": content_type,
            "Metadata": object_metadata,
        }
        acl = VISIBILITY_ACLS.get(visibility or "")
        if acl:
            extra_args["ACL"] = acl

        try:
            self.s3_client.upload_fileobj(
                Fileobj=stream,
                Bucket=target_bucket,
                Key=key,
                ExtraArgs=extra_args,
                Config=self.transfer_config,
            )
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(
                f"S3 upload failed: bucket={target_bucket}, key={key}, "
                f"error={error_code}, message={e}"
            )
            raise StorageError(f"Failed to upload stream: {error_code}")

        logger.info(
            f"Uploaded stream: bucket={target_bucket}, key={key}, content_type={content_type}"
        )
        return UploadedObject(bucket=target_bucket, key=key)

    def delete_file(self, bucket: Optional[str], key: str) -> bool:
        """Delete an object from S3.

        Returns:
            bool: True if deleted, False if it didn't exist

        Raises:
            StorageError: If deletion fails
        """
        target_bucket = bucket or self.bucket_name
        if not self.file_exists(target_bucket, key):
            logger.info(f"File not found for deletion: bucket={target_bucket}, key={key}")
            return False

        try:
            self.s3_client.delete_object(Bucket=target_bucket, Key=key)
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            logger.error(
                f"S3 deletion failed: bucket={target_bucket}, key={key}, error={error_code}"
            )
            raise StorageError(f"Failed to delete file: {error_code}")

        logger.info(f"Deleted file: bucket={target_bucket}, key={key}")
        return True

    def file_exists(self, bucket: Optional[str], key: str) -> bool:
        """Check if an object exists in S3.

        Uses HEAD request (faster than GET).
        """
        try:
            self.s3_client.head_object(Bucket=bucket or self.bucket_name, Key=key)
            return True
        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code in ("404", "NoSuchKey", "NotFound"):
                return False
            logger.warning(
                f"Error checking file existence: key={key}, error={error_code}"
            )
            return False
