"""Governance ports - interfaces for collaborators of the lifecycle engine."""

from .object_storage_port import ObjectStoragePort, UploadedObject
from .change_data_capture_port import ChangeDataCapturePort, ChangeEvent
from .approval_store_port import ApprovalStorePort, ApprovalRecord

__all__ = [
    "ObjectStoragePort",
    "UploadedObject",
    "ChangeDataCapturePort",
    "ChangeEvent",
    "ApprovalStorePort",
    "ApprovalRecord",
]
