"""SQLAlchemy models for the data lifecycle engine"""

from .base import Base
from .data_retention import DataRetentionPolicy, DataRetentionAuditLog
from .data_partition import DataPartitionPolicy, DataPartitionArchive
from .change_data_event import ChangeDataEvent
from .platform_setting import PlatformSetting
from .governance_audit_event import GovernanceAuditEvent

__all__ = [
    "Base",
    "DataRetentionPolicy",
    "DataRetentionAuditLog",
    "DataPartitionPolicy",
    "DataPartitionArchive",
    "ChangeDataEvent",
    "PlatformSetting",
    "GovernanceAuditEvent",
]
