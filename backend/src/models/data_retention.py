"""Retention policy and retention audit log SQLAlchemy models"""

from sqlalchemy import Boolean, CheckConstraint, Column, Index, Integer, Text

from .base import Base, CreatedAtMixin, PortableJSONB, TimestampMixin, isoformat_or_none


class DataRetentionPolicy(TimestampMixin, Base):
    """Declarative rule describing which rows of an entity age out and how.

    Rows are owned by the configuration authority; the lifecycle engine only
    reads them.
    """
    __tablename__ = "data_retention_policies"
    __table_args__ = (
        CheckConstraint(
            "action IN ('hard-delete', 'soft-delete')",
            name="ck_data_retention_policies_action",
        ),
        Index("ix_data_retention_policies_active", "active"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_name = Column(Text, nullable=False)
    action = Column(Text, nullable=False)
    retention_period_days = Column(Integer, nullable=False)
    description = Column(Text, nullable=True)
    criteria = Column(PortableJSONB, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    def __repr__(self):
        return f"<DataRetentionPolicy(id={self.id}, entity_name='{self.entity_name}', action='{self.action}')>"


class DataRetentionAuditLog(CreatedAtMixin, Base):
    """Append-only record of one committed retention policy execution.

    ``policy_id`` is not a foreign key: policies may be supplied by callers
    directly and the audit trail must outlive policy deletion.
    """
    __tablename__ = "data_retention_audit_logs"
    __table_args__ = (
        Index("ix_data_retention_audit_logs_policy_id_created_at", "policy_id", "created_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    policy_id = Column(Integer, nullable=False)
    dry_run = Column(Boolean, nullable=False, default=False)
    rows_affected = Column(Integer, nullable=False, default=0)
    details = Column(PortableJSONB, nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "policy_id": self.policy_id,
            "dry_run": self.dry_run,
            "rows_affected": self.rows_affected,
            "details": self.details,
            "created_at": isoformat_or_none(self.created_at),
        }
