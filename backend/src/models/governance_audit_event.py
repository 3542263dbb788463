"""GovernanceAuditEvent SQLAlchemy model"""

from sqlalchemy import Column, Index, Integer, Text

from .base import Base, CreatedAtMixin, PortableJSONB, isoformat_or_none


class GovernanceAuditEvent(CreatedAtMixin, Base):
    """Immutable governance event (run summaries, pauses, approvals).

    Entries are append-only and should never be updated or deleted.
    """
    __tablename__ = "governance_audit_events"
    __table_args__ = (
        Index("ix_governance_audit_events_event_type_created_at", "event_type", "created_at"),
        Index("ix_governance_audit_events_entity", "entity_type", "entity_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(Text, nullable=False)
    entity_type = Column(Text, nullable=True)
    entity_id = Column(Text, nullable=True)
    severity = Column(Text, nullable=False, default="info")
    metadata_json = Column(PortableJSONB, nullable=True)

    def to_dict(self):
        """Convert audit event to dictionary representation"""
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "severity": self.severity,
            "metadata": self.metadata_json,
            "created_at": isoformat_or_none(self.created_at),
        }
