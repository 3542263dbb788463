"""ChangeDataEvent SQLAlchemy model (transactional outbox)"""

from sqlalchemy import Boolean, Column, Index, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP

from .base import Base, CreatedAtMixin, PortableJSONB, isoformat_or_none


class ChangeDataEvent(CreatedAtMixin, Base):
    """Outbox row describing one data-lifecycle operation.

    Downstream relays publish rows where ``delivered_at`` is NULL. Delivery is
    at-least-once; consumers must be idempotent on ``id``.
    """
    __tablename__ = "change_data_events"
    __table_args__ = (
        Index("ix_change_data_events_domain_created_at", "domain", "created_at"),
        Index("ix_change_data_events_undelivered", "delivered_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    domain = Column(Text, nullable=False)
    entity_name = Column(Text, nullable=False)
    entity_id = Column(Text, nullable=True)
    operation = Column(Text, nullable=False)
    payload = Column(PortableJSONB, nullable=True)
    dry_run = Column(Boolean, nullable=False, default=False)
    delivered_at = Column(TIMESTAMP(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "domain": self.domain,
            "entity_name": self.entity_name,
            "entity_id": self.entity_id,
            "operation": self.operation,
            "payload": self.payload,
            "dry_run": self.dry_run,
            "created_at": isoformat_or_none(self.created_at),
        }
