"""Declarative base, portable column types and shared timestamp columns for lifecycle models"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Column, TypeDecorator
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func


class PortableJSONB(TypeDecorator):
    """JSONB on PostgreSQL, plain JSON elsewhere.

    Policy criteria, manifest metadata and outbox payloads use this type so
    the same models run against the SQLite test database.
    """
    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(JSON())


class CreatedAtMixin:
    """Insert timestamp set by the database."""

    created_at = Column(TIMESTAMP(timezone=True), nullable=False, server_default=func.now())


class TimestampMixin(CreatedAtMixin):
    """Insert and last-update timestamps for rows edited in place."""

    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


def isoformat_or_none(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


Base = declarative_base()
