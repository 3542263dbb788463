"""PlatformSetting SQLAlchemy model"""

from sqlalchemy import Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP
from sqlalchemy.sql import func

from .base import Base, PortableJSONB


class PlatformSetting(Base):
    """Key/value JSON settings shared across processes.

    Backs the resume-approval store used by the retention supervisor.
    """
    __tablename__ = "platform_settings"

    key = Column(Text, primary_key=True)
    value = Column(PortableJSONB, nullable=True)
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
