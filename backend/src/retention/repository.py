"""Configuration-store access for retention policies."""

from typing import List

from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from database import get_db_session
from models.data_retention import DataRetentionPolicy
from .schemas import RetentionPolicy


def map_policy_row(row: DataRetentionPolicy) -> RetentionPolicy:
    return RetentionPolicy(
        id=row.id,
        entity_name=row.entity_name,
        action=row.action,
        retention_period_days=row.retention_period_days,
        description=row.description,
        criteria=row.criteria,
        active=bool(row.active),
    )


class RetentionPolicyRepository:
    """Read retention policies from ``data_retention_policies``.

    Policies are returned in primary-key order; the engine never reorders them.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def list_active_policies(self) -> List[RetentionPolicy]:
        with get_db_session(self.session_factory) as session:
            rows = session.execute(
                select(DataRetentionPolicy)
                .where(DataRetentionPolicy.active.is_(True))
                .order_by(DataRetentionPolicy.id)
            ).scalars().all()
            return [map_policy_row(row) for row in rows]
