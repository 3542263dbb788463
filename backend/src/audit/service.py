"""Audit logging service for data lifecycle events.

This service provides a centralized interface for creating immutable audit
entries. Two trails are kept:

- ``data_retention_audit_logs``: one row per committed retention policy
  execution, written inside the policy's own transaction
- ``governance_audit_events``: run-level governance events (cycle summaries,
  pauses) written in their own short transaction

Audit Events:
- governance.data_retention.completed, governance.data_retention.simulated
- governance.data_retention.paused
"""

from typing import Any, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from database import get_db_session
from models.data_retention import DataRetentionAuditLog
from models.governance_audit_event import GovernanceAuditEvent

SEVERITIES = ("info", "notice", "warning", "critical")


def log_retention_audit(
    db: Session,
    policy_id: int,
    rows_affected: int,
    details: Optional[Dict[str, Any]] = None,
    dry_run: bool = False,
) -> DataRetentionAuditLog:
    """Create a retention audit log entry inside the caller's transaction.

    Args:
        db: Database session (the policy's transaction)
        policy_id: Retention policy ID
        rows_affected: Rows deleted or soft-deleted (0 for no matches)
        details: Reason, sample ids, run id, counts, verification, context
        dry_run: Always False for rows written by the enforcement engine

    Returns:
        DataRetentionAuditLog: The created audit log entry
    """
    audit_entry = DataRetentionAuditLog(
        policy_id=policy_id,
        dry_run=dry_run,
        rows_affected=rows_affected,
        details=details or {},
    )

    db.add(audit_entry)
    db.flush()  # Get ID without committing transaction

    return audit_entry


def log_audit_event(
    db: Session,
    event_type: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    severity: str = "info",
    metadata: Optional[Dict[str, Any]] = None,
) -> GovernanceAuditEvent:
    """Create a governance audit event.

    Raises:
        ValueError: If severity is not one of info|notice|warning|critical
    """
    if severity not in SEVERITIES:
        raise ValueError(f"Unknown audit severity '{severity}'")

    audit_entry = GovernanceAuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        severity=severity,
        metadata_json=metadata,
    )

    db.add(audit_entry)
    db.flush()

    return audit_entry


class GovernanceAuditService:
    """Record governance audit events in their own transaction."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record(
        self,
        event_type: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        severity: str = "info",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        with get_db_session(self.session_factory) as session:
            entry = log_audit_event(
                session,
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                severity=severity,
                metadata=metadata,
            )
            return entry.to_dict()
