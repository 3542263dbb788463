"""SQL outbox implementation of ChangeDataCapturePort.

Each event is written in its own short transaction so an event describing a
rolled-back policy transaction is still recorded. A relay process (outside
this package) publishes undelivered rows and stamps ``delivered_at``.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import sessionmaker

from database import get_db_session
from domain.governance.ports import ChangeDataCapturePort, ChangeEvent
from models.change_data_event import ChangeDataEvent

logger = logging.getLogger(__name__)


class SqlChangeDataCaptureService(ChangeDataCapturePort):
    """Record change events into the ``change_data_events`` outbox table."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record_event(
        self,
        domain: str,
        entity_name: str,
        entity_id: Optional[Any],
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
        dry_run: bool = False,
    ) -> ChangeEvent:
        with get_db_session(self.session_factory) as session:
            row = ChangeDataEvent(
                domain=domain,
                entity_name=entity_name,
                entity_id=str(entity_id) if entity_id is not None else None,
                operation=operation,
                payload=payload or {},
                dry_run=bool(dry_run),
            )
            session.add(row)
            session.flush()  # Get ID without committing transaction
            event_id = row.id

        logger.debug(
            f"Recorded change event {operation} for {entity_name}:{entity_id}",
            extra={"domain": domain, "operation": operation, "dry_run": dry_run},
        )

        return ChangeEvent(
            id=event_id,
            domain=domain,
            entity_name=entity_name,
            entity_id=str(entity_id) if entity_id is not None else None,
            operation=operation,
            payload=payload or {},
            dry_run=bool(dry_run),
        )
