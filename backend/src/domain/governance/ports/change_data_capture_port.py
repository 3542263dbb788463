"""Change Data Capture Port - sink for data-lifecycle change notifications.

Emission is at-least-once. Consumers downstream must be idempotent.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


@dataclass
class ChangeEvent:
    """A recorded change notification."""
    id: Optional[Any]
    domain: str
    entity_name: str
    entity_id: Optional[str]
    operation: str
    payload: Dict[str, Any] = field(default_factory=dict)
    dry_run: bool = False


class ChangeDataCapturePort(ABC):
    """Port interface for recording change notifications."""

    @abstractmethod
    def record_event(
        self,
        domain: str,
        entity_name: str,
        entity_id: Optional[Any],
        operation: str,
        payload: Optional[Dict[str, Any]] = None,
        dry_run: bool = False,
    ) -> ChangeEvent:
        """Persist one change notification.

        Args:
            domain: Functional domain (e.g. 'governance')
            entity_name: Kind of entity the event describes
            entity_id: Identifier of the entity (stringified by the sink)
            operation: Operation name (e.g. 'RETENTION_ENFORCED')
            payload: JSON-serializable event body
            dry_run: True when the operation did not mutate data

        Returns:
            ChangeEvent: The recorded event
        """
        pass
