"""Approval Store Port - durable key/value store for human approvals.

The retention supervisor persists its resume-approval gate here and re-reads
it on every cycle; the store is the single source of truth across restarts.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class ApprovalRecord:
    """A stored approval value."""
    key: str
    value: Dict[str, Any]


class ApprovalStorePort(ABC):
    """Port interface for reading and writing approval records."""

    @abstractmethod
    def find_by_key(self, key: str) -> Optional[ApprovalRecord]:
        """Return the record stored under ``key`` or None."""
        pass

    @abstractmethod
    def upsert(self, key: str, value: Dict[str, Any]) -> ApprovalRecord:
        """Create or replace the record stored under ``key``."""
        pass
