"""Data retention enforcement.

This module provides:
- A registry of per-entity retention strategies
- A cached view of active retention policies
- The enforcement engine (simulate or commit, verification, audit rows)
- The job supervisor (cron schedule, failure backoff, resume approval gate)

Tasks are imported lazily to avoid circular dependencies
Use: from retention.tasks import retention_run_cycle_task
"""

from .exceptions import (
    RetentionError,
    ResumeTokenMismatchError,
    StrategyRegistrationError,
    UnsupportedRetentionActionError,
)
from .schemas import (
    ResumeApprovalGate,
    RetentionExecutionResult,
    RetentionPolicy,
    RetentionRunSummary,
    VerificationResult,
)
from .strategies import RetentionStrategy, RetentionStrategyRegistry, build_default_registry

__all__ = [
    "RetentionError",
    "ResumeTokenMismatchError",
    "StrategyRegistrationError",
    "UnsupportedRetentionActionError",
    "ResumeApprovalGate",
    "RetentionExecutionResult",
    "RetentionPolicy",
    "RetentionRunSummary",
    "VerificationResult",
    "RetentionStrategy",
    "RetentionStrategyRegistry",
    "build_default_registry",
]
