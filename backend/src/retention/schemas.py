"""Pydantic schemas for retention policies, results and run summaries.

This module defines retention-related schemas:
- RetentionPolicy: read-only view of a configured retention policy
- RetentionExecutionResult: per-policy outcome of one enforcement pass
- RetentionRunSummary: all results of one enforcement invocation
- ResumeApprovalGate: persisted pause state of the retention job
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

HARD_DELETE = "hard-delete"
SOFT_DELETE = "soft-delete"

MODE_SIMULATE = "simulate"
MODE_COMMIT = "commit"
VALID_MODES = (MODE_SIMULATE, MODE_COMMIT)

# Per-policy result statuses
STATUS_EXECUTED = "executed"
STATUS_FAILED = "failed"
STATUS_SKIPPED_INACTIVE = "skipped-inactive"
STATUS_SKIPPED_UNSUPPORTED = "skipped-unsupported"
STATUS_SKIPPED_LEGAL_HOLD = "skipped-legal-hold"

# Verification statuses
VERIFICATION_SIMULATED = "simulated"
VERIFICATION_CLEARED = "cleared"
VERIFICATION_RESIDUAL = "residual"


class _CamelModel(BaseModel):
    """Accepts both snake_case and camelCase keys on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RetentionPolicy(_CamelModel):
    """Declarative rule describing which rows of an entity age out and how.

    ``action`` is deliberately a plain string: an unknown action is a
    policy-scoped failure at execution time, not a load failure.
    """

    id: Union[int, str]
    entity_name: str
    action: str
    retention_period_days: int = Field(ge=0)
    description: Optional[str] = None
    criteria: Dict[str, Any] = Field(default_factory=dict)
    active: bool = True

    @field_validator("criteria", mode="before")
    @classmethod
    def parse_criteria(cls, v):
        """Criteria may arrive as a JSON string from the configuration store."""
        if v is None or v == "":
            return {}
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
            except ValueError:
                logger.warning(
                    "Failed to parse JSON criteria; falling back to defaults",
                    extra={"raw": v},
                )
                return {}
            return parsed if isinstance(parsed, dict) else {}
        return v

    @property
    def legal_hold(self) -> Optional[Dict[str, Any]]:
        """Return the legal hold descriptor when enforcement must be suspended."""
        hold = self.criteria.get("legalHold")
        if hold is True:
            return {"reason": "policy marked with legalHold criteria flag", "owner": None}
        if isinstance(hold, dict) and hold.get("active") is True:
            return {
                "reason": hold.get("reason") or "policy marked with legalHold criteria flag",
                "owner": hold.get("owner"),
            }
        return None


class VerificationResult(BaseModel):
    """Outcome of the post-mutation re-count."""

    model_config = ConfigDict(frozen=True)

    status: str
    remaining_rows: int = Field(ge=0)


class RetentionExecutionResult(BaseModel):
    """Per-policy outcome of one enforcement pass. Immutable once produced."""

    model_config = ConfigDict(frozen=True)

    policy_id: Union[int, str]
    entity_name: str
    action: str
    status: str
    affected_rows: int = 0
    pre_run_count: Optional[int] = None
    sample_ids: List[Any] = Field(default_factory=list)
    dry_run: bool = False
    verification: Optional[VerificationResult] = None
    context: Dict[str, Any] = Field(default_factory=dict)
    reason: Optional[str] = None
    description: Optional[str] = None
    error: Optional[str] = None


class RetentionRunTotals(BaseModel):
    """Aggregates over the executed results of a run."""

    affected_rows: int = 0
    matched_rows: int = 0
    residual_policies: List[Dict[str, Any]] = Field(default_factory=list)


class RetentionRunSummary(BaseModel):
    """All results of one ``enforce()`` invocation or supervisor cycle."""

    run_id: str
    mode: str
    dry_run: bool
    results: List[RetentionExecutionResult] = Field(default_factory=list)
    anomalies: List[RetentionExecutionResult] = Field(default_factory=list)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def executed(self) -> List[RetentionExecutionResult]:
        return [r for r in self.results if r.status == STATUS_EXECUTED]

    @property
    def failed(self) -> List[RetentionExecutionResult]:
        return [r for r in self.results if r.status == STATUS_FAILED]

    def totals(self) -> RetentionRunTotals:
        """Totals over executed and residual-failed results.

        Residual failures are counted because their mutation was committed.
        """
        totals = RetentionRunTotals()
        for entry in self.results:
            if entry.status not in (STATUS_EXECUTED, STATUS_FAILED):
                continue
            totals.affected_rows += entry.affected_rows
            totals.matched_rows += (
                entry.pre_run_count if entry.pre_run_count is not None else entry.affected_rows
            )
            if entry.verification and entry.verification.status == VERIFICATION_RESIDUAL:
                totals.residual_policies.append({
                    "policy_id": entry.policy_id,
                    "entity_name": entry.entity_name,
                    "remaining_rows": entry.verification.remaining_rows,
                })
        return totals


class ResumeApprovalGate(BaseModel):
    """Persisted pause state gating the retention job after repeated failures.

    Lifecycle: written with ``status='paused'`` when the job pauses itself,
    approved by an operator setting ``resume_approved`` while keeping
    ``resume_token``, and reset to ``status='active'`` after the next
    successful cycle.
    """

    status: str = "active"
    resume_approved: bool = False
    resume_token: Optional[str] = None
    paused_at: Optional[datetime] = None
    paused_until: Optional[datetime] = None
    failure_reason: Optional[str] = None
    escalations: int = 0
    approved_by: Optional[str] = None

    @property
    def is_paused(self) -> bool:
        return self.status == "paused"
