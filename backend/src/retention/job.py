"""Retention job supervisor.

Drives retention cycles on a cron schedule and guards them with failure
backoff and a human-approved resume gate.

State machine:
    idle -> scheduled -> running -> (idle | scheduled | paused)
    paused -> awaiting-resume-approval -> idle (after approval and a successful cycle)

The resume gate is persisted in the approval store and re-read before every
cycle. ``resume_token`` on the supervisor is only a cache of the stored gate.
"""

import logging
import secrets
from contextlib import nullcontext
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from config import RetentionJobConfig
from domain.governance.ports import ApprovalStorePort, ChangeDataCapturePort
from observability.metrics import RetentionMetricsRecorder
from observability.run_context import generate_run_id
from .exceptions import ResumeTokenMismatchError
from .policy_cache import RetentionPolicyCache
from .schemas import (
    MODE_COMMIT,
    MODE_SIMULATE,
    STATUS_EXECUTED,
    VERIFICATION_RESIDUAL,
    ResumeApprovalGate,
    RetentionExecutionResult,
    RetentionRunSummary,
)

logger = logging.getLogger(__name__)

JOB_ID = "data_retention_job"
GATE_KEY = "governance.data_retention.resume_gate"
RUN_ENTITY_TYPE = "governance.data_retention_run"

STATE_IDLE = "idle"
STATE_SCHEDULED = "scheduled"
STATE_RUNNING = "running"
STATE_PAUSED = "paused"
STATE_AWAITING_APPROVAL = "awaiting-resume-approval"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def audit_severity(summary: RetentionRunSummary) -> str:
    """info for simulations, warning when anything failed or left residue, notice otherwise."""
    if summary.dry_run:
        return "info"
    if summary.failed:
        return "warning"
    if any(
        entry.verification is not None and entry.verification.status == VERIFICATION_RESIDUAL
        for entry in summary.executed
    ):
        return "warning"
    return "notice"


class DataRetentionJob:
    """Schedule and supervise retention cycles.

    Example:
        job = DataRetentionJob(
            executor=enforcement_service.enforce,
            policy_cache=cache,
            config=settings.retention_job_config(),
            approval_store=PlatformSettingsApprovalStore(SessionLocal),
        )
        job.start()

    Args:
        executor: Callable with the signature of ``RetentionEnforcementService.enforce``
        policy_cache: Source of active policies for each cycle
        config: Schedule, backoff, verification and reporting settings
        scheduler: APScheduler-compatible scheduler; a BackgroundScheduler is created on start() when omitted
        approval_store: Persists the resume gate; without one only the pause window applies
        change_data_capture: Receives anomaly and run-level change events
        audit_service: Receives run-level audit events (``record(...)``)
        metrics: Metrics recorder
        lock_factory: Zero-argument callable returning a context manager yielding True when the cycle may run
        clock: Returns the current UTC time
        on_alert: Alert handler for committed anomalies (default records a governance change event)

    Raises:
        ValueError: If executor is not callable or the schedule/timezone is empty
    """

    def __init__(
        self,
        executor: Callable[..., RetentionRunSummary],
        policy_cache: RetentionPolicyCache,
        config: Optional[RetentionJobConfig] = None,
        scheduler=None,
        approval_store: Optional[ApprovalStorePort] = None,
        change_data_capture: Optional[ChangeDataCapturePort] = None,
        audit_service=None,
        metrics: Optional[RetentionMetricsRecorder] = None,
        lock_factory: Optional[Callable[[], Any]] = None,
        clock: Callable[[], datetime] = _utcnow,
        on_alert: Optional[Callable[[Any], Any]] = None,
    ):
        if not callable(executor):
            raise ValueError("DataRetentionJob requires an executor function.")

        config = config or RetentionJobConfig()
        if not config.cron_expression or not config.cron_expression.strip():
            raise ValueError("DataRetentionJob requires a cron schedule string.")
        if not config.timezone or not config.timezone.strip():
            raise ValueError("DataRetentionJob requires a valid timezone identifier.")

        self.executor = executor
        self.policy_cache = policy_cache
        self.config = config
        self.scheduler = scheduler
        self.approval_store = approval_store
        self.change_data_capture = change_data_capture
        self.audit_service = audit_service
        self.metrics = metrics or RetentionMetricsRecorder()
        self.lock_factory = lock_factory or (lambda: nullcontext(True))
        self.clock = clock
        self.on_alert = on_alert or self._record_anomaly_event

        self.state = STATE_IDLE
        self.consecutive_failures = 0
        self.escalations = 0
        self.paused_until: Optional[datetime] = None
        self.resume_token: Optional[str] = None
        self.last_summary: Optional[RetentionRunSummary] = None

        self._job = None
        self._owns_scheduler = False
        self._gate_persisted = False

    # Scheduling

    def _build_trigger(self) -> CronTrigger:
        try:
            tz = ZoneInfo(self.config.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f'Invalid data retention timezone: "{self.config.timezone}"') from e

        try:
            return CronTrigger.from_crontab(self.config.cron_expression, timezone=tz)
        except ValueError as e:
            raise ValueError(
                f'Invalid data retention cron expression: "{self.config.cron_expression}"'
            ) from e

    def start(self) -> None:
        """Register the recurring trigger, warm the policy cache, optionally run once.

        Raises:
            ValueError: If the cron expression or timezone cannot be parsed
        """
        if not self.config.enabled:
            logger.warning("Data retention job disabled; skipping scheduler start.")
            return

        if self._job is not None:
            return

        trigger = self._build_trigger()

        if self.scheduler is None:
            self.scheduler = BackgroundScheduler(timezone=self.config.timezone)
            self._owns_scheduler = True

        self._job = self.scheduler.add_job(
            self._scheduled_run,
            trigger=trigger,
            args=["scheduled"],
            id=JOB_ID,
            name="Data Retention Job",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        if not self.scheduler.running:
            self.scheduler.start()

        self.state = STATE_SCHEDULED
        logger.info(
            f"Data retention job scheduled ({self.config.cron_expression} {self.config.timezone})",
            extra={"dry_run": self.config.dry_run},
        )

        try:
            self.policy_cache.list_active_policies(force_refresh=True)
        except Exception:
            logger.error("Failed to warm data retention policy cache", exc_info=True)

        if self.config.run_on_startup:
            self.scheduler.add_job(
                self._scheduled_run,
                args=["startup"],
                id=f"{JOB_ID}_startup",
                name="Data Retention Startup Run",
                replace_existing=True,
            )

    def stop(self) -> None:
        """Cancel the recurring trigger. Safe to call repeatedly."""
        if self._job is None:
            return

        try:
            self.scheduler.remove_job(JOB_ID)
        except JobLookupError:
            pass

        if self._owns_scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            self._owns_scheduler = False

        self._job = None
        if self.state == STATE_SCHEDULED:
            self.state = STATE_IDLE
        logger.info("Data retention job stopped")

    def _scheduled_run(self, trigger: str) -> None:
        try:
            self.run_cycle(trigger)
        except Exception:
            logger.error("Unhandled data retention job error", exc_info=True, extra={"trigger": trigger})

    def _resting_state(self) -> str:
        return STATE_SCHEDULED if self._job is not None else STATE_IDLE

    # Cycles

    def run_once(self) -> Optional[RetentionRunSummary]:
        return self.run_cycle("manual")

    def run_cycle(self, trigger: str = "manual") -> Optional[RetentionRunSummary]:
        """Run one retention cycle.

        Returns None without doing work when the job is disabled, paused,
        awaiting resume approval, or another supervisor holds the lock.

        Raises:
            Exception: Any error escaping the cycle, after failure bookkeeping
        """
        if not self.config.enabled:
            logger.warning("Data retention job invoked while disabled", extra={"trigger": trigger})
            return None

        now = self.clock()
        if self.paused_until is not None and now < self.paused_until:
            logger.warning(
                f"Data retention job paused after repeated failures; resumes at {self.paused_until.isoformat()}",
                extra={"trigger": trigger},
            )
            return None

        if not self._resume_allowed(trigger):
            return None

        with self.lock_factory() as acquired:
            if not acquired:
                logger.info(
                    "Another data retention supervisor holds the lock; skipping cycle",
                    extra={"trigger": trigger},
                )
                return None
            return self._execute_cycle(trigger)

    def _resume_allowed(self, trigger: str) -> bool:
        if self.approval_store is None:
            return True

        try:
            record = self.approval_store.find_by_key(GATE_KEY)
        except Exception:
            logger.error(
                "Failed to read data retention resume gate; treating as not approved",
                exc_info=True,
                extra={"trigger": trigger},
            )
            self.state = STATE_AWAITING_APPROVAL
            return False

        gate = ResumeApprovalGate.model_validate(record.value) if record else ResumeApprovalGate()
        if not gate.is_paused:
            self.resume_token = None
            self._gate_persisted = False
            return True

        # The stored gate wins over anything remembered in memory.
        self._gate_persisted = True
        self.escalations = max(self.escalations, gate.escalations)
        if gate.paused_until is not None:
            self.paused_until = max(self.paused_until or gate.paused_until, gate.paused_until)
            if self.clock() < self.paused_until:
                self.state = STATE_PAUSED
                logger.warning(
                    f"Data retention job paused after repeated failures; resumes at {self.paused_until.isoformat()}",
                    extra={"trigger": trigger},
                )
                return False

        token_matches = self.resume_token is None or gate.resume_token == self.resume_token

        if not gate.resume_approved or not token_matches:
            self.state = STATE_AWAITING_APPROVAL
            logger.warning(
                "Data retention job awaiting resume approval; skipping cycle",
                extra={"trigger": trigger},
            )
            return False

        logger.info(
            f"Data retention resume approved by {gate.approved_by or 'unknown approver'}",
            extra={"trigger": trigger},
        )
        self.resume_token = gate.resume_token
        self.paused_until = None
        return True

    def _execute_cycle(self, trigger: str) -> RetentionRunSummary:
        self.state = STATE_RUNNING
        threshold = self.config.alert_threshold

        try:
            policies = self.policy_cache.list_active_policies()

            if not policies:
                now = self.clock()
                summary = RetentionRunSummary(
                    run_id=generate_run_id(),
                    mode=MODE_SIMULATE if self.config.dry_run else MODE_COMMIT,
                    dry_run=self.config.dry_run,
                    results=[],
                    started_at=now,
                    completed_at=now,
                )
                anomalies: List[RetentionExecutionResult] = []
            else:
                simulation = self.executor(
                    mode=MODE_SIMULATE,
                    policies=policies,
                    verification=self.config.verification,
                    alert_threshold=threshold,
                    emit_events=self.config.dry_run,
                )
                predicted = [
                    entry for entry in simulation.results
                    if entry.status == STATUS_EXECUTED and entry.affected_rows >= threshold
                ]

                if self.config.dry_run:
                    for entry in predicted:
                        self._report_anomaly(simulation.run_id, entry, dry_run=True)
                    summary = simulation.model_copy(update={"anomalies": predicted})
                    anomalies = []
                else:
                    anomalies = []

                    def collect(alert):
                        anomalies.append(alert.result)
                        self.on_alert(alert)

                    committed = self.executor(
                        mode=MODE_COMMIT,
                        policies=policies,
                        verification=self.config.verification,
                        alert_threshold=threshold,
                        on_alert=collect,
                    )
                    summary = committed.model_copy(update={"anomalies": list(anomalies)})
        except Exception as e:
            self._handle_failure(trigger, e)
            raise

        self.consecutive_failures = 0
        self.escalations = 0
        self.paused_until = None
        self.resume_token = None
        self.state = self._resting_state()
        self.last_summary = summary
        self._clear_gate()

        self.metrics.record_cycle(summary.results, summary.completed_at or self.clock())
        self.metrics.record_anomalies(len(anomalies))
        self.metrics.set_paused(False)

        logger.info(
            f"Data retention execution completed: {len(summary.executed)} executed, "
            f"{len(summary.failed)} failed",
            extra={"trigger": trigger, "dry_run": summary.dry_run},
        )

        self._dispatch_summary(trigger, summary)
        return summary

    # Failure handling

    def _handle_failure(self, trigger: str, error: Exception) -> None:
        self.consecutive_failures += 1
        logger.error(
            f"Data retention execution failed ({self.consecutive_failures} consecutive)",
            exc_info=True,
            extra={"trigger": trigger},
        )

        if self.consecutive_failures < self.config.max_consecutive_failures:
            self.state = self._resting_state()
            return

        pause_minutes = min(
            self.config.failure_backoff_minutes * self.config.backoff_exponent_base ** self.escalations,
            self.config.max_backoff_minutes,
        )
        paused_at = self.clock()
        self.paused_until = paused_at + timedelta(minutes=pause_minutes)
        self.consecutive_failures = 0
        self.escalations += 1
        self.resume_token = secrets.token_urlsafe(24)
        self.state = STATE_PAUSED

        logger.warning(
            f"Pausing data retention job for {pause_minutes} minutes after repeated failures",
            extra={"trigger": trigger},
        )

        gate = ResumeApprovalGate(
            status="paused",
            resume_approved=False,
            resume_token=self.resume_token,
            paused_at=paused_at,
            paused_until=self.paused_until,
            failure_reason=str(error),
            escalations=self.escalations,
        )
        if self.approval_store is not None:
            try:
                self.approval_store.upsert(GATE_KEY, gate.model_dump(mode="json"))
                self._gate_persisted = True
            except Exception:
                logger.error("Failed to persist data retention resume gate", exc_info=True)

        if self.audit_service is not None:
            try:
                self.audit_service.record(
                    event_type="governance.data_retention.paused",
                    entity_type=RUN_ENTITY_TYPE,
                    entity_id=JOB_ID,
                    severity="critical",
                    metadata={
                        "trigger": trigger,
                        "pausedUntil": self.paused_until.isoformat(),
                        "pauseMinutes": pause_minutes,
                        "escalations": self.escalations,
                        "failureReason": str(error),
                    },
                )
            except Exception:
                logger.error("Failed to record data retention pause audit event", exc_info=True)

        self.metrics.set_paused(True)

    def _clear_gate(self) -> None:
        if self.approval_store is None or not self._gate_persisted:
            return
        try:
            self.approval_store.upsert(GATE_KEY, ResumeApprovalGate().model_dump(mode="json"))
            self._gate_persisted = False
        except Exception:
            logger.error("Failed to clear data retention resume gate", exc_info=True)

    # Anomalies and reporting

    def _report_anomaly(self, run_id: str, entry: RetentionExecutionResult, dry_run: bool) -> None:
        if self.change_data_capture is None:
            return
        try:
            self.change_data_capture.record_event(
                domain="governance",
                entity_name="data_retention_policy",
                entity_id=entry.policy_id,
                operation="RETENTION_ANOMALY",
                payload={
                    "runId": run_id,
                    "policyId": entry.policy_id,
                    "entityName": entry.entity_name,
                    "affectedRows": entry.affected_rows,
                    "threshold": self.config.alert_threshold,
                    "predicted": dry_run,
                },
                dry_run=dry_run,
            )
        except Exception:
            logger.error(
                "Failed to record data retention anomaly event",
                exc_info=True,
                extra={"policy_id": entry.policy_id, "entity_name": entry.entity_name},
            )

    def _record_anomaly_event(self, alert) -> None:
        logger.warning(
            f"Retention policy affected {alert.result.affected_rows} rows (threshold {self.config.alert_threshold})",
            extra={"policy_id": alert.policy.id, "entity_name": alert.policy.entity_name},
        )
        self._report_anomaly(alert.run_id, alert.result, dry_run=False)

    def _dispatch_summary(self, trigger: str, summary: RetentionRunSummary) -> None:
        """Publish the run-level audit event and change event; failures are isolated."""
        totals = summary.totals()
        event_type = (
            "governance.data_retention.simulated" if summary.dry_run
            else "governance.data_retention.completed"
        )
        failures = [
            {"policyId": entry.policy_id, "entityName": entry.entity_name, "error": entry.error}
            for entry in summary.failed
        ]
        residual_policies = [
            {
                "policyId": entry["policy_id"],
                "entityName": entry["entity_name"],
                "remainingRows": entry["remaining_rows"],
            }
            for entry in totals.residual_policies
        ]

        if self.audit_service is not None:
            try:
                self.audit_service.record(
                    event_type=event_type,
                    entity_type=RUN_ENTITY_TYPE,
                    entity_id=summary.run_id,
                    severity=audit_severity(summary),
                    metadata={
                        "trigger": trigger,
                        "dryRun": summary.dry_run,
                        "runId": summary.run_id,
                        "totals": {
                            "executed": len(summary.executed),
                            "failed": len(summary.failed),
                            "affectedRows": totals.affected_rows,
                            "matchedRows": totals.matched_rows,
                        },
                        "residualPolicies": residual_policies,
                        "failures": failures,
                    },
                )
            except Exception:
                logger.error(
                    "Failed to publish data retention post-run signal",
                    exc_info=True,
                    extra={"trigger": trigger},
                )

        if self.change_data_capture is not None and self.config.reporting.enabled:
            try:
                self.change_data_capture.record_event(
                    domain="governance",
                    entity_name=RUN_ENTITY_TYPE,
                    entity_id=summary.run_id,
                    operation=event_type,
                    payload={
                        "trigger": trigger,
                        "dryRun": summary.dry_run,
                        "runId": summary.run_id,
                        "channel": self.config.reporting.channel,
                        "audience": self.config.reporting.audience,
                        "totals": {
                            "affectedRows": totals.affected_rows,
                            "matchedRows": totals.matched_rows,
                            "residualPolicies": residual_policies,
                        },
                        "executed": [
                            {
                                "policyId": entry.policy_id,
                                "entityName": entry.entity_name,
                                "affectedRows": entry.affected_rows,
                                "verification": (
                                    entry.verification.model_dump() if entry.verification else None
                                ),
                            }
                            for entry in summary.executed
                        ],
                        "failures": failures,
                    },
                    dry_run=summary.dry_run,
                )
            except Exception:
                logger.error(
                    "Failed to publish data retention post-run signal",
                    exc_info=True,
                    extra={"trigger": trigger},
                )


def approve_resume(
    approval_store: ApprovalStorePort,
    token: str,
    approved_by: Optional[str] = None,
) -> ResumeApprovalGate:
    """Approve resumption of a paused retention job.

    Raises:
        ResumeTokenMismatchError: If no gate is paused or the token does not match
    """
    record = approval_store.find_by_key(GATE_KEY)
    if record is None:
        raise ResumeTokenMismatchError("No paused data retention job to approve")

    gate = ResumeApprovalGate.model_validate(record.value)
    if not gate.is_paused or gate.resume_token != token:
        raise ResumeTokenMismatchError("Resume token does not match the active gate")

    approved = gate.model_copy(update={"resume_approved": True, "approved_by": approved_by})
    approval_store.upsert(GATE_KEY, approved.model_dump(mode="json"))
    logger.info(f"Data retention resume approved by {approved_by or 'unknown approver'}")
    return approved
