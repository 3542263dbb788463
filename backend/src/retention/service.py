"""Retention enforcement service.

This service implements the core retention logic:
- Executes each active policy through its registered strategy
- Hard-deletes or soft-deletes matching rows, or only counts them in simulate mode
- Re-counts after mutation to verify the rows are gone
- Writes one audit row per committed policy and emits one change event per outcome

Each policy runs inside its own transaction. A policy failure is recorded in
its result and never interrupts the remaining policies; only a failure to load
policies before any policy is processed propagates to the caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql.expression import Subquery

from audit.service import log_retention_audit
from config import VerificationConfig
from domain.governance.ports import ChangeDataCapturePort
from observability.run_context import bind_run_id, generate_run_id
from .exceptions import RetentionError, UnsupportedRetentionActionError
from .repository import RetentionPolicyRepository
from .schemas import (
    HARD_DELETE,
    MODE_COMMIT,
    MODE_SIMULATE,
    SOFT_DELETE,
    STATUS_EXECUTED,
    STATUS_FAILED,
    STATUS_SKIPPED_INACTIVE,
    STATUS_SKIPPED_LEGAL_HOLD,
    STATUS_SKIPPED_UNSUPPORTED,
    VALID_MODES,
    VERIFICATION_CLEARED,
    VERIFICATION_RESIDUAL,
    VERIFICATION_SIMULATED,
    RetentionExecutionResult,
    RetentionPolicy,
    RetentionRunSummary,
    VerificationResult,
)
from .strategies import RetentionStrategy, RetentionStrategyRegistry

logger = logging.getLogger(__name__)

DEFAULT_ALERT_THRESHOLD = 500

CDC_DOMAIN = "governance"
CDC_ENTITY_NAME = "data_retention_policy"


@dataclass
class RetentionAlert:
    """Payload passed to ``on_alert`` for a committed high-volume execution."""
    run_id: str
    policy: RetentionPolicy
    result: RetentionExecutionResult
    mode: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RetentionEnforcementService:
    """Execute retention policies through their registered strategies.

    Example:
        service = RetentionEnforcementService(
            session_factory=SessionLocal,
            registry=build_default_registry(),
            policy_repository=RetentionPolicyRepository(SessionLocal),
            change_data_capture=SqlChangeDataCaptureService(SessionLocal),
        )
        summary = service.enforce(mode="simulate")
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        registry: RetentionStrategyRegistry,
        policy_repository: Optional[RetentionPolicyRepository] = None,
        change_data_capture: Optional[ChangeDataCapturePort] = None,
        clock: Callable[[], datetime] = _utcnow,
        default_alert_threshold: int = DEFAULT_ALERT_THRESHOLD,
    ):
        self.session_factory = session_factory
        self.registry = registry
        self.policy_repository = policy_repository
        self.change_data_capture = change_data_capture
        self.clock = clock
        self.default_alert_threshold = default_alert_threshold

    def __call__(self, **options) -> RetentionRunSummary:
        return self.enforce(**options)

    def enforce(
        self,
        dry_run: bool = False,
        mode: Optional[str] = None,
        policies: Optional[Iterable[Union[RetentionPolicy, Dict[str, Any]]]] = None,
        alert_threshold: Optional[int] = None,
        on_alert: Optional[Callable[[RetentionAlert], Any]] = None,
        verification: Optional[VerificationConfig] = None,
        emit_events: bool = True,
    ) -> RetentionRunSummary:
        """Execute policies and return one result per policy.

        Args:
            dry_run: Count only; never mutate or write audit rows
            mode: 'simulate' or 'commit' (default derived from dry_run)
            policies: Policies to run; loaded fresh from the configuration store when omitted
            alert_threshold: Committed executions at or above this row count trigger on_alert
            on_alert: Callback receiving a RetentionAlert; errors are logged per policy
            verification: Post-mutation verification settings
            emit_events: Emit one change event per policy outcome

        Raises:
            ValueError: If mode is not 'simulate' or 'commit'
            Exception: Any error raised while loading policies
        """
        resolved_mode = mode or (MODE_SIMULATE if dry_run else MODE_COMMIT)
        if resolved_mode not in VALID_MODES:
            raise ValueError(f"Unknown retention mode '{resolved_mode}'")

        run_dry = bool(dry_run) or resolved_mode == MODE_SIMULATE
        verification = verification or VerificationConfig()
        threshold = self.default_alert_threshold if alert_threshold is None else alert_threshold
        run_id = generate_run_id()
        started_at = self.clock()

        with bind_run_id(run_id):
            resolved_policies = self._resolve_policies(policies)

            logger.info(
                f"Starting retention run with {len(resolved_policies)} policies",
                extra={"mode": resolved_mode, "dry_run": run_dry},
            )

            results: List[RetentionExecutionResult] = []
            for policy in resolved_policies:
                result = self._run_policy(policy, run_id, run_dry, verification)
                results.append(result)

                if emit_events:
                    self._publish_event(run_id, policy, result)

                if (
                    on_alert is not None
                    and not result.dry_run
                    and result.affected_rows >= threshold
                ):
                    self._dispatch_alert(on_alert, RetentionAlert(
                        run_id=run_id,
                        policy=policy,
                        result=result,
                        mode=resolved_mode,
                    ))

            summary = RetentionRunSummary(
                run_id=run_id,
                mode=resolved_mode,
                dry_run=run_dry,
                results=results,
                started_at=started_at,
                completed_at=self.clock(),
            )

            logger.info(
                f"Retention run completed: {len(summary.executed)} executed, "
                f"{len(summary.failed)} failed",
                extra={"mode": resolved_mode, "dry_run": run_dry},
            )

        return summary

    def _resolve_policies(self, policies) -> List[RetentionPolicy]:
        if policies is None:
            if self.policy_repository is None:
                raise RetentionError("No policies supplied and no policy repository configured")
            return list(self.policy_repository.list_active_policies())

        return [
            policy if isinstance(policy, RetentionPolicy) else RetentionPolicy.model_validate(policy)
            for policy in policies
        ]

    def _run_policy(
        self,
        policy: RetentionPolicy,
        run_id: str,
        run_dry: bool,
        verification: VerificationConfig,
    ) -> RetentionExecutionResult:
        policy_extra = {"policy_id": policy.id, "entity_name": policy.entity_name}

        if not policy.active:
            return RetentionExecutionResult(
                policy_id=policy.id,
                entity_name=policy.entity_name,
                action=policy.action,
                status=STATUS_SKIPPED_INACTIVE,
                dry_run=run_dry,
            )

        hold = policy.legal_hold
        if hold is not None:
            logger.warning("Retention policy under legal hold; skipping enforcement", extra=policy_extra)
            return RetentionExecutionResult(
                policy_id=policy.id,
                entity_name=policy.entity_name,
                action=policy.action,
                status=STATUS_SKIPPED_LEGAL_HOLD,
                dry_run=True,
                reason=hold["reason"],
                context={"owner": hold["owner"]},
            )

        factory = self.registry.get(policy.entity_name)
        if factory is None:
            logger.warning("No data retention strategy registered; skipping", extra=policy_extra)
            return RetentionExecutionResult(
                policy_id=policy.id,
                entity_name=policy.entity_name,
                action=policy.action,
                status=STATUS_SKIPPED_UNSUPPORTED,
                dry_run=run_dry,
            )

        try:
            # One transaction per policy bounds lock scope to this policy
            with self.session_factory.begin() as session:
                return self._apply_policy(session, policy, factory, run_id, run_dry, verification)
        except Exception as e:
            logger.error(
                "Failed to enforce data retention policy",
                exc_info=True,
                extra=policy_extra,
            )
            return RetentionExecutionResult(
                policy_id=policy.id,
                entity_name=policy.entity_name,
                action=policy.action,
                status=STATUS_FAILED,
                dry_run=run_dry,
                description=policy.description,
                error=str(e),
            )

    def _apply_policy(
        self,
        session: Session,
        policy: RetentionPolicy,
        factory,
        run_id: str,
        run_dry: bool,
        verification: VerificationConfig,
    ) -> RetentionExecutionResult:
        strategy: RetentionStrategy = factory(policy, session)
        id_column = strategy.table.c[strategy.id_column or "id"]
        context = dict(strategy.context or {})

        selected = self._selected_ids(strategy)
        sample_ids = list(
            session.execute(
                select(selected.c[id_column.name])
                .order_by(selected.c[id_column.name])
                .limit(verification.sample_size)
            ).scalars().all()
        )

        if not sample_ids:
            logger.info(
                "No records matched retention policy",
                extra={"policy_id": policy.id, "entity_name": policy.entity_name},
            )
            if run_dry:
                outcome = VerificationResult(status=VERIFICATION_SIMULATED, remaining_rows=0)
            else:
                outcome = VerificationResult(status=VERIFICATION_CLEARED, remaining_rows=0)
                log_retention_audit(session, policy_id=policy.id, rows_affected=0, details={
                    "reason": strategy.reason,
                    "sampleIds": [],
                    "dryRun": False,
                    "runId": run_id,
                    "matchedRows": 0,
                    "affectedRows": 0,
                    "verification": outcome.model_dump(),
                    "context": context,
                })
            return RetentionExecutionResult(
                policy_id=policy.id,
                entity_name=policy.entity_name,
                action=policy.action,
                status=STATUS_EXECUTED,
                affected_rows=0,
                pre_run_count=0,
                sample_ids=[],
                dry_run=run_dry,
                verification=outcome,
                context=context,
                reason=strategy.reason,
                description=policy.description,
            )

        pre_run_count = self._count(session, strategy)

        if run_dry:
            return RetentionExecutionResult(
                policy_id=policy.id,
                entity_name=policy.entity_name,
                action=policy.action,
                status=STATUS_EXECUTED,
                affected_rows=pre_run_count,
                pre_run_count=pre_run_count,
                sample_ids=sample_ids,
                dry_run=True,
                verification=VerificationResult(
                    status=VERIFICATION_SIMULATED, remaining_rows=pre_run_count
                ),
                context=context,
                reason=strategy.reason,
                description=policy.description,
            )

        affected_rows = self._execute_action(session, policy, strategy)

        outcome = None
        status = STATUS_EXECUTED
        error = None
        if verification.enabled:
            remaining_rows = self._count(session, strategy)
            outcome = VerificationResult(
                status=VERIFICATION_CLEARED if remaining_rows == 0 else VERIFICATION_RESIDUAL,
                remaining_rows=remaining_rows,
            )
            if outcome.status == VERIFICATION_RESIDUAL and verification.fail_on_residual:
                # The mutation stays committed; the residue is reported for follow-up.
                status = STATUS_FAILED
                error = (
                    f"Verification found {remaining_rows} rows still matching "
                    f"policy {policy.id} after {policy.action}"
                )
                logger.warning(
                    error,
                    extra={"policy_id": policy.id, "entity_name": policy.entity_name},
                )

        log_retention_audit(session, policy_id=policy.id, rows_affected=affected_rows, details={
            "reason": strategy.reason,
            "sampleIds": sample_ids,
            "dryRun": False,
            "runId": run_id,
            "matchedRows": pre_run_count,
            "affectedRows": affected_rows,
            "verification": outcome.model_dump() if outcome else None,
            "context": context,
        })

        logger.info(
            f"Retention policy enforced: {affected_rows} rows ({policy.action})",
            extra={"policy_id": policy.id, "entity_name": policy.entity_name},
        )

        return RetentionExecutionResult(
            policy_id=policy.id,
            entity_name=policy.entity_name,
            action=policy.action,
            status=status,
            affected_rows=affected_rows,
            pre_run_count=pre_run_count,
            sample_ids=sample_ids,
            dry_run=False,
            verification=outcome,
            context=context,
            reason=strategy.reason,
            description=policy.description,
            error=error,
        )

    def _selected_ids(self, strategy: RetentionStrategy) -> Subquery:
        """Identifiers of exactly the rows the strategy query selects.

        Limits, ordering, joins and DISTINCT in the built query are kept, so
        mutations never reach rows outside the selection.
        """
        id_column = strategy.table.c[strategy.id_column or "id"]
        return (
            strategy.build_query()
            .with_only_columns(id_column, maintain_column_froms=True)
            .subquery()
        )

    def _count(self, session: Session, strategy: RetentionStrategy) -> int:
        subquery = strategy.build_query().subquery()
        return int(session.execute(select(func.count()).select_from(subquery)).scalar() or 0)

    def _execute_action(self, session: Session, policy: RetentionPolicy, strategy: RetentionStrategy) -> int:
        id_column = strategy.table.c[strategy.id_column or "id"]
        selected = self._selected_ids(strategy)
        criteria = id_column.in_(select(selected.c[id_column.name]))

        if policy.action == HARD_DELETE:
            statement = delete(strategy.table).where(criteria)
            return session.execute(statement).rowcount or 0

        if policy.action == SOFT_DELETE:
            column_name = strategy.soft_delete_column or "deleted_at"
            if column_name not in strategy.table.c:
                raise RetentionError(
                    f"Soft-delete column '{column_name}' is not declared on {strategy.table.name}"
                )
            statement = (
                update(strategy.table)
                .where(criteria)
                .values({strategy.table.c[column_name]: self.clock()})
            )
            return session.execute(statement).rowcount or 0

        raise UnsupportedRetentionActionError(policy.action)

    def _publish_event(self, run_id: str, policy: RetentionPolicy, result: RetentionExecutionResult) -> None:
        if self.change_data_capture is None:
            return

        if result.status == STATUS_FAILED:
            operation = "RETENTION_FAILED"
        elif result.status == STATUS_SKIPPED_LEGAL_HOLD:
            operation = "RETENTION_SKIPPED"
        elif result.status == STATUS_EXECUTED:
            operation = "RETENTION_SIMULATED" if result.dry_run else "RETENTION_ENFORCED"
        else:
            return

        try:
            self.change_data_capture.record_event(
                domain=CDC_DOMAIN,
                entity_name=CDC_ENTITY_NAME,
                entity_id=policy.id,
                operation=operation,
                payload={
                    "runId": run_id,
                    "policyId": policy.id,
                    "entityName": policy.entity_name,
                    "status": result.status,
                    "details": result.model_dump(mode="json"),
                },
                dry_run=result.dry_run,
            )
        except Exception:
            logger.error(
                "Failed to record CDC event for retention policy",
                exc_info=True,
                extra={"policy_id": policy.id, "entity_name": policy.entity_name},
            )

    def _dispatch_alert(self, on_alert: Callable[[RetentionAlert], Any], alert: RetentionAlert) -> None:
        try:
            on_alert(alert)
        except Exception:
            logger.error(
                "Retention alert callback failed",
                exc_info=True,
                extra={"policy_id": alert.policy.id, "entity_name": alert.policy.entity_name},
            )
