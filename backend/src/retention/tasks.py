"""Celery tasks for data retention.

Operators trigger retention through the existing worker fleet with these
tasks. The APScheduler trigger inside ``DataRetentionJob`` remains the
primary schedule; these tasks are for manual cycles and ad-hoc simulations.

Tasks:
- retention.run_cycle: One supervised cycle (honours pause and resume gate)
- retention.enforce: One unsupervised enforcement pass (simulate by default)
"""

import logging
from typing import Any, Dict, Optional

from celery import shared_task

from governance.bootstrap import get_container
from .schemas import MODE_SIMULATE

logger = logging.getLogger(__name__)


@shared_task(name="retention.run_cycle", bind=True)
def retention_run_cycle_task(self, trigger: str = "celery") -> Dict[str, Any]:
    """Run one supervised retention cycle.

    Returns:
        Dict with the run summary, or ``status='skipped'`` when the job is
        disabled, paused, awaiting approval, or locked by another supervisor

    Raises:
        Exception: Cycle failures propagate so Celery records the task as failed

    Example Celery Beat schedule configuration:
        celery_app.conf.beat_schedule = {
            'retention-cycle-daily': {
                'task': 'retention.run_cycle',
                'schedule': crontab(hour=3, minute=0),
            },
        }
    """
    logger.info("Retention cycle task started", extra={"trigger": trigger})

    container = get_container()
    summary = container.retention_job.run_cycle(trigger)

    if summary is None:
        return {
            'status': 'skipped',
            'state': container.retention_job.state,
            'paused_until': (
                container.retention_job.paused_until.isoformat()
                if container.retention_job.paused_until else None
            ),
        }

    return {'status': 'completed', **summary.model_dump(mode="json")}


@shared_task(name="retention.enforce", bind=True)
def retention_enforce_task(self, mode: str = MODE_SIMULATE, alert_threshold: Optional[int] = None) -> Dict[str, Any]:
    """Run one enforcement pass over all active policies.

    Args:
        mode: 'simulate' (default) or 'commit'
        alert_threshold: Override of the configured alert threshold

    Raises:
        ValueError: If mode is invalid
    """
    logger.info(f"Retention enforce task started ({mode})", extra={"mode": mode})

    container = get_container()
    job_config = container.settings.retention_job_config()
    summary = container.enforcement_service.enforce(
        mode=mode,
        verification=job_config.verification,
        alert_threshold=alert_threshold if alert_threshold is not None else job_config.alert_threshold,
    )

    totals = summary.totals()
    logger.info(
        f"Retention enforce task completed: {totals.affected_rows} rows affected",
        extra={"mode": mode, "dry_run": summary.dry_run},
    )

    return {'status': 'completed', **summary.model_dump(mode="json")}
