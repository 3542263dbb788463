"""Celery tasks for partition rotation.

Tasks:
- partitioning.rotate: Ensure future partitions and archive expired ones
"""

import logging
from typing import Any, Dict, Optional

from celery import shared_task

from governance.bootstrap import get_container

logger = logging.getLogger(__name__)


@shared_task(name="partitioning.rotate", bind=True)
def partition_rotate_task(self, dry_run: Optional[bool] = None) -> Dict[str, Any]:
    """Run one partition rotation.

    Args:
        dry_run: Override PARTITIONING_DRY_RUN for this run

    Returns:
        Dict with the rotation summary (``status='disabled'`` when partitioning is off)
    """
    logger.info("Partition rotation task started", extra={"dry_run": dry_run})

    container = get_container()
    summary = container.partition_service.rotate(dry_run=dry_run)

    failed = [outcome.table_name for outcome in summary.results if outcome.status == "failed"]
    if failed:
        logger.warning(f"Partition rotation failed for tables: {', '.join(failed)}")

    return summary.model_dump(mode="json")
