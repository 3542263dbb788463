"""Celery application for lifecycle tasks.

Start a worker with:
    celery -A governance.celery_app worker --loglevel=info
and the beat scheduler with:
    celery -A governance.celery_app beat
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from config import get_settings
from observability.logging_config import configure_logging

settings = get_settings()

celery_app = Celery(
    "lifecycle",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["retention.tasks", "partitioning.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,  # 1 hour
    worker_prefetch_multiplier=1,
)

# Partition rotation runs on its own timer, independent of the retention schedule
celery_app.conf.beat_schedule = {
    "partition-rotation-daily": {
        "task": "partitioning.rotate",
        "schedule": crontab(hour=1, minute=30),
        "options": {"expires": 3600},
    },
}


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
