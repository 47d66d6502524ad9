from __future__ import annotations

from celery import Celery
from celery.schedules import crontab

from slotbook.core.config import settings

celery_app = Celery(
    "slotbook",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["slotbook.jobs.tasks"],
)

celery_app.conf.timezone = settings.timezone
celery_app.conf.broker_connection_retry_on_startup = True
celery_app.conf.beat_schedule = {
    "generate-upcoming-slots": {
        "task": "slotbook.generate_slots",
        "schedule": crontab(hour=1, minute=0),
    },
}
