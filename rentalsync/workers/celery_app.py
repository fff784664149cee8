# rentalsync/workers/celery_app.py
from __future__ import annotations

from celery import Celery

from ..config import settings

BROKER = settings.celery_broker_url or "redis://localhost:6379/0"
BACKEND = settings.celery_result_backend or "redis://localhost:6379/1"

celery_app = Celery(
    "rentalsync",
    broker=BROKER,
    backend=BACKEND,
    include=["rentalsync.workers.sync_tasks"],
)

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_reject_on_worker_lost=True,
    task_track_started=True,
    timezone="UTC",
    task_always_eager=bool(settings.celery_task_always_eager),
)

# webhook-triggered scoped syncs get their own queue so a backlog never delays acks
celery_app.conf.task_routes = {
    "rentalsync.workers.sync_tasks.*": {"queue": "sync"},
}
