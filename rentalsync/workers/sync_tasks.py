# rentalsync/workers/sync_tasks.py
from __future__ import annotations

import logging
import random
from typing import Any, Callable, Optional

from ..clients.hostify import HostifyClient, HostifyError
from ..config import settings
from ..db import SessionLocal
from ..services.sync_listings import sync_listing
from ..services.sync_messages import sync_thread
from ..services.sync_reservations import sync_reservation
from ..services.webhook_ingestor import ScopedSync
from .celery_app import celery_app

log = logging.getLogger("rentalsync.workers")


def _backoff_seconds(retries: int) -> int:
    """
    Exponential backoff with jitter.
    retries is the current retry count (0 for first retry attempt).
    """
    base = max(1, int(settings.hostify_retry_base_seconds or 1))
    cap = max(base, int(settings.hostify_retry_max_seconds or 30))

    delay = min(cap, base * (2 ** max(0, int(retries))))

    # jitter: +/- 20%
    jitter = int(delay * 0.2)
    if jitter > 0:
        delay = max(1, delay + random.randint(-jitter, jitter))
    return delay


def _run_scoped(task: Any, kind: str, fn: Callable[..., Any], entity_id: str, listing_id: Optional[str]) -> dict:
    db = SessionLocal()
    try:
        with HostifyClient.from_settings(settings) as client:
            if listing_id is None:
                result = fn(db, client, entity_id)
            else:
                result = fn(db, client, entity_id, listing_id=listing_id)
        return {"ok": True, "kind": kind, "id": entity_id, "result": result.as_metadata()}

    except HostifyError as e:
        db.rollback()
        retries = int(getattr(task.request, "retries", 0) or 0)
        if retries >= int(task.max_retries or 0):
            log.error(
                "scoped %s sync for %s failed after %d retries: %s",
                kind,
                entity_id,
                retries,
                e,
                extra={"entity_type": kind, "attempt": retries},
            )
            return {"ok": False, "kind": kind, "id": entity_id, "error": str(e), "retries": retries}

        delay = _backoff_seconds(retries=retries)
        log.warning(
            "scoped %s sync for %s failed, retrying in %ss: %s",
            kind,
            entity_id,
            delay,
            e,
            extra={"entity_type": kind, "attempt": retries},
        )
        raise task.retry(exc=e, countdown=delay)

    finally:
        db.close()


@celery_app.task(bind=True, max_retries=3, name="rentalsync.workers.sync_tasks.sync_listing_task")
def sync_listing_task(self, listing_id: str) -> dict:
    return _run_scoped(self, "listing", sync_listing, listing_id, None)


@celery_app.task(bind=True, max_retries=3, name="rentalsync.workers.sync_tasks.sync_reservation_task")
def sync_reservation_task(self, reservation_id: str, listing_id: Optional[str] = None) -> dict:
    return _run_scoped(self, "reservation", sync_reservation, reservation_id, listing_id)


@celery_app.task(bind=True, max_retries=3, name="rentalsync.workers.sync_tasks.sync_thread_task")
def sync_thread_task(self, thread_id: str, listing_id: Optional[str] = None) -> dict:
    return _run_scoped(self, "thread", sync_thread, thread_id, listing_id)


def enqueue_scoped_sync(action: ScopedSync) -> None:
    """Default webhook dispatch: hand the scoped sync to a worker."""
    if action.kind == "listing":
        sync_listing_task.delay(action.entity_id)
    elif action.kind == "reservation":
        sync_reservation_task.delay(action.entity_id, action.listing_id)
    elif action.kind == "thread":
        sync_thread_task.delay(action.entity_id, action.listing_id)
    else:
        raise ValueError(f"unknown scoped sync kind: {action.kind}")
    log.info("enqueued scoped %s sync for %s", action.kind, action.entity_id, extra={"entity_type": action.kind})
