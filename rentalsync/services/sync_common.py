# rentalsync/services/sync_common.py
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..clients.hostify import HostifyError
from ..models import Property, SyncCheckpoint

INTEGRATION = "hostify"

log = logging.getLogger("rentalsync.sync")

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.utcnow()


def dumps_or_none(v: Any) -> Optional[str]:
    if v is None:
        return None
    return json.dumps(v, ensure_ascii=False, sort_keys=True, default=str)


def apply_record(
    db: Session,
    fn: Callable[[], T],
    *,
    entity_type: str,
    record_id: Any,
) -> tuple[bool, Optional[T]]:
    """
    Apply one upstream record in its own transaction and commit it.

    - HostifyError propagates: a failed upstream call fails the whole routine
    - IntegrityError means a concurrent writer inserted the same external key
      first; roll back and apply once more (the retry sees the row and updates)
    - anything else is a bad record: roll back, log, skip, keep the batch going

    Returns (ok, fn's return value).
    """
    for attempt in (1, 2):
        try:
            result = fn()
            db.commit()
            return True, result
        except HostifyError:
            db.rollback()
            raise
        except IntegrityError as e:
            db.rollback()
            if attempt == 1:
                log.info(
                    "unique key race on %s %s, re-applying",
                    entity_type,
                    record_id,
                    extra={"entity_type": entity_type},
                )
                continue
            log.warning(
                "skipping %s %s after repeated integrity error: %s",
                entity_type,
                record_id,
                e.orig if getattr(e, "orig", None) is not None else e,
                extra={"entity_type": entity_type},
            )
        except Exception:
            db.rollback()
            log.exception("skipping malformed %s %s", entity_type, record_id, extra={"entity_type": entity_type})
            break
    return False, None


def upsert_checkpoint(db: Session, *, entity_type: str, total_synced: int, integration: str = INTEGRATION) -> None:
    now = _utcnow()
    row = db.scalar(
        select(SyncCheckpoint).where(
            SyncCheckpoint.integration == integration,
            SyncCheckpoint.entity_type == entity_type,
        )
    )
    if row is None:
        row = SyncCheckpoint(integration=integration, entity_type=entity_type)
        db.add(row)

    row.total_synced = int(total_synced)
    row.completed_at = now
    row.updated_at = now
    db.commit()


def synced_properties(db: Session) -> list[tuple[int, str]]:
    """(property_id, hostify_listing_id) for every property linked to a listing, in id order."""
    rows = db.execute(
        select(Property.id, Property.hostify_listing_id)
        .where(Property.hostify_listing_id.is_not(None))
        .order_by(Property.id.asc())
    ).all()
    return [(int(pid), str(lid)) for pid, lid in rows if str(lid or "").strip()]


def property_id_for_listing(db: Session, listing_id: Optional[str]) -> Optional[int]:
    if not listing_id:
        return None
    return db.scalar(select(Property.id).where(Property.hostify_listing_id == str(listing_id)))
