# rentalsync/services/sync_events.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import SyncEvent


def _dumps(v: Any) -> str:
    return json.dumps(v, ensure_ascii=False, default=str)


def emit_event(
    db: Session,
    *,
    event_type: str,
    payload: Optional[dict[str, Any]] = None,
    property_id: Optional[int] = None,
    outcome: str = "recorded",
) -> SyncEvent:
    """
    Domain event from the reconciler (reservation.created, message.received, ...).

    NOTE: flush-only, no commit. Callers decide when to commit.
    """
    if not event_type:
        raise ValueError("event_type required")

    ev = SyncEvent(
        event_type=str(event_type),
        property_id=int(property_id) if property_id is not None else None,
        payload_json=_dumps(payload or {}),
        outcome=outcome,
        created_at=datetime.utcnow(),
    )
    db.add(ev)
    db.flush()
    return ev


def event_seen(db: Session, dedupe_key: str) -> bool:
    return db.scalar(select(SyncEvent.id).where(SyncEvent.dedupe_key == dedupe_key)) is not None


def record_once(
    db: Session,
    *,
    dedupe_key: str,
    event_type: str,
    payload: Optional[dict[str, Any]] = None,
    property_id: Optional[int] = None,
    outcome: str = "received",
) -> Optional[SyncEvent]:
    """
    Idempotency log insert. Returns the new row, or None when the key was
    already recorded, including by a concurrent writer that won the unique
    constraint.

    Call it before any other write in the transaction: losing the race rolls
    the session back.

    NOTE: flush-only, no commit.
    """
    if event_seen(db, dedupe_key):
        return None

    ev = SyncEvent(
        event_type=str(event_type),
        dedupe_key=dedupe_key,
        property_id=int(property_id) if property_id is not None else None,
        payload_json=_dumps(payload or {}),
        outcome=outcome,
        created_at=datetime.utcnow(),
    )
    db.add(ev)
    try:
        db.flush()
    except IntegrityError:
        db.rollback()
        return None
    return ev


