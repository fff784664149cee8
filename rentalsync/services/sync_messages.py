# rentalsync/services/sync_messages.py
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from functools import partial
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..clients.hostify import HostifyClient
from ..domain.normalizers import MessageData, ThreadData, normalize_message, normalize_thread
from ..models import Guest, Message, MessageThread, Reservation
from .sync_common import apply_record, property_id_for_listing, synced_properties, upsert_checkpoint
from .sync_events import emit_event

ENTITY_TYPE = "messages"

log = logging.getLogger("rentalsync.sync.messages")


@dataclass(frozen=True)
class MessagesSyncResult:
    properties: int = 0
    threads: int = 0
    messages: int = 0
    messages_created: int = 0
    errors: int = 0
    duration_ms: int = 0

    def as_metadata(self) -> dict[str, Any]:
        return asdict(self)

    def __add__(self, other: "MessagesSyncResult") -> "MessagesSyncResult":
        return MessagesSyncResult(
            properties=self.properties + other.properties,
            threads=self.threads + other.threads,
            messages=self.messages + other.messages,
            messages_created=self.messages_created + other.messages_created,
            errors=self.errors + other.errors,
            duration_ms=self.duration_ms + other.duration_ms,
        )


def upsert_thread(db: Session, data: ThreadData, *, property_id: int) -> MessageThread:
    """
    Keyed by hostify_thread_id. Reservation and guest links are resolved by
    external id; an unresolved link never clears one we already have.
    """
    if not data.thread_id:
        raise ValueError("thread without id")

    reservation_pk: Optional[int] = None
    if data.reservation_id:
        reservation_pk = db.scalar(
            select(Reservation.id).where(
                Reservation.hostify_reservation_id == data.reservation_id,
                Reservation.property_id == int(property_id),
            )
        )

    guest_pk: Optional[int] = None
    if data.guest_id:
        guest_pk = db.scalar(select(Guest.id).where(Guest.hostify_guest_id == data.guest_id))

    row = db.scalar(select(MessageThread).where(MessageThread.hostify_thread_id == data.thread_id))
    if row is None:
        row = MessageThread(
            hostify_thread_id=data.thread_id,
            property_id=int(property_id),
            reservation_id=reservation_pk,
            guest_id=guest_pk,
            status=data.status or "open",
            last_message_at=data.last_message_at,
            created_at=datetime.utcnow(),
        )
        db.add(row)
        db.flush()
        return row

    if reservation_pk is not None:
        row.reservation_id = reservation_pk
    if guest_pk is not None:
        row.guest_id = guest_pk
    if data.status:
        row.status = data.status
    if data.last_message_at is not None:
        row.last_message_at = data.last_message_at
    db.flush()
    return row


def insert_message_if_absent(db: Session, thread: MessageThread, data: MessageData) -> bool:
    """Messages are immutable: an existing hostify_message_id is left untouched."""
    if not data.message_id:
        raise ValueError("message without id")

    exists = db.scalar(select(Message.id).where(Message.hostify_message_id == data.message_id))
    if exists is not None:
        return False

    db.add(
        Message(
            hostify_message_id=data.message_id,
            thread_id=thread.id,
            sender_type=data.sender_type,
            content=data.content,
            created_at=data.created_at or datetime.utcnow(),
        )
    )
    db.flush()

    if data.sender_type == "GUEST":
        emit_event(
            db,
            event_type="message.received",
            property_id=thread.property_id,
            payload={
                "hostify_thread_id": thread.hostify_thread_id,
                "hostify_message_id": data.message_id,
                "thread_id": thread.id,
            },
        )
    return True


def _stamp_last_message(db: Session, thread_pk: int, last_message_at: datetime) -> None:
    thread = db.get(MessageThread, thread_pk)
    if thread is not None:
        thread.last_message_at = last_message_at
        db.flush()


def _thread_messages(detail: dict[str, Any]) -> list[dict[str, Any]]:
    msgs = detail.get("messages")
    if not isinstance(msgs, list):
        return []
    return [m for m in msgs if isinstance(m, dict)]


def _reconcile_thread(
    db: Session,
    client: HostifyClient,
    raw_thread: dict[str, Any],
    *,
    property_id: int,
    detail: Optional[dict[str, Any]] = None,
) -> MessagesSyncResult:
    data = normalize_thread(raw_thread)
    ok, thread = apply_record(
        db,
        partial(upsert_thread, db, data, property_id=property_id),
        entity_type="thread",
        record_id=data.thread_id,
    )
    if not ok or thread is None:
        return MessagesSyncResult(errors=1)

    thread_pk = int(thread.id)

    if detail is None:
        # upstream failures here fail the routine, same as the inbox fetch
        detail = client.get_thread(data.thread_id)
    raw_messages = _thread_messages(detail)

    created = 0
    errors = 0
    for raw in raw_messages:
        msg = normalize_message(raw)
        ok, inserted = apply_record(
            db,
            lambda msg=msg: insert_message_if_absent(db, db.get(MessageThread, thread_pk), msg),
            entity_type="message",
            record_id=msg.message_id,
        )
        if not ok:
            errors += 1
        elif inserted:
            created += 1

    if raw_messages:
        last_at = normalize_message(raw_messages[-1]).created_at
        if last_at is not None:
            apply_record(
                db,
                partial(_stamp_last_message, db, thread_pk, last_at),
                entity_type="thread",
                record_id=data.thread_id,
            )

    return MessagesSyncResult(
        threads=1,
        messages=len(raw_messages),
        messages_created=created,
        errors=errors,
    )


def sync_messages_for_property(
    db: Session,
    client: HostifyClient,
    *,
    property_id: int,
    listing_id: str,
) -> MessagesSyncResult:
    started = time.monotonic()
    result = MessagesSyncResult(properties=1)

    for raw_thread in client.get_inbox(listing_id):
        result = result + _reconcile_thread(db, client, raw_thread, property_id=property_id)

    return replace(result, duration_ms=int((time.monotonic() - started) * 1000))


def sync_messages(db: Session, client: HostifyClient) -> MessagesSyncResult:
    started = time.monotonic()
    result = MessagesSyncResult()

    for property_id, listing_id in synced_properties(db):
        result = result + sync_messages_for_property(db, client, property_id=property_id, listing_id=listing_id)

    result = replace(result, duration_ms=int((time.monotonic() - started) * 1000))
    upsert_checkpoint(db, entity_type=ENTITY_TYPE, total_synced=result.messages_created)

    log.info(
        "messages sync done: %d threads, %d messages (%d new)",
        result.threads,
        result.messages,
        result.messages_created,
        extra={"entity_type": ENTITY_TYPE, "counts": result.as_metadata()},
    )
    return result


def sync_thread(
    db: Session,
    client: HostifyClient,
    thread_id: int | str,
    *,
    listing_id: Optional[str] = None,
) -> MessagesSyncResult:
    """Scoped sync of one conversation (webhook message_new)."""
    started = time.monotonic()
    detail = client.get_thread(thread_id)
    raw_thread = dict(detail) if detail else {}
    raw_thread.setdefault("id", thread_id)

    data = normalize_thread(raw_thread)
    property_id = property_id_for_listing(db, data.listing_id or listing_id)
    if property_id is None:
        log.warning(
            "thread %s belongs to unknown listing %s; run listings sync first",
            thread_id,
            data.listing_id or listing_id,
            extra={"thread_id": str(thread_id)},
        )
        return MessagesSyncResult()

    result = _reconcile_thread(db, client, raw_thread, property_id=property_id, detail=detail or {})
    return replace(result, duration_ms=int((time.monotonic() - started) * 1000))
