# rentalsync/services/sync_reservations.py
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
from ..domain.normalizers import GuestData, ReservationData, normalize_reservation
from ..models import Guest, Reservation
from .sync_common import apply_record, property_id_for_listing, synced_properties, upsert_checkpoint
from .sync_events import emit_event

ENTITY_TYPE = "reservations"

log = logging.getLogger("rentalsync.sync.reservations")


@dataclass(frozen=True)
class ReservationsSyncResult:
    properties: int = 0
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: int = 0
    duration_ms: int = 0

    def as_metadata(self) -> dict[str, Any]:
        return asdict(self)

    def __add__(self, other: "ReservationsSyncResult") -> "ReservationsSyncResult":
        return ReservationsSyncResult(
            properties=self.properties + other.properties,
            total=self.total + other.total,
            created=self.created + other.created,
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
            duration_ms=self.duration_ms + other.duration_ms,
        )


def resolve_guest(db: Session, guest: GuestData, *, current_guest_id: Optional[int] = None) -> Guest:
    """
    Match by Hostify guest id first, then by email, then by the guest the
    reservation already points at (name-only guests have no other key).
    Newer non-null values win; nulls never overwrite what we already know.
    """
    row: Optional[Guest] = None
    if guest.guest_id:
        row = db.scalar(select(Guest).where(Guest.hostify_guest_id == guest.guest_id))

    if row is None and guest.email:
        q = select(Guest).where(Guest.email == guest.email)
        if guest.guest_id:
            # don't merge two distinct upstream guests that share an inbox
            q = q.where(Guest.hostify_guest_id.is_(None))
        row = db.scalar(q.order_by(Guest.id.asc()).limit(1))

    if row is None and not (guest.guest_id or guest.email) and current_guest_id is not None:
        row = db.get(Guest, current_guest_id)

    if row is None:
        row = Guest(hostify_guest_id=guest.guest_id, name=guest.name, email=guest.email, phone=guest.phone)
        db.add(row)
        db.flush()
        return row

    if guest.name is not None:
        row.name = guest.name
    if guest.email is not None:
        row.email = guest.email
    if guest.phone is not None:
        row.phone = guest.phone
    if row.hostify_guest_id is None and guest.guest_id:
        row.hostify_guest_id = guest.guest_id
    row.updated_at = datetime.utcnow()
    db.flush()
    return row


def upsert_reservation(db: Session, data: ReservationData, *, property_id: int) -> str:
    """
    Keyed by hostify_reservation_id. Returns created|updated.
    Callers must only pass complete records (check-in and check-out resolved).
    """
    if not data.is_complete:
        raise ValueError(f"reservation {data.reservation_id} missing {','.join(data.missing)}")

    if data.upstream_status is None:
        log.debug("reservation %s has no status, stored as %s", data.reservation_id, data.status)
    elif not data.status_recognized:
        log.warning(
            "unrecognized reservation status %r on %s, stored as %s",
            data.upstream_status,
            data.reservation_id,
            data.status,
            extra={"reservation_id": data.reservation_id},
        )

    row = db.scalar(select(Reservation).where(Reservation.hostify_reservation_id == data.reservation_id))
    guest_id = None
    if data.guest is not None:
        current = row.guest_id if row is not None else None
        guest_id = resolve_guest(db, data.guest, current_guest_id=current).id
    now = datetime.utcnow()

    if row is None:
        row = Reservation(
            hostify_reservation_id=data.reservation_id,
            property_id=int(property_id),
            guest_id=guest_id,
            status=data.status,
            upstream_status=data.upstream_status,
            check_in=data.check_in,
            check_out=data.check_out,
            nights=data.nights,
            total=data.total,
            nightly_rate=data.nightly_rate,
            cleaning_fee=data.cleaning_fee,
            guest_count=data.guest_count,
            channel=data.channel,
            booked_at=data.booked_at,
            synced_at=now,
            created_at=now,
        )
        db.add(row)
        db.flush()
        emit_event(
            db,
            event_type="reservation.created",
            property_id=property_id,
            payload={
                "hostify_reservation_id": data.reservation_id,
                "status": data.status,
                "check_in": data.check_in,
                "check_out": data.check_out,
            },
        )
        return "created"

    previous_status = row.status

    # a moved reservation can land on another listing
    row.property_id = int(property_id)
    row.status = data.status
    row.upstream_status = data.upstream_status
    row.check_in = data.check_in
    row.check_out = data.check_out
    row.nights = data.nights
    if data.total is not None:
        row.total = data.total
    if data.nightly_rate is not None:
        row.nightly_rate = data.nightly_rate
    if data.cleaning_fee is not None:
        row.cleaning_fee = data.cleaning_fee
    if data.guest_count is not None:
        row.guest_count = data.guest_count
    if data.channel is not None:
        row.channel = data.channel
    if data.booked_at is not None:
        row.booked_at = data.booked_at
    if guest_id is not None:
        row.guest_id = guest_id
    row.synced_at = now
    db.flush()

    if previous_status != data.status:
        emit_event(
            db,
            event_type="reservation.status_changed",
            property_id=property_id,
            payload={"hostify_reservation_id": data.reservation_id, "from": previous_status, "to": data.status},
        )
    return "updated"


def _reconcile(db: Session, raw_reservations: list[dict[str, Any]], *, property_id: int) -> ReservationsSyncResult:
    counts = {"created": 0, "updated": 0, "skipped": 0, "errors": 0}

    for raw in raw_reservations:
        data = normalize_reservation(raw)
        if not data.is_complete:
            log.warning(
                "skipping reservation %s: missing %s",
                data.reservation_id,
                ",".join(data.missing),
                extra={"reservation_id": data.reservation_id, "property_id": property_id},
            )
            counts["skipped"] += 1
            continue

        ok, outcome = apply_record(
            db,
            partial(upsert_reservation, db, data, property_id=property_id),
            entity_type="reservation",
            record_id=data.reservation_id,
        )
        if ok and outcome:
            counts[outcome] += 1
        else:
            counts["errors"] += 1

    return ReservationsSyncResult(properties=1, total=len(raw_reservations), **counts)


def sync_reservations_for_property(
    db: Session,
    client: HostifyClient,
    *,
    property_id: int,
    listing_id: str,
) -> ReservationsSyncResult:
    """Scoped sync: every reservation of one listing (listing_id is the only reliable filter)."""
    started = time.monotonic()
    raw_reservations = client.get_reservations(listing_id)
    result = _reconcile(db, raw_reservations, property_id=property_id)
    return replace(result, duration_ms=int((time.monotonic() - started) * 1000))


def sync_reservations(db: Session, client: HostifyClient) -> ReservationsSyncResult:
    started = time.monotonic()
    result = ReservationsSyncResult()

    for property_id, listing_id in synced_properties(db):
        result = result + sync_reservations_for_property(
            db, client, property_id=property_id, listing_id=listing_id
        )

    result = replace(result, duration_ms=int((time.monotonic() - started) * 1000))
    upsert_checkpoint(db, entity_type=ENTITY_TYPE, total_synced=result.created + result.updated)

    log.info(
        "reservations sync done: %d properties, %d created, %d updated, %d skipped",
        result.properties,
        result.created,
        result.updated,
        result.skipped,
        extra={"entity_type": ENTITY_TYPE, "counts": result.as_metadata()},
    )
    return result


def sync_reservation(
    db: Session,
    client: HostifyClient,
    reservation_id: int | str,
    *,
    listing_id: Optional[str] = None,
) -> ReservationsSyncResult:
    """
    Scoped sync of a single reservation (webhook new/update/move_reservation).
    The owning property is resolved from the reservation's listing id.
    """
    raw = client.get_reservation(reservation_id)
    if not raw:
        log.warning("reservation %s not returned by upstream", reservation_id)
        return ReservationsSyncResult(skipped=1)
    raw.setdefault("id", reservation_id)

    data = normalize_reservation(raw)
    property_id = property_id_for_listing(db, data.listing_id or listing_id)
    if property_id is None:
        log.warning(
            "reservation %s belongs to unknown listing %s; run listings sync first",
            reservation_id,
            data.listing_id or listing_id,
            extra={"reservation_id": str(reservation_id)},
        )
        return ReservationsSyncResult(total=1, skipped=1)

    return _reconcile(db, [raw], property_id=property_id)
