from __future__ import annotations

import pytest
from sqlalchemy import func, select

from rentalsync.clients.hostify import HostifyRequestError
from rentalsync.models import Guest, Property, Reservation, SyncEvent
from rentalsync.services import sync_reservations as reservations_service
from rentalsync.services.sync_common import apply_record


def _reservation(rid: int) -> dict:
    return {
        "id": rid,
        "listing_id": 10,
        "checkIn": "2026-08-01",
        "checkOut": "2026-08-03",
        "status": "accepted",
        "guest_id": f"g{rid}",
        "guest_name": f"Guest {rid}",
    }


def test_bad_record_does_not_abort_the_batch(db, owner, fake_hostify, monkeypatch):
    db.add(Property(owner_id=owner.id, hostify_listing_id="10", name="Loft"))
    db.commit()
    fake_hostify.paged("/reservations", [_reservation(1), _reservation(2), _reservation(3)])

    original = reservations_service.upsert_reservation

    def upsert_failing_on_second(session, data, *, property_id):
        out = original(session, data, property_id=property_id)
        if data.reservation_id == "2":
            raise RuntimeError("corrupt record")
        return out

    monkeypatch.setattr(reservations_service, "upsert_reservation", upsert_failing_on_second)

    out = reservations_service.sync_reservations(db, fake_hostify.client())

    assert out.created == 2
    assert out.errors == 1
    ids = sorted(db.scalars(select(Reservation.hostify_reservation_id)).all())
    assert ids == ["1", "3"]
    # the failed record's partial writes are rolled back with it
    assert db.scalar(select(Guest).where(Guest.hostify_guest_id == "g2")) is None
    created_events = db.scalar(
        select(func.count()).select_from(SyncEvent).where(SyncEvent.event_type == "reservation.created")
    )
    assert created_events == 2


def test_unique_key_race_is_reapplied_as_update(db, session_factory):
    other = session_factory()
    attempts = []

    def upsert_guest():
        attempts.append(1)
        row = db.scalar(select(Guest).where(Guest.hostify_guest_id == "g-race"))
        if len(attempts) == 1:
            # another worker commits the same key after our lookup
            other.add(Guest(hostify_guest_id="g-race", name="From worker B"))
            other.commit()
        if row is None:
            db.add(Guest(hostify_guest_id="g-race", name="From worker A"))
            db.flush()
            return "created"
        row.name = "From worker A"
        return "updated"

    try:
        ok, outcome = apply_record(db, upsert_guest, entity_type="guest", record_id="g-race")
    finally:
        other.close()

    assert ok is True
    assert outcome == "updated"
    assert len(attempts) == 2
    guests = db.scalars(select(Guest).where(Guest.hostify_guest_id == "g-race")).all()
    assert len(guests) == 1
    assert guests[0].name == "From worker A"


def test_upstream_error_fails_the_routine(db):
    def call_upstream():
        db.add(Guest(name="never stored"))
        db.flush()
        raise HostifyRequestError("boom", endpoint="/reservations", status_code=503, attempts=3)

    with pytest.raises(HostifyRequestError):
        apply_record(db, call_upstream, entity_type="reservation", record_id="1")

    assert db.scalar(select(func.count()).select_from(Guest)) == 0
