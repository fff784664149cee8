from __future__ import annotations

from sqlalchemy import func, select

from rentalsync.models import ListingSnapshot, Property, SyncCheckpoint, SyncEvent
from rentalsync.services.sync_listings import sync_listing, sync_listings


def _listings(n: int) -> list[dict]:
    return [
        {
            "id": 1000 + i,
            "name": f"Cabin {i}",
            "title": f"Mountain cabin {i}",
            "city": "Asheville",
            "bedrooms": 2,
            "description": f"Cozy cabin number {i}",
            "amenities": ["wifi", "hot tub"],
        }
        for i in range(n)
    ]


def _count(db, model) -> int:
    return db.scalar(select(func.count()).select_from(model))


def test_two_pages_of_listings_end_to_end(db, owner, fake_hostify):
    fake_hostify.paged("/listings", _listings(40), envelope="listings")
    client = fake_hostify.client()

    first = sync_listings(db, client)

    assert first.total == 40
    assert first.created == 40
    assert first.snapshots_created == 40
    assert _count(db, Property) == 40
    assert _count(db, ListingSnapshot) == 40

    second = sync_listings(db, client)

    assert second.created == 0
    assert second.updated == 40
    assert second.snapshots_created == 0
    assert _count(db, Property) == 40
    assert _count(db, ListingSnapshot) == 40

    cp = db.scalar(select(SyncCheckpoint).where(SyncCheckpoint.entity_type == "listings"))
    assert cp is not None and cp.total_synced == 40


def test_snapshot_only_when_content_changes(db, owner, fake_hostify):
    records = _listings(3)
    fake_hostify.paged("/listings", records)
    client = fake_hostify.client()
    sync_listings(db, client)

    # name is a mutable attribute, not marketing content
    records[0]["name"] = "Renamed cabin"
    records[1]["description"] = "Now with a sauna"
    out = sync_listings(db, client)

    assert out.snapshots_created == 1
    prop = db.scalar(select(Property).where(Property.hostify_listing_id == "1001"))
    versions = db.scalars(
        select(ListingSnapshot.version).where(ListingSnapshot.property_id == prop.id).order_by(ListingSnapshot.version)
    ).all()
    assert versions == [1, 2]

    renamed = db.scalar(select(Property).where(Property.hostify_listing_id == "1000"))
    assert renamed.name == "Renamed cabin"


def test_new_listings_skipped_without_owner(db, fake_hostify):
    fake_hostify.paged("/listings", _listings(2))

    out = sync_listings(db, fake_hostify.client())

    assert out.skipped == 2
    assert out.created == 0
    assert _count(db, Property) == 0


def test_listing_without_id_is_counted_as_error(db, owner, fake_hostify):
    fake_hostify.paged("/listings", [{"name": "ghost"}, *_listings(1)])

    out = sync_listings(db, fake_hostify.client())

    assert out.errors == 1
    assert out.created == 1


def test_events_emitted_for_new_listing(db, owner, fake_hostify):
    fake_hostify.paged("/listings", _listings(1))
    sync_listings(db, fake_hostify.client())

    types = sorted(db.scalars(select(SyncEvent.event_type)).all())
    assert types == ["listing.created", "listing.snapshot_created"]


def test_scoped_listing_sync(db, owner, fake_hostify):
    fake_hostify.obj("/listings/77", {"success": True, "listing": {"id": 77, "name": "Loft", "description": "Top floor"}})

    out = sync_listing(db, fake_hostify.client(), 77)

    assert out.created == 1
    prop = db.scalar(select(Property).where(Property.hostify_listing_id == "77"))
    assert prop is not None and prop.name == "Loft"
