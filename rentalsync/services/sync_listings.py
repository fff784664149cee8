# rentalsync/services/sync_listings.py
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from functools import partial
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..clients.hostify import HostifyClient
from ..domain.fingerprint import content_hash
from ..domain.normalizers import ListingData, normalize_listing
from ..models import ListingSnapshot, Property
from .ownership import pick_default_owner
from .sync_common import apply_record, dumps_or_none, upsert_checkpoint
from .sync_events import emit_event

ENTITY_TYPE = "listings"

log = logging.getLogger("rentalsync.sync.listings")


@dataclass(frozen=True)
class ListingsSyncResult:
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    snapshots_created: int = 0
    errors: int = 0
    duration_ms: int = 0

    def as_metadata(self) -> dict[str, Any]:
        return asdict(self)


def latest_snapshot(db: Session, property_id: int) -> Optional[ListingSnapshot]:
    return db.scalar(
        select(ListingSnapshot)
        .where(ListingSnapshot.property_id == int(property_id))
        .order_by(ListingSnapshot.version.desc())
        .limit(1)
    )


def append_snapshot_if_changed(db: Session, prop: Property, data: ListingData) -> bool:
    """
    Snapshots are a change ledger: append only when the marketing-content
    hash differs from the newest snapshot. Never mutates existing rows.
    """
    digest = content_hash(data.snapshot_content())
    latest = latest_snapshot(db, prop.id)
    if latest is not None and latest.content_hash == digest:
        return False

    version = (latest.version + 1) if latest is not None else 1
    db.add(
        ListingSnapshot(
            property_id=prop.id,
            version=version,
            content_hash=digest,
            title=data.title,
            description=data.description,
            amenities_json=dumps_or_none(data.amenities),
            photos_meta_json=dumps_or_none(data.photos_meta),
            house_rules=data.house_rules,
            snapshot_at=datetime.utcnow(),
        )
    )
    db.flush()

    emit_event(
        db,
        event_type="listing.snapshot_created",
        property_id=prop.id,
        payload={"listing_id": data.listing_id, "version": version, "content_hash": digest},
    )
    return True


def _apply_listing_fields(prop: Property, data: ListingData) -> None:
    prop.name = data.name
    prop.address = data.address
    prop.city = data.city
    prop.state = data.state
    prop.country = data.country
    prop.bedrooms = data.bedrooms
    prop.bathrooms = data.bathrooms
    prop.max_guests = data.max_guests
    prop.updated_at = datetime.utcnow()


def upsert_listing(db: Session, data: ListingData, *, owner_id: Optional[int]) -> tuple[str, bool]:
    """
    Returns (outcome, snapshot_created); outcome is created|updated|skipped.
    New listings need an owner; without one they wait for a later cycle.
    """
    prop = db.scalar(select(Property).where(Property.hostify_listing_id == data.listing_id))

    if prop is not None:
        _apply_listing_fields(prop, data)
        db.flush()
        return "updated", append_snapshot_if_changed(db, prop, data)

    if owner_id is None:
        log.info("skipping new listing %s (no default owner)", data.listing_id, extra={"listing_id": data.listing_id})
        return "skipped", False

    prop = Property(owner_id=int(owner_id), hostify_listing_id=data.listing_id, name=data.name)
    _apply_listing_fields(prop, data)
    db.add(prop)
    db.flush()

    emit_event(db, event_type="listing.created", property_id=prop.id, payload={"listing_id": data.listing_id})
    return "created", append_snapshot_if_changed(db, prop, data)


def _reconcile(db: Session, raw_listings: list[dict[str, Any]], *, started: float) -> ListingsSyncResult:
    owner = pick_default_owner(db)
    owner_id = int(owner.id) if owner is not None else None
    if owner_id is None:
        log.warning("no OWNER or ADMIN user found; new listings will be skipped (updates only)")

    counts = {"created": 0, "updated": 0, "skipped": 0, "snapshots_created": 0, "errors": 0}

    for raw in raw_listings:
        data = normalize_listing(raw)
        if not data.is_complete:
            log.warning("skipping listing without id: missing %s", ",".join(data.missing))
            counts["errors"] += 1
            continue

        ok, res = apply_record(
            db,
            partial(upsert_listing, db, data, owner_id=owner_id),
            entity_type="listing",
            record_id=data.listing_id,
        )
        if not ok or res is None:
            counts["errors"] += 1
            continue

        outcome, snapshot_created = res
        counts[outcome] += 1
        if snapshot_created:
            counts["snapshots_created"] += 1

    return ListingsSyncResult(
        total=len(raw_listings),
        duration_ms=int((time.monotonic() - started) * 1000),
        **counts,
    )


def sync_listings(db: Session, client: HostifyClient) -> ListingsSyncResult:
    """Full pass over every upstream listing."""
    started = time.monotonic()
    raw_listings = client.get_listings()
    log.info("fetched %d listings", len(raw_listings), extra={"entity_type": ENTITY_TYPE})

    result = _reconcile(db, raw_listings, started=started)
    upsert_checkpoint(db, entity_type=ENTITY_TYPE, total_synced=result.total)

    log.info(
        "listings sync done: %d created, %d updated, %d snapshots",
        result.created,
        result.updated,
        result.snapshots_created,
        extra={"entity_type": ENTITY_TYPE, "counts": result.as_metadata()},
    )
    return result


def sync_listing(db: Session, client: HostifyClient, listing_id: int | str) -> ListingsSyncResult:
    """Scoped sync of one listing (webhook create_listing / update_listing)."""
    started = time.monotonic()
    raw = client.get_listing(listing_id)
    if not raw:
        log.warning("listing %s not returned by upstream", listing_id, extra={"listing_id": str(listing_id)})
        return ListingsSyncResult(skipped=1)
    raw.setdefault("id", listing_id)
    return _reconcile(db, [raw], started=started)
