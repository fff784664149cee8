# rentalsync/services/sync_reviews.py
"""
Reviews are log-only: each one lands once in the event log under
`review:<id>` and is never stored as its own entity.
"""
from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from functools import partial
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..clients.hostify import HostifyClient
from ..domain.normalizers import ReviewData, normalize_review
from .sync_common import apply_record, property_id_for_listing, upsert_checkpoint
from .sync_events import record_once

ENTITY_TYPE = "reviews"
EVENT_TYPE = "review.received"

log = logging.getLogger("rentalsync.sync.reviews")


@dataclass(frozen=True)
class ReviewsSyncResult:
    total: int = 0
    created: int = 0
    duplicates: int = 0
    errors: int = 0
    duration_ms: int = 0

    def as_metadata(self) -> dict[str, Any]:
        return asdict(self)


def review_dedupe_key(review_id: str) -> str:
    return f"review:{review_id}"


def log_review_once(db: Session, data: ReviewData) -> bool:
    """True when the review was logged now, False when it was already there."""
    if not data.review_id:
        raise ValueError("review without id")

    property_id: Optional[int] = property_id_for_listing(db, data.listing_id)
    ev = record_once(
        db,
        dedupe_key=review_dedupe_key(data.review_id),
        event_type=EVENT_TYPE,
        payload=data.event_payload(),
        property_id=property_id,
    )
    return ev is not None


def sync_reviews(db: Session, client: HostifyClient) -> ReviewsSyncResult:
    started = time.monotonic()
    raw_reviews = client.get_reviews()

    counts = {"created": 0, "duplicates": 0, "errors": 0}
    for raw in raw_reviews:
        data = normalize_review(raw)
        ok, logged = apply_record(
            db,
            partial(log_review_once, db, data),
            entity_type="review",
            record_id=data.review_id,
        )
        if not ok:
            counts["errors"] += 1
        elif logged:
            counts["created"] += 1
        else:
            counts["duplicates"] += 1

    result = ReviewsSyncResult(
        total=len(raw_reviews),
        duration_ms=int((time.monotonic() - started) * 1000),
        **counts,
    )
    upsert_checkpoint(db, entity_type=ENTITY_TYPE, total_synced=result.created)

    log.info(
        "reviews sync done: %d new reviews logged, %d already seen",
        result.created,
        result.duplicates,
        extra={"entity_type": ENTITY_TYPE, "counts": result.as_metadata()},
    )
    return result
