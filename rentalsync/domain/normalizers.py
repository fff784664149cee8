# rentalsync/domain/normalizers.py
"""
Pure mapping from loosely-typed Hostify payloads to canonical records.

Hostify field names drift between endpoints and over time (camelCase vs
snake_case, several names for the same money field). Every canonical
attribute resolves through an ordered tuple of candidate keys; the first
non-empty value wins. Supporting a new alias means editing a table below,
not adding a branch.

Nothing here raises on bad input: unparseable values become None, and
missing required fields are reported through `missing`.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional

LISTING_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("id", "listing_id", "listingId"),
    "name": ("name", "nickname", "title"),
    "address": ("address", "street", "address1"),
    "city": ("city",),
    "state": ("state",),
    "country": ("country", "country_code"),
    "bedrooms": ("bedrooms", "bedrooms_count"),
    "bathrooms": ("bathrooms", "bathrooms_count"),
    "max_guests": ("max_guests", "maxGuests", "person_capacity", "guests_included"),
    "title": ("title", "name"),
    "description": ("description", "summary"),
    "amenities": ("amenities",),
    "photos_meta": ("photos_meta", "photos"),
    "house_rules": ("house_rules", "house_rules_text", "houseRules"),
}

RESERVATION_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("id", "reservation_id", "reservationId"),
    "listing_id": ("listing_id", "listingId"),
    "check_in": ("checkIn", "check_in", "check_in_date", "arrival_date", "arrivalDate"),
    "check_out": ("checkOut", "check_out", "check_out_date", "departure_date", "departureDate"),
    "nights": ("nights",),
    "total": ("payout_price", "revenue", "subtotal", "total", "amount"),
    "nightly_rate": ("price_per_night", "base_price", "nightly_rate"),
    "cleaning_fee": ("cleaning_fee", "cleaning_fee_amount"),
    "guest_count": ("guests", "guest_count", "number_of_guests"),
    "booked_at": ("confirmed_at", "created_at", "booked_at"),
    "channel": ("source", "channel", "integration_type"),
    "status": ("status",),
    "guest_id": ("guest_id", "guest_uid", "guestId"),
    "guest_name": ("guest_name", "guest_name_full", "guestName"),
    "guest_email": ("guest_email", "email", "guestEmail"),
    "guest_phone": ("guest_phone", "phone", "guestPhone"),
}

THREAD_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("id", "thread_id", "threadId"),
    "listing_id": ("listing_id", "listingId"),
    "reservation_id": ("reservation_id", "reservationId"),
    "guest_id": ("guest_id", "guestId"),
    "last_message_at": ("last_message_at", "lastMessageAt", "updated_at"),
    "status": ("status",),
}

MESSAGE_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("id", "message_id", "messageId"),
    "sender": ("sender", "sender_type", "from", "by"),
    "content": ("body", "message", "text", "content"),
    "created_at": ("created_at", "createdAt", "sent_at", "date"),
}

REVIEW_FIELDS: dict[str, tuple[str, ...]] = {
    "id": ("id", "review_id", "reviewId"),
    "listing_id": ("listing_id", "listingId"),
    "reservation_id": ("reservation_id", "reservationId"),
    "rating": ("rating", "overall_rating", "score"),
    "text": ("text", "review_text", "comments", "public_review"),
    "response": ("response", "host_response", "reply"),
    "created_at": ("created_at", "submitted_at", "date"),
}

# Case-insensitive; anything not listed falls back to ACCEPTED (flagged)
STATUS_ALIASES: dict[str, str] = {
    "accepted": "ACCEPTED",
    "confirmed": "ACCEPTED",
    "moved": "MOVED",
    "extended": "EXTENDED",
    "pre-approved": "PRE_APPROVED",
    "preapproved": "PRE_APPROVED",
    "pre_approved": "PRE_APPROVED",
    "inquiry": "INQUIRY",
    "pending": "PENDING",
    "awaiting_payment": "PENDING",
    "canceled": "CANCELLED",
    "cancelled": "CANCELLED",
    "declined": "CANCELLED",
    "denied": "CANCELLED",
    "completed": "COMPLETED",
    "checked_out": "COMPLETED",
}
FALLBACK_STATUS = "ACCEPTED"

# Checked in order: a "guest host" sender string counts as a guest
SENDER_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("GUEST", ("guest", "traveler", "booker")),
    ("HOST", ("host", "owner", "manager")),
    ("AUTOMATION", ("auto", "bot", "system")),
)
DEFAULT_SENDER = "GUEST"


# -------------------------
# Coercion
# -------------------------
def _blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and not v.strip())


def resolve(raw: Mapping[str, Any], candidates: tuple[str, ...]) -> Any:
    for key in candidates:
        v = raw.get(key)
        if not _blank(v):
            return v
    return None


def to_float(v: Any) -> Optional[float]:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, (int, float)):
        f = float(v)
    else:
        s = str(v).strip().replace("$", "").replace(",", "")
        if not s:
            return None
        try:
            f = float(s)
        except ValueError:
            return None
    return None if math.isnan(f) or math.isinf(f) else f


def to_int(v: Any) -> Optional[int]:
    f = to_float(v)
    return int(f) if f is not None else None


def to_str(v: Any) -> Optional[str]:
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, float) and v.is_integer():
        # phones occasionally arrive as floats
        v = int(v)
    if isinstance(v, (dict, list)):
        return None
    s = str(v).strip()
    return s or None


def to_datetime(v: Any) -> Optional[datetime]:
    """Naive UTC datetime, or None when the value cannot be read as a date."""
    if v is None or isinstance(v, bool):
        return None
    if isinstance(v, datetime):
        dt = v
    elif isinstance(v, date):
        dt = datetime(v.year, v.month, v.day)
    elif isinstance(v, (int, float)):
        if v <= 0:
            return None
        # epoch millis vs seconds
        secs = v / 1000.0 if v > 1e11 else float(v)
        try:
            dt = datetime.fromtimestamp(secs, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        s = str(v).strip()
        if not s:
            return None
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


# -------------------------
# Records
# -------------------------
@dataclass(frozen=True)
class ListingData:
    listing_id: Optional[str]
    name: str
    address: Optional[str]
    city: Optional[str]
    state: Optional[str]
    country: Optional[str]
    bedrooms: Optional[int]
    bathrooms: Optional[float]
    max_guests: Optional[int]
    title: Optional[str]
    description: Optional[str]
    amenities: Any
    photos_meta: Any
    house_rules: Optional[str]
    missing: tuple[str, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.missing

    def snapshot_content(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "amenities": self.amenities,
            "photos_meta": self.photos_meta,
            "house_rules": self.house_rules,
        }


@dataclass(frozen=True)
class GuestData:
    guest_id: Optional[str]
    name: Optional[str]
    email: Optional[str]
    phone: Optional[str]


@dataclass(frozen=True)
class ReservationData:
    reservation_id: Optional[str]
    listing_id: Optional[str]
    status: str
    upstream_status: Optional[str]
    status_recognized: bool
    check_in: Optional[datetime]
    check_out: Optional[datetime]
    nights: int
    total: Optional[float]
    nightly_rate: Optional[float]
    cleaning_fee: Optional[float]
    guest_count: Optional[int]
    booked_at: Optional[datetime]
    channel: Optional[str]
    guest: Optional[GuestData]
    missing: tuple[str, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.missing


@dataclass(frozen=True)
class ThreadData:
    thread_id: Optional[str]
    listing_id: Optional[str]
    reservation_id: Optional[str]
    guest_id: Optional[str]
    last_message_at: Optional[datetime]
    status: Optional[str]


@dataclass(frozen=True)
class MessageData:
    message_id: Optional[str]
    sender_type: str
    content: str
    created_at: Optional[datetime]


@dataclass(frozen=True)
class ReviewData:
    review_id: Optional[str]
    listing_id: Optional[str]
    reservation_id: Optional[str]
    rating: Optional[float]
    text: Optional[str]
    response: Optional[str]
    created_at: Optional[datetime]
    raw: dict[str, Any] = field(default_factory=dict)

    def event_payload(self) -> dict[str, Any]:
        payload = dict(self.raw)
        payload.update(
            {
                "hostify_review_id": self.review_id,
                "listing_id": self.listing_id,
                "reservation_id": self.reservation_id,
                "rating": self.rating,
                "text": self.text,
                "response": self.response,
                "created_at": self.created_at.isoformat() if self.created_at else None,
            }
        )
        return payload


# -------------------------
# Normalizers
# -------------------------
def normalize_status(raw: Any) -> tuple[str, bool]:
    s = (to_str(raw) or "").lower()
    if s in STATUS_ALIASES:
        return STATUS_ALIASES[s], True
    return FALLBACK_STATUS, False


def infer_sender_type(sender: Any) -> str:
    s = (to_str(sender) or "").lower()
    for sender_type, needles in SENDER_KEYWORDS:
        if any(n in s for n in needles):
            return sender_type
    return DEFAULT_SENDER


def normalize_listing(raw: Mapping[str, Any]) -> ListingData:
    f = {k: resolve(raw, keys) for k, keys in LISTING_FIELDS.items()}
    listing_id = to_str(f["id"])
    return ListingData(
        listing_id=listing_id,
        name=to_str(f["name"]) or "Unnamed Listing",
        address=to_str(f["address"]),
        city=to_str(f["city"]),
        state=to_str(f["state"]),
        country=to_str(f["country"]),
        bedrooms=to_int(f["bedrooms"]),
        bathrooms=to_float(f["bathrooms"]),
        max_guests=to_int(f["max_guests"]),
        title=to_str(f["title"]),
        description=to_str(f["description"]),
        amenities=f["amenities"],
        photos_meta=f["photos_meta"],
        house_rules=to_str(f["house_rules"]),
        missing=() if listing_id else ("id",),
    )


def _normalize_guest(f: dict[str, Any]) -> Optional[GuestData]:
    guest = GuestData(
        guest_id=to_str(f["guest_id"]),
        name=to_str(f["guest_name"]),
        email=(to_str(f["guest_email"]) or "").lower() or None,
        phone=to_str(f["guest_phone"]),
    )
    if not (guest.guest_id or guest.email or guest.name):
        return None
    return guest


def normalize_reservation(raw: Mapping[str, Any]) -> ReservationData:
    f = {k: resolve(raw, keys) for k, keys in RESERVATION_FIELDS.items()}

    reservation_id = to_str(f["id"])
    check_in = to_datetime(f["check_in"])
    check_out = to_datetime(f["check_out"])

    missing = tuple(
        name
        for name, value in (("id", reservation_id), ("check_in", check_in), ("check_out", check_out))
        if value is None
    )

    nights = to_int(f["nights"])
    if nights is None:
        nights = max(0, (check_out.date() - check_in.date()).days) if check_in and check_out else 0

    status, recognized = normalize_status(f["status"])

    return ReservationData(
        reservation_id=reservation_id,
        listing_id=to_str(f["listing_id"]),
        status=status,
        upstream_status=to_str(f["status"]),
        status_recognized=recognized,
        check_in=check_in,
        check_out=check_out,
        nights=nights,
        total=to_float(f["total"]),
        nightly_rate=to_float(f["nightly_rate"]),
        cleaning_fee=to_float(f["cleaning_fee"]),
        guest_count=to_int(f["guest_count"]),
        booked_at=to_datetime(f["booked_at"]),
        channel=to_str(f["channel"]),
        guest=_normalize_guest(f),
        missing=missing,
    )


def normalize_thread(raw: Mapping[str, Any]) -> ThreadData:
    f = {k: resolve(raw, keys) for k, keys in THREAD_FIELDS.items()}
    return ThreadData(
        thread_id=to_str(f["id"]),
        listing_id=to_str(f["listing_id"]),
        reservation_id=to_str(f["reservation_id"]),
        guest_id=to_str(f["guest_id"]),
        last_message_at=to_datetime(f["last_message_at"]),
        status=to_str(f["status"]),
    )


def normalize_message(raw: Mapping[str, Any]) -> MessageData:
    f = {k: resolve(raw, keys) for k, keys in MESSAGE_FIELDS.items()}
    return MessageData(
        message_id=to_str(f["id"]),
        sender_type=infer_sender_type(f["sender"]),
        content=to_str(f["content"]) or "(empty)",
        created_at=to_datetime(f["created_at"]),
    )


def normalize_review(raw: Mapping[str, Any]) -> ReviewData:
    f = {k: resolve(raw, keys) for k, keys in REVIEW_FIELDS.items()}
    return ReviewData(
        review_id=to_str(f["id"]),
        listing_id=to_str(f["listing_id"]),
        reservation_id=to_str(f["reservation_id"]),
        rating=to_float(f["rating"]),
        text=to_str(f["text"]),
        response=to_str(f["response"]),
        created_at=to_datetime(f["created_at"]),
        raw=dict(raw),
    )
