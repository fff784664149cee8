# rentalsync/models.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .db import Base


# -----------------------------
# Users (owner assignment only)
# -----------------------------
class AppUser(Base):
    __tablename__ = "app_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="OWNER")  # OWNER|ADMIN|CLEANER|INTERNAL_OPS
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    properties: Mapped[List["Property"]] = relationship(back_populates="owner")


# -----------------------------
# Core domain: Properties / Listings
# -----------------------------
class Property(Base):
    __tablename__ = "properties"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    owner_id: Mapped[int] = mapped_column(Integer, ForeignKey("app_users.id"), nullable=False, index=True)

    hostify_listing_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    bedrooms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bathrooms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_guests: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    owner: Mapped["AppUser"] = relationship(back_populates="properties")
    snapshots: Mapped[List["ListingSnapshot"]] = relationship(
        back_populates="property", order_by="ListingSnapshot.version"
    )
    reservations: Mapped[List["Reservation"]] = relationship(back_populates="property")
    threads: Mapped[List["MessageThread"]] = relationship(back_populates="property")


class ListingSnapshot(Base):
    """
    Append-only ledger of a listing's marketing content.
    (property_id, version) is unique: two writers racing to append the same
    next version cannot both succeed.
    """

    __tablename__ = "listing_snapshots"
    __table_args__ = (UniqueConstraint("property_id", "version", name="uq_listing_snapshots_property_version"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    property_id: Mapped[int] = mapped_column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    amenities_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    photos_meta_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    house_rules: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    snapshot_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    property: Mapped["Property"] = relationship(back_populates="snapshots")


# -----------------------------
# Guests / Reservations
# -----------------------------
class Guest(Base):
    __tablename__ = "guests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    hostify_guest_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, unique=True, index=True)

    name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True, index=True)
    phone: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class Reservation(Base):
    __tablename__ = "reservations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    hostify_reservation_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    property_id: Mapped[int] = mapped_column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    guest_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("guests.id"), nullable=True, index=True)

    # INQUIRY|PENDING|PRE_APPROVED|ACCEPTED|MOVED|EXTENDED|CANCELLED|COMPLETED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACCEPTED")
    upstream_status: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)

    check_in: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    check_out: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    nights: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    total: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    nightly_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    cleaning_fee: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    guest_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    channel: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    booked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    property: Mapped["Property"] = relationship(back_populates="reservations")
    guest: Mapped[Optional["Guest"]] = relationship()


# -----------------------------
# Messaging
# -----------------------------
class MessageThread(Base):
    __tablename__ = "message_threads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    hostify_thread_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    property_id: Mapped[int] = mapped_column(Integer, ForeignKey("properties.id"), nullable=False, index=True)
    reservation_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("reservations.id"), nullable=True)
    guest_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("guests.id"), nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    last_message_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    property: Mapped["Property"] = relationship(back_populates="threads")
    messages: Mapped[List["Message"]] = relationship(back_populates="thread", order_by="Message.created_at")


class Message(Base):
    """Immutable once created; re-sync and webhook redelivery only insert-if-absent."""

    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    hostify_message_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    thread_id: Mapped[int] = mapped_column(Integer, ForeignKey("message_threads.id"), nullable=False, index=True)

    sender_type: Mapped[str] = mapped_column(String(20), nullable=False)  # GUEST|HOST|AUTOMATION
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)

    thread: Mapped["MessageThread"] = relationship(back_populates="messages")


# -----------------------------
# Event log / idempotency log
# -----------------------------
class SyncEvent(Base):
    """
    Domain events emitted by the reconciler plus the idempotency log for
    reviews and webhook notifications. A non-null dedupe_key is unique.
    """

    __tablename__ = "sync_events"
    __table_args__ = (
        UniqueConstraint("dedupe_key", name="uq_sync_events_dedupe_key"),
        Index("ix_sync_events_type_id", "event_type", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    event_type: Mapped[str] = mapped_column(String(80), nullable=False, index=True)
    dedupe_key: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)
    property_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("properties.id"), nullable=True, index=True)
    payload_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    outcome: Mapped[str] = mapped_column(String(40), nullable=False, default="recorded")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


# -----------------------------
# Sync bookkeeping
# -----------------------------
class SyncCheckpoint(Base):
    __tablename__ = "sync_checkpoints"
    __table_args__ = (UniqueConstraint("integration", "entity_type", name="uq_sync_checkpoints_integration_entity"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    integration: Mapped[str] = mapped_column(String(60), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    total_synced: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class IntegrationHealth(Base):
    __tablename__ = "integration_health"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    integration: Mapped[str] = mapped_column(String(80), nullable=False, unique=True, index=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="healthy")  # healthy|error
    last_success_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    last_failure_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    consecutive_failures: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)


class WebhookRegistration(Base):
    __tablename__ = "webhook_registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    notification_type: Mapped[str] = mapped_column(String(60), nullable=False, unique=True, index=True)

    endpoint_url: Mapped[str] = mapped_column(String(500), nullable=False)
    hostify_webhook_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    auth_secret_ref: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)

    topic_arn: Mapped[Optional[str]] = mapped_column(String(300), nullable=True, index=True)
    subscription_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_received_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow)
