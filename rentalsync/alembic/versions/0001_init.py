"""init schema: properties, snapshots, reservations, messaging, sync bookkeeping

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "app_users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=200), nullable=False),
        sa.Column("display_name", sa.String(length=160), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="OWNER"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("email", name="uq_app_users_email"),
    )

    op.create_table(
        "properties",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("app_users.id"), nullable=False),
        sa.Column("hostify_listing_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=255), nullable=True),
        sa.Column("city", sa.String(length=120), nullable=True),
        sa.Column("state", sa.String(length=120), nullable=True),
        sa.Column("country", sa.String(length=120), nullable=True),
        sa.Column("bedrooms", sa.Integer(), nullable=True),
        sa.Column("bathrooms", sa.Float(), nullable=True),
        sa.Column("max_guests", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("hostify_listing_id", name="uq_properties_hostify_listing_id"),
    )
    op.create_index("ix_properties_owner_id", "properties", ["owner_id"])

    op.create_table(
        "listing_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amenities_json", sa.Text(), nullable=True),
        sa.Column("photos_meta_json", sa.Text(), nullable=True),
        sa.Column("house_rules", sa.Text(), nullable=True),
        sa.Column("snapshot_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("property_id", "version", name="uq_listing_snapshots_property_version"),
    )
    op.create_index("ix_listing_snapshots_property_id", "listing_snapshots", ["property_id"])
    op.create_index("ix_listing_snapshots_content_hash", "listing_snapshots", ["content_hash"])

    op.create_table(
        "guests",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("hostify_guest_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=True),
        sa.Column("email", sa.String(length=200), nullable=True),
        sa.Column("phone", sa.String(length=40), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("hostify_guest_id", name="uq_guests_hostify_guest_id"),
    )
    op.create_index("ix_guests_email", "guests", ["email"])

    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("hostify_reservation_id", sa.String(length=64), nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("guest_id", sa.Integer(), sa.ForeignKey("guests.id"), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="ACCEPTED"),
        sa.Column("upstream_status", sa.String(length=60), nullable=True),
        sa.Column("check_in", sa.DateTime(), nullable=False),
        sa.Column("check_out", sa.DateTime(), nullable=False),
        sa.Column("nights", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total", sa.Float(), nullable=True),
        sa.Column("nightly_rate", sa.Float(), nullable=True),
        sa.Column("cleaning_fee", sa.Float(), nullable=True),
        sa.Column("guest_count", sa.Integer(), nullable=True),
        sa.Column("channel", sa.String(length=60), nullable=True),
        sa.Column("booked_at", sa.DateTime(), nullable=True),
        sa.Column("synced_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("hostify_reservation_id", name="uq_reservations_hostify_reservation_id"),
    )
    op.create_index("ix_reservations_property_id", "reservations", ["property_id"])
    op.create_index("ix_reservations_guest_id", "reservations", ["guest_id"])

    op.create_table(
        "message_threads",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("hostify_thread_id", sa.String(length=64), nullable=False),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("reservation_id", sa.Integer(), sa.ForeignKey("reservations.id"), nullable=True),
        sa.Column("guest_id", sa.Integer(), sa.ForeignKey("guests.id"), nullable=True),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="open"),
        sa.Column("last_message_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("hostify_thread_id", name="uq_message_threads_hostify_thread_id"),
    )
    op.create_index("ix_message_threads_property_id", "message_threads", ["property_id"])

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("hostify_message_id", sa.String(length=64), nullable=False),
        sa.Column("thread_id", sa.Integer(), sa.ForeignKey("message_threads.id"), nullable=False),
        sa.Column("sender_type", sa.String(length=20), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("hostify_message_id", name="uq_messages_hostify_message_id"),
    )
    op.create_index("ix_messages_thread_id", "messages", ["thread_id"])

    op.create_table(
        "sync_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_type", sa.String(length=80), nullable=False),
        sa.Column("dedupe_key", sa.String(length=160), nullable=True),
        sa.Column("property_id", sa.Integer(), sa.ForeignKey("properties.id"), nullable=True),
        sa.Column("payload_json", sa.Text(), nullable=True),
        sa.Column("outcome", sa.String(length=40), nullable=False, server_default="recorded"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("dedupe_key", name="uq_sync_events_dedupe_key"),
    )
    op.create_index("ix_sync_events_event_type", "sync_events", ["event_type"])
    op.create_index("ix_sync_events_property_id", "sync_events", ["property_id"])
    op.create_index("ix_sync_events_type_id", "sync_events", ["event_type", "id"])

    op.create_table(
        "sync_checkpoints",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("integration", sa.String(length=60), nullable=False),
        sa.Column("entity_type", sa.String(length=40), nullable=False),
        sa.Column("total_synced", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("integration", "entity_type", name="uq_sync_checkpoints_integration_entity"),
    )

    op.create_table(
        "integration_health",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("integration", sa.String(length=80), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="healthy"),
        sa.Column("last_success_at", sa.DateTime(), nullable=True),
        sa.Column("last_failure_at", sa.DateTime(), nullable=True),
        sa.Column("consecutive_failures", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("integration", name="uq_integration_health_integration"),
    )

    op.create_table(
        "webhook_registrations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("notification_type", sa.String(length=60), nullable=False),
        sa.Column("endpoint_url", sa.String(length=500), nullable=False),
        sa.Column("hostify_webhook_id", sa.String(length=64), nullable=True),
        sa.Column("auth_secret_ref", sa.String(length=40), nullable=True),
        sa.Column("topic_arn", sa.String(length=300), nullable=True),
        sa.Column("subscription_confirmed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("last_received_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("notification_type", name="uq_webhook_registrations_notification_type"),
    )
    op.create_index("ix_webhook_registrations_topic_arn", "webhook_registrations", ["topic_arn"])


def downgrade() -> None:
    op.drop_table("webhook_registrations")
    op.drop_table("integration_health")
    op.drop_table("sync_checkpoints")
    op.drop_table("sync_events")
    op.drop_table("messages")
    op.drop_table("message_threads")
    op.drop_table("reservations")
    op.drop_table("guests")
    op.drop_table("listing_snapshots")
    op.drop_table("properties")
    op.drop_table("app_users")
