# rentalsync/services/webhook_ingestor.py
"""
Hostify delivers webhooks through Amazon SNS. Every POST is one of:

  SubscriptionConfirmation  -> fetch SubscribeURL (provider domain only)
  UnsubscribeConfirmation   -> acknowledge
  Notification              -> log once by MessageId, dispatch a scoped sync

SNS redelivers anything that does not get a 2xx, so a notification is only
acknowledged after its event row and its dispatch both succeeded.
"""
from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional
from urllib.parse import urlparse

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.normalizers import resolve, to_str
from ..models import WebhookRegistration
from .sync_events import event_seen, record_once

log = logging.getLogger("rentalsync.webhooks")

DEFAULT_ALLOWED_DOMAIN = ".amazonaws.com"

RESERVATION_SUBJECTS = ("new_reservation", "update_reservation", "move_reservation")
THREAD_SUBJECTS = ("message_new",)
LISTING_SUBJECTS = ("create_listing", "update_listing", "create_update_listing", "listing_photo_processed")

NOTIFICATION_FIELDS: dict[str, tuple[str, ...]] = {
    "subject": ("notification_type", "type", "event"),
    "reservation_id": ("reservation_id", "reservationId", "id"),
    "thread_id": ("thread_id", "threadId", "inbox_id", "id"),
    "listing_id": ("listing_id", "listingId"),
}


@dataclass(frozen=True)
class ScopedSync:
    """A reconciliation restricted to one entity: listing | reservation | thread."""

    kind: str
    entity_id: str
    listing_id: Optional[str] = None


@dataclass(frozen=True)
class WebhookResponse:
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


def _ok(**extra: Any) -> WebhookResponse:
    return WebhookResponse(200, {"success": True, **extra})


def _error(status_code: int, message: str) -> WebhookResponse:
    return WebhookResponse(status_code, {"error": message})


def is_allowed_subscribe_url(url: str, allowed_domain: str = DEFAULT_ALLOWED_DOMAIN) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    if parsed.scheme != "https":
        return False
    host = (parsed.hostname or "").lower()
    suffix = allowed_domain.lower()
    bare = suffix.lstrip(".")
    return bool(host) and (host == bare or host.endswith("." + bare))


def parse_inner_message(message: Any) -> dict[str, Any]:
    if isinstance(message, dict):
        return message
    if isinstance(message, str):
        try:
            parsed = json.loads(message)
        except ValueError:
            return {"raw": message}
        return parsed if isinstance(parsed, dict) else {"raw": parsed}
    return {"raw": message}


def dedupe_key_for(payload: dict[str, Any], body: bytes) -> str:
    message_id = to_str(payload.get("MessageId"))
    if message_id:
        return f"sns:{message_id}"
    return "sns-body:" + hashlib.sha256(body).hexdigest()


def notification_subject(payload: dict[str, Any], inner: dict[str, Any]) -> str:
    subject = to_str(payload.get("Subject")) or to_str(resolve(inner, NOTIFICATION_FIELDS["subject"]))
    return subject or "unknown"


def scoped_sync_for(subject: str, inner: dict[str, Any]) -> Optional[ScopedSync]:
    """Maps a notification to the reconciliation it should trigger, or None (log only)."""
    listing_id = to_str(resolve(inner, NOTIFICATION_FIELDS["listing_id"]))

    if subject in RESERVATION_SUBJECTS:
        rid = to_str(resolve(inner, NOTIFICATION_FIELDS["reservation_id"]))
        return ScopedSync("reservation", rid, listing_id) if rid else None

    if subject in THREAD_SUBJECTS:
        tid = to_str(resolve(inner, NOTIFICATION_FIELDS["thread_id"]))
        return ScopedSync("thread", tid, listing_id) if tid else None

    if subject in LISTING_SUBJECTS:
        lid = listing_id or to_str(inner.get("id"))
        return ScopedSync("listing", lid, lid) if lid else None

    return None


class WebhookIngestor:
    def __init__(
        self,
        db: Session,
        *,
        confirm_subscription: Callable[[str], bool],
        dispatch: Callable[[ScopedSync], None],
        allowed_domain: str = DEFAULT_ALLOWED_DOMAIN,
    ) -> None:
        self.db = db
        self._confirm = confirm_subscription
        self._dispatch = dispatch
        self._allowed_domain = allowed_domain

    def handle(self, body: bytes) -> WebhookResponse:
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            log.warning("hostify webhook with invalid JSON body")
            return _error(400, "Invalid JSON")
        if not isinstance(payload, dict):
            log.warning("hostify webhook body is not a JSON object")
            return _error(400, "Invalid JSON")

        sns_type = payload.get("Type")
        if sns_type == "SubscriptionConfirmation":
            return self._subscription_confirmation(payload)
        if sns_type == "UnsubscribeConfirmation":
            log.info("hostify unsubscribe confirmation for %s", payload.get("TopicArn"))
            return _ok()
        if sns_type == "Notification":
            return self._notification(payload, body)

        log.warning("unknown SNS message type %r", sns_type)
        return _ok()

    # -------------------------
    # SubscriptionConfirmation
    # -------------------------
    def _subscription_confirmation(self, payload: dict[str, Any]) -> WebhookResponse:
        url = to_str(payload.get("SubscribeURL"))
        if not url:
            log.warning("subscription confirmation without SubscribeURL")
            return _error(400, "Missing SubscribeURL")

        if not is_allowed_subscribe_url(url, self._allowed_domain):
            log.warning("refusing SubscribeURL outside %s: %s", self._allowed_domain, url)
            return _error(400, "Invalid SubscribeURL")

        try:
            confirmed = bool(self._confirm(url))
        except Exception:
            log.exception("error confirming SNS subscription")
            confirmed = False

        topic_arn = to_str(payload.get("TopicArn"))
        if not confirmed:
            log.error("SNS subscription not confirmed for topic %s", topic_arn)
            return _ok()

        if topic_arn:
            n = self._mark_confirmed(topic_arn)
            self.db.commit()
            log.info("SNS subscription confirmed for %s (%d registrations)", topic_arn, n)
        return _ok()

    def _mark_confirmed(self, topic_arn: str) -> int:
        rows = list(self.db.scalars(select(WebhookRegistration).where(WebhookRegistration.topic_arn == topic_arn)))
        if not rows:
            # first confirmation for this topic: adopt registrations that never saw one
            rows = list(self.db.scalars(select(WebhookRegistration).where(WebhookRegistration.topic_arn.is_(None))))

        now = datetime.utcnow()
        for r in rows:
            r.topic_arn = topic_arn
            r.subscription_confirmed = True
            r.updated_at = now
        self.db.flush()
        return len(rows)

    # -------------------------
    # Notification
    # -------------------------
    def _notification(self, payload: dict[str, Any], body: bytes) -> WebhookResponse:
        key = dedupe_key_for(payload, body)
        if event_seen(self.db, key):
            log.info("duplicate SNS notification %s", key)
            return _ok(duplicate=True)

        inner = parse_inner_message(payload.get("Message"))
        subject = notification_subject(payload, inner)
        topic_arn = to_str(payload.get("TopicArn"))

        event = record_once(
            self.db,
            dedupe_key=key,
            event_type=f"hostify.{subject}",
            payload={
                "sns_message_id": to_str(payload.get("MessageId")),
                "subject": subject,
                "topic_arn": topic_arn,
                "message": inner,
                "received_at": datetime.utcnow().isoformat(),
            },
        )
        if event is None:
            log.info("duplicate SNS notification %s (concurrent delivery)", key)
            return _ok(duplicate=True)

        if topic_arn:
            self._stamp_received(topic_arn)

        action = scoped_sync_for(subject, inner)
        if action is None:
            log.info("hostify notification %s logged, no scoped sync", subject)
        else:
            try:
                self._dispatch(action)
            except Exception:
                self.db.rollback()
                log.exception("dispatch failed for %s %s", action.kind, action.entity_id)
                return _error(500, "Webhook processing failed")
            event.outcome = "dispatched"

        self.db.commit()
        log.info(
            "hostify notification %s accepted",
            subject,
            extra={"integration": "hostify", "message_id": to_str(payload.get("MessageId"))},
        )
        return _ok()

    def _stamp_received(self, topic_arn: str) -> None:
        now = datetime.utcnow()
        for r in self.db.scalars(select(WebhookRegistration).where(WebhookRegistration.topic_arn == topic_arn)):
            r.last_received_at = now
            r.updated_at = now
        self.db.flush()
