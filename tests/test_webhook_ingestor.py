from __future__ import annotations

import json

import pytest
from sqlalchemy import func, select

from rentalsync.models import SyncEvent, WebhookRegistration
from rentalsync.services import sync_events, webhook_ingestor
from rentalsync.services.webhook_ingestor import (
    ScopedSync,
    WebhookIngestor,
    is_allowed_subscribe_url,
    scoped_sync_for,
)

TOPIC = "arn:aws:sns:us-east-1:123456789012:hostify-new_reservation"


class Recorder:
    def __init__(self, *, fail: bool = False, confirm_ok: bool = True) -> None:
        self.dispatched: list[ScopedSync] = []
        self.fetched: list[str] = []
        self.fail = fail
        self.confirm_ok = confirm_ok

    def dispatch(self, action: ScopedSync) -> None:
        if self.fail:
            raise RuntimeError("broker down")
        self.dispatched.append(action)

    def confirm(self, url: str) -> bool:
        self.fetched.append(url)
        return self.confirm_ok


def _ingestor(db, rec: Recorder) -> WebhookIngestor:
    return WebhookIngestor(db, confirm_subscription=rec.confirm, dispatch=rec.dispatch)


def _notification(message_id: str | None = "msg-1", subject: str = "new_reservation", **inner) -> bytes:
    body = {
        "Type": "Notification",
        "TopicArn": TOPIC,
        "Subject": subject,
        "Message": json.dumps({"reservation_id": 4242, "listing_id": 10, **inner}),
    }
    if message_id is not None:
        body["MessageId"] = message_id
    return json.dumps(body).encode()


def _events(db) -> int:
    return db.scalar(select(func.count()).select_from(SyncEvent))


def test_notification_is_processed_once(db):
    db.add(WebhookRegistration(notification_type="new_reservation", endpoint_url="https://x/api/webhooks/hostify", topic_arn=TOPIC))
    db.commit()
    rec = Recorder()

    first = _ingestor(db, rec).handle(_notification())
    second = _ingestor(db, rec).handle(_notification())

    assert first.status_code == 200
    assert first.body == {"success": True}
    assert second.status_code == 200
    assert second.body == {"success": True, "duplicate": True}
    assert _events(db) == 1
    assert rec.dispatched == [ScopedSync("reservation", "4242", "10")]

    ev = db.scalar(select(SyncEvent))
    assert ev.event_type == "hostify.new_reservation"
    assert ev.dedupe_key == "sns:msg-1"

    reg = db.scalar(select(WebhookRegistration))
    assert reg.last_received_at is not None


def test_notification_without_message_id_dedupes_on_body(db):
    rec = Recorder()
    body = _notification(message_id=None)

    _ingestor(db, rec).handle(body)
    again = _ingestor(db, rec).handle(body)

    assert again.body.get("duplicate") is True
    ev = db.scalar(select(SyncEvent))
    assert ev.dedupe_key.startswith("sns-body:")


def test_subject_falls_back_to_inner_message(db):
    rec = Recorder()
    body = json.dumps(
        {
            "Type": "Notification",
            "MessageId": "m-2",
            "Message": json.dumps({"notification_type": "message_new", "thread_id": 77, "listing_id": 10}),
        }
    ).encode()

    res = _ingestor(db, rec).handle(body)

    assert res.status_code == 200
    assert rec.dispatched == [ScopedSync("thread", "77", "10")]
    assert db.scalar(select(SyncEvent.event_type)) == "hostify.message_new"


def test_unparseable_inner_message_is_kept_raw(db):
    rec = Recorder()
    body = json.dumps({"Type": "Notification", "MessageId": "m-3", "Subject": "something_else", "Message": "not json"}).encode()

    res = _ingestor(db, rec).handle(body)

    assert res.status_code == 200
    assert rec.dispatched == []
    payload = json.loads(db.scalar(select(SyncEvent.payload_json)))
    assert payload["message"] == {"raw": "not json"}


def test_dispatch_failure_rolls_back_and_allows_redelivery(db):
    failing = Recorder(fail=True)

    res = _ingestor(db, failing).handle(_notification(message_id="m-4"))

    assert res.status_code == 500
    assert res.body == {"error": "Webhook processing failed"}
    assert _events(db) == 0

    ok = Recorder()
    retry = _ingestor(db, ok).handle(_notification(message_id="m-4"))
    assert retry.body == {"success": True}
    assert len(ok.dispatched) == 1


@pytest.mark.parametrize("body", [b"{not json", b"[1, 2]", b"\xff\xfe"])
def test_invalid_json_is_rejected(db, body):
    res = _ingestor(db, Recorder()).handle(body)
    assert res.status_code == 400
    assert res.body == {"error": "Invalid JSON"}
    assert _events(db) == 0


def test_subscription_confirmation_missing_url(db):
    res = _ingestor(db, Recorder()).handle(json.dumps({"Type": "SubscriptionConfirmation"}).encode())
    assert res.status_code == 400
    assert res.body == {"error": "Missing SubscribeURL"}


@pytest.mark.parametrize(
    "url",
    [
        "https://evil.example.com/confirm",
        "https://amazonaws.com.evil.io/confirm",
        "http://sns.us-east-1.amazonaws.com/?Action=ConfirmSubscription",
        "https://sns.us-east-1.amazonaws.com.attacker.net/",
    ],
)
def test_subscription_confirmation_outside_provider_domain_is_never_fetched(db, url):
    rec = Recorder()
    body = json.dumps({"Type": "SubscriptionConfirmation", "SubscribeURL": url, "TopicArn": TOPIC}).encode()

    res = _ingestor(db, rec).handle(body)

    assert res.status_code == 400
    assert res.body == {"error": "Invalid SubscribeURL"}
    assert rec.fetched == []


def test_subscription_confirmation_marks_registrations(db):
    db.add(WebhookRegistration(notification_type="new_reservation", endpoint_url="https://x/api/webhooks/hostify"))
    db.commit()
    rec = Recorder()
    url = "https://sns.us-east-1.amazonaws.com/?Action=ConfirmSubscription&Token=abc"

    res = _ingestor(db, rec).handle(
        json.dumps({"Type": "SubscriptionConfirmation", "SubscribeURL": url, "TopicArn": TOPIC}).encode()
    )

    assert res.status_code == 200
    assert rec.fetched == [url]
    reg = db.scalar(select(WebhookRegistration))
    assert reg.subscription_confirmed is True
    assert reg.topic_arn == TOPIC


def test_failed_confirmation_still_acknowledged(db):
    rec = Recorder(confirm_ok=False)
    url = "https://sns.us-east-1.amazonaws.com/?Action=ConfirmSubscription"

    res = _ingestor(db, rec).handle(json.dumps({"Type": "SubscriptionConfirmation", "SubscribeURL": url}).encode())

    assert res.status_code == 200
    assert rec.fetched == [url]


def test_unsubscribe_and_unknown_types_are_acknowledged(db):
    for t in ("UnsubscribeConfirmation", "SomethingNew"):
        res = _ingestor(db, Recorder()).handle(json.dumps({"Type": t}).encode())
        assert res.status_code == 200
        assert res.body == {"success": True}
    assert _events(db) == 0


def test_allowed_subscribe_url_rules():
    assert is_allowed_subscribe_url("https://sns.eu-west-1.amazonaws.com/x")
    assert is_allowed_subscribe_url("https://amazonaws.com/x")
    assert not is_allowed_subscribe_url("https://notamazonaws.com/x")
    assert not is_allowed_subscribe_url("ftp://sns.amazonaws.com/x")


def test_scoped_sync_mapping():
    assert scoped_sync_for("update_listing", {"listing_id": 3}) == ScopedSync("listing", "3", "3")
    assert scoped_sync_for("move_reservation", {"id": 8, "listingId": 4}) == ScopedSync("reservation", "8", "4")
    assert scoped_sync_for("new_reservation", {}) is None
    assert scoped_sync_for("review_new", {"id": 1}) is None


def test_concurrent_delivery_losing_the_insert_race_is_a_duplicate(db, session_factory, monkeypatch):
    rec = Recorder()
    committed = []

    def seen_then_lose_race(session, key):
        # the other delivery commits right after our lookup
        if not committed:
            other = session_factory()
            try:
                other.add(SyncEvent(event_type="hostify.new_reservation", dedupe_key=key, payload_json="{}"))
                other.commit()
            finally:
                other.close()
            committed.append(key)
        return False

    monkeypatch.setattr(webhook_ingestor, "event_seen", seen_then_lose_race)
    monkeypatch.setattr(sync_events, "event_seen", seen_then_lose_race)

    res = _ingestor(db, rec).handle(_notification("msg-race"))

    assert res.status_code == 200
    assert res.body == {"success": True, "duplicate": True}
    assert committed == ["sns:msg-race"]
    assert rec.dispatched == []
    assert db.scalar(select(func.count()).select_from(SyncEvent).where(SyncEvent.dedupe_key == "sns:msg-race")) == 1
