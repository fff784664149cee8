from __future__ import annotations

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from rentalsync.db import get_db
from rentalsync.main import create_app
from rentalsync.routers import webhooks as webhooks_router
from rentalsync.services.integration_health import IntegrationHealthTracker


@pytest.fixture
def dispatched(monkeypatch):
    calls = []
    monkeypatch.setattr(webhooks_router, "dispatch_scoped_sync", calls.append)
    return calls


@pytest.fixture
def client(session_factory):
    app = create_app()

    def _get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_db
    return TestClient(app)


def _notification(message_id: str) -> dict:
    return {
        "Type": "Notification",
        "MessageId": message_id,
        "TopicArn": "arn:aws:sns:us-east-1:1:hostify",
        "Subject": "new_reservation",
        "Message": json.dumps({"reservation_id": 31, "listing_id": 10}),
    }


def test_webhook_route_end_to_end(client, dispatched):
    r1 = client.post("/api/webhooks/hostify", content=json.dumps(_notification("sns-1")))
    r2 = client.post("/api/webhooks/hostify", content=json.dumps(_notification("sns-1")))

    assert r1.status_code == 200
    assert r1.json() == {"success": True}
    assert r2.status_code == 200
    assert r2.json() == {"success": True, "duplicate": True}
    assert len(dispatched) == 1
    assert dispatched[0].kind == "reservation"
    assert dispatched[0].entity_id == "31"


def test_webhook_route_unknown_provider(client, dispatched):
    r = client.post("/api/webhooks/airbnb", content=json.dumps(_notification("sns-2")))
    assert r.status_code == 404


def test_webhook_route_invalid_json(client, dispatched):
    r = client.post("/api/webhooks/hostify", content=b"{{{")
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid JSON"}


def test_webhook_route_dispatch_failure_returns_500(client, monkeypatch):
    def boom(action):
        raise RuntimeError("queue unavailable")

    monkeypatch.setattr(webhooks_router, "dispatch_scoped_sync", boom)
    r = client.post("/api/webhooks/hostify", content=json.dumps(_notification("sns-3")))

    assert r.status_code == 500
    assert r.json() == {"error": "Webhook processing failed"}


def test_request_id_is_echoed(client, dispatched):
    r = client.post(
        "/api/webhooks/hostify",
        content=json.dumps({"Type": "UnsubscribeConfirmation"}),
        headers={"X-Amz-Sns-Message-Id": "abc-123"},
    )
    assert r.status_code == 200
    assert r.headers["X-Request-ID"] == "abc-123"


def test_integrations_health_view(client, session_factory):
    tracker = IntegrationHealthTracker(session_factory)
    tracker.record_success("hostify.listings", {"created": 3})
    tracker.record_failure("hostify.reviews", RuntimeError("upstream 503"))

    r = client.get("/api/integrations/health")

    assert r.status_code == 200
    body = r.json()
    by_name = {h["integration"]: h for h in body["health"]}
    assert by_name["hostify.listings"]["status"] == "healthy"
    assert by_name["hostify.listings"]["metadata"] == {"created": 3}
    assert by_name["hostify.reviews"]["status"] == "error"
    assert by_name["hostify.reviews"]["consecutive_failures"] == 1
    assert body["checkpoints"] == []
    assert body["webhooks"] == []


def test_webhook_handling_runs_off_the_event_loop(client, monkeypatch):
    seen = {}

    def dispatch(action):
        try:
            asyncio.get_running_loop()
            seen["on_loop"] = True
        except RuntimeError:
            seen["on_loop"] = False

    monkeypatch.setattr(webhooks_router, "dispatch_scoped_sync", dispatch)
    r = client.post("/api/webhooks/hostify", content=json.dumps(_notification("sns-loop")))

    assert r.status_code == 200
    assert seen == {"on_loop": False}
