from __future__ import annotations

import json

import httpx
from sqlalchemy import select

from conftest import json_response, make_client
from rentalsync.models import WebhookRegistration
from rentalsync.services.webhook_registrar import REQUIRED_WEBHOOK_TYPES, register_webhooks

API_URL = "https://sync.example.com"


class FakeWebhooksApi:
    def __init__(self, existing: list[dict] | None = None) -> None:
        self.hooks: list[dict] = list(existing or [])
        self.created: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            body = json.loads(request.content)
            hook = {"id": 900 + len(self.hooks), **body}
            self.hooks.append(hook)
            self.created.append(body)
            return json_response({"success": True, "webhook": hook})
        return json_response({"success": True, "webhooks": self.hooks})


def test_registers_missing_types_once(db):
    api = FakeWebhooksApi(
        existing=[
            {"id": 1, "notification_type": "message_new", "url": f"{API_URL}/api/webhooks/hostify"},
            # same type, someone else's endpoint: does not count
            {"id": 2, "notification_type": "new_reservation", "url": "https://other.example.com/hook"},
        ]
    )
    client = make_client(api)

    first = register_webhooks(db, client, api_url=API_URL, auth_secret="s3cret")
    second = register_webhooks(db, client, api_url=API_URL, auth_secret="s3cret")

    assert first.callback_url == f"{API_URL}/api/webhooks/hostify"
    assert sorted(first.created) == ["move_reservation", "new_reservation", "update_reservation"]
    assert first.already_registered == ["message_new"]
    assert second.created == []
    assert len(api.created) == 3
    assert all(c["auth"] == "s3cret" for c in api.created)

    rows = {r.notification_type: r for r in db.scalars(select(WebhookRegistration)).all()}
    assert set(rows) == set(REQUIRED_WEBHOOK_TYPES)
    assert rows["message_new"].hostify_webhook_id == "1"
    assert rows["new_reservation"].hostify_webhook_id is not None
    assert rows["new_reservation"].auth_secret_ref == "env"
    assert all(r.endpoint_url == f"{API_URL}/api/webhooks/hostify" for r in rows.values())
