# rentalsync/services/webhook_registrar.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..clients.hostify import HostifyClient
from ..domain.normalizers import to_str
from ..models import WebhookRegistration

log = logging.getLogger("rentalsync.webhooks.registrar")

REQUIRED_WEBHOOK_TYPES: tuple[str, ...] = (
    "message_new",
    "new_reservation",
    "update_reservation",
    "move_reservation",
)

CALLBACK_PATH = "/api/webhooks/hostify"


@dataclass(frozen=True)
class RegistrationResult:
    callback_url: str
    created: list[str] = field(default_factory=list)
    already_registered: list[str] = field(default_factory=list)


def callback_url_for(api_url: str) -> str:
    return api_url.rstrip("/") + CALLBACK_PATH


def _ours(webhook: dict[str, Any], api_url: str) -> bool:
    url = to_str(webhook.get("url")) or ""
    return bool(url) and api_url.rstrip("/") in url


def _upsert_registration(
    db: Session,
    *,
    notification_type: str,
    endpoint_url: str,
    hostify_webhook_id: Optional[str],
    auth_secret_ref: Optional[str],
) -> WebhookRegistration:
    now = datetime.utcnow()
    row = db.scalar(select(WebhookRegistration).where(WebhookRegistration.notification_type == notification_type))
    if row is None:
        row = WebhookRegistration(notification_type=notification_type, endpoint_url=endpoint_url, created_at=now)
        db.add(row)

    row.endpoint_url = endpoint_url
    if hostify_webhook_id is not None:
        row.hostify_webhook_id = hostify_webhook_id
    row.auth_secret_ref = auth_secret_ref
    row.updated_at = now
    db.flush()
    return row


def register_webhooks(
    db: Session,
    client: HostifyClient,
    *,
    api_url: str,
    auth_secret: Optional[str] = None,
    notification_types: tuple[str, ...] = REQUIRED_WEBHOOK_TYPES,
) -> RegistrationResult:
    """
    Ensure one upstream subscription per notification type points at us.
    Running it twice creates nothing the second time.
    """
    callback = callback_url_for(api_url)
    auth_ref = "env" if auth_secret else None

    existing: dict[str, Optional[str]] = {}
    for wh in client.list_webhooks():
        ntype = to_str(wh.get("notification_type"))
        if ntype and _ours(wh, api_url):
            existing.setdefault(ntype, to_str(wh.get("id")))

    created: list[str] = []
    already: list[str] = []
    for ntype in notification_types:
        if ntype in existing:
            log.info("hostify webhook %s already registered", ntype)
            already.append(ntype)
            webhook_id = existing[ntype]
        else:
            result = client.create_webhook(ntype, callback, auth_secret)
            webhook_id = to_str(result.get("id"))
            created.append(ntype)
            log.info("registered hostify webhook %s -> %s", ntype, callback)

        _upsert_registration(
            db,
            notification_type=ntype,
            endpoint_url=callback,
            hostify_webhook_id=webhook_id,
            auth_secret_ref=auth_ref,
        )
        db.commit()

    return RegistrationResult(callback_url=callback, created=created, already_registered=already)
