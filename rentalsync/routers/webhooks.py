# rentalsync/routers/webhooks.py
from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..services.webhook_ingestor import ScopedSync, WebhookIngestor
from ..workers import sync_tasks

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

log = logging.getLogger("rentalsync.webhooks")

PROVIDERS = ("hostify",)
CONFIRM_TIMEOUT_SECONDS = 10.0


def confirm_subscription(url: str) -> bool:
    resp = httpx.get(url, timeout=CONFIRM_TIMEOUT_SECONDS)
    if resp.is_success:
        return True
    log.error("SNS SubscribeURL returned %s", resp.status_code, extra={"status_code": resp.status_code})
    return False


def dispatch_scoped_sync(action: ScopedSync) -> None:
    sync_tasks.enqueue_scoped_sync(action)


@router.post("/{provider}")
async def receive_webhook(provider: str, request: Request, db: Session = Depends(get_db)):
    if provider not in PROVIDERS:
        raise HTTPException(status_code=404, detail=f"unknown webhook provider: {provider}")

    body = await request.body()
    ingestor = WebhookIngestor(
        db,
        confirm_subscription=confirm_subscription,
        dispatch=dispatch_scoped_sync,
        allowed_domain=settings.webhook_subscribe_domain,
    )
    try:
        # session, SubscribeURL fetch and broker enqueue all block
        res = await run_in_threadpool(ingestor.handle, body)
    except Exception:
        db.rollback()
        log.exception("hostify webhook handling failed")
        return JSONResponse(status_code=500, content={"error": "Webhook processing failed"})

    return JSONResponse(status_code=res.status_code, content=res.body)
