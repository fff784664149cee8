# rentalsync/routers/integrations.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db import get_db
from ..models import SyncCheckpoint, WebhookRegistration
from ..schemas import IntegrationsHealthOut
from ..services.integration_health import list_health

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("/health", response_model=IntegrationsHealthOut)
def integrations_health(db: Session = Depends(get_db)):
    checkpoints = db.scalars(
        select(SyncCheckpoint).order_by(SyncCheckpoint.integration.asc(), SyncCheckpoint.entity_type.asc())
    ).all()
    webhooks = db.scalars(select(WebhookRegistration).order_by(WebhookRegistration.notification_type.asc())).all()
    return {"health": list_health(db), "checkpoints": list(checkpoints), "webhooks": list(webhooks)}
