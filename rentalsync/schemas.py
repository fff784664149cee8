# rentalsync/schemas.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# -------------------- Integration health --------------------

class IntegrationHealthOut(BaseModel):
    integration: str
    status: str
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="before")
    @classmethod
    def _decode_metadata(cls, data: Any) -> Any:
        if not hasattr(data, "metadata_json"):
            return data
        try:
            meta = json.loads(data.metadata_json or "{}")
        except ValueError:
            meta = {}
        return {
            "integration": data.integration,
            "status": data.status,
            "last_success_at": data.last_success_at,
            "last_failure_at": data.last_failure_at,
            "consecutive_failures": data.consecutive_failures,
            "error_message": data.error_message,
            "metadata": meta if isinstance(meta, dict) else {},
        }


class SyncCheckpointOut(BaseModel):
    integration: str
    entity_type: str
    total_synced: int
    completed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class WebhookRegistrationOut(BaseModel):
    notification_type: str
    endpoint_url: str
    hostify_webhook_id: Optional[str] = None
    subscription_confirmed: bool = False
    last_received_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class IntegrationsHealthOut(BaseModel):
    health: list[IntegrationHealthOut]
    checkpoints: list[SyncCheckpointOut]
    webhooks: list[WebhookRegistrationOut]
