# rentalsync/services/integration_health.py
from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import IntegrationHealth

log = logging.getLogger("rentalsync.health")

HEALTHY = "healthy"
ERROR = "error"

AlertFn = Callable[[str, IntegrationHealth], None]


def log_alert(name: str, row: IntegrationHealth) -> None:
    log.error(
        "integration %s failing: %d consecutive failures, last error: %s",
        name,
        row.consecutive_failures,
        row.error_message,
        extra={"integration": name},
    )


def _get_or_create(db: Session, name: str) -> IntegrationHealth:
    row = db.scalar(select(IntegrationHealth).where(IntegrationHealth.integration == name))
    if row is None:
        row = IntegrationHealth(integration=name, status=HEALTHY, consecutive_failures=0)
        db.add(row)
        db.flush()
    return row


class IntegrationHealthTracker:
    """
    Persists one IntegrationHealth row per routine. Each call opens its own
    session so a broken routine session cannot poison the bookkeeping.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        alert: Optional[AlertFn] = None,
        alert_threshold: int = 3,
    ) -> None:
        self._session_factory = session_factory
        self._alert = alert or log_alert
        self._threshold = max(1, int(alert_threshold))

    def record_success(self, name: str, metadata: Optional[dict[str, Any]] = None) -> None:
        db = self._session_factory()
        try:
            now = datetime.utcnow()
            row = _get_or_create(db, name)
            row.status = HEALTHY
            row.last_success_at = now
            row.consecutive_failures = 0
            row.error_message = None
            row.metadata_json = json.dumps(metadata or {}, default=str)
            row.updated_at = now
            db.commit()
        finally:
            db.close()

    def record_failure(self, name: str, error: BaseException | str) -> int:
        """Returns the new consecutive failure count."""
        db = self._session_factory()
        try:
            now = datetime.utcnow()
            row = _get_or_create(db, name)
            row.status = ERROR
            row.last_failure_at = now
            row.consecutive_failures = int(row.consecutive_failures or 0) + 1
            row.error_message = str(error)[:2000]
            row.updated_at = now
            db.commit()

            failures = int(row.consecutive_failures)
            if failures % self._threshold == 0:
                self._fire_alert(name, row)
            return failures
        finally:
            db.close()

    def _fire_alert(self, name: str, row: IntegrationHealth) -> None:
        try:
            self._alert(name, row)
        except Exception:
            log.exception("alert hook failed for %s", name, extra={"integration": name})


def list_health(db: Session) -> list[IntegrationHealth]:
    return list(db.scalars(select(IntegrationHealth).order_by(IntegrationHealth.integration.asc())).all())
