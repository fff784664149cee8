# rentalsync/services/scheduler.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ..clients.hostify import HostifyClient
from ..config import Settings
from ..db import SessionLocal
from .integration_health import IntegrationHealthTracker
from .sync_common import INTEGRATION
from .sync_listings import sync_listings
from .sync_messages import sync_messages
from .sync_reservations import sync_reservations
from .sync_reviews import sync_reviews

log = logging.getLogger("rentalsync.scheduler")


@dataclass(frozen=True)
class ScheduledJob:
    name: str
    interval_seconds: float
    fn: Callable[[], Any]


def _result_metadata(result: Any) -> dict[str, Any]:
    as_metadata = getattr(result, "as_metadata", None)
    if callable(as_metadata):
        return dict(as_metadata())
    if isinstance(result, dict):
        return dict(result)
    return {}


class Scheduler:
    """
    One daemon thread per job. A job runs immediately on start, then sleeps
    its interval after each completion, so the same job never overlaps itself.
    Different jobs run concurrently.
    """

    def __init__(self, jobs: list[ScheduledJob], *, tracker: IntegrationHealthTracker) -> None:
        names = [j.name for j in jobs]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate job names: {names}")
        self._jobs = {j.name: j for j in jobs}
        self._tracker = tracker
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._started = False
        self._lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._started and not self._stop.is_set()

    def start(self) -> None:
        with self._lock:
            if self._started:
                raise RuntimeError("scheduler already started")
            self._started = True

        for job in self._jobs.values():
            t = threading.Thread(target=self._loop, args=(job,), name=f"sync-{job.name}", daemon=True)
            self._threads.append(t)
            t.start()
        log.info("scheduler started with %d jobs", len(self._jobs), extra={"counts": {"jobs": len(self._jobs)}})

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        self._stop.set()
        for t in self._threads:
            t.join(timeout)
            if t.is_alive():
                log.warning("job thread %s did not stop within %ss", t.name, timeout)
        log.info("scheduler stopped")

    def run_once(self, name: str) -> bool:
        """Runs one job synchronously through the same error boundary. True on success."""
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(f"unknown job: {name}")
        return self._tick(job)

    def _loop(self, job: ScheduledJob) -> None:
        while not self._stop.is_set():
            self._tick(job)
            if self._stop.wait(float(job.interval_seconds)):
                break

    def _tick(self, job: ScheduledJob) -> bool:
        started = time.monotonic()
        try:
            result = job.fn()
        except Exception as e:
            duration_ms = int((time.monotonic() - started) * 1000)
            log.exception("job %s failed", job.name, extra={"job": job.name, "duration_ms": duration_ms})
            try:
                self._tracker.record_failure(job.name, e)
            except Exception:
                log.exception("could not record failure for %s", job.name, extra={"job": job.name})
            return False

        duration_ms = int((time.monotonic() - started) * 1000)
        metadata = _result_metadata(result)
        metadata["duration_ms"] = duration_ms
        try:
            self._tracker.record_success(job.name, metadata)
        except Exception:
            log.exception("could not record success for %s", job.name, extra={"job": job.name})
        log.info("job %s done", job.name, extra={"job": job.name, "duration_ms": duration_ms})
        return True


def _routine_job(settings: Settings, entity: str, interval: float, routine: Callable[..., Any]) -> ScheduledJob:
    def run() -> Any:
        db = SessionLocal()
        try:
            with HostifyClient.from_settings(settings) as client:
                return routine(db, client)
        finally:
            db.close()

    return ScheduledJob(name=f"{INTEGRATION}.{entity}", interval_seconds=interval, fn=run)


def build_default_jobs(settings: Settings) -> list[ScheduledJob]:
    return [
        _routine_job(settings, "listings", settings.sync_listings_interval_seconds, sync_listings),
        _routine_job(settings, "reservations", settings.sync_reservations_interval_seconds, sync_reservations),
        _routine_job(settings, "messages", settings.sync_messages_interval_seconds, sync_messages),
        _routine_job(settings, "reviews", settings.sync_reviews_interval_seconds, sync_reviews),
    ]


def build_default_scheduler(settings: Settings) -> Scheduler:
    tracker = IntegrationHealthTracker(SessionLocal, alert_threshold=settings.health_alert_threshold)
    return Scheduler(build_default_jobs(settings), tracker=tracker)
