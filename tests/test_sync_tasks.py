from __future__ import annotations

import pytest
from sqlalchemy import select

from rentalsync.models import Property
from rentalsync.services.webhook_ingestor import ScopedSync
from rentalsync.workers import sync_tasks


def test_enqueue_routes_each_kind_to_its_task(monkeypatch):
    sent = []
    for name in ("sync_listing_task", "sync_reservation_task", "sync_thread_task"):
        task = getattr(sync_tasks, name)
        monkeypatch.setattr(task, "delay", lambda *a, _n=name: sent.append((_n, a)))

    sync_tasks.enqueue_scoped_sync(ScopedSync("listing", "3", "3"))
    sync_tasks.enqueue_scoped_sync(ScopedSync("reservation", "8", "4"))
    sync_tasks.enqueue_scoped_sync(ScopedSync("thread", "9", None))

    assert sent == [
        ("sync_listing_task", ("3",)),
        ("sync_reservation_task", ("8", "4")),
        ("sync_thread_task", ("9", None)),
    ]

    with pytest.raises(ValueError):
        sync_tasks.enqueue_scoped_sync(ScopedSync("review", "1"))


def test_backoff_is_exponential_and_capped():
    assert 1 <= sync_tasks._backoff_seconds(0) <= 1
    assert 6 <= sync_tasks._backoff_seconds(3) <= 10
    assert sync_tasks._backoff_seconds(20) <= 36


def test_listing_task_runs_scoped_sync(monkeypatch, session_factory, db, owner, fake_hostify):
    fake_hostify.obj("/listings/77", {"listing": {"id": 77, "name": "Loft"}})
    monkeypatch.setattr(sync_tasks, "SessionLocal", session_factory)
    monkeypatch.setattr(sync_tasks.HostifyClient, "from_settings", classmethod(lambda cls, cfg=None: fake_hostify.client()))

    out = sync_tasks.sync_listing_task.apply(args=("77",)).get()

    assert out["ok"] is True
    assert out["result"]["created"] == 1
    assert db.scalar(select(Property).where(Property.hostify_listing_id == "77")) is not None
