from __future__ import annotations

import json
import os
from datetime import datetime
from typing import Any, Callable

# settings are read at import time; keep tests off any real database or API
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("HOSTIFY_API_KEY", "test-key")

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rentalsync import models  # noqa: F401  (register tables)
from rentalsync.clients.hostify import HostifyClient
from rentalsync.db import Base
from rentalsync.models import AppUser

BASE_URL = "https://api.test"


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture(autouse=True)
def _reset_header_mode_cache():
    HostifyClient._header_mode_cache.clear()
    yield
    HostifyClient._header_mode_cache.clear()


@pytest.fixture
def owner(db):
    user = AppUser(email="owner@test.local", display_name="Owner", role="OWNER", created_at=datetime(2026, 1, 1))
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_client(handler: Callable[[httpx.Request], httpx.Response], **kwargs: Any) -> HostifyClient:
    kwargs.setdefault("max_retries", 3)
    return HostifyClient(
        "test-key",
        BASE_URL,
        transport=httpx.MockTransport(handler),
        sleep=lambda s: None,
        **kwargs,
    )


def json_response(payload: Any, status_code: int = 200) -> httpx.Response:
    return httpx.Response(status_code, content=json.dumps(payload).encode("utf-8"))


class FakeHostify:
    """
    Routes GET/POST by path. Paged list routes serve `page_size` records per
    `page` query param and an empty list past the end, like the real API.
    """

    def __init__(self) -> None:
        self.pages: dict[str, list[dict[str, Any]]] = {}
        self.envelopes: dict[str, str] = {}
        self.objects: dict[str, Any] = {}
        self.posts: list[tuple[str, dict[str, Any]]] = []
        self.requests: list[httpx.Request] = []
        self.page_size = 20

    def paged(self, path: str, records: list[dict[str, Any]], envelope: str = "data") -> None:
        self.pages[path] = records
        self.envelopes[path] = envelope

    def obj(self, path: str, payload: Any) -> None:
        self.objects[path] = payload

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST":
            body = json.loads(request.content or b"{}")
            self.posts.append((path, body))
            return json_response({"success": True, "webhook": {"id": 1000 + len(self.posts), **body}})

        if path in self.objects:
            return json_response(self.objects[path])

        if path in self.pages:
            page = int(request.url.params.get("page", "1"))
            records = self.pages[path]
            listing_id = request.url.params.get("listing_id")
            if listing_id is not None:
                records = [r for r in records if str(r.get("listing_id")) == listing_id]
            start = (page - 1) * self.page_size
            return json_response({"success": True, self.envelopes[path]: records[start : start + self.page_size]})

        return json_response({"success": False, "error": "not found"}, status_code=404)

    def client(self, **kwargs: Any) -> HostifyClient:
        return make_client(self, **kwargs)


@pytest.fixture
def fake_hostify():
    return FakeHostify()
