from __future__ import annotations

import httpx
import pytest

from conftest import FakeHostify, json_response, make_client
from rentalsync.clients.hostify import (
    HostifyClient,
    HostifyConfigError,
    HostifyRequestError,
    HostifyResponseError,
    unwrap_object,
    unwrap_records,
)


def _listing(i: int) -> dict:
    return {"id": i, "name": f"Listing {i}"}


def test_missing_api_key_fails_at_construction(monkeypatch):
    monkeypatch.setattr("rentalsync.clients.hostify.settings.hostify_api_key", None)
    with pytest.raises(HostifyConfigError):
        HostifyClient(None, "https://api.test")


def test_pagination_walks_until_two_empty_pages():
    fake = FakeHostify()
    fake.paged("/listings", [_listing(i) for i in range(1, 46)], envelope="listings")

    records = fake.client().get_listings()

    assert [r["id"] for r in records] == list(range(1, 46))
    pages = [int(r.url.params["page"]) for r in fake.requests]
    # 20 + 20 + 5, then two empty pages
    assert pages == [1, 2, 3, 4, 5]


def test_pagination_dedups_a_redelivered_page():
    served = {1: [_listing(i) for i in range(1, 21)], 2: [_listing(i) for i in range(1, 21)], 3: [_listing(21)]}
    seen_pages: list[int] = []

    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        seen_pages.append(page)
        return json_response({"listings": served.get(page, [])})

    records = make_client(handler).get_listings()

    assert [r["id"] for r in records] == list(range(1, 22))
    assert len({r["id"] for r in records}) == len(records)
    # the duplicate page alone did not end the walk
    assert 3 in seen_pages


def test_pagination_stops_on_repeated_duplicate_pages():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        # upstream ignores `page` entirely
        return json_response({"data": [_listing(1), _listing(2)]})

    records = make_client(handler).fetch_all("/listings")

    assert [r["id"] for r in records] == [1, 2]
    assert calls["n"] == 3


def test_pagination_honours_max_pages():
    counter = {"next": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        counter["next"] += 1
        return json_response({"data": [_listing(counter["next"])]})

    records = make_client(handler, max_pages=4).fetch_all("/listings")

    assert len(records) == 4
    assert counter["next"] == 4


def test_records_without_id_are_deduped_by_content():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["page"] == "1":
            return json_response({"reviews": [{"text": "great"}, {"text": "great"}, {"text": "ok"}]})
        return json_response({"reviews": []})

    records = make_client(handler).fetch_all("/reviews")

    assert records == [{"text": "great"}, {"text": "ok"}]


def test_transient_errors_are_retried_with_backoff():
    statuses = [503, 429]
    sleeps: list[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if statuses:
            return httpx.Response(statuses.pop(0))
        return json_response({"listing": {"id": 7, "name": "Seven"}})

    client = HostifyClient(
        "k",
        "https://api.test",
        max_retries=3,
        retry_base_seconds=1.0,
        retry_max_seconds=30.0,
        transport=httpx.MockTransport(handler),
        sleep=sleeps.append,
    )
    out = client.get_listing(7)

    assert out["id"] == 7
    assert len(sleeps) == 2
    # base * 2^(attempt-1) with +/- 20% jitter
    assert 0.8 <= sleeps[0] <= 1.2
    assert 1.6 <= sleeps[1] <= 2.4


def test_network_errors_exhaust_retries():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("boom", request=request)

    with pytest.raises(HostifyRequestError) as ei:
        make_client(handler, max_retries=3).get_listing(1)

    assert calls["n"] == 3
    assert ei.value.attempts == 3
    assert ei.value.status_code is None


def test_malformed_json_is_terminal():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(200, content=b"<html>gateway</html>")

    with pytest.raises(HostifyResponseError):
        make_client(handler).get_listing(1)
    assert calls["n"] == 1


def test_client_error_is_not_retried():
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return json_response({"error": "bad"}, status_code=422)

    with pytest.raises(HostifyRequestError) as ei:
        make_client(handler).get_listing(1)
    assert calls["n"] == 1
    assert ei.value.status_code == 422


def test_auth_header_falls_back_and_is_remembered():
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        # httpx lowercases header names on the wire, so check the raw header list
        names = [k.decode() for k, _ in request.headers.raw]
        mode = "upper" if "X-API-Key" in names else "lower"
        seen.append(mode)
        if mode == "lower":
            return httpx.Response(401)
        return json_response({"listing": {"id": 1}})

    client = make_client(handler)
    client.get_listing(1)
    client.get_listing(1)

    assert seen == ["lower", "upper", "upper"]
    assert HostifyClient._header_mode_cache["https://api.test"] == "uppercase"


def test_auth_rejected_in_both_modes_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403)

    with pytest.raises(HostifyRequestError) as ei:
        make_client(handler).get_listing(1)
    assert ei.value.status_code == 403
    assert ei.value.attempts == 2


def test_envelope_unwrapping():
    assert unwrap_records([{"id": 1}, "junk"], "/listings") == [{"id": 1}]
    assert unwrap_records({"listings": [{"id": 1}]}, "/listings") == [{"id": 1}]
    assert unwrap_records({"data": [{"id": 2}]}, "/reservations") == [{"id": 2}]
    assert unwrap_records({"threads": [{"id": 3}]}, "/inbox") == [{"id": 3}]
    assert unwrap_records({"success": True}, "/inbox") == []
    assert unwrap_records(None, "/inbox") == []

    merged = unwrap_object({"success": True, "thread": {"id": 9}, "messages": [{"id": 1}]}, "thread")
    assert merged == {"id": 9, "messages": [{"id": 1}]}
    assert unwrap_object({"data": {"id": 4}}, "listing") == {"id": 4}
    assert unwrap_object({"id": 5}, "listing") == {"id": 5}
