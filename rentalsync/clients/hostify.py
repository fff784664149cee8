from __future__ import annotations

import json
import logging
import random
import threading
import time
from typing import Any, Callable, Optional

import httpx

from ..config import settings
from ..domain.fingerprint import fingerprint

log = logging.getLogger("rentalsync.hostify")

# Hostify quirks (observed against the live API):
#   - `limit` is ignored, pages are always ~20 records
#   - date/status filters are unreliable; only `listing_id` is trusted
#   - pages may be redelivered, "total" counters are not trustworthy
#   - the API key header is accepted as x-api-key or X-API-Key depending on account
PAGE_SIZE = 20
HEADER_MODES = ("lowercase", "uppercase")

# keys under which list endpoints wrap their records, after the entity key itself
_ENVELOPE_KEYS = ("data", "results", "items", "threads")

_slots = threading.BoundedSemaphore(max(1, int(settings.hostify_max_concurrent_requests)))


class HostifyError(RuntimeError):
    pass


class HostifyConfigError(HostifyError):
    pass


class HostifyRequestError(HostifyError):
    def __init__(self, message: str, *, endpoint: str, status_code: Optional[int], attempts: int) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code
        self.attempts = attempts


class HostifyResponseError(HostifyError):
    def __init__(self, message: str, *, endpoint: str, status_code: Optional[int]) -> None:
        super().__init__(message)
        self.endpoint = endpoint
        self.status_code = status_code


def _entity_key(endpoint: str) -> str:
    return endpoint.strip("/").split("?")[0].split("/")[0]


def unwrap_records(payload: Any, endpoint: str) -> list[dict[str, Any]]:
    """
    Hostify wraps list payloads inconsistently:
      /listings -> {"listings": [...]}, /reservations -> {"reservations": [...]} or {"data": [...]},
      /inbox -> {"data": [...]} or {"threads": [...]}, sometimes a bare array.
    Everything past the client sees a plain list of dicts.
    """
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, dict):
        records = []
        for key in (_entity_key(endpoint), *_ENVELOPE_KEYS):
            v = payload.get(key)
            if isinstance(v, list):
                records = v
                break
    else:
        records = []
    return [r for r in records if isinstance(r, dict)]


def unwrap_object(payload: Any, singular: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        return {}
    for key in (singular, "data"):
        inner = payload.get(key)
        if isinstance(inner, dict):
            merged = dict(inner)
            # thread detail sometimes returns messages next to the thread object
            for k, v in payload.items():
                if k not in (singular, "data", "success") and k not in merged:
                    merged[k] = v
            return merged
    return payload


def record_key(record: dict[str, Any]) -> str:
    rid = record.get("id")
    if rid is None or rid == "":
        return "fp:" + fingerprint(record)
    return str(rid)


class HostifyClient:
    """
    Authenticated client for the Hostify REST API.

    Semantics:
      - network errors, 5xx and 429 are retried with exponential backoff + jitter
      - 401/403 flips between x-api-key and X-API-Key once, then fails
      - malformed JSON is terminal (HostifyResponseError), never retried
      - at most `hostify_max_concurrent_requests` calls in flight per process
    """

    # working header mode per base URL, shared by every client in the process
    _header_mode_cache: dict[str, str] = {}

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        *,
        max_retries: Optional[int] = None,
        retry_base_seconds: Optional[float] = None,
        retry_max_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None,
        max_pages: Optional[int] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.hostify_api_key
        if not self.api_key:
            raise HostifyConfigError("HOSTIFY_API_KEY is missing; Hostify sync cannot run")

        self.base = (base_url or settings.hostify_base_url or "").rstrip("/")
        if not self.base:
            raise HostifyConfigError("HOSTIFY_BASE_URL is missing")

        self.max_retries = max(1, int(max_retries if max_retries is not None else settings.hostify_max_retries))
        self.retry_base_seconds = float(
            retry_base_seconds if retry_base_seconds is not None else settings.hostify_retry_base_seconds
        )
        self.retry_max_seconds = float(
            retry_max_seconds if retry_max_seconds is not None else settings.hostify_retry_max_seconds
        )
        self.max_pages = int(max_pages if max_pages is not None else settings.hostify_max_pages)
        self._sleep = sleep

        timeout = float(timeout_seconds if timeout_seconds is not None else settings.hostify_timeout_seconds)
        self._http = httpx.Client(base_url=self.base, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, cfg: Any = None, **kwargs: Any) -> "HostifyClient":
        cfg = cfg or settings
        return cls(
            cfg.hostify_api_key,
            cfg.hostify_base_url,
            max_retries=cfg.hostify_max_retries,
            retry_base_seconds=cfg.hostify_retry_base_seconds,
            retry_max_seconds=cfg.hostify_retry_max_seconds,
            timeout_seconds=cfg.hostify_timeout_seconds,
            max_pages=cfg.hostify_max_pages,
            **kwargs,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "HostifyClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # -------------------------
    # Low-level request
    # -------------------------
    def _headers(self, mode: str) -> dict[str, str]:
        name = "x-api-key" if mode == "lowercase" else "X-API-Key"
        return {"Content-Type": "application/json", "Accept": "application/json", name: str(self.api_key)}

    def _backoff_seconds(self, attempt: int) -> float:
        # attempt is 1-based; base * 2^(attempt-1), capped, +/- 20% jitter
        delay = min(self.retry_max_seconds, self.retry_base_seconds * (2 ** max(0, attempt - 1)))
        jitter = delay * 0.2
        return max(0.0, delay + random.uniform(-jitter, jitter))

    def _decode(self, resp: httpx.Response, endpoint: str) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise HostifyResponseError(
                f"Hostify {endpoint} returned malformed JSON: {e}",
                endpoint=endpoint,
                status_code=resp.status_code,
            ) from e

    def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[dict[str, Any]] = None,
        json_body: Any = None,
    ) -> Any:
        cached = self._header_mode_cache.get(self.base)
        modes = (cached,) if cached else HEADER_MODES

        last_status: Optional[int] = None
        last_error = ""
        attempts = 0

        with _slots:
            for mode in modes:
                auth_rejected = False
                for attempt in range(1, self.max_retries + 1):
                    attempts += 1
                    try:
                        resp = self._http.request(
                            method, endpoint, params=params, json=json_body, headers=self._headers(mode)
                        )
                    except httpx.TransportError as e:
                        last_status = None
                        last_error = f"{type(e).__name__}: {e}"
                        self._pause(endpoint, attempt, last_error)
                        continue

                    last_status = resp.status_code

                    if resp.status_code in (401, 403):
                        log.warning(
                            "hostify auth rejected with %s header",
                            mode,
                            extra={"endpoint": endpoint, "status_code": resp.status_code},
                        )
                        last_error = f"auth failed with {mode} header"
                        auth_rejected = True
                        break

                    if resp.status_code == 429 or resp.status_code >= 500:
                        last_error = f"HTTP {resp.status_code}"
                        self._pause(endpoint, attempt, last_error)
                        continue

                    if resp.status_code >= 400:
                        raise HostifyRequestError(
                            f"Hostify {method} {endpoint} failed: {resp.status_code} - {resp.text[:300]}",
                            endpoint=endpoint,
                            status_code=resp.status_code,
                            attempts=attempts,
                        )

                    if cached is None:
                        self._header_mode_cache[self.base] = mode
                        log.info("hostify auth header mode locked to %s", mode, extra={"endpoint": endpoint})

                    return self._decode(resp, endpoint)

                if not auth_rejected:
                    # transient budget exhausted; the other header mode won't help
                    break

        raise HostifyRequestError(
            f"Hostify {method} {endpoint} failed after {attempts} attempt(s): {last_error or 'unknown error'}",
            endpoint=endpoint,
            status_code=last_status,
            attempts=attempts,
        )

    def _pause(self, endpoint: str, attempt: int, reason: str) -> None:
        if attempt >= self.max_retries:
            return
        delay = self._backoff_seconds(attempt)
        log.warning(
            "hostify request failed (%s), retrying in %.2fs",
            reason,
            delay,
            extra={"endpoint": endpoint, "attempt": attempt},
        )
        self._sleep(delay)

    # -------------------------
    # Pagination
    # -------------------------
    def fetch_page(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        payload = self.request("GET", endpoint, params=params)
        return unwrap_records(payload, endpoint)

    def fetch_all(
        self,
        endpoint: str,
        params: Optional[dict[str, Any]] = None,
        *,
        max_pages: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """
        Walk pages 1..N until two consecutive pages contribute no new records
        (empty, or entirely records already seen) or max_pages is reached.
        Upstream "total" fields are never consulted.
        """
        ceiling = int(max_pages if max_pages is not None else self.max_pages)
        records: list[dict[str, Any]] = []
        seen: set[str] = set()
        barren_pages = 0
        page = 1

        while page <= ceiling:
            batch = self.fetch_page(endpoint, {**(params or {}), "page": page})

            fresh = 0
            for rec in batch:
                key = record_key(rec)
                if key in seen:
                    continue
                seen.add(key)
                records.append(rec)
                fresh += 1

            if fresh == 0:
                barren_pages += 1
                if barren_pages >= 2:
                    break
                if batch:
                    log.warning("hostify page %d of %s was all duplicates", page, endpoint, extra={"endpoint": endpoint})
            else:
                barren_pages = 0
                log.debug("hostify %s page %d: %d new (total %d)", endpoint, page, fresh, len(records))

            page += 1
        else:
            log.warning(
                "hostify pagination ceiling reached (%d pages) for %s", ceiling, endpoint, extra={"endpoint": endpoint}
            )

        return records

    # -------------------------
    # Resources
    # -------------------------
    def get_listings(self) -> list[dict[str, Any]]:
        return self.fetch_all("/listings")

    def get_listing(self, listing_id: int | str) -> dict[str, Any]:
        return unwrap_object(self.request("GET", f"/listings/{listing_id}"), "listing")

    def get_reservations(self, listing_id: int | str) -> list[dict[str, Any]]:
        return self.fetch_all("/reservations", {"listing_id": listing_id})

    def get_reservation(self, reservation_id: int | str) -> dict[str, Any]:
        return unwrap_object(self.request("GET", f"/reservations/{reservation_id}"), "reservation")

    def get_inbox(self, listing_id: int | str) -> list[dict[str, Any]]:
        return self.fetch_all("/inbox", {"listing_id": listing_id})

    def get_thread(self, thread_id: int | str) -> dict[str, Any]:
        return unwrap_object(self.request("GET", f"/inbox/{thread_id}"), "thread")

    def get_reviews(self, listing_id: int | str | None = None) -> list[dict[str, Any]]:
        return self.fetch_all("/reviews", {"listing_id": listing_id} if listing_id is not None else None)

    def list_webhooks(self) -> list[dict[str, Any]]:
        payload = self.request("GET", "/webhooks_v2")
        return unwrap_records(payload, "/webhooks") or unwrap_records(payload, "/webhooks_v2")

    def create_webhook(self, notification_type: str, url: str, auth: Optional[str] = None) -> dict[str, Any]:
        body: dict[str, Any] = {"notification_type": notification_type, "url": url}
        if auth:
            body["auth"] = auth
        return unwrap_object(self.request("POST", "/webhooks_v2", json_body=body), "webhook")


__all__ = [
    "HostifyClient",
    "HostifyError",
    "HostifyConfigError",
    "HostifyRequestError",
    "HostifyResponseError",
    "unwrap_records",
    "unwrap_object",
]
