from __future__ import annotations

import hashlib
import json
from typing import Any


def _canonical(obj: Any) -> bytes:
    return json.dumps(obj, sort_keys=True, default=str, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


def fingerprint(*parts: Any) -> str:
    """
    Stable, deterministic sha256 over JSON-serializable content.
    Used as a dedupe key for payloads that carry no identifier of their own.
    """
    return hashlib.sha256(_canonical(parts)).hexdigest()


def content_hash(obj: dict[str, Any]) -> str:
    """
    Digest of a listing's marketing content. Key order never matters;
    any change to a hashed value changes the digest.
    """
    return hashlib.sha256(_canonical(obj)).hexdigest()[:32]
