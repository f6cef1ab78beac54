"""Autentique webhook authentication and payload field extraction.

The provider signs ``x-autentique-timestamp`` plus the raw body with HMAC-SHA256. The exact
message layout and encoding are not pinned down by the provider, so every common layout is
accepted in both hex and base64 form, always compared in constant time.
"""

import base64
import hashlib
import hmac
import math
import time
from typing import Any, Mapping, Optional

SIGNATURE_TOLERANCE_SECONDS = 5 * 60
SIGNED_STATUSES = frozenset({"signed", "completed", "closed", "finalized"})


def parse_timestamp_ms(raw: str) -> Optional[int]:
    """Normalize a second, millisecond, microsecond or nanosecond epoch to milliseconds."""
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    if value > 1e18:
        return int(value // 1e6)
    if value > 1e15:
        return int(value // 1e3)
    if value > 1e12:
        return int(value)
    return int(value * 1000)


def verify_signature(
    *,
    secret: str,
    raw_body: bytes,
    signature: str,
    timestamp: str,
    now_ms: Optional[int] = None,
    tolerance_seconds: int = SIGNATURE_TOLERANCE_SECONDS,
) -> bool:
    signature = signature.strip()
    timestamp = timestamp.strip()
    if not secret or not signature:
        return False
    timestamp_ms = parse_timestamp_ms(timestamp)
    if timestamp_ms is None:
        return False
    current_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    if abs(current_ms - timestamp_ms) > tolerance_seconds * 1000:
        return False

    ts_bytes = timestamp.encode("utf-8")
    candidates = (ts_bytes + b"." + raw_body, ts_bytes + raw_body, raw_body)
    presented = signature.encode("utf-8")
    for message in candidates:
        mac = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).digest()
        if hmac.compare_digest(base64.b64encode(mac), presented):
            return True
        if hmac.compare_digest(mac.hex().encode("ascii"), presented):
            return True
    return False


def shared_secret_matches(secret: str, presented: Optional[str]) -> bool:
    presented = (presented or "").strip()
    if not secret or not presented:
        return False
    return hmac.compare_digest(secret.encode("utf-8"), presented.encode("utf-8"))


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _dig(payload: Mapping[str, Any], *keys: str) -> Any:
    value: Any = payload
    for key in keys:
        if not isinstance(value, Mapping):
            return None
        value = value.get(key)
    return value


def pick_document_id(payload: Mapping[str, Any]) -> Optional[str]:
    for candidate in (
        _dig(payload, "document", "id"),
        payload.get("document_id"),
        payload.get("documentId"),
        _dig(payload, "data", "document", "id"),
    ):
        if _text(candidate):
            return _text(candidate)
    return None


def pick_status(payload: Mapping[str, Any]) -> Optional[str]:
    for candidate in (
        _dig(payload, "document", "status"),
        payload.get("status"),
        _dig(payload, "data", "document", "status"),
    ):
        if _text(candidate):
            return _text(candidate)
    return None


def pick_event_type(payload: Mapping[str, Any]) -> Optional[str]:
    for key in ("event", "type", "action", "name"):
        value = payload.get(key)
        if isinstance(value, Mapping):
            value = value.get("type") or value.get("name")
        if _text(value):
            return _text(value)
    return None


def is_signed_event(payload: Mapping[str, Any]) -> bool:
    status = (pick_status(payload) or "").lower()
    event_type = (pick_event_type(payload) or "").lower()
    if status in SIGNED_STATUSES:
        return True
    return "signed" in event_type or "completed" in event_type
