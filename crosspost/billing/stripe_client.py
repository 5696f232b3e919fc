"""Stripe webhook signature verification and event parsing."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import hashlib
import hmac
import json
from typing import Any, Dict, Optional, Tuple


class StripeWebhookError(ValueError):
    """Raised when a webhook payload or its signature is rejected."""


@dataclass(frozen=True)
class StripeSignature:
    timestamp: int
    candidates: Tuple[str, ...]


def parse_signature_header(header: str) -> StripeSignature:
    timestamp: Optional[int] = None
    candidates = []
    for chunk in header.split(","):
        key, _, value = chunk.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise StripeWebhookError("Invalid Stripe signature timestamp") from exc
        elif key == "v1" and value:
            candidates.append(value)
    if timestamp is None or not candidates:
        raise StripeWebhookError("Invalid Stripe signature header")
    return StripeSignature(timestamp=timestamp, candidates=tuple(candidates))


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed = str(timestamp).encode("utf-8") + b"." + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_signature(
    *,
    payload: bytes,
    header: str,
    secret: str,
    tolerance_seconds: int = 300,
    now: Optional[datetime] = None,
) -> None:
    if not secret:
        raise StripeWebhookError("Stripe webhook secret is not configured")

    signature = parse_signature_header(header)
    current = int((now or datetime.now(timezone.utc)).timestamp())
    if abs(current - signature.timestamp) > tolerance_seconds:
        raise StripeWebhookError("Stripe signature timestamp outside tolerance window")

    expected = compute_signature(payload, secret, signature.timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in signature.candidates):
        raise StripeWebhookError("Stripe signature mismatch")


def parse_event(payload: bytes) -> Dict[str, Any]:
    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise StripeWebhookError("Invalid Stripe JSON payload") from exc
    if not isinstance(event, dict) or "id" not in event or "type" not in event:
        raise StripeWebhookError("Stripe payload must be an object with id and type")
    return event


def event_object(event: Dict[str, Any]) -> Dict[str, Any]:
    data = event.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    return obj if isinstance(obj, dict) else {}
