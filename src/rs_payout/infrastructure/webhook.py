"""Processor webhook authentication and parsing.

Signature header: ``t=<unix seconds>,v1=<hex hmac>[,v1=...]``. The signed
payload is ``f"{t}.{raw_body}"`` under HMAC-SHA256 with the endpoint secret.
Deliveries older than the tolerance window are rejected to stop replays of
captured requests.
"""

import hashlib
import hmac
import json
import time

from config.settings import settings
from src.rs_common.errors import InvalidPayloadError, SignatureVerificationFailedError
from src.rs_payout.domain.processor import ProcessorEvent


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_signature(
    payload: bytes,
    header: str | None,
    secret: str | None = None,
    tolerance_seconds: int | None = None,
    now: float | None = None,
) -> None:
    """Raise SignatureVerificationFailedError unless `header` signs `payload`."""
    if not header:
        raise SignatureVerificationFailedError()
    secret = secret if secret is not None else settings.PROCESSOR_WEBHOOK_SECRET
    tolerance = (
        tolerance_seconds
        if tolerance_seconds is not None
        else settings.PROCESSOR_WEBHOOK_TOLERANCE_SECONDS
    )

    timestamp: int | None = None
    candidates: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise SignatureVerificationFailedError() from None
        elif key == "v1" and value:
            candidates.append(value)
    if timestamp is None or not candidates or not secret:
        raise SignatureVerificationFailedError()

    current = time.time() if now is None else now
    if tolerance > 0 and abs(current - timestamp) > tolerance:
        raise SignatureVerificationFailedError()

    expected = compute_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
        raise SignatureVerificationFailedError()


def parse_event(payload: bytes) -> ProcessorEvent:
    try:
        body = json.loads(payload)
    except ValueError as exc:
        raise InvalidPayloadError("body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise InvalidPayloadError("body must be a JSON object")
    event_id = body.get("id")
    event_type = body.get("type")
    data = body.get("data")
    if not event_id or not event_type:
        raise InvalidPayloadError("missing id or type")
    if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
        raise InvalidPayloadError("missing data.object")
    obj = data["object"]
    if not obj.get("id"):
        raise InvalidPayloadError("data.object has no id")
    return ProcessorEvent(id=str(event_id), type=str(event_type), object=obj)
