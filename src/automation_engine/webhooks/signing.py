"""HMAC-SHA256 signatures for webhook bodies.

The signed message is ``"{timestamp}.{body}"`` and the header value is
``"sha256=<hex digest>"``.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="

# Outbound headers
EVENT_HEADER = "X-Automation-Event"
TIMESTAMP_HEADER = "X-Automation-Timestamp"
SIGNATURE_HEADER = "X-Automation-Signature"
DELIVERY_HEADER = "X-Automation-Delivery"
RUN_HEADER = "X-Automation-Run"

PROTECTED_HEADERS = frozenset(
    h.lower()
    for h in (
        "Content-Type",
        EVENT_HEADER,
        TIMESTAMP_HEADER,
        SIGNATURE_HEADER,
        DELIVERY_HEADER,
        RUN_HEADER,
    )
)


def _as_text(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="surrogateescape")
    return value


def sign(body: str | bytes, timestamp: str | int, secret: str) -> str:
    """Return the hex HMAC-SHA256 of ``"{timestamp}.{body}"``."""
    message = f"{timestamp}.{_as_text(body)}".encode("utf-8", errors="surrogateescape")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signature_header(body: str | bytes, timestamp: str | int, secret: str) -> str:
    return SIGNATURE_PREFIX + sign(body, timestamp, secret)


def verify_signature(
    body: str | bytes,
    timestamp: str | int,
    signature: str | None,
    secret: str | None,
) -> bool:
    """Recompute the signature and compare it in constant time."""
    if not signature or not secret or not signature.startswith(SIGNATURE_PREFIX):
        return False
    expected = signature_header(body, timestamp, secret)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))
