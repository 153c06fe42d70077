"""Outbound webhook signing, payloads and delivery."""

from .delivery import MAX_ATTEMPTS, RETRY_DELAYS, DeliveryService, encode_body, retry_delay
from .payloads import build_event_payload, build_run_payload
from .signing import sign, signature_header, verify_signature

__all__ = [
    "MAX_ATTEMPTS",
    "RETRY_DELAYS",
    "DeliveryService",
    "build_event_payload",
    "build_run_payload",
    "encode_body",
    "retry_delay",
    "sign",
    "signature_header",
    "verify_signature",
]
