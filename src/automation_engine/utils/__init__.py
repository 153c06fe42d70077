"""Shared helpers."""

from .timeutil import parse_datetime, to_iso, utc_now
from .validation import is_valid_handle, sanitize_log_message, truncate

__all__ = [
    "is_valid_handle",
    "parse_datetime",
    "sanitize_log_message",
    "to_iso",
    "truncate",
    "utc_now",
]
