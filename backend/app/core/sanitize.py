"""
Input sanitization.

Control characters (including null bytes) are removed from every string in
a JSON body, keys included, before handlers see it.
"""
import re
from typing import Any

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_string(value: str) -> str:
    return _CONTROL_CHARS.sub("", value)


def sanitize_payload(value: Any) -> Any:
    """Recursively strip control characters from strings in a parsed JSON value."""
    if isinstance(value, str):
        return sanitize_string(value)
    if isinstance(value, list):
        return [sanitize_payload(item) for item in value]
    if isinstance(value, dict):
        return {
            sanitize_string(k) if isinstance(k, str) else k: sanitize_payload(v)
            for k, v in value.items()
        }
    return value
