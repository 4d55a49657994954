"""Inbound text sanitization.

Strips script blocks, HTML tags and stray angle brackets from every string in
a request body, then trims it. The validator assumes its input went through
``sanitize_value`` first.
"""

import re
from typing import Any

_SCRIPT_BLOCK = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_TAG = re.compile(r"<[^>]*>")
_ANGLE = re.compile(r"[<>]")


def sanitize_string(value: Any) -> Any:
    """Remove markup from a string; non-strings are returned unchanged.

    Examples:
        >>> sanitize_string("  <b>Ada</b><script>alert(1)</script> ")
        'Ada'
    """
    if not isinstance(value, str):
        return value
    value = _SCRIPT_BLOCK.sub("", value)
    value = _TAG.sub("", value)
    value = _ANGLE.sub("", value)
    return value.strip()


def sanitize_value(value: Any) -> Any:
    """Recursively sanitize every string inside dicts and lists."""
    if isinstance(value, dict):
        return {key: sanitize_value(item) for key, item in value.items()}
    if isinstance(value, list):
        return [sanitize_value(item) for item in value]
    return sanitize_string(value)


__all__ = [
    "sanitize_string",
    "sanitize_value",
]
