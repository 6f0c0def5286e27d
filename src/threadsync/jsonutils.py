"""Tolerant JSON decoding for thread service responses.

Tool output stored in messages sometimes contains invalid escape sequences
(``\\x``, a lone ``\\u`` ...). Those payloads are repaired and parsed again
instead of being dropped.
"""

import json
import logging
import re
from typing import Any

import httpx

logger = logging.getLogger(__name__)

_ESCAPE_RE = re.compile(r'\\(u[0-9a-fA-F]{4}|["\\/bfnrt])|\\(.)|\\$', re.DOTALL)
_MISSING = object()


def _repair_escape(match: re.Match) -> str:
    if match.group(1) is not None:
        return match.group(0)
    if match.group(2) is not None:
        return match.group(2)
    return ""


def sanitize_json_string(text: str) -> str:
    """Drop the backslash from every escape sequence JSON does not allow."""
    return _ESCAPE_RE.sub(_repair_escape, text)


def safe_json_parse(text: str, fallback: Any = None) -> Any:
    """Parse ``text`` as JSON, retrying once with sanitized escapes.

    Returns ``fallback`` when the text cannot be decoded.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        if "escape" not in e.msg.lower():
            logger.warning("JSON parse error: %s (length=%d, preview=%r)", e, len(text), text[:200])
            return fallback
        try:
            return json.loads(sanitize_json_string(text))
        except json.JSONDecodeError as retry_error:
            logger.warning(
                "JSON parse error (invalid escape sequence, sanitization failed): %s; retry: %s",
                e, retry_error,
            )
            return fallback


def safe_response_json(response: httpx.Response, fallback: Any = None) -> Any:
    """Decode an httpx response body, returning ``fallback`` for empty or broken bodies."""
    text = response.text
    if not text or not text.strip():
        return fallback
    parsed = safe_json_parse(text, _MISSING)
    if parsed is _MISSING:
        logger.warning(
            "Could not decode response body (status=%d, length=%d)", response.status_code, len(text)
        )
        return fallback
    return parsed
