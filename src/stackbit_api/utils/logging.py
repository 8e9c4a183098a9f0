"""Helpers for logging user-controlled values.

Invite emails, tokens and role names arrive from requests; they are
stripped of control characters before reaching a log line.
"""

from __future__ import annotations

from typing import Any


def _clean(text: str, max_length: int) -> str:
    cleaned = text.replace("\r\n", " ").replace("\r", " ").replace("\n", " ")
    cleaned = "".join(ch for ch in cleaned if ch >= " " and ch != "\x7f")
    if len(cleaned) > max_length:
        return cleaned[:max_length] + "...[truncated]"
    return cleaned


def sanitize_for_log(value: Any, max_length: int = 200) -> Any:
    """Remove CR/LF and control characters, recursing into containers."""
    if value is None:
        return ""
    if isinstance(value, str):
        return _clean(value, max_length)
    if isinstance(value, dict):
        return {
            _clean(str(k), max_length): sanitize_for_log(v, max_length)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple, set)):
        return [sanitize_for_log(v, max_length) for v in value]
    return _clean(str(value), max_length)


def mask_token(token: str | None) -> str:
    """Keep only the first characters of an invite token."""
    if not token:
        return ""
    token = _clean(token, 64)
    return token[:6] + "..." if len(token) > 6 else token
