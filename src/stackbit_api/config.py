"""Process configuration read from the environment."""

from __future__ import annotations

import os

DEFAULT_CLIENT_ORIGIN = "http://localhost:3000"
DEFAULT_CUSTOMERIO_API_URL = "https://api.customer.io"
DEFAULT_SEGMENT_API_URL = "https://api.segment.io"


def get_client_origin() -> str:
    """Base URL of the studio client, without a trailing slash."""
    return os.getenv("CLIENT_ORIGIN", DEFAULT_CLIENT_ORIGIN).rstrip("/")


def get_customerio_api_key() -> str | None:
    return os.getenv("CUSTOMERIO_APP_API_KEY")


def get_customerio_api_url() -> str:
    return os.getenv("CUSTOMERIO_API_URL", DEFAULT_CUSTOMERIO_API_URL).rstrip("/")


def get_segment_write_key() -> str | None:
    return os.getenv("SEGMENT_WRITE_KEY")


def get_segment_api_url() -> str:
    return os.getenv("SEGMENT_API_URL", DEFAULT_SEGMENT_API_URL).rstrip("/")


def get_http_timeout() -> float:
    raw = os.getenv("OUTBOUND_HTTP_TIMEOUT_SECONDS", "10")
    try:
        return float(raw)
    except ValueError:
        return 10.0
