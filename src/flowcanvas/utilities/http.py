"""HTTP helpers shared by the catalog and execution service clients."""

import json
from typing import Any, Optional

import httpx

from flowcanvas.settings import Settings, get_settings


def build_client(settings: Optional[Settings] = None) -> httpx.AsyncClient:
    """Create an AsyncClient pointed at the configured service."""
    settings = settings or get_settings()
    return httpx.AsyncClient(
        base_url=settings.api_base_url,
        timeout=httpx.Timeout(settings.request_timeout),
    )


def decode_json(body: bytes) -> Any:
    """Decode a JSON body, returning None when it is not JSON."""
    try:
        return json.loads(body)
    except (ValueError, UnicodeDecodeError):
        return None


def error_detail(status_code: int, body: bytes) -> str:
    """
    Extract a human-readable message from an error response.

    Prefers FastAPI's ``detail`` field, then ``error``/``message``, and
    falls back to the HTTP status.
    """
    data = decode_json(body)
    if isinstance(data, dict):
        for key in ("detail", "error", "message"):
            value = data.get(key)
            if value:
                return value if isinstance(value, str) else json.dumps(value)
    return f"HTTP error! status: {status_code}"
