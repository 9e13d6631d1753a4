"""HTTP helpers for the outgoing chat client."""

from __future__ import annotations

import logging
from typing import Optional

import requests
from requests import Response

logger = logging.getLogger(__name__)

USER_AGENT = "CategoryMonitor/0.1 (+https://github.com/)"


def get_http_session(user_agent: Optional[str] = None) -> requests.Session:
    """Return a new JSON session; the caller closes it."""
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": user_agent or USER_AGENT,
            "Accept": "application/json",
        }
    )
    return session


def api_error_description(resp: Response) -> str:
    """The ``description`` of a Bot API error body, or "" when absent."""
    try:
        payload = resp.json()
    except ValueError:
        logger.debug("Non-JSON error body (HTTP %s)", resp.status_code)
        return ""
    if not isinstance(payload, dict):
        return ""
    return str(payload.get("description") or "")


__all__ = ["get_http_session", "api_error_description", "USER_AGENT"]
