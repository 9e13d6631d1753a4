"""Outgoing Telegram messages over plain HTTP.

Used from the scheduler and browser worker threads, where the bot's asyncio
loop is not available.  Incoming updates are handled by ``bot.py``.
"""

from __future__ import annotations

import logging
from typing import List, Optional

import requests

from .errors import DeliveryError
from .utils import api_error_description, get_http_session

logger = logging.getLogger(__name__)

API_ROOT = "https://api.telegram.org"
MAX_MESSAGE_LENGTH = 4096


def split_message(text: str, limit: int = MAX_MESSAGE_LENGTH) -> List[str]:
    """Split on line boundaries so each chunk fits one Telegram message."""
    if len(text) <= limit:
        return [text]
    chunks: List[str] = []
    current = ""
    for line in text.splitlines(keepends=True):
        while len(line) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(line[:limit])
            line = line[limit:]
        if len(current) + len(line) > limit:
            chunks.append(current)
            current = ""
        current += line
    if current:
        chunks.append(current)
    return chunks


class TelegramClient:
    def __init__(
        self,
        token: str,
        session: Optional[requests.Session] = None,
        *,
        api_root: str = API_ROOT,
        timeout: float = 10,
    ) -> None:
        self._token = token
        self._session = session or get_http_session()
        self._api_root = api_root.rstrip("/")
        self._timeout = timeout

    def _url(self, method: str) -> str:
        return f"{self._api_root}/bot{self._token}/{method}"

    def send_message(self, chat_id: str | int, text: str) -> None:
        """Deliver ``text`` once; no retries so a message is never duplicated."""
        for chunk in split_message(text):
            try:
                resp = self._session.post(
                    self._url("sendMessage"),
                    json={"chat_id": chat_id, "text": chunk, "disable_web_page_preview": True},
                    timeout=self._timeout,
                )
            except requests.RequestException as exc:
                raise DeliveryError(f"sendMessage to {chat_id} failed: {exc}") from exc
            if resp.status_code >= 400:
                detail = api_error_description(resp)
                raise DeliveryError(
                    f"sendMessage to {chat_id} failed: HTTP {resp.status_code}"
                    + (f" ({detail})" if detail else "")
                )

    def close(self) -> None:
        self._session.close()


__all__ = ["TelegramClient", "split_message", "MAX_MESSAGE_LENGTH"]
