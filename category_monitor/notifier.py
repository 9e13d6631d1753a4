"""Change notifications.

Formats one message per changed category and fans it out to every
subscriber.  Delivery is best-effort and at-most-once: a failure for one
chat is logged and the remaining chats still get the message.
"""
from __future__ import annotations

import logging
from typing import Iterable, Protocol

from .catalog import TrackedEntity
from .detector import ComparisonResult

logger = logging.getLogger(__name__)


class MessageSender(Protocol):
    def send_message(self, chat_id: str, text: str) -> None: ...


def _format_percent(value: float) -> str:
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("", "-0") else text


def format_message(entity_name: str, comparison: ComparisonResult) -> str:
    if not comparison.changed:
        return f"📊 {entity_name}: no change ({comparison.current} items)"

    emoji = "📈" if comparison.increased else "📉"
    sign = "+" if comparison.increased else ""
    return (
        f"{emoji} {entity_name}:\n"
        f"was: {comparison.previous} items\n"
        f"now: {comparison.current} items\n"
        f"change: {sign}{comparison.delta} ({sign}{_format_percent(comparison.percent_change)}%)"
    )


class Notifier:
    def __init__(self, sender: MessageSender) -> None:
        self._sender = sender

    def notify(
        self,
        entity: TrackedEntity,
        comparison: ComparisonResult,
        subscriber_ids: Iterable[str],
    ) -> int:
        """Send the change message to each subscriber; returns successful deliveries."""
        message = format_message(entity.name, comparison)
        delivered = 0
        for chat_id in subscriber_ids:
            try:
                self._sender.send_message(chat_id, message)
                delivered += 1
            except Exception:
                logger.exception("Failed to notify %s about %s", chat_id, entity.key)
        logger.info("Notified %d subscriber(s) about %s (%+d)", delivered, entity.key, comparison.delta)
        return delivered


__all__ = ["Notifier", "format_message"]
