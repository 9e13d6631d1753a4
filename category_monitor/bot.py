"""Telegram command surface.

Incoming commands are routed through python-telegram-bot's long-polling
``Application`` onto ``CategoryTracker`` operations; replies go out through
``TelegramClient``.  The tracker never sees the chat transport.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from telegram import Update
from telegram.ext import (Application, CommandHandler, ContextTypes,
                          MessageHandler, filters)

from .errors import AcquisitionError, NotFoundError, PersistenceError
from .scheduler import SweepScheduler
from .telegram_client import TelegramClient
from .tracker import CategoryTracker

logger = logging.getLogger(__name__)

HELP_TEXT = (
    "📚 Commands:\n\n"
    "/check <category> - check a category now (key or numeric ID)\n"
    "/checkall - check every known category\n"
    "/categories - list known categories\n"
    "/add <key> <url> [name] - register a new category page\n"
    "/track <category> - get notified when the product count changes\n"
    "/trackall - track every known category\n"
    "/list - your tracked categories\n"
    "/remove <category> - stop tracking a category\n"
    "/status - tracker status\n"
    "/help - this message\n\n"
    "Examples:\n"
    "• /check flacon-magazine\n"
    "• /track 1000001798"
)


def parse_command(text: str) -> Tuple[str, List[str]]:
    t = (text or "").strip()
    if not t.startswith("/"):
        return "", []
    parts = t.split(maxsplit=1)
    cmd = parts[0].split("@", 1)[0].lower()
    rest = parts[1] if len(parts) > 1 else ""
    args = rest.split() if rest else []
    return cmd, args


class CommandBot:
    def __init__(
        self,
        client: TelegramClient,
        tracker: CategoryTracker,
        scheduler: Optional[SweepScheduler] = None,
        *,
        allowed_chat_ids: Sequence[str] = (),
    ) -> None:
        self._client = client
        self._tracker = tracker
        self._scheduler = scheduler
        self._allowed = {str(c) for c in allowed_chat_ids}
        self._handlers: Dict[str, Callable[[str, List[str]], None]] = {
            "/start": self._cmd_help,
            "/help": self._cmd_help,
            "/check": self._cmd_check,
            "/checkall": self._cmd_check_all,
            "/categories": self._cmd_categories,
            "/add": self._cmd_add,
            "/track": self._cmd_track,
            "/subscribe": self._cmd_track,
            "/trackall": self._cmd_track_all,
            "/list": self._cmd_list,
            "/remove": self._cmd_remove,
            "/unsubscribe": self._cmd_remove,
            "/status": self._cmd_status,
        }

    # -- transport -------------------------------------------------------

    def build_application(self, token: str) -> Application:
        """Long-polling application with one ``CommandHandler`` per command."""
        application = Application.builder().token(token).build()
        for command in self._handlers:
            application.add_handler(CommandHandler(command.lstrip("/"), self._command_callback(command)))
        # Registered last so known commands win.
        application.add_handler(MessageHandler(filters.COMMAND, self._on_unknown_command))
        application.add_error_handler(self._on_error)
        return application

    def _command_callback(self, command: str):
        async def callback(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
            chat = update.effective_chat
            if chat is None:
                return
            # Tracker calls block on the browser; keep them off the event loop.
            await asyncio.to_thread(self.handle, str(chat.id), command, list(context.args or []))

        return callback

    async def _on_unknown_command(self, update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
        chat, message = update.effective_chat, update.effective_message
        if chat is None or message is None or not message.text:
            return
        await asyncio.to_thread(self.dispatch, str(chat.id), message.text)

    async def _on_error(self, update: object, context: ContextTypes.DEFAULT_TYPE) -> None:
        logger.error("Telegram update failed: %s", context.error, exc_info=context.error)

    def dispatch(self, chat_id: str, text: str) -> None:
        cmd, args = parse_command(text)
        if cmd:
            self.handle(chat_id, cmd, args)

    def handle(self, chat_id: str, cmd: str, args: List[str]) -> None:
        if self._allowed and chat_id not in self._allowed:
            logger.warning("Blocked command from unauthorized chat_id=%s", chat_id)
            return
        handler = self._handlers.get(cmd)
        if handler is None:
            self._reply(chat_id, "Unknown command. Use /help for the list of commands.")
            return
        logger.info("CMD %s args=%s from chat=%s", cmd, " ".join(args), chat_id)
        try:
            handler(chat_id, args)
        except NotFoundError as exc:
            self._reply(chat_id, f"❌ {exc}\n\nUse /categories for the list of categories.")
        except AcquisitionError as exc:
            self._reply(chat_id, f"❌ Sorry, could not check the category: {exc}")
        except PersistenceError:
            logger.exception("Storage error while handling %s", cmd)
            self._reply(chat_id, "❌ Sorry, saving your data failed. Please try again later.")
        except Exception:
            logger.exception("Error handling %s", cmd)
            self._reply(chat_id, "❌ Sorry, something went wrong.")

    def _reply(self, chat_id: str, text: str) -> None:
        try:
            self._client.send_message(chat_id, text)
        except Exception:
            logger.exception("Failed to reply to %s", chat_id)

    # -- commands --------------------------------------------------------

    def _cmd_help(self, chat_id: str, args: List[str]) -> None:
        self._reply(chat_id, HELP_TEXT)

    def _cmd_check(self, chat_id: str, args: List[str]) -> None:
        if not args:
            self._reply(chat_id, "❌ Specify a category. Example: /check flacon-magazine")
            return
        self._reply(chat_id, "🔄 Checking category...")
        self._reply(chat_id, self._tracker.check(args[0]).message)

    def _cmd_check_all(self, chat_id: str, args: List[str]) -> None:
        self._reply(chat_id, "🔄 Checking all categories...")
        lines = []
        for outcome in self._tracker.check_all():
            if outcome.check is not None:
                lines.append(outcome.check.message)
            else:
                lines.append(f"❌ {outcome.key}: {outcome.error}")
        self._reply(chat_id, "\n\n".join(lines) if lines else "📋 No categories available")

    def _cmd_categories(self, chat_id: str, args: List[str]) -> None:
        entities = self._tracker.list_entities()
        if not entities:
            self._reply(chat_id, "📋 No categories available. Add one with /add <key> <url> [name]")
            return
        lines = ["📋 Available categories:\n"]
        for e in entities:
            lines.append(f"• {e.key}\n  {e.name}\n  {e.source_url}\n")
        lines.append("💡 Use /check <category-key> to check a category.")
        self._reply(chat_id, "\n".join(lines))

    def _cmd_add(self, chat_id: str, args: List[str]) -> None:
        if len(args) < 2:
            self._reply(chat_id, "❌ Usage: /add <key> <url> [name]")
            return
        try:
            entity = self._tracker.catalog.add(args[0], args[1], " ".join(args[2:]) or None)
        except ValueError as exc:
            self._reply(chat_id, f"❌ {exc}")
            return
        self._reply(chat_id, f"✅ Category {entity.key} registered: {entity.name}\n{entity.source_url}")

    def _cmd_track(self, chat_id: str, args: List[str]) -> None:
        if not args:
            self._reply(chat_id, "❌ Specify a category. Example: /track flacon-magazine")
            return
        self._reply(chat_id, "🔍 Checking category...")
        sub, created = self._tracker.subscribe(chat_id, args[0])
        if not created:
            self._reply(chat_id, f"⚠️ You are already tracking this category ({sub.last_known_count} items).")
            return
        interval = self._scheduler.interval_minutes if self._scheduler else None
        every = f"every {interval} minutes" if interval else "periodically"
        self._reply(
            chat_id,
            f"✅ Category added to tracking!\n\n"
            f"📝 Key: {sub.entity_key}\n"
            f"📂 Name: {sub.entity_name}\n"
            f"📊 Current count: {sub.last_known_count} items\n"
            f"🔗 {sub.source_url}\n\n"
            f"⏳ I will check {every} and notify you when the count changes.",
        )

    def _cmd_track_all(self, chat_id: str, args: List[str]) -> None:
        total = len(self._tracker.list_entities())
        if total == 0:
            self._reply(chat_id, "❌ No categories available to track.")
            return
        self._reply(chat_id, f"🔄 Subscribing to {total} categories...\n\nThis may take a while.")
        summary = self._tracker.subscribe_all(chat_id)
        lines = ["✅ Subscription finished!\n", f"📊 Succeeded: {summary.succeeded} of {summary.total}"]
        if summary.errors:
            lines.append(f"❌ Errors: {len(summary.errors)}\n")
            lines.extend(f"• {key}: {err}" for key, err in summary.errors)
        lines.append("\n💡 Use /list to see your tracked categories.")
        self._reply(chat_id, "\n".join(lines))

    def _cmd_list(self, chat_id: str, args: List[str]) -> None:
        subs = self._tracker.list_subscriptions(chat_id)
        if not subs:
            self._reply(
                chat_id,
                "📭 You are not tracking any categories.\n\n"
                "Use /track <category> to add one (text keys and numeric IDs are supported).",
            )
            return
        lines = ["📋 Your tracked categories:\n"]
        for index, sub in enumerate(subs.values(), start=1):
            lines.append(
                f"{index}. {sub.entity_key}\n"
                f"   📂 {sub.entity_name or 'Untitled'}\n"
                f"   📊 Items: {sub.last_known_count}\n"
                f"   🔗 {sub.source_url or 'N/A'}\n"
                f"   📅 Added: {sub.subscribed_at:%Y-%m-%d %H:%M} UTC\n"
            )
        lines.append("💡 Use /remove <category> to stop tracking.")
        self._reply(chat_id, "\n".join(lines))

    def _cmd_remove(self, chat_id: str, args: List[str]) -> None:
        if not args:
            self._reply(chat_id, "❌ Specify a category. Example: /remove flacon-magazine")
            return
        self._tracker.unsubscribe(chat_id, args[0])
        self._reply(chat_id, f"✅ Category {args[0]} removed from tracking.")

    def _cmd_status(self, chat_id: str, args: List[str]) -> None:
        sched = self._scheduler
        running = bool(sched and sched.is_running)
        lines = [
            "📊 Tracker status:\n",
            "🟢 Running" if running else "🔴 Stopped",
            f"Subscribers: {self._tracker.subscriptions.subscriber_count()}",
            f"Categories: {len(self._tracker.list_entities())}",
        ]
        if sched is not None:
            lines.append(f"Interval: every {sched.interval_minutes} min")
            if sched.next_run_time:
                lines.append(f"Next check: {sched.next_run_time:%Y-%m-%d %H:%M:%S %Z}")
            if sched.last_sweep_finished:
                lines.append(f"Last check: {sched.last_sweep_finished:%Y-%m-%d %H:%M:%S} UTC")
            if sched.sweep_in_progress:
                lines.append("🔄 A check is in progress")
        self._reply(chat_id, "\n".join(lines))


__all__ = ["CommandBot", "parse_command", "HELP_TEXT"]
