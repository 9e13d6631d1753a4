from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from telegram.ext import CommandHandler, MessageHandler

from category_monitor.bot import CommandBot, parse_command
from category_monitor.errors import AcquisitionError, AcquisitionFailure
from category_monitor.notifier import Notifier
from category_monitor.tracker import CategoryTracker
from conftest import FakeAcquirer, FakeSender


@pytest.fixture()
def client() -> FakeSender:
    return FakeSender()


@pytest.fixture()
def tracker(catalog, subscriptions, counts, client) -> CategoryTracker:
    boom = AcquisitionError(AcquisitionFailure.BLOCKED, "Site access is temporarily restricted")
    return CategoryTracker(
        catalog,
        FakeAcquirer({"a": 10, "b": boom, "c": 30}),
        subscriptions,
        counts,
        Notifier(client),
        sleep=lambda _: None,
    )


def _texts(client, chat="42"):
    return [text for chat_id, text in client.sent if chat_id == chat]


def test_parse_command() -> None:
    assert parse_command("/track@MyBot flacon-magazine") == ("/track", ["flacon-magazine"])
    assert parse_command("  /LIST ") == ("/list", [])
    assert parse_command("hello") == ("", [])


def test_track_list_remove_flow(client, tracker) -> None:
    bot = CommandBot(client, tracker)
    bot.dispatch("42", "/track a")
    assert "Current count: 10 items" in _texts(client)[-1]

    bot.dispatch("42", "/track a")
    assert "already tracking" in _texts(client)[-1]

    bot.dispatch("42", "/list")
    assert "1. a" in _texts(client)[-1]

    bot.dispatch("42", "/remove a")
    assert "removed" in _texts(client)[-1]

    bot.dispatch("42", "/list")
    assert "not tracking any" in _texts(client)[-1]


def test_remove_unknown_subscription(client, tracker) -> None:
    CommandBot(client, tracker).dispatch("42", "/remove a")
    assert 'not tracking "a"' in _texts(client)[-1]


def test_check_reports_acquisition_error(client, tracker) -> None:
    CommandBot(client, tracker).dispatch("42", "/check b")
    assert _texts(client)[-1].startswith("❌ Sorry")
    assert "restricted" in _texts(client)[-1]


def test_check_unknown_category(client, tracker) -> None:
    CommandBot(client, tracker).dispatch("42", "/check zzz")
    assert 'Category "zzz" not found' in _texts(client)[-1]


def test_trackall_summary(client, tracker) -> None:
    CommandBot(client, tracker).dispatch("42", "/trackall")
    summary = _texts(client)[-1]
    assert "Succeeded: 2 of 3" in summary
    assert "• b:" in summary


def test_add_and_categories(client, tracker) -> None:
    bot = CommandBot(client, tracker)
    bot.dispatch("42", "/add new https://shop.example/new New Brand")
    assert "registered" in _texts(client)[-1]
    bot.dispatch("42", "/categories")
    assert "New Brand" in _texts(client)[-1]
    bot.dispatch("42", "/add 123 https://shop.example/x")
    assert _texts(client)[-1].startswith("❌")


def test_allowlist_blocks_other_chats(client, tracker) -> None:
    bot = CommandBot(client, tracker, allowed_chat_ids=["1"])
    bot.dispatch("42", "/help")
    assert client.sent == []
    bot.dispatch("1", "/help")
    assert "/track" in _texts(client, "1")[-1]


def test_unknown_command(client, tracker) -> None:
    CommandBot(client, tracker).dispatch("42", "/dance")
    assert "Unknown command" in _texts(client)[-1]


def test_status_without_scheduler(client, tracker) -> None:
    CommandBot(client, tracker).dispatch("42", "/status")
    assert "Stopped" in _texts(client)[-1]


def _update(chat_id, text=None):
    return SimpleNamespace(
        effective_chat=SimpleNamespace(id=chat_id),
        effective_message=SimpleNamespace(text=text),
    )


def test_application_registers_every_command(client, tracker) -> None:
    application = CommandBot(client, tracker).build_application("123:ABC")
    handlers = application.handlers[0]
    commands = set()
    for handler in handlers:
        if isinstance(handler, CommandHandler):
            commands |= set(handler.commands)
    assert {"start", "help", "check", "checkall", "track", "trackall", "list", "remove", "status"} <= commands
    assert isinstance(handlers[-1], MessageHandler)


def test_command_handler_runs_tracker_command(client, tracker) -> None:
    application = CommandBot(client, tracker).build_application("123:ABC")
    track = next(
        h for h in application.handlers[0] if isinstance(h, CommandHandler) and "track" in h.commands
    )
    asyncio.run(track.callback(_update(42), SimpleNamespace(args=["a"])))
    assert "Current count: 10 items" in _texts(client)[-1]


def test_unregistered_command_gets_unknown_reply(client, tracker) -> None:
    application = CommandBot(client, tracker).build_application("123:ABC")
    fallback = application.handlers[0][-1]
    asyncio.run(fallback.callback(_update(42, "/dance now"), SimpleNamespace(args=None)))
    assert "Unknown command" in _texts(client)[-1]
