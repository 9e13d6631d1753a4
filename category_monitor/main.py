from __future__ import annotations

import logging
import sys

from . import config
from .bot import CommandBot
from .catalog import EntityCatalog
from .errors import ConfigurationError
from .notifier import Notifier
from .scheduler import SweepScheduler
from .scraper import BrowserSession, CountAcquirer
from .storage import CountStore, SubscriptionStore
from .telegram_client import TelegramClient
from .tracker import CategoryTracker


def setup_logging() -> None:
    level = getattr(logging, config.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    # APScheduler logs every job run at INFO.
    logging.getLogger("apscheduler").setLevel(max(level, logging.WARNING))
    logging.getLogger("urllib3").setLevel(max(level, logging.WARNING))
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def build_tracker(client: TelegramClient) -> CategoryTracker:
    acquirer = CountAcquirer(
        BrowserSession(
            headless=config.BROWSER_HEADLESS,
            timeout_ms=config.BROWSER_TIMEOUT_MS,
            base_url=config.BASE_URL,
            executable_path=config.BROWSER_EXECUTABLE_PATH,
        ),
        max_retries=config.MAX_RETRIES,
    )
    return CategoryTracker(
        catalog=EntityCatalog(config.CATEGORIES_FILE, base_url=config.BASE_URL),
        acquirer=acquirer,
        subscriptions=SubscriptionStore(config.SUBSCRIPTIONS_FILE),
        counts=CountStore(config.DATA_DIR, history_limit=config.HISTORY_LIMIT),
        notifier=Notifier(client),
        track_all_delay=(config.TRACK_ALL_DELAY_MIN, config.TRACK_ALL_DELAY_MAX),
    )


def main() -> None:
    """Start the sweep scheduler and serve bot commands until signalled."""
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config.validate()
        client = TelegramClient(config.TELEGRAM_BOT_TOKEN or "")
        tracker = build_tracker(client)
        scheduler = SweepScheduler(
            tracker.sweep,
            config.CHECK_INTERVAL,
            initial_delay_seconds=config.INITIAL_SWEEP_DELAY_SECONDS,
            on_stop=tracker.acquirer.close,
        )
    except (ConfigurationError, ValueError) as exc:
        logger.error("❌ %s", exc)
        sys.exit(1)

    bot = CommandBot(client, tracker, scheduler, allowed_chat_ids=config.ALLOWED_CHAT_IDS)
    application = bot.build_application(config.TELEGRAM_BOT_TOKEN or "")

    logger.info("🤖 Category monitor bot started")
    logger.info("Categories: %s", ", ".join(tracker.catalog.keys()))
    scheduler.start()
    try:
        # Blocks until SIGINT/SIGTERM.
        application.run_polling(allowed_updates=["message"], timeout=config.TELEGRAM_POLL_TIMEOUT)
    finally:
        scheduler.stop()
        client.close()
    logger.info("Bye")
    sys.exit(0)


if __name__ == "__main__":
    main()
