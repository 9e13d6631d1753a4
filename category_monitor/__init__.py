"""
Category product-count monitor package.

This package contains modules for reading product counts from catalog
category pages through a headless browser, persisting subscriptions and
count history, notifying Telegram chats about changes and scheduling the
periodic sweep.  See README.md for details.
"""

__all__ = [
    "bot",
    "catalog",
    "config",
    "detector",
    "errors",
    "extractors",
    "main",
    "notifier",
    "scheduler",
    "scraper",
    "storage",
    "telegram_client",
    "tracker",
    "utils",
]
