from __future__ import annotations

from typing import Dict, List, Optional, Tuple

import pytest

from category_monitor.catalog import EntityCatalog, Locator, TrackedEntity
from category_monitor.notifier import Notifier
from category_monitor.scraper import AcquisitionResult, PageSnapshot
from category_monitor.storage import CountStore, SubscriptionStore, utcnow


class FakeSession:
    """Page source replaying canned bodies (or exceptions) in order."""

    def __init__(self, bodies) -> None:
        self.bodies = list(bodies)
        self.fetches: List[Locator] = []
        self.closed = False

    def fetch(self, locator: Locator) -> PageSnapshot:
        self.fetches.append(locator)
        item = self.bodies.pop(0) if len(self.bodies) > 1 else self.bodies[0]
        if isinstance(item, Exception):
            raise item
        return PageSnapshot(body=item, url=locator.url)

    def close(self) -> None:
        self.closed = True


class FakeAcquirer:
    """Returns configured counts per key; an Exception value is raised."""

    def __init__(self, counts: Dict[str, object]) -> None:
        self.counts = dict(counts)
        self.calls: List[str] = []
        self.closed = False

    def acquire(self, entity: TrackedEntity) -> AcquisitionResult:
        self.calls.append(entity.key)
        value = self.counts[entity.key]
        if isinstance(value, Exception):
            raise value
        return AcquisitionResult(
            entity_key=entity.key,
            count=int(value),
            timestamp=utcnow(),
            source_url=entity.source_url,
        )

    def close(self) -> None:
        self.closed = True


class FakeSender:
    def __init__(self, failing: Optional[set] = None) -> None:
        self.sent: List[Tuple[str, str]] = []
        self.failing = failing or set()

    def send_message(self, chat_id: str, text: str) -> None:
        if str(chat_id) in self.failing:
            raise RuntimeError(f"chat {chat_id} unreachable")
        self.sent.append((str(chat_id), text))


@pytest.fixture()
def catalog(tmp_path) -> EntityCatalog:
    return EntityCatalog(
        tmp_path / "categories.json",
        base_url="https://shop.example",
        defaults={
            "a": {"name": "Alpha", "url": "https://shop.example/brands/a"},
            "b": {"name": "Beta", "url": "https://shop.example/brands/b"},
            "c": {"name": "Gamma", "url": "https://shop.example/brands/c"},
        },
    )


@pytest.fixture()
def subscriptions(tmp_path) -> SubscriptionStore:
    return SubscriptionStore(tmp_path / "subscriptions.json")


@pytest.fixture()
def counts(tmp_path) -> CountStore:
    return CountStore(tmp_path, history_limit=5)


@pytest.fixture()
def sender() -> FakeSender:
    return FakeSender()


@pytest.fixture()
def notifier(sender) -> Notifier:
    return Notifier(sender)


@pytest.fixture()
def sleeps() -> List[float]:
    return []
