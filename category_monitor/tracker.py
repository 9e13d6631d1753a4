"""Core category tracking service.

This is the API the chat command layer talks to: check one or all
categories, manage subscriptions, and run the periodic sweep that
notifies subscribers about product-count changes.
"""

from __future__ import annotations

import logging
import random
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .catalog import (EntityCatalog, LocatorKind, TrackedEntity,
                      category_id_entity, page_entity)
from .detector import ComparisonResult, compare
from .errors import NotFoundError
from .notifier import Notifier, format_message
from .scraper import AcquisitionResult, CountAcquirer
from .storage import CountStore, Subscription, SubscriptionStore

logger = logging.getLogger(__name__)


@dataclass
class CheckResult:
    entity: TrackedEntity
    comparison: ComparisonResult
    message: str
    result: AcquisitionResult


@dataclass
class CheckOutcome:
    key: str
    check: Optional[CheckResult] = None
    error: Optional[str] = None


@dataclass
class TrackAllSummary:
    total: int
    succeeded: int = 0
    errors: List[Tuple[str, str]] = field(default_factory=list)


@dataclass
class SweepReport:
    checked: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    notified: int = 0


class CategoryTracker:
    def __init__(
        self,
        catalog: EntityCatalog,
        acquirer: CountAcquirer,
        subscriptions: SubscriptionStore,
        counts: CountStore,
        notifier: Notifier,
        *,
        track_all_delay: Tuple[float, float] = (2.0, 5.0),
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.catalog = catalog
        self.acquirer = acquirer
        self.subscriptions = subscriptions
        self.counts = counts
        self.notifier = notifier
        self._track_all_delay = track_all_delay
        self._sleep = sleep

    # -- lookups ---------------------------------------------------------

    def list_entities(self) -> List[TrackedEntity]:
        return self.catalog.entities()

    def list_subscriptions(self, subscriber_id: str) -> Dict[str, Subscription]:
        return self.subscriptions.for_subscriber(subscriber_id)

    def _entity_for(self, key: str, sub: Subscription) -> TrackedEntity:
        entity = self.catalog.get(key)
        if entity is not None:
            return entity
        # Category removed from the registry after subscribing: fall back to
        # what the subscription recorded.
        if sub.locator_kind == LocatorKind.CATEGORY_ID.value and key.isdigit():
            return category_id_entity(int(key))
        if sub.source_url:
            return page_entity(key, sub.source_url, sub.entity_name or key)
        raise NotFoundError(f'Category "{key}" not found')

    def _record(self, entity: TrackedEntity, result: AcquisitionResult) -> None:
        self.counts.set(entity.key, result.count, result.timestamp)
        self.counts.append_history(entity.key, result.count, result.timestamp)

    # -- checks ----------------------------------------------------------

    def check(self, key: str) -> CheckResult:
        """Fetch one category and compare against its last stored count."""
        entity = self.catalog.resolve(key)
        logger.info("Checking category %s", entity.key)
        stored = self.counts.get(entity.key)
        previous = stored.count if stored else 0
        result = self.acquirer.acquire(entity)
        comparison = compare(previous, result.count)
        self._record(entity, result)
        return CheckResult(
            entity=entity,
            comparison=comparison,
            message=format_message(entity.name, comparison),
            result=result,
        )

    def check_all(self) -> List[CheckOutcome]:
        outcomes: List[CheckOutcome] = []
        for key in self.catalog.keys():
            try:
                outcomes.append(CheckOutcome(key=key, check=self.check(key)))
            except Exception as exc:
                logger.exception("Error checking category %s", key)
                outcomes.append(CheckOutcome(key=key, error=str(exc)))
        return outcomes

    # -- subscriptions ---------------------------------------------------

    def subscribe(self, subscriber_id: str, key: str) -> Tuple[Subscription, bool]:
        """Subscribe to a category; returns ``(subscription, created)``.

        Subscribing twice is a no-op that returns the existing record.
        """
        entity = self.catalog.resolve(key)
        existing = self.subscriptions.get(subscriber_id, entity.key)
        if existing is not None:
            return existing, False
        result = self.acquirer.acquire(entity)
        self._record(entity, result)
        sub = self.subscriptions.put(
            subscriber_id,
            entity.key,
            result.count,
            entity_name=entity.name,
            source_url=entity.source_url,
            locator_kind=entity.locator.kind.value,
        )
        logger.info("Subscriber %s now tracks %s (%d items)", subscriber_id, entity.key, result.count)
        return sub, True

    def subscribe_all(self, subscriber_id: str) -> TrackAllSummary:
        keys = self.catalog.keys()
        summary = TrackAllSummary(total=len(keys))
        for key in keys:
            try:
                if self.subscriptions.is_subscribed(subscriber_id, key):
                    logger.info("Category %s already subscribed, skipping", key)
                    summary.succeeded += 1
                    continue
                self.subscribe(subscriber_id, key)
                summary.succeeded += 1
                self._sleep(random.uniform(*self._track_all_delay))
            except Exception as exc:
                logger.exception("Failed to subscribe %s to %s", subscriber_id, key)
                summary.errors.append((key, str(exc)))
        return summary

    def unsubscribe(self, subscriber_id: str, key: str) -> None:
        # Same key normalisation as subscribe ("007" is stored as "7").
        entity = self.catalog.get(key)
        entity_key = entity.key if entity is not None else key.strip()
        if not self.subscriptions.remove(subscriber_id, entity_key):
            raise NotFoundError(f'You are not tracking "{key}"')
        logger.info("Subscriber %s stopped tracking %s", subscriber_id, entity_key)

    # -- sweep -----------------------------------------------------------

    def sweep(self) -> SweepReport:
        """Check every subscribed category once and notify on changes."""
        report = SweepReport()
        by_entity: Dict[str, List[Subscription]] = defaultdict(list)
        for entries in self.subscriptions.all_subscriptions().values():
            for key, sub in entries.items():
                by_entity[key].append(sub)

        if not by_entity:
            logger.info("No active subscriptions to check.")
            return report

        logger.info("Sweeping %d categories", len(by_entity))
        for key, subs in by_entity.items():
            try:
                entity = self._entity_for(key, subs[0])
                result = self.acquirer.acquire(entity)
                report.checked.append(key)

                groups: Dict[int, List[str]] = defaultdict(list)
                for sub in subs:
                    groups[sub.last_known_count].append(sub.subscriber_id)
                for previous, subscriber_ids in groups.items():
                    comparison = compare(previous, result.count)
                    if comparison.changed:
                        logger.info(
                            "Category %s changed: %d -> %d (%+d)",
                            key, previous, result.count, comparison.delta,
                        )
                        report.notified += self.notifier.notify(entity, comparison, subscriber_ids)
                        if key not in report.changed:
                            report.changed.append(key)

                for sub in subs:
                    self.subscriptions.update(sub.subscriber_id, key, result.count, result.timestamp)
                self._record(entity, result)
            except Exception as exc:
                logger.exception("Error checking category %s during sweep", key)
                report.failed[key] = str(exc)

        logger.info(
            "Sweep finished: %d checked, %d changed, %d failed",
            len(report.checked), len(report.changed), len(report.failed),
        )
        return report


__all__ = [
    "CategoryTracker",
    "CheckResult",
    "CheckOutcome",
    "TrackAllSummary",
    "SweepReport",
]
