"""Product-count extraction from fetched page bodies.

``CountExtractor`` runs an ordered list of strategies and returns the first
match.  Blocked-page detection is a strategy of its own so callers never
have to grep bodies for interstitial text.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)


class Confidence(str, Enum):
    HIGH = "high"
    LOW = "low"


@dataclass(frozen=True)
class Extraction:
    count: Optional[int]
    strategy: str
    confidence: Confidence = Confidence.HIGH
    blocked: bool = False


def _to_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    digits = re.sub(r"\s", "", str(value))
    if not re.fullmatch(r"-?\d+", digits):
        return None
    return int(digits)


class ExtractionStrategy:
    name = "base"

    def extract(self, body: str, soup: BeautifulSoup) -> Optional[Extraction]:
        raise NotImplementedError


class BlockedPageStrategy(ExtractionStrategy):
    name = "blocked"

    MARKERS: Sequence[str] = (
        "Доступ к сайту временно ограничен",
        "access to the site is temporarily restricted",
        "site access is temporarily restricted",
    )

    def __init__(self, markers: Optional[Iterable[str]] = None) -> None:
        self._markers = [m.lower() for m in (markers or self.MARKERS)]

    def extract(self, body: str, soup: BeautifulSoup) -> Optional[Extraction]:
        text = body.lower()
        if any(m in text for m in self._markers):
            return Extraction(count=None, strategy=self.name, blocked=True)
        return None


class JsonPayloadStrategy(ExtractionStrategy):
    """Catalog API responses: ``{"data": {"productCount": N, ...}}``."""

    name = "json"

    def extract(self, body: str, soup: BeautifulSoup) -> Optional[Extraction]:
        stripped = body.lstrip()
        if not stripped.startswith("{"):
            return None
        try:
            payload = json.loads(stripped)
        except ValueError:
            return None
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or "productCount" not in data:
            return None
        return Extraction(count=_to_int(data.get("productCount")), strategy=self.name)


class DataAttributeStrategy(ExtractionStrategy):
    name = "data-attribute"
    ATTRIBUTE = "data-category-products-count"

    def extract(self, body: str, soup: BeautifulSoup) -> Optional[Extraction]:
        el = soup.find(attrs={self.ATTRIBUTE: True})
        if el is None:
            return None
        return Extraction(count=_to_int(el.get(self.ATTRIBUTE)), strategy=self.name)


class TextPatternStrategy(ExtractionStrategy):
    """Degraded signal: first "<number> <unit-word>" in the visible text."""

    name = "text-pattern"
    # Digit groups are only joined when they look like thousands
    # separators, so a neighbouring number ("2024", a badge "3") is not
    PATTERN = re.compile(
        r"(?<!\d)(\d{1,3}(?:[   ]\d{3})+|\d+)\s*(?:товар\w*|items?\b|products?\b)",
        re.IGNORECASE,
    )

    def extract(self, body: str, soup: BeautifulSoup) -> Optional[Extraction]:
        text = soup.get_text(" ", strip=True) if soup is not None else body
        m = self.PATTERN.search(text)
        if not m:
            return None
        return Extraction(count=_to_int(m.group(1)), strategy=self.name, confidence=Confidence.LOW)


DEFAULT_STRATEGIES: List[ExtractionStrategy] = [
    BlockedPageStrategy(),
    JsonPayloadStrategy(),
    DataAttributeStrategy(),
    TextPatternStrategy(),
]


class CountExtractor:
    def __init__(self, strategies: Optional[Sequence[ExtractionStrategy]] = None) -> None:
        self.strategies: List[ExtractionStrategy] = list(strategies or DEFAULT_STRATEGIES)

    def extract(self, body: str) -> Optional[Extraction]:
        """Return the first strategy result, or None when nothing matched."""
        body = body or ""
        soup = BeautifulSoup(body, "html.parser")
        for strategy in self.strategies:
            result = strategy.extract(body, soup)
            if result is not None:
                logger.debug("Count extraction via %s: %s", strategy.name, result)
                return result
        return None


__all__ = [
    "Confidence",
    "Extraction",
    "ExtractionStrategy",
    "BlockedPageStrategy",
    "JsonPayloadStrategy",
    "DataAttributeStrategy",
    "TextPatternStrategy",
    "CountExtractor",
]
