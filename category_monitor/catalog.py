"""Registry of trackable categories.

A category is either a catalog page rendered in the browser (symbolic key)
or a numeric category id queried through the catalog JSON endpoint.  Both
kinds share one ``TrackedEntity`` type and one acquisition path.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from .config import BASE_URL
from .errors import NotFoundError
from .storage import load_json, save_json

logger = logging.getLogger(__name__)

CATALOG_API_PATH = "/front/api/catalog/cards-list?locale=ru"

DEFAULT_CATEGORIES: Dict[str, Dict[str, str]] = {
    "flacon-magazine": {
        "name": "Flacon Magazine",
        "url": "https://goldapple.ru/brands/flacon-magazine",
    },
    "goldapplebox": {
        "name": "goldapplebox",
        "url": "https://goldapple.ru/brands/goldapplebox",
    },
    "darling": {
        "name": "darling",
        "url": "https://goldapple.ru/brands/darling/darling",
    },
}


class LocatorKind(str, Enum):
    PAGE = "page"
    CATEGORY_ID = "category_id"


@dataclass(frozen=True)
class Locator:
    kind: LocatorKind
    url: str
    category_id: Optional[int] = None


@dataclass(frozen=True)
class TrackedEntity:
    key: str
    name: str
    locator: Locator

    @property
    def source_url(self) -> str:
        return self.locator.url


def category_id_entity(category_id: int, base_url: str = BASE_URL) -> TrackedEntity:
    return TrackedEntity(
        key=str(category_id),
        name=f"Category {category_id}",
        locator=Locator(
            kind=LocatorKind.CATEGORY_ID,
            url=base_url.rstrip("/") + CATALOG_API_PATH,
            category_id=int(category_id),
        ),
    )


def page_entity(key: str, url: str, name: Optional[str] = None) -> TrackedEntity:
    return TrackedEntity(key=key, name=name or key, locator=Locator(kind=LocatorKind.PAGE, url=url))


class EntityCatalog:
    """Built-in categories plus operator-added ones persisted to ``path``."""

    def __init__(
        self,
        path: Optional[str | Path] = None,
        *,
        base_url: str = BASE_URL,
        defaults: Optional[Dict[str, Dict[str, str]]] = None,
    ) -> None:
        self._path = Path(path) if path else None
        self._base_url = base_url
        self._lock = threading.Lock()
        self._entities: Dict[str, TrackedEntity] = {}
        for key, info in (DEFAULT_CATEGORIES if defaults is None else defaults).items():
            self._entities[key] = page_entity(key, info["url"], info.get("name"))
        if self._path is not None:
            for key, info in load_json(self._path, {}).items():
                if isinstance(info, dict) and info.get("url"):
                    self._entities[key] = page_entity(key, info["url"], info.get("name"))

    def get(self, key: str) -> Optional[TrackedEntity]:
        key = (key or "").strip()
        if key in self._entities:
            return self._entities[key]
        if key.isdigit():
            return category_id_entity(int(key), self._base_url)
        return None

    def resolve(self, key: str) -> TrackedEntity:
        entity = self.get(key)
        if entity is None:
            raise NotFoundError(f'Category "{key}" not found')
        return entity

    def keys(self) -> List[str]:
        return list(self._entities)

    def entities(self) -> List[TrackedEntity]:
        return list(self._entities.values())

    def add(self, key: str, url: str, name: Optional[str] = None) -> TrackedEntity:
        """Register a page category.  Existing keys only get their name updated."""
        key = (key or "").strip()
        if not key or key.isdigit():
            raise ValueError("Category key must be a non-numeric identifier")
        if not url.startswith(("http://", "https://")):
            raise ValueError("Category URL must start with http:// or https://")
        with self._lock:
            existing = self._entities.get(key)
            if existing is not None:
                if existing.source_url != url:
                    logger.warning("Ignoring new URL for existing category %s (%s)", key, url)
                entity = page_entity(key, existing.source_url, name or existing.name)
            else:
                entity = page_entity(key, url, name)
            self._entities[key] = entity
            if self._path is not None:
                custom = load_json(self._path, {})
                custom[key] = {"name": entity.name, "url": entity.source_url}
                save_json(self._path, custom)
        logger.info("Registered category %s -> %s", key, entity.source_url)
        return entity


__all__ = [
    "CATALOG_API_PATH",
    "DEFAULT_CATEGORIES",
    "LocatorKind",
    "Locator",
    "TrackedEntity",
    "EntityCatalog",
    "category_id_entity",
    "page_entity",
]
