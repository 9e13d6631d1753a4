"""Flat-file JSON persistence for subscriptions and per-category counts.

Every mutating call performs a full load-modify-save cycle against the file;
nothing is cached in memory.  Mutations on one store instance are serialized
with a lock so a sweep's ``update`` cannot overwrite a concurrent ``remove``.
"""

from __future__ import annotations

import datetime as _dt
import hashlib
import json
import logging
import os
import re
import tempfile
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .errors import PersistenceError

logger = logging.getLogger(__name__)


def utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def _parse_ts(value: Optional[str]) -> Optional[_dt.datetime]:
    if not value:
        return None
    try:
        return _dt.datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def _format_ts(value: Optional[_dt.datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def load_json(path: Path, default: Any) -> Any:
    """Read a JSON document; missing or corrupt files yield ``default``."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except FileNotFoundError:
        return default
    except json.JSONDecodeError:
        logger.warning("Ignoring corrupt state file %s", path)
        return default
    except OSError as exc:
        raise PersistenceError(f"Cannot read {path}: {exc}") from exc


def save_json(path: Path, data: Any) -> None:
    """Write ``data`` atomically (temp file + rename in the same directory)."""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=path.name, suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, ensure_ascii=False, indent=2)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
    except OSError as exc:
        raise PersistenceError(f"Cannot write {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@dataclass
class Subscription:
    subscriber_id: str
    entity_key: str
    last_known_count: int
    subscribed_at: _dt.datetime
    last_checked_at: Optional[_dt.datetime] = None
    entity_name: str = ""
    source_url: str = ""
    locator_kind: str = "page"

    def to_record(self) -> Dict[str, Any]:
        return {
            "type": "category",
            "categoryKey": self.entity_key,
            "categoryName": self.entity_name,
            "categoryUrl": self.source_url,
            "locatorKind": self.locator_kind,
            "subscribedAt": _format_ts(self.subscribed_at),
            "lastChecked": _format_ts(self.last_checked_at),
            "lastProductCount": int(self.last_known_count),
        }

    @classmethod
    def from_record(cls, subscriber_id: str, entity_key: str, rec: Dict[str, Any]) -> "Subscription":
        try:
            count = int(rec.get("lastProductCount") or rec.get("productCount") or 0)
        except (TypeError, ValueError):
            count = 0
        return cls(
            subscriber_id=str(subscriber_id),
            entity_key=str(entity_key),
            last_known_count=count,
            subscribed_at=_parse_ts(rec.get("subscribedAt")) or utcnow(),
            last_checked_at=_parse_ts(rec.get("lastChecked")),
            entity_name=rec.get("categoryName") or rec.get("name") or "",
            source_url=rec.get("categoryUrl") or rec.get("url") or "",
            locator_kind=rec.get("locatorKind") or "page",
        )


class SubscriptionStore:
    """Durable mapping ``subscriber -> entity -> Subscription``.

    Duplicate subscribe is an idempotent no-op: ``put`` on an existing pair
    returns the stored record untouched.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> Dict[str, Dict[str, Dict[str, Any]]]:
        data = load_json(self._path, {})
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Dict[str, Dict[str, Any]]]) -> None:
        save_json(self._path, data)

    def get(self, subscriber_id: str, entity_key: str) -> Optional[Subscription]:
        rec = self._load().get(str(subscriber_id), {}).get(str(entity_key))
        if rec is None:
            return None
        return Subscription.from_record(str(subscriber_id), str(entity_key), rec)

    def is_subscribed(self, subscriber_id: str, entity_key: str) -> bool:
        return self.get(subscriber_id, entity_key) is not None

    def put(
        self,
        subscriber_id: str,
        entity_key: str,
        initial_count: int,
        *,
        entity_name: str = "",
        source_url: str = "",
        locator_kind: str = "page",
    ) -> Subscription:
        sid, key = str(subscriber_id), str(entity_key)
        with self._lock:
            data = self._load()
            existing = data.get(sid, {}).get(key)
            if existing is not None:
                logger.debug("Subscriber %s already tracks %s; keeping existing record", sid, key)
                return Subscription.from_record(sid, key, existing)
            sub = Subscription(
                subscriber_id=sid,
                entity_key=key,
                last_known_count=int(initial_count),
                subscribed_at=utcnow(),
                entity_name=entity_name,
                source_url=source_url,
                locator_kind=locator_kind,
            )
            data.setdefault(sid, {})[key] = sub.to_record()
            self._save(data)
            return sub

    def remove(self, subscriber_id: str, entity_key: str) -> bool:
        """Delete the pair; returns False (and writes nothing) when absent."""
        sid, key = str(subscriber_id), str(entity_key)
        with self._lock:
            data = self._load()
            entries = data.get(sid)
            if not entries or key not in entries:
                return False
            del entries[key]
            if not entries:
                del data[sid]
            self._save(data)
            return True

    def update(
        self,
        subscriber_id: str,
        entity_key: str,
        new_count: int,
        timestamp: Optional[_dt.datetime] = None,
    ) -> None:
        sid, key = str(subscriber_id), str(entity_key)
        with self._lock:
            data = self._load()
            rec = data.get(sid, {}).get(key)
            if rec is None:
                # Unsubscribed while a sweep was running.
                logger.debug("Skipping update for missing subscription %s/%s", sid, key)
                return
            rec["lastProductCount"] = int(new_count)
            rec["lastChecked"] = _format_ts(timestamp or utcnow())
            self._save(data)

    def all_subscriptions(self) -> Dict[str, Dict[str, Subscription]]:
        return {
            sid: {key: Subscription.from_record(sid, key, rec) for key, rec in entries.items()}
            for sid, entries in self._load().items()
            if isinstance(entries, dict)
        }

    def for_subscriber(self, subscriber_id: str) -> Dict[str, Subscription]:
        return self.all_subscriptions().get(str(subscriber_id), {})

    def subscriber_count(self) -> int:
        return len(self._load())


# ---------------------------------------------------------------------------
# Per-category last value and history
# ---------------------------------------------------------------------------


@dataclass
class CountRecord:
    count: int
    timestamp: Optional[_dt.datetime]


@dataclass
class HistoryEntry:
    count: int
    timestamp: Optional[_dt.datetime] = field(default=None)


_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class CountStore:
    """Last observed count per category plus a capped append-only history."""

    COUNTS_FILE = "category-counts.json"

    def __init__(self, data_dir: str | Path, history_limit: int = 100) -> None:
        self._dir = Path(data_dir)
        self._history_limit = max(1, int(history_limit))
        self._lock = threading.RLock()

    @property
    def counts_path(self) -> Path:
        return self._dir / self.COUNTS_FILE

    def history_path(self, entity_key: str) -> Path:
        key = str(entity_key)
        safe = _SAFE_KEY.sub("_", key)
        if safe != key:
            # "~" never appears in a key kept as-is, so rewritten keys
            # cannot land on another key's file.
            digest = hashlib.sha1(key.encode("utf-8")).hexdigest()[:12]
            safe = f"{safe}~{digest}"
        return self._dir / f"{safe}-history.json"

    def get(self, entity_key: str) -> Optional[CountRecord]:
        rec = load_json(self.counts_path, {}).get(str(entity_key))
        if not rec:
            return None
        return CountRecord(count=int(rec.get("count") or 0), timestamp=_parse_ts(rec.get("timestamp")))

    def set(self, entity_key: str, count: int, timestamp: Optional[_dt.datetime] = None) -> None:
        ts = _format_ts(timestamp or utcnow())
        with self._lock:
            counts = load_json(self.counts_path, {})
            counts[str(entity_key)] = {"count": int(count), "timestamp": ts, "lastUpdated": ts}
            save_json(self.counts_path, counts)

    def history(self, entity_key: str) -> List[HistoryEntry]:
        raw = load_json(self.history_path(entity_key), [])
        return [HistoryEntry(count=int(e.get("count") or 0), timestamp=_parse_ts(e.get("timestamp"))) for e in raw]

    def append_history(self, entity_key: str, count: int, timestamp: Optional[_dt.datetime] = None) -> None:
        path = self.history_path(entity_key)
        with self._lock:
            entries = load_json(path, [])
            if not isinstance(entries, list):
                entries = []
            entries.append({"count": int(count), "timestamp": _format_ts(timestamp or utcnow())})
            if len(entries) > self._history_limit:
                entries = entries[-self._history_limit:]
            save_json(path, entries)


__all__ = [
    "Subscription",
    "SubscriptionStore",
    "CountRecord",
    "HistoryEntry",
    "CountStore",
    "load_json",
    "save_json",
    "utcnow",
]
