"""Generated-article store: in-memory indexes written through to one JSON snapshot.

Two indexes are kept:
  * ``_items``: every item ever stored, by id (the global index)
  * ``_by_key``: per answer word, at most ``max_items_per_key`` items,
    oldest ``published_at`` evicted first

Items evicted from a key stay in the global index until clear_all().
Storage and mirror failures are logged and never raised: the store keeps
serving from memory.
"""

from __future__ import annotations

import json
import logging
import threading
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable

from . import config
from .mirror import SnapshotMirror
from .models import ContentItem, StoreStats
from .words import normalize_key

logger = logging.getLogger(__name__)

SNAPSHOT_NAME = "articles.json"
SNAPSHOT_VERSION = 1


def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)


class ContentStore:
    def __init__(
        self,
        storage_path: str | Path | None = None,
        max_items_per_key: int | None = None,
        expiry_hours: float | None = None,
        mirror: SnapshotMirror | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.storage_dir = Path(config.STORAGE_PATH if storage_path is None else storage_path)
        self.max_items_per_key = (
            config.MAX_ITEMS_PER_KEY if max_items_per_key is None else max_items_per_key
        )
        if self.max_items_per_key < 1:
            raise ValueError("max_items_per_key must be at least 1")
        self.expiry_seconds = (
            config.STORE_EXPIRY_HOURS if expiry_hours is None else expiry_hours
        ) * 3600
        self._mirror = mirror
        self._clock = clock

        self._items: dict[str, ContentItem] = {}
        self._by_key: dict[str, list[ContentItem]] = {}
        self._last_write: float | None = None
        self._lock = threading.RLock()
        self.is_initialized = False

    @property
    def snapshot_path(self) -> Path:
        return self.storage_dir / SNAPSHOT_NAME

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """Load the durable snapshot (or the mirror's copy when there is none).

        A snapshot older than the configured expiry is discarded and the
        store starts empty.
        """
        with self._lock:
            snapshot = self._read_snapshot()
            if snapshot is None and self._mirror is not None:
                snapshot = self._pull_mirror()

            self._items.clear()
            self._by_key.clear()
            self._last_write = None

            if snapshot is not None:
                age = self._clock() - float(snapshot.get("timestamp", 0))
                if age >= self.expiry_seconds:
                    logger.info(
                        "[store] Snapshot is %.1fh old (limit %.1fh), starting empty.",
                        age / 3600,
                        self.expiry_seconds / 3600,
                    )
                else:
                    self._load(snapshot)

            self.is_initialized = True
            logger.info("[store] Initialized with %d articles.", len(self._items))

    def _read_snapshot(self) -> dict[str, Any] | None:
        path = self.snapshot_path
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("[store] Snapshot read failed (%s). Ignoring it.", exc)
            return None

    def _pull_mirror(self) -> dict[str, Any] | None:
        try:
            snapshot = self._mirror.pull()
        except Exception as exc:
            logger.warning("[store] %s pull failed (%s).", self._mirror.name, exc)
            return None
        if snapshot is not None:
            logger.info("[store] Loaded snapshot from %s.", self._mirror.name)
        return snapshot

    def _load(self, snapshot: dict[str, Any]) -> None:
        try:
            items = {
                raw["id"]: ContentItem.model_validate(raw) for raw in snapshot.get("items", [])
            }
            by_key = {
                key: [items[item_id] for item_id in ids if item_id in items]
                for key, ids in snapshot.get("keys", {}).items()
            }
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("[store] Snapshot is corrupt (%s), starting empty.", exc)
            return
        self._items = items
        self._by_key = by_key
        self._last_write = float(snapshot.get("timestamp", self._clock()))

    # ------------------------------------------------------------------
    # Mutations (write-through)
    # ------------------------------------------------------------------

    def upsert_many(self, key: str, items: Iterable[ContentItem]) -> list[ContentItem]:
        """Insert or replace (by id) *items* under *key*, then apply the retention cap.

        Returns the items retained for *key* afterwards.
        """
        key = normalize_key(key)
        with self._lock:
            retained = {item.id: item for item in self._by_key.get(key, [])}
            added = 0
            for item in items:
                if item.key != key:
                    item = item.model_copy(update={"key": key})
                previous = self._items.get(item.id)
                if previous is not None and previous.key != key:
                    self._drop_from_key(previous.key, item.id)
                self._items[item.id] = item
                retained[item.id] = item
                added += 1

            ordered = sorted(retained.values(), key=lambda i: _aware(i.published_at))
            dropped = len(ordered) - self.max_items_per_key
            if dropped > 0:
                logger.info("[store] %s: dropping %d oldest articles.", key, dropped)
                ordered = ordered[dropped:]
            self._by_key[key] = ordered

            snapshot = self._persist()
        self._push_mirror(snapshot)
        logger.info("[store] Stored %d articles for %s.", added, key)
        return list(ordered)

    def _drop_from_key(self, key: str, item_id: str) -> None:
        """Remove *item_id* from *key*'s list (an id moved to another key). Caller holds the lock."""
        remaining = [i for i in self._by_key.get(key, []) if i.id != item_id]
        if remaining:
            self._by_key[key] = remaining
        else:
            self._by_key.pop(key, None)

    def increment_view(self, item_id: str) -> ContentItem | None:
        return self._bump(item_id, "view_count")

    def increment_like(self, item_id: str) -> ContentItem | None:
        return self._bump(item_id, "like_count")

    def _bump(self, item_id: str, counter: str) -> ContentItem | None:
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                return None
            setattr(item, counter, getattr(item, counter) + 1)
            item.updated_at = self._now()
            snapshot = self._persist()
        self._push_mirror(snapshot)
        return item

    def clear_all(self) -> None:
        with self._lock:
            self._items.clear()
            self._by_key.clear()
            self._last_write = None
            try:
                self.snapshot_path.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("[store] Could not delete snapshot (%s).", exc)
            snapshot = self._snapshot()
        self._push_mirror(snapshot)
        logger.info("[store] All articles cleared.")

    def expire_if_stale(self) -> bool:
        """Drop the in-memory state when nothing was written for the expiry window."""
        with self._lock:
            if self._last_write is None:
                return False
            if self._clock() - self._last_write < self.expiry_seconds:
                return False
            count = len(self._items)
            self._items.clear()
            self._by_key.clear()
            self._last_write = None
        logger.info("[store] Content expired, dropped %d articles from memory.", count)
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _snapshot(self) -> dict[str, Any]:
        return {
            "version": SNAPSHOT_VERSION,
            "timestamp": self._clock(),
            "items": [item.model_dump(mode="json") for item in self._items.values()],
            "keys": {key: [item.id for item in items] for key, items in self._by_key.items()},
        }

    def _persist(self) -> dict[str, Any]:
        """Write the full snapshot to disk. Caller holds the lock."""
        snapshot = self._snapshot()
        self._last_write = snapshot["timestamp"]
        path = self.snapshot_path
        tmp = path.with_name(path.name + ".tmp")
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(snapshot, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            logger.warning("[store] Snapshot write failed (%s). Keeping changes in memory.", exc)
        return snapshot

    def _push_mirror(self, snapshot: dict[str, Any]) -> None:
        if self._mirror is None:
            return
        try:
            self._mirror.push(snapshot)
        except Exception as exc:
            logger.warning("[store] %s push failed (%s).", self._mirror.name, exc)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _all(self) -> list[ContentItem]:
        with self._lock:
            return list(self._items.values())

    def has_key(self, key: str) -> bool:
        with self._lock:
            return bool(self._by_key.get(normalize_key(key)))

    def get_by_key(self, key: str) -> list[ContentItem]:
        with self._lock:
            return list(self._by_key.get(normalize_key(key), []))

    def get_by_id(self, item_id: str) -> ContentItem | None:
        with self._lock:
            return self._items.get(item_id)

    def get_by_category(self, category: str) -> list[ContentItem]:
        items = self._all()
        if category == "all":
            return items
        return [i for i in items if i.category == category]

    def get_by_difficulty(self, difficulty: str) -> list[ContentItem]:
        return [i for i in self._all() if i.difficulty == difficulty]

    def get_by_tag(self, tag: str) -> list[ContentItem]:
        return [i for i in self._all() if tag in i.tags]

    def search(self, query: str) -> list[ContentItem]:
        """Case-insensitive substring match over title, excerpt and tags."""
        q = query.lower()
        return [
            i
            for i in self._all()
            if q in i.title.lower()
            or q in i.excerpt.lower()
            or any(q in t.lower() for t in i.tags)
        ]

    def get_by_date_range(self, start: datetime, end: datetime) -> list[ContentItem]:
        start, end = _aware(start), _aware(end)
        return [i for i in self._all() if start <= _aware(i.published_at) <= end]

    def get_by_quality_score(self, min_score: int, max_score: int) -> list[ContentItem]:
        return [i for i in self._all() if min_score <= i.quality_score <= max_score]

    def get_all_sorted(self, limit: int = 100, offset: int = 0) -> list[ContentItem]:
        items = sorted(self._all(), key=lambda i: _aware(i.published_at), reverse=True)
        return items[max(offset, 0) : max(offset, 0) + limit]

    def get_recent(self, limit: int = 10) -> list[ContentItem]:
        return self.get_all_sorted(limit=limit)

    def get_popular(self, limit: int = 10) -> list[ContentItem]:
        return sorted(self._all(), key=lambda i: i.view_count, reverse=True)[:limit]

    def get_stats(self) -> StoreStats:
        with self._lock:
            items = list(self._items.values())
            total_keys = len(self._by_key)
        categories: dict[str, int] = {}
        for item in items:
            categories[item.category] = categories.get(item.category, 0) + 1
        return StoreStats(
            total_articles=len(items),
            total_keys=total_keys,
            categories=categories,
            total_views=sum(i.view_count for i in items),
            total_likes=sum(i.like_count for i in items),
        )
