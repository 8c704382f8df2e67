from __future__ import annotations

import datetime as dt
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..fs_paths import queue_path, write_json_atomic

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5


@dataclass
class QueueItem:
    id: int
    observation: dict[str, Any]
    added_at: str
    retry_count: int = 0

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "observation": self.observation,
            "addedAt": self.added_at,
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> QueueItem:
        observation = data.get("observation")
        if not isinstance(observation, dict):
            raise ValueError("queue item missing observation")
        return cls(
            id=int(data["id"]),
            observation=observation,
            added_at=str(data.get("addedAt") or ""),
            retry_count=int(data.get("retryCount") or 0),
        )


class RetryQueue:
    """Disk-backed queue of observations whose delivery failed.

    The file is the source of truth: every mutation rewrites it before returning, and a
    new instance rebuilds its list from it. Items with ``retry_count >= max_retries``
    stay on disk as dead letters and are never handed out for retry.
    """

    def __init__(self, path: Path | None = None, *, max_retries: int = DEFAULT_MAX_RETRIES):
        self.path = path or queue_path()
        self.max_retries = max_retries
        self._items: list[QueueItem] = []
        self._load()

    def _load(self) -> None:
        try:
            raw = self.path.read_text()
        except FileNotFoundError:
            self._items = []
            return
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("retry queue unreadable; starting empty", extra={"path": str(self.path)})
            self._items = []
            return
        entries = data.get("items") if isinstance(data, dict) else None
        items: list[QueueItem] = []
        for entry in entries if isinstance(entries, list) else []:
            try:
                items.append(QueueItem.from_json(entry))
            except (AttributeError, KeyError, TypeError, ValueError):
                logger.warning("dropping malformed retry queue entry", extra={"entry": entry})
        self._items = items

    def _save(self) -> None:
        write_json_atomic(self.path, {"items": [item.to_json() for item in self._items]})

    def _find(self, item_id: int) -> QueueItem | None:
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def add(self, observation: dict[str, Any], *, dead_letter: bool = False) -> QueueItem:
        item_id = int(observation["id"])
        existing = self._find(item_id)
        if existing is not None:
            if dead_letter:
                existing.retry_count = max(existing.retry_count, self.max_retries)
            else:
                existing.retry_count += 1
            self._save()
            return existing
        item = QueueItem(
            id=item_id,
            observation=observation,
            added_at=dt.datetime.now(dt.UTC).isoformat(),
            retry_count=self.max_retries if dead_letter else 0,
        )
        self._items.append(item)
        self._save()
        return item

    def remove(self, item_id: int) -> bool:
        if self._find(item_id) is None:
            return False
        self._items = [item for item in self._items if item.id != item_id]
        self._save()
        return True

    def get_retry_items(self) -> list[QueueItem]:
        return [item for item in self._items if item.retry_count < self.max_retries]

    def get_failed_items(self) -> list[QueueItem]:
        return [item for item in self._items if item.retry_count >= self.max_retries]

    def increment_retry(self, item_id: int) -> None:
        item = self._find(item_id)
        if item is None:
            return
        item.retry_count += 1
        self._save()

    def size(self) -> int:
        return len(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, item_id: object) -> bool:
        return isinstance(item_id, int) and self._find(item_id) is not None

    def clear(self) -> None:
        self._items = []
        self._save()

    def clear_failed(self) -> None:
        self._items = self.get_retry_items()
        self._save()
