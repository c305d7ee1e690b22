"""History Store - Keeps recently sent requests in a JSON file.

Items are stored newest first and capped at a fixed count. File attachments
(raw file body and multipart files) cannot be serialized, so they are
stripped when a request is recorded; every other field is kept.

The engine itself never touches the disk: the executor hands finished
requests to HistoryStore.record via its on_complete hook.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from postlite.models import HistoryItem, RequestSpec, ResponseSnapshot, new_id

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class HistoryError(Exception):
    """Raised when the history file cannot be written."""


def request_record(spec: RequestSpec) -> dict[str, Any]:
    """Serializable form of a request, without file attachments."""
    return spec.without_blobs().model_dump(mode="json")


class HistoryStore:
    """Request history, optionally backed by a JSON file.

    Usage:
        store = HistoryStore(Path("~/.postlite/history.json").expanduser())
        store.add(spec)
        for item in store.sorted_items():
            ...

    With path=None the history lives in memory only.
    """

    def __init__(self, path: Path | None = None, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._path = path
        self._limit = limit
        self._items: list[HistoryItem] = self._load()

    @property
    def items(self) -> list[HistoryItem]:
        """Items in insertion order, newest first."""
        return list(self._items)

    def _load(self) -> list[HistoryItem]:
        if self._path is None or not self._path.exists():
            return []
        try:
            with open(self._path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to read history %s, starting empty: %s", self._path, e)
            return []
        if not isinstance(raw, list):
            logger.warning("History file %s is not a list, starting empty", self._path)
            return []

        items: list[HistoryItem] = []
        for record in raw:
            try:
                items.append(HistoryItem.model_validate(record))
            except ValidationError as e:
                logger.warning("Skipping unreadable history item: %s", e)
        return items[: self._limit]

    def _save(self) -> None:
        if self._path is None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "w", encoding="utf-8") as f:
                json.dump([item.model_dump(mode="json") for item in self._items], f, indent=2)
        except OSError as e:
            raise HistoryError(f"Failed to write history {self._path}: {e}") from e

    def add(self, spec: RequestSpec, timestamp_ms: int | None = None) -> HistoryItem:
        """Record a sent request at the top of the history."""
        now = timestamp_ms if timestamp_ms is not None else time.time_ns() // 1_000_000
        item = HistoryItem.model_validate(
            {**request_record(spec), "id": new_id(), "timestamp": now, "pinned": False}
        )
        self._items = [item, *self._items][: self._limit]
        self._save()
        return item

    def record(self, spec: RequestSpec, snapshot: ResponseSnapshot) -> None:
        """Executor completion hook."""
        self.add(spec)

    def toggle_pin(self, item_id: str) -> None:
        self._items = [
            item.model_copy(update={"pinned": not item.pinned}) if item.id == item_id else item
            for item in self._items
        ]
        self._save()

    def delete(self, item_id: str) -> None:
        self._items = [item for item in self._items if item.id != item_id]
        self._save()

    def clear(self) -> None:
        self._items = []
        if self._path is None:
            return
        try:
            self._path.unlink(missing_ok=True)
        except OSError as e:
            raise HistoryError(f"Failed to remove history {self._path}: {e}") from e

    def sorted_items(self) -> list[HistoryItem]:
        """Pinned items first, then newest first."""
        return sorted(self._items, key=lambda item: (not item.pinned, -item.timestamp))

    def get(self, item_id: str) -> HistoryItem | None:
        return next((item for item in self._items if item.id == item_id), None)

    @staticmethod
    def restore(item: HistoryItem) -> RequestSpec:
        """Turn a history item back into an editable request."""
        data = item.model_dump(exclude={"timestamp", "pinned"})
        data["file"] = None
        return RequestSpec.model_validate(data)
