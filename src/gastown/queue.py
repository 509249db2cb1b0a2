"""Durable FIFO of pending dispatch items.

The queue lives at ``<town>/.beads/sling-queue.jsonl``, one JSON object per
line. Appends are atomic under a file lock; removals rewrite the file.
After a crash, ``load`` replays items in enqueue order.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path

from filelock import FileLock
from pydantic import BaseModel, ConfigDict, ValidationError

from . import log as gt_log
from . import paths
from .config import utc_now
from .errors import InvalidInput

LOCK_TIMEOUT_SECONDS = 30


class QueueItem(BaseModel):
    """One pending dispatch.

    Example:
        >>> QueueItem(bead_id="gp-1", rig="gastown", enqueued_at="2026-01-01T00:00:00Z").retry_count
        0
    """

    model_config = ConfigDict(extra="ignore")

    bead_id: str
    rig: str
    retry_count: int = 0
    enqueued_at: str


class SlingQueue:
    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = FileLock(f"{path}.lock", timeout=LOCK_TIMEOUT_SECONDS)

    @classmethod
    def for_town(cls, town_root: Path) -> SlingQueue:
        return cls(paths.queue_path(town_root))

    def _read(self) -> list[QueueItem]:
        if not self.path.exists():
            return []
        items: list[QueueItem] = []
        seen: set[str] = set()
        for lineno, raw in enumerate(self.path.read_text(encoding="utf-8").splitlines(), 1):
            if not raw.strip():
                continue
            try:
                item = QueueItem.model_validate(json.loads(raw))
            except (json.JSONDecodeError, ValidationError) as exc:
                gt_log.warning(f"{self.path}:{lineno}: skipping malformed queue entry: {exc}")
                continue
            if item.bead_id in seen:
                continue
            seen.add(item.bead_id)
            items.append(item)
        return items

    def _rewrite(self, items: list[QueueItem]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".sling-queue.", suffix=".tmp")
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            for item in items:
                fh.write(json.dumps(item.model_dump()) + "\n")
        os.replace(tmp_name, self.path)

    def add(self, bead_id: str, rig: str) -> QueueItem:
        """Enqueue ``bead_id``; a bead already queued is returned unchanged."""
        if not bead_id.strip():
            raise InvalidInput("cannot queue an empty bead id")
        with self._lock:
            for item in self._read():
                if item.bead_id == bead_id:
                    return item
            item = QueueItem(bead_id=bead_id, rig=rig, enqueued_at=utc_now())
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(json.dumps(item.model_dump()) + "\n")
        gt_log.debug(f"queued {bead_id} for {rig}")
        return item

    def load(self) -> list[QueueItem]:
        with self._lock:
            return self._read()

    def remove(self, bead_id: str) -> bool:
        with self._lock:
            items = self._read()
            remaining = [item for item in items if item.bead_id != bead_id]
            if len(remaining) == len(items):
                return False
            self._rewrite(remaining)
        return True

    def increment_retry(self, bead_id: str) -> int | None:
        """Bump the retry count in place; ``None`` when the bead is not queued."""
        with self._lock:
            items = self._read()
            for index, item in enumerate(items):
                if item.bead_id == bead_id:
                    items[index] = item.model_copy(update={"retry_count": item.retry_count + 1})
                    self._rewrite(items)
                    return items[index].retry_count
        return None

    def __len__(self) -> int:
        return len(self.load())
