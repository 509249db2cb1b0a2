"""Town activity feed: an append-only JSONL event log.

Writes are best-effort; a failed append is logged and never raised, since
losing a feed line must not undo a dispatch that already happened.
"""

from __future__ import annotations

import json
from pathlib import Path

from filelock import FileLock
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import log as gt_log
from . import paths
from .config import utc_now

EVENT_SLING = "sling"
EVENT_SPAWN = "spawn"
EVENT_HOOK = "hook"
EVENT_SESSION_DEATH = "session-death"
EVENT_MERGED = "merged"
EVENT_MERGE_FAILED = "merge-failed"
EVENT_PATROL = "patrol"


class FeedEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    ts: str
    type: str
    actor: str
    payload: dict[str, object] = Field(default_factory=dict)


def _lock_for(path: Path) -> FileLock:
    return FileLock(f"{path}.lock", timeout=10)


def log_event(
    town_root: Path, event_type: str, actor: str, payload: dict[str, object] | None = None
) -> FeedEvent | None:
    """Append one event; returns ``None`` when the write failed."""
    event = FeedEvent(ts=utc_now(), type=event_type, actor=actor, payload=payload or {})
    path = paths.events_path(town_root)
    line = json.dumps(event.model_dump(), sort_keys=True)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with _lock_for(path), path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")
    except OSError as exc:
        gt_log.warning(f"could not write {event_type} event to feed: {exc}")
        return None
    return event


def read_events(town_root: Path, *, limit: int | None = None) -> list[FeedEvent]:
    """Return the newest ``limit`` events in file order; unreadable lines are skipped."""
    path = paths.events_path(town_root)
    if not path.exists():
        return []
    events: list[FeedEvent] = []
    for raw in path.read_text(encoding="utf-8").splitlines():
        if not raw.strip():
            continue
        try:
            events.append(FeedEvent.model_validate(json.loads(raw)))
        except (json.JSONDecodeError, ValidationError):
            gt_log.debug(f"skipping malformed feed line: {raw[:80]}")
    if limit is not None and limit >= 0:
        return events[-limit:] if limit else []
    return events
