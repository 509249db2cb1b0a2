"""Bounded parallel dispatch of queued work.

The dispatcher knows nothing about beads or convoys: it hands each
``(rig, bead_id)`` to a spawner callback and tallies outcomes. A failing
spawn never cancels its siblings.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from . import log as gt_log
from .errors import GastownError
from .queue import SlingQueue

DEFAULT_PARALLELISM = 5

Spawner = Callable[[str, str], None]
"""Spawn work for ``(rig, bead_id)``; raise ``GastownError`` on failure."""


@dataclass
class DispatchResult:
    succeeded: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    errors: dict[str, GastownError] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.succeeded) + len(self.failed)


def normalize_parallelism(value: int | None) -> int:
    """Clamp to at least one worker; ``None`` or 0 means the default.

    Example:
        >>> normalize_parallelism(None), normalize_parallelism(-3), normalize_parallelism(2)
        (5, 1, 2)
    """
    if value is None or value == 0:
        return DEFAULT_PARALLELISM
    return max(1, value)


def capacity_slots(max_polecats: int, running: int) -> int | None:
    """Free slots under a capacity cap; ``None`` when uncapped.

    Example:
        >>> capacity_slots(2, 0), capacity_slots(2, 3), capacity_slots(0, 9)
        (2, 0, None)
    """
    if max_polecats <= 0:
        return None
    return max(max_polecats - running, 0)


def run_pool(
    items: Sequence[tuple[str, str]],
    spawner: Spawner,
    *,
    parallelism: int | None = None,
    cancel: threading.Event | None = None,
    on_success: Callable[[str], None] | None = None,
    on_failure: Callable[[str, GastownError], None] | None = None,
) -> DispatchResult:
    """Run ``spawner`` over ``items`` with at most ``parallelism`` in flight.

    Items start in sequence order, so with one worker they also finish in
    that order. Items not yet started when ``cancel`` is set are skipped.
    """
    result = DispatchResult()
    if not items:
        return result
    lock = threading.Lock()

    def work(rig: str, bead_id: str) -> None:
        if cancel is not None and cancel.is_set():
            with lock:
                result.skipped.append(bead_id)
            return
        try:
            spawner(rig, bead_id)
        except GastownError as exc:
            gt_log.debug(f"dispatch of {bead_id} failed: {exc}")
            with lock:
                result.failed.append(bead_id)
                result.errors[bead_id] = exc
            if on_failure is not None:
                on_failure(bead_id, exc)
            return
        with lock:
            result.succeeded.append(bead_id)
        if on_success is not None:
            on_success(bead_id)

    workers = min(normalize_parallelism(parallelism), len(items))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gt-dispatch") as pool:
        futures = [pool.submit(work, rig, bead_id) for rig, bead_id in items]
        for future in futures:
            future.result()
    return result


class Dispatcher:
    """Drain a ``SlingQueue`` through a spawner.

    ``limit`` caps how many items this call dispatches (0 means all);
    successes leave the queue, failures stay queued with a bumped retry count.
    """

    def __init__(
        self,
        queue: SlingQueue,
        spawner: Spawner,
        *,
        parallelism: int | None = None,
        limit: int = 0,
        cancel: threading.Event | None = None,
    ) -> None:
        self.queue = queue
        self.spawner = spawner
        self.parallelism = normalize_parallelism(parallelism)
        self.limit = max(limit, 0)
        self.cancel = cancel

    def pending(self, rig: str | None = None) -> list[tuple[str, str]]:
        items = [
            (item.rig, item.bead_id)
            for item in self.queue.load()
            if rig is None or item.rig == rig
        ]
        if self.limit:
            items = items[: self.limit]
        return items

    def dispatch(
        self, rig: str | None = None, *, items: Sequence[tuple[str, str]] | None = None
    ) -> DispatchResult:
        """Dispatch ``items`` (default: the pending ones for ``rig``)."""
        if items is None:
            items = self.pending(rig)
        gt_log.debug(f"dispatching {len(items)} queued item(s) at parallelism {self.parallelism}")
        return run_pool(
            items,
            self.spawner,
            parallelism=self.parallelism,
            cancel=self.cancel,
            on_success=self.queue.remove,
            on_failure=lambda bead_id, _exc: self.queue.increment_retry(bead_id),
        )
