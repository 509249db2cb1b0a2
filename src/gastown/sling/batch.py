"""Many beads to one rig: parallel batch dispatch and the capacity queue.

Both modes share one shape: validate every bead, cook the formula once,
run the pre-spawn steps serially, pre-allocate polecat names, then spawn
through the bounded pool. The queue mode persists work first and only
spawns into free capacity.
"""

from __future__ import annotations

import threading
from collections.abc import Sequence

from .. import log as gt_log
from ..beads import STATUS_CLOSED, Issue
from ..dispatcher import (
    DispatchResult,
    Dispatcher,
    capacity_slots,
    normalize_parallelism,
    run_pool,
)
from ..errors import BeadAlreadyAssigned, BeadNotFound, CapacityExceeded, GastownError
from ..io import say
from .convoy import batch_convoy_title, create_convoy
from .pipeline import (
    Prepared,
    SlingContext,
    SlingOutcome,
    check_assignable,
    cook_formula,
    ensure_convoy,
    prepare,
    release_previous_hook,
    spawn_and_hook,
    wake_rig,
)
from .request import SlingRequest


class _PoolSpawner:
    """Spawner callback for the pool; names are allocated before any spawn starts."""

    def __init__(self, ctx: SlingContext, req: SlingRequest, outcome: SlingOutcome) -> None:
        self.ctx = ctx
        self.req = req
        self.outcome = outcome
        self.prepared: dict[str, Prepared] = {}
        self.names: dict[str, str] = {}
        self._lock = threading.Lock()

    def load(self, rig: str, prepared: dict[str, Prepared]) -> list[tuple[str, str]]:
        self.prepared = prepared
        names = self.ctx.backend(rig).allocate_names(len(prepared))
        self.names = dict(zip(prepared, names, strict=True))
        return [(rig, bead_id) for bead_id in prepared]

    def __call__(self, rig: str, bead_id: str) -> None:
        assignment = spawn_and_hook(
            self.ctx, rig, self.prepared[bead_id], self.req, name=self.names[bead_id], wake=False
        )
        with self._lock:
            self.outcome.assignments.append(assignment)
        say(f"✓ {bead_id} -> {assignment.agent}")

    def finish(self, rig: str, result: DispatchResult) -> None:
        for bead_id in result.failed:
            error = result.errors[bead_id]
            say(f"✗ {bead_id}: {error}")
            self.outcome.failed[bead_id] = error
        order = list(self.prepared)
        self.outcome.assignments.sort(key=lambda item: order.index(item.bead_id))
        if result.succeeded:
            wake_rig(self.ctx, rig)


def _batch_convoy(ctx: SlingContext, bead_ids: Sequence[str], rig: str) -> str | None:
    try:
        identifier = create_convoy(
            ctx.beads,
            batch_convoy_title(len(bead_ids), rig),
            bead_ids,
            new_suffix=ctx.new_convoy_suffix,
        )
    except GastownError as exc:
        gt_log.warning(f"could not create batch convoy: {exc}")
        return None
    say(f"Created convoy {identifier} tracking {len(bead_ids)} beads")
    return identifier


def _show_all(ctx: SlingContext, bead_ids: Sequence[str]) -> list[Issue]:
    """Fetch every bead up front so a typo aborts before anything is dispatched."""
    return [ctx.beads.show(bead_id) for bead_id in bead_ids]


def _prepare_all(
    ctx: SlingContext,
    issues: Sequence[Issue],
    req: SlingRequest,
    outcome: SlingOutcome,
    *,
    formula: str | None,
) -> dict[str, Prepared]:
    """Run pre-spawn serially; beads that fail land in ``outcome.failed``."""
    required = formula is not None
    cooked = cook_formula(ctx, formula or req.polecat_formula, required=required)
    prepared: dict[str, Prepared] = {}
    for issue in issues:
        try:
            check_assignable(issue, force=req.force)
            if req.force:
                release_previous_hook(ctx, issue)
            prepared[issue.id] = prepare(
                ctx, issue, req, formula=cooked, required=required, convoy=False
            )
        except GastownError as exc:
            say(f"✗ {issue.id}: {exc}")
            outcome.failed[issue.id] = exc
    return prepared


def sling_batch(
    ctx: SlingContext,
    bead_ids: Sequence[str],
    rig: str,
    req: SlingRequest,
    *,
    formula: str | None = None,
) -> SlingOutcome:
    """Spawn one polecat per bead in ``rig``; failures never stop siblings."""
    issues = _show_all(ctx, bead_ids)
    if req.queue:
        return sling_queue(ctx, bead_ids, rig, req, formula=formula, issues=issues)
    parallelism = normalize_parallelism(req.parallelism)
    if req.dry_run:
        say(f"Would spawn {len(issues)} polecats in rig '{rig}' (parallelism {parallelism}):")
        for issue in issues:
            say(f"Would sling {issue.id} ({issue.title}) to a fresh polecat")
        if not req.no_convoy:
            say(f"Would create convoy '{batch_convoy_title(len(issues), rig)}'")
        return SlingOutcome(dry_run=True)

    say(f"Batch slinging {len(issues)} beads to rig '{rig}' (parallelism {parallelism})")
    outcome = SlingOutcome()
    if not req.no_convoy:
        outcome.convoy_id = _batch_convoy(ctx, [issue.id for issue in issues], rig)
    prepared = _prepare_all(ctx, issues, req, outcome, formula=formula)
    if prepared:
        spawner = _PoolSpawner(ctx, req, outcome)
        items = spawner.load(rig, prepared)
        spawner.finish(rig, run_pool(items, spawner, parallelism=parallelism))
    say(f"Batch sling complete: {len(outcome.assignments)}/{len(issues)} succeeded")
    return outcome


def _describe_queue(ctx: SlingContext, issues: Sequence[Issue], rig: str, capacity: int) -> None:
    slots = capacity_slots(capacity, ctx.running_polecats(rig))
    pending = [issue.id for issue in issues] or [
        item.bead_id for item in ctx.queue.load() if item.rig == rig
    ]
    for index, bead_id in enumerate(pending):
        verb = "spawn" if slots is None or index < slots else "queue"
        say(f"Would {verb} {bead_id} in rig '{rig}'")


def _enqueue(
    ctx: SlingContext, issues: Sequence[Issue], rig: str, req: SlingRequest, outcome: SlingOutcome
) -> None:
    queued: list[Issue] = []
    for issue in issues:
        try:
            check_assignable(issue, force=req.force)
        except GastownError as exc:
            if len(issues) == 1:
                raise
            say(f"✗ {issue.id}: {exc}")
            outcome.failed[issue.id] = exc
            continue
        ctx.queue.add(issue.id, rig)
        outcome.queued.append(issue.id)
        queued.append(issue)
        say(f"Queued {issue.id} for rig '{rig}'")
    if not queued or req.no_convoy:
        return
    if len(queued) == 1:
        outcome.convoy_id = ensure_convoy(ctx, queued[0])
    else:
        outcome.convoy_id = _batch_convoy(ctx, [issue.id for issue in queued], rig)


def _settle_failure(ctx: SlingContext, bead_id: str, exc: GastownError) -> None:
    """Drop queued work that can never dispatch; anything else stays for a retry."""
    if isinstance(exc, (BeadNotFound, BeadAlreadyAssigned)):
        ctx.queue.remove(bead_id)
        return
    retries = ctx.queue.increment_retry(bead_id)
    gt_log.debug(f"kept {bead_id} queued after failure (retry {retries}): {exc}")


def sling_queue(
    ctx: SlingContext,
    bead_ids: Sequence[str],
    rig: str,
    req: SlingRequest,
    *,
    formula: str | None = None,
    issues: Sequence[Issue] | None = None,
) -> SlingOutcome:
    """Queue ``bead_ids`` for ``rig`` and dispatch as many as capacity allows.

    With no beads this drains what is already queued. Items that do not fit
    stay queued; only an explicit ``--capacity`` that leaves no room is an
    error.
    """
    explicit = req.capacity is not None
    capacity = req.capacity if req.capacity is not None else ctx.town.max_polecats(rig)
    if issues is None:
        issues = _show_all(ctx, bead_ids)
    if req.dry_run:
        _describe_queue(ctx, issues, rig, capacity)
        return SlingOutcome(dry_run=True)

    outcome = SlingOutcome()
    _enqueue(ctx, issues, rig, req, outcome)

    running = ctx.running_polecats(rig)
    slots = capacity_slots(capacity, running)
    if slots == 0:
        message = f"At capacity: {running} polecats running (max={capacity})"
        if explicit:
            raise CapacityExceeded(
                message, recovery_hint=f"Queued work dispatches later: gt sling {rig} --queue"
            )
        say(message)
        return outcome

    spawner = _PoolSpawner(ctx, req, outcome)
    dispatcher = Dispatcher(ctx.queue, spawner, parallelism=req.parallelism, limit=slots or 0)
    pending = [bead_id for _rig, bead_id in dispatcher.pending(rig)]
    if not pending:
        say(f"No queued work for rig '{rig}'")
        return outcome
    if slots is not None:
        say(f"Capacity: {running}/{capacity} polecats running, dispatching {len(pending)}")

    ready: list[Issue] = []
    for bead_id in pending:
        try:
            issue = ctx.beads.show(bead_id)
        except GastownError as exc:
            say(f"✗ {bead_id}: {exc}")
            outcome.failed[bead_id] = exc
            _settle_failure(ctx, bead_id, exc)
            continue
        if issue.status == STATUS_CLOSED:
            say(f"Dropping {bead_id} from the queue: already closed")
            ctx.queue.remove(bead_id)
            continue
        ready.append(issue)
    prepared = _prepare_all(ctx, ready, req, outcome, formula=formula)
    for issue in ready:
        if issue.id not in prepared:
            _settle_failure(ctx, issue.id, outcome.failed[issue.id])
    if prepared:
        items = spawner.load(rig, prepared)
        spawner.finish(rig, dispatcher.dispatch(items=items))
    succeeded = sum(1 for item in outcome.assignments if item.bead_id in prepared)
    say(
        f"Queue dispatch complete: {succeeded}/{len(pending)} succeeded, "
        f"{len(ctx.queue)} still queued"
    )
    return outcome
