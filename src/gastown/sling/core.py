"""Mode selection for ``gt sling``.

``sling`` reads the positional arguments and flags, decides between the
single, batch, formula-on-bead, standalone-formula and queue modes, and
hands off to the shared pipeline.
"""

from __future__ import annotations

from collections.abc import Sequence

from ..errors import InvalidInput
from ..io import say
from .batch import sling_batch, sling_queue
from .formula import verify_formula
from .pipeline import (
    Prepared,
    SlingContext,
    SlingOutcome,
    check_assignable,
    cook_formula,
    describe_dry_run,
    hook_to_agent,
    prepare,
    release_previous_hook,
    spawn_and_hook,
)
from .request import SlingRequest, start_prompt
from .targets import Target, resolve_target, rig_name

POLECAT_ENV = "GT_POLECAT"


def _validate(ctx: SlingContext, req: SlingRequest) -> None:
    if ctx.env.get(POLECAT_ENV, "").strip():
        raise InvalidInput(
            "polecats cannot sling work",
            recovery_hint="Finish with 'gt done'; the witness hands out new work",
        )
    if req.on and req.variables:
        raise InvalidInput("--var cannot be combined with --on (the bead supplies the variables)")


def sling(ctx: SlingContext, req: SlingRequest) -> SlingOutcome:
    """Dispatch ``req``; single-bead failures raise, batch failures are reported."""
    _validate(ctx, req)
    positional = [item for item in (req.bead_or_formula, *req.targets) if item]
    if not positional:
        raise InvalidInput("nothing to sling: pass a bead, a formula, or a rig with --queue")

    if req.queue and len(positional) == 1 and not req.on:
        rig = rig_name(ctx.town, positional[0])
        if rig is not None:
            return sling_queue(ctx, [], rig, req)

    if req.on:
        return _sling_on(ctx, positional[0], list(req.on), positional[1:], req)

    if len(positional) > 2:
        rig = rig_name(ctx.town, positional[-1])
        if rig is None:
            raise InvalidInput(
                f"'{positional[-1]}' is not a rig; several beads need a rig as the last argument"
            )
        return sling_batch(ctx, positional[:-1], rig, req)

    first, targets = positional[0], positional[1:]
    if ctx.beads.exists(first):
        return _sling_bead(ctx, first, targets, req, formula=None)
    if ctx.beads.formula_exists(first):
        return _sling_formula(ctx, first, targets, req)
    raise InvalidInput(f"'{first}' is neither a bead nor a formula")


def _sling_on(
    ctx: SlingContext,
    formula: str,
    bead_ids: list[str],
    targets: Sequence[str],
    req: SlingRequest,
) -> SlingOutcome:
    verify_formula(ctx.beads, formula)
    if not bead_ids:
        raise InvalidInput("--on needs at least one bead")
    if len(bead_ids) == 1:
        return _sling_bead(ctx, bead_ids[0], targets, req, formula=formula)
    rig = rig_name(ctx.town, targets[-1]) if targets else None
    if rig is None:
        shown = targets[-1] if targets else "none"
        raise InvalidInput(f"--on with several beads needs a rig target (got {shown})")
    return sling_batch(ctx, bead_ids, rig, req, formula=formula)


def _resolve(ctx: SlingContext, targets: Sequence[str]) -> Target:
    if len(targets) > 1:
        raise InvalidInput(f"too many targets: {' '.join(targets)}")
    return resolve_target(ctx.town, targets[0] if targets else None, env=ctx.env)


def _sling_bead(
    ctx: SlingContext,
    bead_id: str,
    targets: Sequence[str],
    req: SlingRequest,
    *,
    formula: str | None,
) -> SlingOutcome:
    target = _resolve(ctx, targets)
    if target.is_rig:
        rig = str(target.rig)
        if req.queue:
            return sling_queue(ctx, [bead_id], rig, req, formula=formula)
        return _sling_to_rig(ctx, bead_id, rig, req, formula=formula)
    if req.queue:
        raise InvalidInput(
            "--queue needs a rig target",
            recovery_hint=f"gt sling {bead_id} <rig> --queue",
        )
    agent = target.agent
    if agent is None:
        raise InvalidInput(f"no agent to hook {bead_id} to")
    if agent.is_polecat and not target.is_self and not ctx.sessions.exists(agent):
        say(f"{agent} has no session; spawning a fresh polecat in rig '{agent.rig}'")
        return _sling_to_rig(ctx, bead_id, str(agent.rig), req, formula=formula)
    if not agent.is_polecat and not target.is_self and not ctx.sessions.exists(agent):
        raise InvalidInput(
            f"{agent} is not running",
            recovery_hint="Start the agent first, or sling to a rig to spawn a polecat",
        )

    issue = ctx.beads.show(bead_id)
    check_assignable(issue, force=req.force, assignee=str(agent))
    if req.dry_run:
        describe_dry_run(issue, str(agent), req, formula=formula, convoy=True)
        return SlingOutcome(dry_run=True)
    if req.force:
        release_previous_hook(ctx, issue)
    cooked = cook_formula(ctx, formula, required=True)
    prepared = prepare(ctx, issue, req, formula=cooked, required=True)
    assignment = hook_to_agent(ctx, agent, prepared, req)
    return SlingOutcome(assignments=[assignment], convoy_id=prepared.convoy_id)


def _sling_to_rig(
    ctx: SlingContext, bead_id: str, rig: str, req: SlingRequest, *, formula: str | None
) -> SlingOutcome:
    issue = ctx.beads.show(bead_id)
    check_assignable(issue, force=req.force)
    if req.dry_run:
        say(f"Would spawn fresh polecat in rig '{rig}'")
        describe_dry_run(
            issue,
            f"{rig}/polecats/<new>",
            req,
            formula=formula or req.polecat_formula,
            convoy=True,
        )
        return SlingOutcome(dry_run=True)
    say(f"Target is rig '{rig}', spawning a fresh polecat")
    if req.force:
        release_previous_hook(ctx, issue)
    required = formula is not None
    cooked = cook_formula(ctx, formula or req.polecat_formula, required=required)
    prepared = prepare(ctx, issue, req, formula=cooked, required=required)
    assignment = spawn_and_hook(ctx, rig, prepared, req)
    return SlingOutcome(assignments=[assignment], convoy_id=prepared.convoy_id)


def _sling_formula(
    ctx: SlingContext, formula: str, targets: Sequence[str], req: SlingRequest
) -> SlingOutcome:
    """Cook ``formula``, create a wisp and hook the wisp's root to the target."""
    target = _resolve(ctx, targets)
    destination = f"{target.rig}/polecats/<new>" if target.is_rig else str(target.agent)
    variables = req.formula_variables()
    if req.dry_run:
        say(f"Would cook formula {formula}")
        say(f"Would create wisp of {formula} with {len(variables)} variable(s)")
        say(f"Would hook the wisp root to {destination}")
        prompt = start_prompt("<wisp>", subject=req.subject, args=req.args)
        say(f"Would nudge {destination}: {prompt}")
        return SlingOutcome(dry_run=True)
    cook_formula(ctx, formula, required=True)
    wisp = ctx.beads.mol_wisp(formula, actor=ctx.actor(), variables=variables)
    say(f"Wisp created: {wisp.id}")
    prepared = Prepared(bead_id=wisp.id, title=wisp.title, wisp_root=wisp.id)
    if target.is_rig:
        assignment = spawn_and_hook(ctx, str(target.rig), prepared, req)
    elif target.agent is not None:
        assignment = hook_to_agent(ctx, target.agent, prepared, req)
    else:
        raise InvalidInput(f"no agent to hook the {formula} wisp to")
    return SlingOutcome(assignments=[assignment])
