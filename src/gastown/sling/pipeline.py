"""The per-bead dispatch pipeline.

Every mode runs the same steps for each bead: apply the formula, record
dispatch metadata, attach a convoy, hook the bead to its agent, spawn the
polecat, emit feed events, and nudge the agent. The hook is written before
the polecat exists so a crash between the two leaves work a witness can
recover, never a running agent with nothing on its hook.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from .. import feed
from .. import log as gt_log
from ..addresses import ROLE_POLECAT, ROLE_REFINERY, ROLE_WITNESS, AgentAddress, self_address
from ..beads import STATUS_HOOKED, STATUS_PINNED, Beads, Issue, UpdateOptions
from ..errors import (
    BeadAlreadyAssigned,
    GastownError,
    HookFailed,
    InvalidInput,
    PolecatExists,
    SpawnFailed,
)
from ..io import say
from ..polecat import AddOptions, PolecatBackend, backend_for
from ..queue import SlingQueue
from ..runner import CommandRunner
from ..session.factory import AgentSession, SessionFactory
from ..session.mirrored import MIRROR_SUFFIX
from ..session.names import parse_session_name
from ..workspace import Town
from .convoy import create_auto_convoy, existing_convoy, short_id
from .formula import instantiate_on_bead, store_attachment
from .request import NO_FORMULA, SlingRequest, start_prompt

BLOCKING_STATUSES = frozenset({STATUS_PINNED, STATUS_HOOKED})

WITNESS_WAKE_MESSAGE = "Polecat dispatched - check for work"
REFINERY_WAKE_MESSAGE = "Polecat dispatched - check for merge requests"


class SlingContext:
    """Collaborators shared by every step of one sling invocation."""

    def __init__(
        self,
        town: Town,
        *,
        beads: Beads | None = None,
        sessions: SessionFactory | None = None,
        backends: Callable[[str], PolecatBackend] | None = None,
        queue: SlingQueue | None = None,
        env: Mapping[str, str] | None = None,
        process_runner: CommandRunner | None = None,
        new_convoy_suffix: Callable[[], str] = short_id,
    ) -> None:
        self.town = town
        self.beads = beads or Beads.town(town.root, process_runner=process_runner)
        self.sessions = sessions or SessionFactory(town, process_runner=process_runner)
        self._make_backend = backends or (
            lambda rig: backend_for(town, rig, process_runner=process_runner)
        )
        self.queue = queue or SlingQueue.for_town(town.root)
        self.env = os.environ if env is None else env
        self.new_convoy_suffix = new_convoy_suffix
        self._backends: dict[str, PolecatBackend] = {}
        self._lock = threading.Lock()

    def backend(self, rig: str) -> PolecatBackend:
        with self._lock:
            backend = self._backends.get(rig)
            if backend is None:
                backend = self._make_backend(rig)
                self._backends[rig] = backend
            return backend

    def actor(self) -> str:
        try:
            return str(self_address(self.env))
        except InvalidInput:
            return "unknown"

    def running_polecats(self, rig: str) -> int:
        """Count live polecat sessions for ``rig``; mirror sessions are not agents."""
        rigs = self.town.rig_names()
        count = 0
        for name in self.sessions.polecat_sessions(rig).list():
            if name.endswith(MIRROR_SUFFIX):
                continue
            parsed = parse_session_name(name, rigs)
            if parsed is not None and parsed.role == ROLE_POLECAT and parsed.rig == rig:
                count += 1
        return count

    def event(self, event_type: str, payload: dict[str, object]) -> None:
        feed.log_event(self.town.root, event_type, self.actor(), payload)


@dataclass(frozen=True)
class Prepared:
    """A bead that has been through the pre-spawn steps."""

    bead_id: str
    title: str
    wisp_root: str | None = None
    convoy_id: str | None = None


@dataclass(frozen=True)
class Assignment:
    bead_id: str
    agent: str
    convoy_id: str | None = None
    wisp_root: str | None = None


@dataclass
class SlingOutcome:
    """What one sling invocation did; failures in batch modes land in ``failed``."""

    assignments: list[Assignment] = field(default_factory=list)
    failed: dict[str, GastownError] = field(default_factory=dict)
    queued: list[str] = field(default_factory=list)
    convoy_id: str | None = None
    dry_run: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed


def _agent_bead(ctx: SlingContext, agent: AgentAddress) -> str:
    prefix = None
    if agent.rig and ctx.town.is_rig(agent.rig):
        prefix = ctx.town.rig_prefix(agent.rig)
    return agent.bead_id(prefix)


def check_assignable(issue: Issue, *, force: bool, assignee: str | None = None) -> None:
    """Refuse a pinned or hooked bead unless forced.

    Re-hooking a hooked bead to the agent that already holds it is allowed.
    """
    if force or issue.status not in BLOCKING_STATUSES:
        return
    if issue.status == STATUS_HOOKED and assignee is not None and issue.assignee == assignee:
        return
    holder = issue.assignee or "(unknown)"
    raise BeadAlreadyAssigned(
        f"bead {issue.id} is already {issue.status} to {holder}",
        recovery_hint="Use --force to re-sling",
    )


def release_previous_hook(ctx: SlingContext, issue: Issue) -> None:
    """Clear the previous assignee's hook when it still points at ``issue``."""
    if not issue.assignee:
        return
    try:
        previous = AgentAddress.parse(issue.assignee)
    except InvalidInput:
        return
    agent_bead = _agent_bead(ctx, previous)
    try:
        fields = ctx.beads.show(agent_bead).agent_fields()
        if fields is not None and fields.hook_bead == issue.id:
            ctx.beads.set_hook_bead(agent_bead, None)
            gt_log.debug(f"cleared hook on {agent_bead} for re-sling of {issue.id}")
    except GastownError as exc:
        gt_log.warning(f"could not clear previous hook on {agent_bead}: {exc}")


def ensure_convoy(ctx: SlingContext, issue: Issue) -> str | None:
    """Reuse a convoy already tracking ``issue`` or create ``Work: <title>``."""
    existing = existing_convoy(ctx.beads, issue.id)
    if existing:
        say(f"Already tracked by convoy {existing}")
        return existing
    try:
        identifier = create_auto_convoy(
            ctx.beads, issue.id, issue.title, new_suffix=ctx.new_convoy_suffix
        )
    except GastownError as exc:
        gt_log.warning(f"could not create auto-convoy for {issue.id}: {exc}")
        return None
    say(f"Created convoy {identifier}")
    return identifier


def cook_formula(ctx: SlingContext, formula: str | None, *, required: bool) -> str | None:
    """Cook ``formula`` once; an optional formula that fails to cook is dropped."""
    if not formula or formula == NO_FORMULA:
        return None
    try:
        ctx.beads.cook(formula)
    except GastownError as exc:
        if required:
            raise
        gt_log.warning(f"could not cook {formula}, dispatching without it: {exc}")
        return None
    return formula


def prepare(
    ctx: SlingContext,
    issue: Issue,
    req: SlingRequest,
    *,
    formula: str | None,
    required: bool = False,
    convoy: bool = True,
) -> Prepared:
    """Run the pre-spawn steps: formula, metadata, convoy.

    ``formula`` must already be cooked. A failing wisp aborts when
    ``required``; otherwise the bead goes out bare.
    """
    wisp_root = None
    if formula:
        try:
            result = instantiate_on_bead(
                ctx.beads,
                formula,
                issue.id,
                issue.title,
                variables=req.formula_variables(),
                actor=ctx.actor(),
            )
        except GastownError as exc:
            if required:
                raise
            gt_log.warning(f"could not apply {formula} to {issue.id}: {exc}")
        else:
            wisp_root = result.wisp_root
            say(f"Formula wisp created: {wisp_root}")
    try:
        store_attachment(
            ctx.beads,
            issue.id,
            molecule=wisp_root,
            args=req.args,
            dispatched_by=ctx.actor(),
        )
    except GastownError as exc:
        gt_log.warning(f"could not store dispatch metadata on {issue.id}: {exc}")
    convoy_id = None
    if convoy and not req.no_convoy:
        convoy_id = ensure_convoy(ctx, issue)
    return Prepared(bead_id=issue.id, title=issue.title, wisp_root=wisp_root, convoy_id=convoy_id)


def hook_bead(ctx: SlingContext, bead_id: str, agent: AgentAddress) -> None:
    try:
        ctx.beads.update(bead_id, UpdateOptions(status=STATUS_HOOKED, assignee=str(agent)))
    except GastownError as exc:
        raise HookFailed(f"hooking {bead_id} to {agent}: {exc}") from exc
    say(f"Work attached to hook: {bead_id} -> {agent}")


def set_agent_hook(ctx: SlingContext, agent: AgentAddress, bead_id: str) -> None:
    """Point the agent bead at ``bead_id``; the two may live in different databases."""
    agent_bead = _agent_bead(ctx, agent)
    try:
        ctx.beads.set_hook_bead(agent_bead, bead_id)
    except GastownError as exc:
        gt_log.warning(f"could not record hook on agent bead {agent_bead}: {exc}")


def nudge_agent(
    ctx: SlingContext, session: AgentSession, bead_id: str, req: SlingRequest
) -> None:
    """Wait for the runtime, then type the start prompt. Never fatal."""
    try:
        ctx.sessions.wait_ready(session)
    except GastownError as exc:
        gt_log.warning(f"{session.name} may not be ready: {exc}")
    prompt = start_prompt(bead_id, subject=req.subject, args=req.args)
    try:
        session.sessions.nudge(session.name, prompt)
    except GastownError as exc:
        gt_log.warning(
            f"could not nudge {session.name}; the agent will find {bead_id} on its hook: {exc}"
        )
        return
    say(f"Start prompt sent to {session.address}")


def nudge_existing(ctx: SlingContext, agent: AgentAddress, bead_id: str, req: SlingRequest) -> None:
    prompt = start_prompt(bead_id, subject=req.subject, args=req.args)
    try:
        ctx.sessions.nudge(agent, prompt)
    except GastownError as exc:
        gt_log.warning(f"could not nudge {agent}; the agent will find {bead_id} on its hook: {exc}")
        return
    say(f"Start prompt sent to {agent}")


def wake_rig(ctx: SlingContext, rig: str) -> None:
    """Nudge the rig's witness and refinery when their sessions are up."""
    for role, message in (
        (ROLE_WITNESS, WITNESS_WAKE_MESSAGE),
        (ROLE_REFINERY, REFINERY_WAKE_MESSAGE),
    ):
        address = AgentAddress(role=role, rig=rig)
        try:
            if ctx.sessions.exists(address):
                ctx.sessions.nudge(address, message)
        except GastownError as exc:
            gt_log.debug(f"could not wake {address}: {exc}")


def add_polecat(ctx: SlingContext, rig: str, name: str, hook: str) -> str:
    """Create the polecat's worktree, repairing a stale one; returns its clone path."""
    backend = ctx.backend(rig)
    if backend.exists(name):
        if ctx.sessions.polecat_sessions(rig).exists(backend.session_name(name)):
            raise PolecatExists(f"polecat '{name}' in rig '{rig}' already has a live session")
        say(f"Repairing stale polecat {name} with a fresh worktree")
        backend.remove_with_options(name, force=True, nuclear=True)
    opts = AddOptions(hook_bead=hook)
    try:
        polecat = backend.add_with_options(name, opts)
    except PolecatExists:
        say(f"Repairing polecat {name} after a concurrent create")
        backend.remove_with_options(name, force=True, nuclear=True)
        polecat = backend.add_with_options(name, opts)
    return polecat.clone_path


def _undo_polecat(ctx: SlingContext, rig: str, name: str) -> None:
    try:
        ctx.backend(rig).remove_with_options(name, force=True, nuclear=True)
    except GastownError as exc:
        gt_log.warning(f"could not clean up polecat {rig}/{name}: {exc}")


def spawn_and_hook(
    ctx: SlingContext,
    rig: str,
    prepared: Prepared,
    req: SlingRequest,
    *,
    name: str | None = None,
    wake: bool = True,
) -> Assignment:
    """Hook ``prepared`` to a fresh polecat in ``rig`` and start it.

    A failed spawn leaves the bead hooked to the polecat's address so the
    witness can find and re-sling it.
    """
    backend = ctx.backend(rig)
    name = name or backend.allocate_name()
    agent = AgentAddress.polecat(rig, name)
    say(f"Allocated polecat: {agent}")
    hook_bead(ctx, prepared.bead_id, agent)
    clone = add_polecat(ctx, rig, name, prepared.bead_id)
    with backend.lock(name):
        try:
            session = ctx.sessions.start(agent, agent_override=req.agent, work_dir=clone)
        except GastownError as exc:
            _undo_polecat(ctx, rig, name)
            raise SpawnFailed(f"starting session for {agent}: {exc}") from exc
        ctx.event(feed.EVENT_SLING, {"bead": prepared.bead_id, "target": str(agent)})
        ctx.event(feed.EVENT_SPAWN, {"rig": rig, "polecat": name})
        nudge_agent(ctx, session, prepared.bead_id, req)
    if wake:
        wake_rig(ctx, rig)
    return Assignment(
        bead_id=prepared.bead_id,
        agent=str(agent),
        convoy_id=prepared.convoy_id,
        wisp_root=prepared.wisp_root,
    )


def hook_to_agent(
    ctx: SlingContext, agent: AgentAddress, prepared: Prepared, req: SlingRequest
) -> Assignment:
    """Hook ``prepared`` to an existing agent and nudge it if its session is up."""
    hook_bead(ctx, prepared.bead_id, agent)
    ctx.event(feed.EVENT_SLING, {"bead": prepared.bead_id, "target": str(agent)})
    set_agent_hook(ctx, agent, prepared.bead_id)
    try:
        running = ctx.sessions.exists(agent)
    except GastownError as exc:
        gt_log.debug(f"could not check session for {agent}: {exc}")
        running = False
    if running:
        nudge_existing(ctx, agent, prepared.bead_id, req)
    else:
        say(f"{agent} has no running session; the work waits on its hook")
    return Assignment(
        bead_id=prepared.bead_id,
        agent=str(agent),
        convoy_id=prepared.convoy_id,
        wisp_root=prepared.wisp_root,
    )


def describe_dry_run(
    issue: Issue, agent: str, req: SlingRequest, *, formula: str | None, convoy: bool
) -> None:
    if formula:
        say(f"Would instantiate formula {formula} for {issue.id}")
    if convoy and not req.no_convoy:
        say(f"Would create convoy 'Work: {issue.title}'")
    say(f"Would run: bd update {issue.id} --status=hooked --assignee={agent}")
    if req.subject:
        say(f"  subject: {req.subject}")
    if req.args:
        say(f"  args: {req.args}")
    say(f"Would nudge {agent}: {start_prompt(issue.id, subject=req.subject, args=req.args)}")
