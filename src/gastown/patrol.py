"""Role patrol loops for the witness, refinery and deacon.

A patrol is a molecule hooked to the role's agent. Each cycle finds (or
creates) the active patrol, runs the role's step, and records idleness as
an ``idle:<n>`` label on the agent bead so monitors can see quiet rigs.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from . import agent_state, feed
from . import log as gt_log
from .addresses import ROLE_DEACON, ROLE_REFINERY, ROLE_WITNESS, AgentAddress
from .beads import (
    STATUS_HOOKED,
    STATUS_IN_PROGRESS,
    STATUS_OPEN,
    Beads,
    Issue,
    ListOptions,
    UpdateOptions,
)
from .errors import GastownError, InvalidInput
from .polecat import PolecatBackend
from .queue import SlingQueue
from .refinery import Engineer, next_ready_mr
from .session.base import Sessions
from .session.factory import SessionFactory

PATROL_MOLECULES = {
    ROLE_WITNESS: "mol-witness-patrol",
    ROLE_REFINERY: "mol-refinery-patrol",
    ROLE_DEACON: "mol-deacon-patrol",
}
TEMPLATE_MARKER = "[template]"
EPIC_TYPE = "epic"
MAX_BACKOFF_SECONDS = 300.0
QUEUED_WORK_MESSAGE = "Queued work is waiting - run gt sling <rig> --queue"

WORK_LOOPS = {
    ROLE_WITNESS: (
        "Check each polecat session against its hook",
        "Record session deaths for hooked work",
        "Clear hooks left on agents whose work moved elsewhere",
    ),
    ROLE_REFINERY: (
        "Pick the highest-priority ready merge request",
        "Claim it and merge under the merge slot",
        "Close the request and its source issue",
    ),
    ROLE_DEACON: (
        "Check town health",
        "Wake idle rigs when work is queued",
    ),
}


@dataclass(frozen=True)
class PatrolConfig:
    role: str
    molecule: str
    assignee: str
    check_in_progress: bool = True
    work_loop: tuple[str, ...] = ()


def patrol_config(address: AgentAddress) -> PatrolConfig:
    molecule = PATROL_MOLECULES.get(address.role)
    if molecule is None:
        raise InvalidInput(f"{address} has no patrol (only witness, refinery and deacon patrol)")
    return PatrolConfig(
        role=address.role,
        molecule=molecule,
        assignee=str(address),
        check_in_progress=address.role != ROLE_DEACON,
        work_loop=WORK_LOOPS[address.role],
    )


def _is_patrol(issue: Issue, cfg: PatrolConfig) -> bool:
    return cfg.molecule in issue.title and TEMPLATE_MARKER not in issue.title


def find_active_patrol(beads: Beads, cfg: PatrolConfig) -> Issue | None:
    """The patrol hooked to this role, else an in-progress one, else an open one with open steps."""
    for issue in beads.list(
        ListOptions(status=STATUS_HOOKED, type=EPIC_TYPE, assignee=cfg.assignee)
    ):
        if _is_patrol(issue, cfg):
            return issue
    if cfg.check_in_progress:
        for issue in beads.list(ListOptions(status=STATUS_IN_PROGRESS, type=EPIC_TYPE)):
            if _is_patrol(issue, cfg):
                return issue
    live = {STATUS_OPEN, STATUS_IN_PROGRESS} if cfg.check_in_progress else {STATUS_OPEN}
    for issue in beads.list(ListOptions(status=STATUS_OPEN, type=EPIC_TYPE)):
        if not _is_patrol(issue, cfg):
            continue
        try:
            full = beads.show(issue.id)
        except GastownError as exc:
            gt_log.debug(f"could not inspect patrol {issue.id}: {exc}")
            continue
        if any(dep.status in live for dep in full.dependents):
            return full
    return None


def spawn_patrol(beads: Beads, cfg: PatrolConfig) -> str:
    """Create a patrol wisp from the catalog and hook it to the role."""
    proto = next(
        (
            item
            for item in beads.mol_catalog()
            if cfg.molecule in item.name or cfg.molecule in item.id
        ),
        None,
    )
    if proto is None:
        raise InvalidInput(
            f"proto {cfg.molecule} not found in catalog",
            recovery_hint="Run `bd mol catalog` to troubleshoot.",
        )
    wisp = beads.mol_wisp(proto.id, actor=cfg.role)
    beads.update(wisp.id, UpdateOptions(status=STATUS_HOOKED, assignee=cfg.assignee))
    return wisp.id


@dataclass(frozen=True)
class PatrolStatus:
    patrol_id: str
    created: bool


def ensure_patrol(beads: Beads, cfg: PatrolConfig) -> PatrolStatus:
    active = find_active_patrol(beads, cfg)
    if active is not None:
        return PatrolStatus(patrol_id=active.id, created=False)
    return PatrolStatus(patrol_id=spawn_patrol(beads, cfg), created=True)


def backoff_seconds(interval: float, idle: int) -> float:
    """Sleep before the next cycle: doubles with each idle cycle, capped.

    Example:
        >>> backoff_seconds(30, 0), backoff_seconds(30, 2), backoff_seconds(30, 20)
        (30.0, 120.0, 300.0)
    """
    return float(min(interval * (2 ** max(idle, 0)), MAX_BACKOFF_SECONDS))


def record_cycle(beads: Beads, agent_bead: str, *, found_work: bool) -> int:
    """Reset or bump the ``idle`` label; returns the new idle count."""
    if found_work:
        state = agent_state.modify_state(
            beads, agent_bead, set_values={agent_state.IDLE_KEY: "0"}
        )
    else:
        state = agent_state.modify_state(beads, agent_bead, incr=agent_state.IDLE_KEY)
    try:
        return int(state.get(agent_state.IDLE_KEY, "0"))
    except ValueError:
        return 0


@dataclass
class PatrolReport:
    patrol_id: str
    created: bool
    idle_counts: list[int] = field(default_factory=list)

    @property
    def cycles(self) -> int:
        return len(self.idle_counts)


def run_patrol(
    beads: Beads,
    cfg: PatrolConfig,
    step: Callable[[], bool],
    *,
    agent_bead: str,
    cycles: int = 1,
    interval: float = 30.0,
    sleep: Callable[[float], None] = time.sleep,
) -> PatrolReport:
    """Run ``cycles`` patrol cycles; ``step`` returns whether it found work."""
    status = ensure_patrol(beads, cfg)
    report = PatrolReport(patrol_id=status.patrol_id, created=status.created)
    for cycle in range(max(cycles, 1)):
        found = step()
        try:
            idle = record_cycle(beads, agent_bead, found_work=found)
        except GastownError as exc:
            gt_log.warning(f"could not record idle state on {agent_bead}: {exc}")
            idle = 0 if found else (report.idle_counts[-1] + 1 if report.idle_counts else 1)
        report.idle_counts.append(idle)
        gt_log.debug(f"{cfg.role} patrol cycle {cycle + 1}: found_work={found} idle={idle}")
        if cycle + 1 < cycles:
            sleep(backoff_seconds(interval, idle))
    return report


def witness_step(
    beads: Beads,
    backend: PolecatBackend,
    sessions: Sessions,
    *,
    prefix: str,
    town_root: Path | None = None,
) -> bool:
    """Inspect every polecat of the rig; returns whether anything needed attention.

    A polecat whose session is gone while its work is still hooked to it is
    reported as a session death. A hook pointing at work that has since
    been re-slung elsewhere is cleared.
    """
    found = False
    for name in backend.live_names():
        address = AgentAddress.polecat(backend.rig, name)
        agent_bead = address.bead_id(prefix)
        try:
            fields = beads.show(agent_bead).agent_fields()
        except GastownError as exc:
            gt_log.debug(f"no agent bead for {address}: {exc}")
            continue
        hooked = fields.hook_bead if fields is not None else None
        if not hooked:
            continue
        try:
            work = beads.show(hooked)
        except GastownError as exc:
            gt_log.debug(f"could not read hooked bead {hooked}: {exc}")
            continue
        if work.assignee != str(address):
            beads.set_hook_bead(agent_bead, None)
            gt_log.info(f"cleared stale hook {hooked} from {address} (now {work.assignee})")
            found = True
            continue
        if not sessions.exists(backend.session_name(name)):
            gt_log.warning(f"{address} has no session but {hooked} is hooked to it")
            if town_root is not None:
                feed.log_event(
                    town_root,
                    feed.EVENT_SESSION_DEATH,
                    f"{backend.rig}/witness",
                    {"polecat": name, "bead": hooked},
                )
            found = True
    return found


def refinery_step(beads: Beads, engineer: Engineer, default_branch: str) -> bool:
    mr = next_ready_mr(beads, default_branch)
    if mr is None:
        return False
    result = engineer.run(mr)
    if result.success:
        gt_log.success(f"merged {mr.branch} ({mr.id}) at {result.merge_commit}")
    else:
        gt_log.warning(f"merge of {mr.id} failed: {result.error}")
    return True


def deacon_step(queue: SlingQueue, sessions: SessionFactory) -> bool:
    """Nudge the witness of every rig that has queued work waiting."""
    rigs = sorted({item.rig for item in queue.load()})
    for rig in rigs:
        witness = AgentAddress(role=ROLE_WITNESS, rig=rig)
        if not sessions.exists(witness):
            gt_log.debug(f"{witness} is not running; queued work waits")
            continue
        try:
            sessions.nudge(witness, QUEUED_WORK_MESSAGE)
        except GastownError as exc:
            gt_log.warning(f"could not nudge {witness}: {exc}")
    return bool(rigs)
