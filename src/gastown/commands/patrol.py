"""Implementation for the ``gt patrol`` command."""

from __future__ import annotations

from collections.abc import Callable

from .. import patrol
from ..addresses import ROLE_DEACON, ROLE_REFINERY, ROLE_WITNESS, AgentAddress, self_address
from ..beads import Beads
from ..errors import GastownError
from ..git import Git
from ..io import die, say
from ..polecat import backend_for
from ..queue import SlingQueue
from ..refinery import Engineer
from ..runner import LocalRunner
from ..session.factory import SessionFactory, work_dir_for
from ..workspace import Town
from .resolve import resolve_current_town


def _step_for(town: Town, address: AgentAddress, beads: Beads) -> Callable[[], bool]:
    sessions = SessionFactory(town)
    if address.role == ROLE_DEACON:
        queue = SlingQueue.for_town(town.root)
        return lambda: patrol.deacon_step(queue, sessions)
    rig = str(address.rig)
    if address.role == ROLE_WITNESS:
        backend = backend_for(town, rig)
        return lambda: patrol.witness_step(
            beads,
            backend,
            sessions.polecat_sessions(rig),
            prefix=town.rig_prefix(rig),
            town_root=town.root,
        )
    if address.role == ROLE_REFINERY:
        engineer = Engineer(
            beads, Git(LocalRunner()), work_dir_for(town, address), rig, town_root=town.root
        )
        branch = town.default_branch(rig)
        return lambda: patrol.refinery_step(beads, engineer, branch)
    raise AssertionError(f"no patrol step for {address.role}")


def run_patrol(args: object) -> None:
    """Run patrol cycles for the witness, refinery or deacon.

    The role comes from ``--as`` or, inside an agent session, from the
    ``GT_*`` environment.

    Example:
        $ gt patrol --as gastown/witness --cycles 3
    """
    town = resolve_current_town()
    try:
        explicit = getattr(args, "role", None)
        address = AgentAddress.parse(explicit) if explicit else self_address()
        cfg = patrol.patrol_config(address)
        if address.rig:
            town.require_rig(address.rig)
            prefix = town.rig_prefix(address.rig)
            beads = Beads.for_rig(town.root, town.rig_path(address.rig), prefix)
        else:
            prefix = None
            beads = Beads.town(town.root)
        step = _step_for(town, address, beads)
        report = patrol.run_patrol(
            beads,
            cfg,
            step,
            agent_bead=address.bead_id(prefix),
            cycles=int(getattr(args, "cycles", 1) or 1),
            interval=float(getattr(args, "interval", 30.0) or 30.0),
        )
    except GastownError as exc:
        die(str(exc))
        return
    verb = "Started" if report.created else "Resumed"
    say(f"{verb} patrol {report.patrol_id} ({cfg.molecule})")
    say(f"Cycles: {report.cycles}, idle: {report.idle_counts[-1] if report.idle_counts else 0}")
