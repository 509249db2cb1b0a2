"""Implementation for the ``gt polecats`` commands."""

from __future__ import annotations

from ..errors import GastownError
from ..io import confirm, die, say, say_json
from ..polecat import AddOptions, backend_for
from ..session.factory import SessionFactory
from .resolve import resolve_current_town


def run_polecats_add(args: object) -> None:
    """Create a polecat worktree and agent bead without starting a session.

    Example:
        $ gt polecats add gastown --hook gp-abc
    """
    town = resolve_current_town()
    rig = str(getattr(args, "rig"))
    try:
        backend = backend_for(town, rig)
        name = getattr(args, "name", None) or backend.allocate_name()
        polecat = backend.add_with_options(name, AddOptions(hook_bead=getattr(args, "hook", None)))
    except GastownError as exc:
        die(str(exc))
        return
    say(f"✓ Created polecat {rig}/{polecat.name}")
    say(f"  worktree: {polecat.clone_path}")
    say(f"  branch:   {polecat.branch}")


def run_polecats_remove(args: object) -> None:
    """Remove a polecat's worktree, stopping its session first.

    ``--nuclear`` discards unpushed work and asks for confirmation unless
    ``--yes`` is given.

    Example:
        $ gt polecats remove gastown toast --force
    """
    town = resolve_current_town()
    rig = str(getattr(args, "rig"))
    name = str(getattr(args, "name"))
    nuclear = bool(getattr(args, "nuclear", False))
    if nuclear and not getattr(args, "yes", False):
        if not confirm(f"Discard all work in {rig}/polecats/{name}?", default=False):
            say("Aborted.")
            return
    try:
        backend = backend_for(town, rig)
        if not backend.exists(name):
            die(f"no polecat '{name}' in rig '{rig}'")
            return
        sessions = SessionFactory(town).polecat_sessions(rig)
        session = backend.session_name(name)
        if sessions.exists(session):
            sessions.stop(session)
        backend.remove_with_options(
            name, force=bool(getattr(args, "force", False)), nuclear=nuclear
        )
    except GastownError as exc:
        die(str(exc))
        return
    say(f"✓ Removed polecat {rig}/{name}")


def run_polecats_list(args: object) -> None:
    """List a rig's polecats with their agent state and session liveness."""
    town = resolve_current_town()
    rig = str(getattr(args, "rig"))
    try:
        backend = backend_for(town, rig)
        sessions = SessionFactory(town).polecat_sessions(rig)
        rows = [
            {
                "name": polecat.name,
                "state": polecat.state,
                "session": polecat.session_name,
                "running": sessions.exists(polecat.session_name),
            }
            for polecat in backend.list()
        ]
    except GastownError as exc:
        die(str(exc))
        return
    if getattr(args, "json", False):
        say_json(rows)
        return
    if not rows:
        say(f"No polecats in rig '{rig}'.")
        return
    table = [("name", "state", "session")]
    for row in rows:
        status = "running" if row["running"] else "stopped"
        table.append((str(row["name"]), str(row["state"]), status))
    widths = [max(len(line[index]) for line in table) for index in range(len(table[0]))]
    for line in table:
        say("  ".join(value.ljust(widths[index]) for index, value in enumerate(line)).rstrip())
