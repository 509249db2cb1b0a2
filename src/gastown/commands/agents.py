"""Implementation for the ``gt agents`` commands."""

from __future__ import annotations

from .. import agent_state
from ..beads import Beads
from ..errors import GastownError
from ..io import die, say, say_json
from .resolve import resolve_current_town


def run_agents_state(args: object) -> None:
    """Get or set ``key:value`` state labels on an agent bead.

    Example:
        $ gt agents state gt-gastown-witness --incr idle
    """
    town = resolve_current_town()
    beads = Beads.town(town.root)
    agent_bead = str(getattr(args, "agent_bead"))
    set_pairs = list(getattr(args, "set", None) or [])
    incr = getattr(args, "incr", None)
    delete = list(getattr(args, "delete", None) or [])
    try:
        if set_pairs or incr or delete:
            agent_state.modify_state(
                beads,
                agent_bead,
                set_values=agent_state.parse_set_pairs(set_pairs),
                incr=incr,
                delete=delete,
            )
            say(f"✓ Updated agent state for {agent_bead}")
            return
        state = agent_state.read_state(beads, agent_bead)
    except GastownError as exc:
        die(str(exc))
        return
    if getattr(args, "json", False):
        say_json({"agent_bead": agent_bead, "labels": state})
        return
    say(f"Agent: {agent_bead}")
    if not state:
        say("  (no operational state labels)")
        return
    for key, value in sorted(state.items()):
        say(f"  {key}: {value}")
