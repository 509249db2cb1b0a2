"""Implementation for the ``gt hook`` command."""

from __future__ import annotations

from .. import feed
from ..addresses import self_address
from ..beads import STATUS_HOOKED, ListOptions
from ..errors import GastownError
from ..io import die, say, say_json
from ..sling import SlingContext
from ..sling.pipeline import check_assignable, hook_bead, set_agent_hook
from ..sling.targets import resolve_target
from .resolve import resolve_current_town


def _show_hook(ctx: SlingContext, *, as_json: bool) -> None:
    agent = self_address(ctx.env)
    cwd = ctx.town.rig_path(agent.rig) if agent.rig else None
    hooked = ctx.beads.list(ListOptions(status=STATUS_HOOKED, assignee=str(agent)), cwd=cwd)
    if as_json:
        say_json({"agent": str(agent), "hooked": [issue.id for issue in hooked]})
        return
    if not hooked:
        say(f"Nothing on the hook for {agent}")
        return
    for issue in hooked:
        say(f"{issue.id}  {issue.title}")


def run_hook(args: object) -> None:
    """Attach a bead to an agent's hook without nudging or spawning.

    With no bead, show what is hooked to the calling agent.

    Example:
        $ gt hook gp-abc gastown/crew/max
    """
    town = resolve_current_town()
    ctx = SlingContext(town)
    bead_id = getattr(args, "bead", None)
    try:
        if not bead_id:
            _show_hook(ctx, as_json=bool(getattr(args, "json", False)))
            return
        target = resolve_target(town, getattr(args, "target", None), env=ctx.env)
        if target.agent is None:
            die("gt hook needs an agent target; use gt sling to spawn a polecat in a rig")
            return
        issue = ctx.beads.show(bead_id)
        check_assignable(
            issue, force=bool(getattr(args, "force", False)), assignee=str(target.agent)
        )
        hook_bead(ctx, issue.id, target.agent)
        set_agent_hook(ctx, target.agent, issue.id)
        ctx.event(feed.EVENT_HOOK, {"bead": issue.id, "target": str(target.agent)})
    except GastownError as exc:
        die(str(exc))
