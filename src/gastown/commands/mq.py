"""Implementation for the ``gt mq`` commands."""

from __future__ import annotations

from ..addresses import ROLE_REFINERY, AgentAddress
from ..beads import Beads
from ..errors import GastownError
from ..git import Git
from ..io import die, say, say_json
from ..refinery import Engineer, mr_by_id, next_ready_mr
from ..runner import LocalRunner
from ..session.factory import work_dir_for
from .resolve import resolve_current_town


def run_mq_process(args: object) -> None:
    """Merge the next ready merge request of a rig, or the one named.

    Example:
        $ gt mq process gastown --dry-run
    """
    town = resolve_current_town()
    rig = str(getattr(args, "rig"))
    as_json = bool(getattr(args, "json", False))
    try:
        town.require_rig(rig)
        beads = Beads.for_rig(town.root, town.rig_path(rig), town.rig_prefix(rig))
        branch = town.default_branch(rig)
        mr_id = getattr(args, "mr_id", None)
        mr = mr_by_id(beads, mr_id, branch) if mr_id else next_ready_mr(beads, branch)
    except GastownError as exc:
        die(str(exc))
        return

    if mr is None:
        if as_json:
            say_json({"status": "empty", "rig": rig})
        else:
            say(f"No ready merge requests in rig '{rig}'")
        return
    if getattr(args, "dry_run", False):
        if as_json:
            say_json({"status": "dry_run", "rig": rig, "mr": mr.as_dict()})
        else:
            say(f"Would merge {mr.branch} into {mr.target} ({mr.id})")
            if mr.source_issue:
                say(f"Would close {mr.id} and source issue {mr.source_issue}")
        return

    repo_dir = work_dir_for(town, AgentAddress(role=ROLE_REFINERY, rig=rig))
    engineer = Engineer(beads, Git(LocalRunner()), repo_dir, rig, town_root=town.root)
    try:
        result = engineer.run(mr)
    except GastownError as exc:
        die(str(exc))
        return
    if as_json:
        payload: dict[str, object] = {"status": result.status, "rig": rig, "mr": mr.as_dict()}
        if result.success:
            payload["merge_commit"] = result.merge_commit
        else:
            payload["error"] = result.error
            payload["conflict"] = result.conflict
        say_json(payload)
    elif result.success:
        say(f"✓ Merged {mr.branch} into {mr.target} at {result.merge_commit}")
    if not result.success:
        kind = "conflict" if result.conflict else "failed"
        die(f"merge of {mr.id} {kind}: {result.error}")
