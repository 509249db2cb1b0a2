"""Implementation for the ``gt sling`` command."""

from __future__ import annotations

from ..errors import GastownError
from ..io import die, say
from ..sling import (
    DEFAULT_POLECAT_FORMULA,
    SlingContext,
    SlingOutcome,
    SlingRequest,
    parse_on_target,
    sling,
)
from .resolve import resolve_current_town


def build_request(args: object) -> SlingRequest:
    """Translate CLI arguments into a ``SlingRequest``."""
    positional = [str(item) for item in getattr(args, "args", None) or []]
    on_value = getattr(args, "on", None)
    on = tuple(parse_on_target(str(on_value))) if on_value else ()
    return SlingRequest(
        bead_or_formula=positional[0] if positional else None,
        targets=tuple(positional[1:]),
        on=on,
        variables=tuple(getattr(args, "var", None) or ()),
        args=getattr(args, "sling_args", None),
        subject=getattr(args, "subject", None),
        message=getattr(args, "message", None),
        force=bool(getattr(args, "force", False)),
        create=bool(getattr(args, "create", False)),
        account=getattr(args, "account", None),
        agent=getattr(args, "agent", None),
        no_convoy=bool(getattr(args, "no_convoy", False)),
        dry_run=bool(getattr(args, "dry_run", False)),
        queue=bool(getattr(args, "queue", False)),
        parallelism=int(getattr(args, "parallel", 0) or 0),
        capacity=getattr(args, "capacity", None),
        polecat_formula=getattr(args, "formula", None) or DEFAULT_POLECAT_FORMULA,
    )


def _report(outcome: SlingOutcome) -> None:
    if outcome.dry_run:
        return
    if outcome.convoy_id:
        say(f"Convoy: {outcome.convoy_id}")
    if outcome.failed:
        total = len(outcome.failed) + len(outcome.assignments)
        die(f"{len(outcome.failed)} of {total} beads failed to dispatch")


def run_sling(args: object) -> None:
    """Hook work to an agent, spawning polecats as needed.

    Example:
        $ gt sling gp-abc gastown
    """
    town = resolve_current_town()
    try:
        request = build_request(args)
        outcome = sling(SlingContext(town), request)
    except GastownError as exc:
        die(str(exc))
        return
    _report(outcome)
