"""Operational state stored as ``key:value`` labels on agent beads.

Labels without a colon belong to other tools and survive every change.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence

from .beads import Beads, UpdateOptions
from .errors import InvalidInput

IDLE_KEY = "idle"
BACKOFF_KEY = "backoff"
LAST_ACTIVITY_KEY = "last_activity"


def parse_state_labels(labels: Iterable[str]) -> dict[str, str]:
    """Split ``key:value`` labels into a mapping; plain labels are ignored.

    Example:
        >>> parse_state_labels(["idle:3", "gt:agent", "pinned", "backoff:2m"])
        {'idle': '3', 'gt': 'agent', 'backoff': '2m'}
    """
    state: dict[str, str] = {}
    for label in labels:
        key, sep, value = label.partition(":")
        if sep and key:
            state[key] = value
    return state


def parse_set_pairs(pairs: Sequence[str]) -> dict[str, str]:
    parsed: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise InvalidInput(f"invalid set format: {pair} (expected key=value)")
        parsed[key] = value
    return parsed


def apply_state_changes(
    labels: Sequence[str],
    *,
    set_values: Mapping[str, str] | None = None,
    incr: str | None = None,
    delete: Sequence[str] = (),
) -> tuple[str, ...]:
    """Return the full label list after an increment, sets, then deletes.

    Example:
        >>> apply_state_changes(["pinned", "idle:2"], incr="idle", set_values={"backoff": "1m"})
        ('pinned', 'backoff:1m', 'idle:3')
    """
    state = parse_state_labels(labels)
    if incr:
        try:
            current = int(state.get(incr, "0"))
        except ValueError:
            current = 0
        state[incr] = str(current + 1)
    state.update(set_values or {})
    for key in delete:
        state.pop(key, None)
    plain = [label for label in labels if ":" not in label]
    return (*plain, *(f"{key}:{value}" for key, value in sorted(state.items())))


def read_state(beads: Beads, agent_bead: str) -> dict[str, str]:
    return parse_state_labels(beads.show(agent_bead).labels)


def modify_state(
    beads: Beads,
    agent_bead: str,
    *,
    set_values: Mapping[str, str] | None = None,
    incr: str | None = None,
    delete: Sequence[str] = (),
) -> dict[str, str]:
    """Read-modify-write the agent bead's labels and return the new state."""
    issue = beads.show(agent_bead)
    labels = apply_state_changes(issue.labels, set_values=set_values, incr=incr, delete=delete)
    beads.update(agent_bead, UpdateOptions(set_labels=labels))
    return parse_state_labels(labels)
