"""Implementation for ``gt town next`` and ``gt town prev``."""

from __future__ import annotations

from collections.abc import Sequence

from ..errors import GastownError
from ..io import die, say
from ..session.names import extract_town_id, parse_session_name
from ..session.tmux import TmuxSessions


def cycle_target(sessions: Sequence[str], current: str, step: int) -> str | None:
    """Town-level session ``step`` places away from ``current``.

    Only sessions carrying the same town suffix take part; the order wraps.

    Example:
        >>> names = ["hq-mayor-a1b2c3", "hq-deacon-a1b2c3", "hq-mayor-ffffff"]
        >>> cycle_target(names, "hq-mayor-a1b2c3", 1)
        'hq-deacon-a1b2c3'
        >>> cycle_target(names, "hq-mayor-a1b2c3", -1)
        'hq-deacon-a1b2c3'
    """
    town = extract_town_id(current)
    if not town or parse_session_name(current) is None:
        return None
    group = sorted(
        name
        for name in set(sessions) | {current}
        if extract_town_id(name) == town and parse_session_name(name) is not None
    )
    if len(group) < 2:
        return None
    index = group.index(current)
    return group[(index + step) % len(group)]


def _cycle(args: object, step: int) -> None:
    tmux = TmuxSessions()
    try:
        current = getattr(args, "session", None) or tmux.current_session()
        target = cycle_target(tmux.list(), current, step)
        if target is None:
            say("No other sessions in this town")
            return
        tmux.switch_to(target)
    except GastownError as exc:
        die(str(exc))


def run_town_next(args: object) -> None:
    """Switch the client to the next town-level session (mayor, deacon).

    Example:
        $ gt town next
    """
    _cycle(args, 1)


def run_town_prev(args: object) -> None:
    """Switch the client to the previous town-level session."""
    _cycle(args, -1)
