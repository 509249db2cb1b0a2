"""Shared polecat types and the backend interface."""

from __future__ import annotations

from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Any, Protocol

from ..git import WorkStatus

STATE_SPAWNING = "spawning"
STATE_WORKING = "working"
STATE_NUKED = "nuked"
STATE_UNKNOWN = "unknown"

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def base36(value: int) -> str:
    """Lower-case base-36 rendering of a non-negative integer.

    Example:
        >>> base36(0), base36(35), base36(36)
        ('0', 'z', '10')
    """
    if value <= 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
    return "".join(reversed(digits))


def branch_name(name: str, hook_bead: str | None, now_ms: int) -> str:
    """Worktree branch for a new polecat.

    Example:
        >>> branch_name("toast", "gp-abc", 36)
        'polecat/toast/gp-abc@10'
        >>> branch_name("toast", None, 36)
        'polecat/toast-10'
    """
    stamp = base36(now_ms)
    if hook_bead:
        return f"polecat/{name}/{hook_bead}@{stamp}"
    return f"polecat/{name}-{stamp}"


@dataclass(frozen=True)
class AddOptions:
    hook_bead: str | None = None


@dataclass(frozen=True)
class Polecat:
    name: str
    rig: str
    clone_path: str
    session_name: str
    branch: str = ""
    state: str = STATE_WORKING


class PolecatBackend(Protocol):
    """What the dispatch path needs from a rig's polecat manager."""

    rig: str

    def allocate_name(self) -> str: ...

    def allocate_names(self, count: int) -> list[str]: ...

    def live_names(self) -> list[str]: ...

    def exists(self, name: str) -> bool: ...

    def add_with_options(self, name: str, opts: AddOptions) -> Polecat: ...

    def remove_with_options(
        self, name: str, *, force: bool = False, nuclear: bool = False
    ) -> None: ...

    def session_name(self, name: str) -> str: ...

    def clone_path(self, name: str) -> str: ...

    def list(self) -> list[Polecat]: ...

    def git_state(self, name: str) -> WorkStatus: ...

    def lock(self, name: str, *, timeout: float = 60.0) -> AbstractContextManager[Any]: ...
