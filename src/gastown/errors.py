"""Failure contracts for the dispatch core.

Library code raises ``GastownError`` subclasses for expected failures; command
modules turn them into ``die`` at the CLI boundary. Programmer bugs raise
normal exceptions.
"""

from __future__ import annotations

from typing import Literal

GastownErrorCode = Literal[
    "invalid_input",
    "already_assigned",
    "prefix_mismatch",
    "route_not_found",
    "redirect_loop",
    "polecat_exists",
    "spawn_failed",
    "hook_failed",
    "not_installed",
    "daemon_legacy",
    "capacity_exceeded",
    "session",
    "uncommitted_work",
    "command_failed",
]


class GastownError(RuntimeError):
    """Expected dispatch failure with a stable code and optional hint."""

    code: GastownErrorCode = "command_failed"

    def __init__(self, message: str, *, recovery_hint: str | None = None) -> None:
        super().__init__(message)
        self.recovery_hint = recovery_hint

    def __str__(self) -> str:
        message = super().__str__()
        if self.recovery_hint:
            return f"{message}\n{self.recovery_hint}"
        return message


class InvalidInput(GastownError):
    """Unknown bead, unknown formula, or a malformed flag."""

    code: GastownErrorCode = "invalid_input"


class BeadNotFound(InvalidInput):
    """The issue tracker has no record of the bead."""

    def __init__(self, bead_id: str, *, recovery_hint: str | None = None) -> None:
        super().__init__(f"bead '{bead_id}' not found", recovery_hint=recovery_hint)
        self.bead_id = bead_id


class BeadAlreadyAssigned(GastownError):
    code: GastownErrorCode = "already_assigned"


class PrefixMismatch(GastownError):
    code: GastownErrorCode = "prefix_mismatch"


class RouteNotFound(GastownError):
    code: GastownErrorCode = "route_not_found"


class RedirectLoop(GastownError):
    code: GastownErrorCode = "redirect_loop"


class PolecatExists(GastownError):
    code: GastownErrorCode = "polecat_exists"


class SpawnFailed(GastownError):
    code: GastownErrorCode = "spawn_failed"


class HookFailed(GastownError):
    code: GastownErrorCode = "hook_failed"


class NotInstalled(GastownError):
    code: GastownErrorCode = "not_installed"


class DaemonLegacy(GastownError):
    code: GastownErrorCode = "daemon_legacy"


class CapacityExceeded(GastownError):
    code: GastownErrorCode = "capacity_exceeded"


class SessionNotFound(GastownError):
    code: GastownErrorCode = "session"


class SessionExists(GastownError):
    code: GastownErrorCode = "session"


class UncommittedWork(GastownError):
    """Non-nuclear polecat removal refused because work would be lost."""

    code: GastownErrorCode = "uncommitted_work"


class CommandFailed(GastownError):
    """An external command exited non-zero; the message carries its stderr."""

    code: GastownErrorCode = "command_failed"

    def __init__(self, message: str, *, stderr: str = "", returncode: int = 1) -> None:
        super().__init__(message)
        self.stderr = stderr
        self.returncode = returncode


class BeadsError(CommandFailed):
    """The issue-tracker binary failed; the message is ``bd <args>: <stderr>``."""
