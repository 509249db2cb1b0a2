"""Shared town resolution helpers for commands."""

from __future__ import annotations

from pathlib import Path

from ..errors import GastownError
from ..io import die
from ..workspace import Town, resolve_town


def resolve_current_town(cwd: Path | None = None) -> Town:
    """Resolve the town containing the working directory or exit."""
    try:
        return resolve_town(cwd)
    except GastownError as exc:
        die(str(exc))
        raise
