"""Multiplexer session drivers.

Kept free of polecat imports; the polecat package imports ``session.names``.
"""

from __future__ import annotations

from .base import Sessions
from .double import SessionDouble
from .mirrored import MirroredSessions
from .tmux import TmuxSessions
from .town import TownSessions

__all__ = [
    "MirroredSessions",
    "SessionDouble",
    "Sessions",
    "TmuxSessions",
    "TownSessions",
]
