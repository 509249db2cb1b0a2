"""Town-scoped session names for town-level roles.

Several towns can share one tmux server, so ``hq-mayor`` is started as
``hq-mayor-<town id>``. Lookups accept either form.
"""

from __future__ import annotations

from pathlib import Path

from ..errors import SessionNotFound
from .base import Sessions
from .names import extract_town_id, filter_sessions_by_town, with_town_suffix


class TownSessions:
    def __init__(self, inner: Sessions, town_root: str | Path) -> None:
        self.inner = inner
        self.town_root = town_root

    def scoped(self, name: str) -> str:
        if extract_town_id(name):
            return name
        return with_town_suffix(name, self.town_root)

    def resolve(self, name: str) -> str:
        """Name of the live session for ``name``; raises ``SessionNotFound``."""
        candidates = [name] if extract_town_id(name) else [self.scoped(name), name]
        for candidate in candidates:
            if self.inner.exists(candidate):
                return candidate
        raise SessionNotFound(f"session not found: {name}")

    def start(self, name: str, work_dir: str | None, command: str) -> str:
        return self.inner.start(self.scoped(name), work_dir, command)

    def stop(self, name: str) -> None:
        try:
            resolved = self.resolve(name)
        except SessionNotFound:
            return
        self.inner.stop(resolved)

    def exists(self, name: str) -> bool:
        try:
            self.resolve(name)
        except SessionNotFound:
            return False
        return True

    def send(self, name: str, text: str) -> None:
        self.inner.send(self.resolve(name), text)

    def send_control(self, name: str, key: str) -> None:
        self.inner.send_control(self.resolve(name), key)

    def nudge(self, name: str, message: str) -> None:
        self.inner.nudge(self.resolve(name), message)

    def capture(self, name: str, lines: int) -> str:
        return self.inner.capture(self.resolve(name), lines)

    def is_running(self, name: str, *process_names: str) -> bool:
        try:
            resolved = self.resolve(name)
        except SessionNotFound:
            return False
        return self.inner.is_running(resolved, *process_names)

    def list(self) -> list[str]:
        return filter_sessions_by_town(self.inner.list(), self.town_root)

    def attach(self, name: str) -> None:
        self.inner.attach(self.resolve(name))

    def switch_to(self, name: str) -> None:
        self.inner.switch_to(self.resolve(name))
