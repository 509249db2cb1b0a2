"""In-memory ``Sessions`` double with verification hooks for tests."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field

from ..errors import SessionExists, SessionNotFound


@dataclass
class _FakeSession:
    name: str
    work_dir: str | None
    command: str
    buffer: list[str] = field(default_factory=lambda: ["> "])
    running: bool = True
    control_log: list[str] = field(default_factory=list)
    nudge_log: list[str] = field(default_factory=list)


class SessionDouble:
    """Sessions kept in a dict; every call is thread-safe.

    Besides the ``Sessions`` interface it records stops, nudges and control
    keys so a test can assert on what the dispatch path did.
    """

    def __init__(self, *, process_names: tuple[str, ...] = ()) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, _FakeSession] = {}
        self.stop_log: list[str] = []
        self.start_log: list[str] = []
        self.process_names = process_names

    def _get(self, name: str) -> _FakeSession:
        session = self._sessions.get(name)
        if session is None:
            raise SessionNotFound(f"session not found: {name}")
        return session

    def start(self, name: str, work_dir: str | None, command: str) -> str:
        if not name:
            raise ValueError("session name cannot be empty")
        with self._lock:
            if name in self._sessions:
                raise SessionExists(f"duplicate session: {name}")
            self._sessions[name] = _FakeSession(name=name, work_dir=work_dir, command=command)
            self.start_log.append(name)
        return name

    def stop(self, name: str) -> None:
        with self._lock:
            self._sessions.pop(name, None)
            self.stop_log.append(name)

    def exists(self, name: str) -> bool:
        with self._lock:
            return name in self._sessions

    def send(self, name: str, text: str) -> None:
        with self._lock:
            self._get(name).buffer.append(text)

    def send_control(self, name: str, key: str) -> None:
        with self._lock:
            self._get(name).control_log.append(key)

    def nudge(self, name: str, message: str) -> None:
        with self._lock:
            session = self._get(name)
            session.nudge_log.append(message)
            session.buffer.append(message)

    def capture(self, name: str, lines: int) -> str:
        with self._lock:
            buffer = self._get(name).buffer
            return "\n".join(buffer[-lines:] if lines > 0 else buffer)

    def is_running(self, name: str, *process_names: str) -> bool:
        if not process_names:
            return False
        with self._lock:
            session = self._sessions.get(name)
            return session is not None and session.running

    def list(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)

    def attach(self, name: str) -> None:
        with self._lock:
            self._get(name)

    def switch_to(self, name: str) -> None:
        with self._lock:
            self._get(name)

    # Verification hooks

    def set_running(self, name: str, running: bool) -> None:
        with self._lock:
            self._get(name).running = running

    def set_buffer(self, name: str, lines: list[str]) -> None:
        with self._lock:
            self._get(name).buffer = list(lines)

    def nudges(self, name: str) -> list[str]:
        with self._lock:
            session = self._sessions.get(name)
            return list(session.nudge_log) if session else []

    def controls(self, name: str) -> list[str]:
        with self._lock:
            session = self._sessions.get(name)
            return list(session.control_log) if session else []

    def command(self, name: str) -> str:
        with self._lock:
            return self._get(name).command

    def work_dir(self, name: str) -> str | None:
        with self._lock:
            return self._get(name).work_dir
