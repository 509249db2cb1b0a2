"""The session-driver interface every multiplexer backend implements."""

from __future__ import annotations

from typing import Protocol


class Sessions(Protocol):
    """Named sessions, each with a single pane running one command.

    ``start`` returns the name the session was actually created under, which
    can differ from the requested one when a driver scopes names.
    """

    def start(self, name: str, work_dir: str | None, command: str) -> str: ...

    def stop(self, name: str) -> None: ...

    def exists(self, name: str) -> bool: ...

    def send(self, name: str, text: str) -> None: ...

    def send_control(self, name: str, key: str) -> None: ...

    def nudge(self, name: str, message: str) -> None: ...

    def capture(self, name: str, lines: int) -> str: ...

    def is_running(self, name: str, *process_names: str) -> bool: ...

    def list(self) -> list[str]: ...

    def attach(self, name: str) -> None: ...

    def switch_to(self, name: str) -> None: ...
