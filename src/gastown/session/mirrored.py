"""Remote sessions mirrored into a local attachable session."""

from __future__ import annotations

from .. import log as gt_log
from ..errors import GastownError
from ..runner import shell_escape
from .base import Sessions

MIRROR_SUFFIX = "-mirror"


def mirror_name(name: str) -> str:
    return f"{name}{MIRROR_SUFFIX}"


class MirroredSessions:
    """The remote session is the source of truth.

    Each remote session gets a local ``<name>-mirror`` session that runs
    ``<ssh_cmd> -t tmux attach-session -t <name>`` so operators can attach
    without knowing where the polecat lives.
    """

    def __init__(self, remote: Sessions, local: Sessions, ssh_cmd: str) -> None:
        self.remote = remote
        self.local = local
        self.ssh_cmd = ssh_cmd.strip()

    def _mirror_command(self, name: str) -> str:
        return f"{self.ssh_cmd} -t tmux attach-session -t {shell_escape(name)}"

    def start(self, name: str, work_dir: str | None, command: str) -> str:
        started = self.remote.start(name, work_dir, command)
        mirror = mirror_name(started)
        try:
            if self.local.exists(mirror):
                self.local.stop(mirror)
            self.local.start(mirror, None, self._mirror_command(started))
        except GastownError as exc:
            gt_log.warning(f"could not start local mirror for {started}: {exc}")
        return started

    def stop(self, name: str) -> None:
        try:
            self.local.stop(mirror_name(name))
        except GastownError as exc:
            gt_log.warning(f"could not stop local mirror for {name}: {exc}")
        self.remote.stop(name)

    def exists(self, name: str) -> bool:
        return self.remote.exists(name)

    def send(self, name: str, text: str) -> None:
        self.remote.send(name, text)

    def send_control(self, name: str, key: str) -> None:
        self.remote.send_control(name, key)

    def nudge(self, name: str, message: str) -> None:
        self.remote.nudge(name, message)

    def capture(self, name: str, lines: int) -> str:
        return self.remote.capture(name, lines)

    def is_running(self, name: str, *process_names: str) -> bool:
        return self.remote.is_running(name, *process_names)

    def list(self) -> list[str]:
        return self.remote.list()

    def attach(self, name: str) -> None:
        mirror = mirror_name(name)
        if self.local.exists(mirror):
            self.local.attach(mirror)
            return
        self.remote.attach(name)

    def switch_to(self, name: str) -> None:
        mirror = mirror_name(name)
        if self.local.exists(mirror):
            self.local.switch_to(mirror)
            return
        self.remote.switch_to(name)
