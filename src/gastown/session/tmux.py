"""tmux driver, local or on a remote host through an SSH ``Runner``."""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence

from .. import log as gt_log
from ..errors import CommandFailed, GastownError, SessionExists, SessionNotFound
from ..runner import LocalRunner, Runner, SshRunner, shell_escape

NUDGE_DEBOUNCE_SECONDS = 0.5
ESCAPE_DELAY_SECONDS = 0.1
ENTER_RETRY_SECONDS = 0.2
ENTER_ATTEMPTS = 3


class TmuxNoServer(SessionNotFound):
    """No tmux server is running, so no session can exist."""


def _map_error(args: Sequence[str], exc: CommandFailed) -> GastownError:
    stderr = (exc.stderr or str(exc)).strip()
    lowered = stderr.lower()
    if "no server running" in lowered or "error connecting to" in lowered:
        return TmuxNoServer(f"no tmux server running: {stderr}")
    if "duplicate session" in lowered:
        return SessionExists(stderr)
    if "session not found" in lowered or "can't find session" in lowered:
        return SessionNotFound(stderr)
    return CommandFailed(
        f"tmux {args[0]}: {stderr}", stderr=exc.stderr, returncode=exc.returncode
    )


class TmuxSessions:
    """``Sessions`` over the tmux CLI.

    With an ``SshRunner`` every tmux call runs on the remote host; ``local_ssh``
    is then exported to the agent as ``GT_LOCAL_SSH`` so it can reach back.
    """

    def __init__(
        self,
        runner: Runner | None = None,
        *,
        local_ssh: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runner = runner or LocalRunner()
        self.local_ssh = local_ssh
        self.sleep = sleep

    @property
    def is_remote(self) -> bool:
        return isinstance(self.runner, SshRunner)

    def _run(self, *args: str) -> str:
        try:
            return self.runner.output(["tmux", *args]).rstrip("\n")
        except CommandFailed as exc:
            raise _map_error(args, exc) from exc

    def start(self, name: str, work_dir: str | None, command: str) -> str:
        if self.local_ssh:
            command = f"GT_LOCAL_SSH={shell_escape(self.local_ssh)} {command}"
        args = ["new-session", "-d", "-s", name]
        if work_dir:
            args.extend(["-c", work_dir])
        args.append(command)
        self._run(*args)
        gt_log.debug(f"started tmux session {name}")
        return name

    def stop(self, name: str) -> None:
        try:
            self._run("kill-session", "-t", name)
        except SessionNotFound:
            return

    def exists(self, name: str) -> bool:
        try:
            self._run("has-session", "-t", f"={name}")
        except SessionNotFound:
            return False
        return True

    def send(self, name: str, text: str) -> None:
        self._run("send-keys", "-t", name, "-l", text)

    def send_control(self, name: str, key: str) -> None:
        self._run("send-keys", "-t", name, key)

    def nudge(self, name: str, message: str) -> None:
        """Type ``message`` literally, then submit with a separate Enter.

        Chat UIs that submit on paste see the text settle first; Enter is
        retried because a busy pane can drop the keystroke.
        """
        self.send(name, message)
        self.sleep(NUDGE_DEBOUNCE_SECONDS)
        self.send_control(name, "Escape")
        self.sleep(ESCAPE_DELAY_SECONDS)
        last_error: GastownError | None = None
        for attempt in range(ENTER_ATTEMPTS):
            if attempt:
                self.sleep(ENTER_RETRY_SECONDS)
            try:
                self.send_control(name, "Enter")
                return
            except CommandFailed as exc:
                last_error = exc
        if last_error is not None:
            raise last_error

    def capture(self, name: str, lines: int) -> str:
        return self._run("capture-pane", "-p", "-t", name, "-S", f"-{lines}")

    def pane_command(self, name: str) -> str:
        return self._run("display-message", "-p", "-t", name, "#{pane_current_command}").strip()

    def is_running(self, name: str, *process_names: str) -> bool:
        if not process_names:
            return False
        try:
            current = self.pane_command(name)
        except GastownError:
            return False
        return current in process_names

    def current_session(self) -> str:
        """Name of the session this client is attached to."""
        return self._run("display-message", "-p", "#{session_name}").strip()

    def list(self) -> list[str]:
        try:
            output = self._run("list-sessions", "-F", "#{session_name}")
        except TmuxNoServer:
            return []
        return [line for line in output.splitlines() if line.strip()]

    def attach(self, name: str) -> None:
        self.runner.run_interactive(["tmux", "attach-session", "-t", name])

    def switch_to(self, name: str) -> None:
        if self.is_remote:
            raise GastownError("switching clients is not supported for remote sessions")
        self._run("switch-client", "-t", name)
