"""Agent sessions: driver selection, start, ready handshake and nudges.

The factory picks the session driver from the agent's identity and its
rig's SSH settings, then runs the agent runtime inside a session named
after the agent.
"""

from __future__ import annotations

import os
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from .. import log as gt_log
from .. import paths
from ..addresses import (
    ROLE_CREW,
    ROLE_DEACON,
    ROLE_MAYOR,
    ROLE_POLECAT,
    ROLE_REFINERY,
    ROLE_WITNESS,
    AgentAddress,
    agent_env,
)
from ..config import resolve_runtime_agent
from ..errors import GastownError, SessionExists
from ..models import RemotePolecatConfig, RuntimeAgent
from ..runner import CommandRunner, LocalRunner, SshRunner, shell_escape
from ..workspace import Town
from .base import Sessions
from .mirrored import MirroredSessions
from .names import session_name_for
from .tmux import TmuxSessions
from .town import TownSessions

CLAUDE_SETTLE_SECONDS = 8.0
DEFAULT_SETTLE_SECONDS = 1.0
READY_TIMEOUT_SECONDS = 60.0
READY_POLL_SECONDS = 0.5
BYPASS_PROMPT_MARKER = "Bypass Permissions mode"
_PROMPT_CAPTURE_LINES = 30


def work_dir_for(town: Town, address: AgentAddress) -> Path:
    """Local working directory an agent's session starts in."""
    root = town.root
    if address.role == ROLE_MAYOR:
        return root / paths.MAYOR_DIRNAME
    if address.role == ROLE_DEACON:
        return root / paths.DEACON_DIRNAME
    rig = town.rig_path(str(address.rig))
    if address.role == ROLE_WITNESS:
        for candidate in (rig / ROLE_WITNESS / "rig", rig / ROLE_WITNESS):
            if candidate.is_dir():
                return candidate
        return rig
    if address.role == ROLE_REFINERY:
        candidate = rig / ROLE_REFINERY / "rig"
        if candidate.is_dir():
            return candidate
        return rig / paths.MAYOR_DIRNAME / "rig"
    if address.role == ROLE_CREW:
        return paths.crew_dir(root, str(address.rig), str(address.name))
    clone = paths.polecat_clone_dir(root, str(address.rig), str(address.name))
    if clone.is_dir():
        return clone
    return paths.polecat_dir(root, str(address.rig), str(address.name))


def start_command(runtime: RuntimeAgent, env: Mapping[str, str]) -> str:
    """Shell command for the pane: sorted ``K=v`` pairs, then the runtime.

    Example:
        >>> start_command(RuntimeAgent(command="claude"), {"GT_ROLE": "mayor"})
        "GT_ROLE='mayor' claude"
    """
    assignments = [f"{key}={shell_escape(value)}" for key, value in sorted(env.items())]
    return " ".join([*assignments, runtime.command_line()])


def inside_multiplexer(env: Mapping[str, str] | None = None) -> bool:
    source = os.environ if env is None else env
    return bool(source.get("TMUX"))


@dataclass(frozen=True)
class AgentSession:
    """A started agent session and the runtime running in it."""

    address: AgentAddress
    name: str
    alias: str
    runtime: RuntimeAgent
    sessions: Sessions


class SessionFactory:
    """Create and drive agent sessions for one town.

    Town roles get town-scoped names; polecats of a rig with ``remote``
    settings get a remote tmux mirrored into a local session; everything
    else uses the local driver.
    """

    def __init__(
        self,
        town: Town,
        *,
        local: Sessions | None = None,
        remote_for: Callable[[RemotePolecatConfig], Sessions] | None = None,
        process_runner: CommandRunner | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        settle_seconds: Mapping[str, float] | None = None,
        ready_timeout: float = READY_TIMEOUT_SECONDS,
    ) -> None:
        self.town = town
        self.process_runner = process_runner
        self.local = local or TmuxSessions(LocalRunner(process_runner), sleep=sleep)
        self._remote_for = remote_for
        self.sleep = sleep
        self.clock = clock
        self.settle_seconds = dict(settle_seconds or {"claude": CLAUDE_SETTLE_SECONDS})
        self.ready_timeout = ready_timeout

    def _remote_sessions(self, remote: RemotePolecatConfig) -> Sessions:
        if self._remote_for is not None:
            return self._remote_for(remote)
        return TmuxSessions(
            SshRunner(remote.ssh_cmd, self.process_runner),
            local_ssh=remote.local_ssh,
            sleep=self.sleep,
        )

    def polecat_sessions(self, rig: str) -> Sessions:
        """Driver for the polecats of ``rig``, mirrored when the rig is remote."""
        if self.town.is_rig(rig):
            remote = self.town.rig_settings(rig).remote
            if remote is not None:
                return MirroredSessions(self._remote_sessions(remote), self.local, remote.ssh_cmd)
        return self.local

    def sessions_for(self, address: AgentAddress) -> Sessions:
        if address.is_town_role:
            return TownSessions(self.local, self.town.root)
        if address.role == ROLE_POLECAT and address.rig:
            return self.polecat_sessions(address.rig)
        return self.local

    def session_name(self, address: AgentAddress) -> str:
        return session_name_for(address)

    def exists(self, address: AgentAddress) -> bool:
        return self.sessions_for(address).exists(self.session_name(address))

    def start(
        self,
        address: AgentAddress,
        *,
        agent_override: str | None = None,
        work_dir: str | Path | None = None,
        extra_env: Mapping[str, str] | None = None,
    ) -> AgentSession:
        """Start the agent's session, replacing a zombie left by a dead agent.

        Raises ``SessionExists`` when the agent is already running there.
        """
        sessions = self.sessions_for(address)
        name = self.session_name(address)
        alias, runtime = resolve_runtime_agent(
            self.town.settings, role=address.role, override=agent_override
        )
        if sessions.exists(name):
            if sessions.is_running(name, *runtime.process_names):
                raise SessionExists(f"session '{name}' is already running an agent")
            gt_log.debug(f"replacing zombie session {name}")
            sessions.stop(name)
        env = agent_env(address, self.town.root)
        if extra_env:
            env.update(extra_env)
        directory = str(work_dir) if work_dir else str(work_dir_for(self.town, address))
        started = sessions.start(name, directory, start_command(runtime, env))
        return AgentSession(
            address=address, name=started, alias=alias, runtime=runtime, sessions=sessions
        )

    def wait_ready(self, session: AgentSession) -> None:
        """Wait for the runtime to replace the login shell, then let it settle.

        This is a fixed delay after the process appears, not a prompt parse.
        """
        names = tuple(session.runtime.process_names)
        if names:
            deadline = self.clock() + self.ready_timeout
            while not session.sessions.is_running(session.name, *names):
                if self.clock() >= deadline:
                    raise GastownError(
                        f"timed out waiting for {session.alias} to start in {session.name}"
                    )
                self.sleep(READY_POLL_SECONDS)
        if session.alias == "claude":
            self.accept_bypass_prompt(session.sessions, session.name)
        self.sleep(self.settle_seconds.get(session.alias, DEFAULT_SETTLE_SECONDS))

    def accept_bypass_prompt(self, sessions: Sessions, name: str) -> bool:
        """Confirm Claude's first-run permissions warning if it is showing."""
        screen = sessions.capture(name, _PROMPT_CAPTURE_LINES)
        if BYPASS_PROMPT_MARKER not in screen:
            return False
        sessions.send_control(name, "Down")
        sessions.send_control(name, "Enter")
        return True

    def nudge(self, address: AgentAddress, message: str) -> None:
        self.sessions_for(address).nudge(self.session_name(address), message)

    def attach(self, address: AgentAddress) -> None:
        sessions = self.sessions_for(address)
        name = self.session_name(address)
        if inside_multiplexer():
            sessions.switch_to(name)
        else:
            sessions.attach(name)
