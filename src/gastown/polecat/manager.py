"""Polecat lifecycle: name allocation, worktree creation and removal.

``LocalPolecats`` and ``RemotePolecats`` share one implementation; they
differ in the filesystem and git runner they drive and in where the rig's
repository lives.
"""

from __future__ import annotations

import os
import shutil
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from pathlib import Path

from filelock import FileLock

from .. import log as gt_log
from .. import paths, routing
from ..addresses import AgentAddress
from ..bead_fields import AgentFields
from ..beads import Beads
from ..errors import (
    BeadNotFound,
    CommandFailed,
    GastownError,
    InvalidInput,
    PolecatExists,
    SpawnFailed,
    UncommittedWork,
)
from ..git import Git, WorkStatus
from ..namepool import NamePool
from ..session.names import polecat_session_name
from .backend import (
    STATE_NUKED,
    STATE_SPAWNING,
    STATE_UNKNOWN,
    AddOptions,
    Polecat,
    branch_name,
)
from .filesystem import Filesystem

POLECAT_ROLE_BEAD = "hq-polecat-role"
REPO_DIRNAME = ".repo.git"
LOCK_FILENAME = "session.lock"
REMOTE_REDIRECT = "remote\n"


def _now_ms() -> int:
    return int(time.time() * 1000)


class _PolecatManager(ABC):
    def __init__(
        self,
        *,
        rig: str,
        town_root: Path,
        target_rig_path: str,
        fs: Filesystem,
        git: Git,
        beads: Beads,
        pool: NamePool,
        default_branch: str = "main",
        clock_ms: Callable[[], int] = _now_ms,
    ) -> None:
        self.rig = rig
        self.town_root = town_root
        self.target_rig_path = target_rig_path.rstrip("/")
        self.fs = fs
        self.git = git
        self.beads = beads
        self.pool = pool
        self.default_branch = default_branch
        self.clock_ms = clock_ms

    # Paths

    def polecats_dir(self) -> str:
        return f"{self.target_rig_path}/{paths.POLECATS_DIRNAME}"

    def polecat_dir(self, name: str) -> str:
        return f"{self.polecats_dir()}/{name}"

    def clone_path(self, name: str) -> str:
        return f"{self.polecat_dir(name)}/{self.rig}"

    @abstractmethod
    def repo_dir(self) -> str:
        """Repository that polecat worktrees branch from."""

    def runtime_dir(self, name: str) -> Path:
        """Local directory for the polecat's lock file and session state."""
        return paths.polecat_runtime_dir(self.town_root, self.rig, name)

    def session_name(self, name: str) -> str:
        return polecat_session_name(self.rig, name)

    def agent_bead_id(self, name: str) -> str:
        return AgentAddress.polecat(self.rig, name).bead_id(self.beads.rig_prefix)

    def lock(self, name: str, *, timeout: float = 60.0) -> FileLock:
        runtime = self.runtime_dir(name)
        paths.ensure_dir(runtime)
        return FileLock(str(runtime / LOCK_FILENAME), timeout=timeout)

    # Names

    def live_names(self) -> list[str]:
        return [
            entry
            for entry in self.fs.list_dir(self.polecats_dir())
            if entry and not entry.startswith(".")
        ]

    def allocate_name(self) -> str:
        return self.pool.allocate(self.live_names())

    def allocate_names(self, count: int) -> list[str]:
        return self.pool.allocate_many(count, self.live_names())

    def exists(self, name: str) -> bool:
        return self.fs.is_dir(self.clone_path(name))

    # Lifecycle

    @abstractmethod
    def _after_worktree(self, name: str, clone: str) -> None:
        """Point the new worktree at the rig's beads database."""

    def add_with_options(self, name: str, opts: AddOptions) -> Polecat:
        """Create the worktree and agent bead, recording ``opts.hook_bead`` on it."""
        if not name or "/" in name:
            raise InvalidInput(f"invalid polecat name '{name}'")
        if self.exists(name):
            raise PolecatExists(f"polecat '{name}' already exists in rig '{self.rig}'")
        clone = self.clone_path(name)
        branch = branch_name(name, opts.hook_bead, self.clock_ms())
        repo = self.repo_dir()
        self.fs.mkdir_p(self.polecat_dir(name))
        try:
            self.git.fetch(repo, "origin")
        except CommandFailed as exc:
            gt_log.warning(f"fetch failed for {self.rig}; using cached refs: {exc}")
        try:
            self.git.worktree_add(repo, clone, branch, f"origin/{self.default_branch}")
        except CommandFailed as exc:
            self.fs.remove_all(self.polecat_dir(name))
            raise SpawnFailed(f"creating worktree for polecat '{name}': {exc}") from exc
        self._after_worktree(name, clone)
        self._write_agent_bead(name, opts.hook_bead)
        gt_log.debug(f"created polecat {self.rig}/{name} on {branch}")
        return Polecat(
            name=name,
            rig=self.rig,
            clone_path=clone,
            session_name=self.session_name(name),
            branch=branch,
            state=STATE_SPAWNING,
        )

    def _write_agent_bead(self, name: str, hook_bead: str | None) -> None:
        bead_id = self.agent_bead_id(name)
        fields = AgentFields(
            role_type="polecat",
            rig=self.rig,
            agent_state=STATE_SPAWNING,
            hook_bead=hook_bead,
            role_bead=POLECAT_ROLE_BEAD,
        )
        try:
            self.beads.create_or_reopen_agent_bead(
                bead_id, str(AgentAddress.polecat(self.rig, name)), fields
            )
        except GastownError as exc:
            gt_log.warning(f"could not write agent bead {bead_id}: {exc}")

    def git_state(self, name: str) -> WorkStatus:
        return self.git.check_uncommitted_work(self.clone_path(name))

    def remove_with_options(self, name: str, *, force: bool = False, nuclear: bool = False) -> None:
        """Remove a polecat.

        Without ``nuclear``, refuses when work would be lost: ``force`` skips
        only the uncommitted-changes check, never stashes or unpushed commits.
        """
        clone = self.clone_path(name)
        if not nuclear and self.exists(name):
            status = self.git_state(name)
            at_risk = status.stash_count > 0 or status.unpushed_count > 0
            if status.has_changes and not force:
                at_risk = True
            if at_risk:
                raise UncommittedWork(
                    f"polecat '{name}' has {status.summary()}",
                    recovery_hint="push or discard the work, or remove with --nuclear",
                )
        repo = self.repo_dir()
        try:
            self.git.worktree_remove(repo, clone, force=force or nuclear)
        except CommandFailed as exc:
            gt_log.debug(f"worktree remove failed for {name}, deleting directory: {exc}")
            self.fs.remove_all(clone)
        self.fs.remove_all(self.polecat_dir(name))
        try:
            self.git.worktree_prune(repo)
        except CommandFailed as exc:
            gt_log.warning(f"worktree prune failed for {self.rig}: {exc}")
        self._close_agent_bead(name)

    def _close_agent_bead(self, name: str) -> None:
        bead_id = self.agent_bead_id(name)
        try:
            self.beads.update_description_fields(
                bead_id, {"hook_bead": None, "agent_state": STATE_NUKED}
            )
            self.beads.close(bead_id, reason="polecat removed")
        except BeadNotFound:
            return
        except GastownError as exc:
            gt_log.warning(f"could not close agent bead {bead_id}: {exc}")

    def list(self) -> list[Polecat]:
        polecats: list[Polecat] = []
        for name in self.live_names():
            state = STATE_UNKNOWN
            try:
                fields = self.beads.show(self.agent_bead_id(name)).agent_fields()
            except GastownError:
                fields = None
            if fields is not None and fields.agent_state:
                state = fields.agent_state
            polecats.append(
                Polecat(
                    name=name,
                    rig=self.rig,
                    clone_path=self.clone_path(name),
                    session_name=self.session_name(name),
                    state=state,
                )
            )
        return polecats


class LocalPolecats(_PolecatManager):
    """Polecats as git worktrees under ``<rig>/polecats/<name>/<rig>``."""

    def repo_dir(self) -> str:
        bare = f"{self.target_rig_path}/{REPO_DIRNAME}"
        if self.fs.is_dir(bare):
            return bare
        return f"{self.target_rig_path}/{paths.MAYOR_DIRNAME}/rig"

    def _after_worktree(self, name: str, clone: str) -> None:
        rig_path = Path(self.target_rig_path)
        if not (rig_path / paths.BEADS_DIRNAME).is_dir():
            gt_log.debug(f"rig {self.rig} has no .beads; skipping redirect for {name}")
            return
        canonical = routing.resolve_beads_dir(rig_path)
        clone_path = Path(clone)
        relative = os.path.relpath(canonical, clone_path)
        self.fs.write_text(
            str(clone_path / paths.BEADS_DIRNAME / paths.REDIRECT_FILENAME), f"{relative}\n"
        )


class RemotePolecats(_PolecatManager):
    """Polecats on another host, driven over SSH.

    The remote rig keeps a bare repository at ``<rig_path>/.repo.git``. The
    beads database stays local; remote worktrees get a ``remote`` redirect
    that the remote ``bd`` wrapper resolves by calling back.
    """

    def repo_dir(self) -> str:
        return f"{self.target_rig_path}/{REPO_DIRNAME}"

    def _after_worktree(self, name: str, clone: str) -> None:
        paths.ensure_dir(self.runtime_dir(name))
        redirect = f"{clone}/{paths.BEADS_DIRNAME}/{paths.REDIRECT_FILENAME}"
        try:
            self.fs.mkdir_p(f"{clone}/{paths.BEADS_DIRNAME}")
            self.fs.write_text(redirect, REMOTE_REDIRECT)
        except CommandFailed as exc:
            gt_log.warning(f"could not set up beads redirect on remote for {name}: {exc}")

    def remove_with_options(self, name: str, *, force: bool = False, nuclear: bool = False) -> None:
        super().remove_with_options(name, force=force, nuclear=nuclear)
        shadow = paths.polecat_dir(self.town_root, self.rig, name)
        if shadow.is_dir():
            shutil.rmtree(shadow)
