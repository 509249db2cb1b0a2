"""Polecat backends: local worktrees or remote mirrors over SSH."""

from __future__ import annotations

from ..beads import Beads
from ..git import Git
from ..namepool import NamePool
from ..runner import CommandRunner, LocalRunner, SshRunner
from ..workspace import Town
from .backend import AddOptions, Polecat, PolecatBackend, branch_name
from .filesystem import LocalFilesystem, RemoteFilesystem
from .manager import LocalPolecats, RemotePolecats

__all__ = [
    "AddOptions",
    "LocalPolecats",
    "Polecat",
    "PolecatBackend",
    "RemotePolecats",
    "backend_for",
    "branch_name",
]


def backend_for(
    town: Town, rig: str, *, process_runner: CommandRunner | None = None
) -> LocalPolecats | RemotePolecats:
    """Pick the backend from the rig's ``remote`` settings."""
    town.require_rig(rig)
    settings = town.rig_settings(rig)
    rig_path = town.rig_path(rig)
    beads = Beads.for_rig(
        town.root, rig_path, town.rig_prefix(rig), process_runner=process_runner
    )
    pool = NamePool(settings.namepool.names, style=settings.namepool.style)
    if settings.remote is not None:
        ssh_runner = SshRunner(settings.remote.ssh_cmd, process_runner)
        return RemotePolecats(
            rig=rig,
            town_root=town.root,
            target_rig_path=settings.remote.rig_path or f"~/rigs/{rig}",
            fs=RemoteFilesystem(ssh_runner),
            git=Git(ssh_runner),
            beads=beads,
            pool=pool,
            default_branch=town.default_branch(rig),
        )
    return LocalPolecats(
        rig=rig,
        town_root=town.root,
        target_rig_path=str(rig_path),
        fs=LocalFilesystem(),
        git=Git(LocalRunner(process_runner)),
        beads=beads,
        pool=pool,
        default_branch=town.default_branch(rig),
    )
