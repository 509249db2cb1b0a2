"""Town discovery and rig lookups."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from . import config, paths
from .errors import InvalidInput
from .models import RigEntry, RigSettings, TownConfig, TownSettings

TOWN_ROOT_ENV = "GT_TOWN_ROOT"


def find_town_root(start: Path) -> Path | None:
    """Walk up from ``start`` to the directory holding ``mayor/town.json``."""
    current = start.resolve()
    for candidate in (current, *current.parents):
        if paths.town_config_path(candidate).is_file():
            return candidate
    return None


@dataclass
class Town:
    """Loaded town layout: root directory, registered rigs, settings."""

    root: Path
    config: TownConfig
    rigs: dict[str, RigEntry]
    settings: TownSettings
    _rig_settings: dict[str, RigSettings] = field(default_factory=dict, repr=False)

    @classmethod
    def load(cls, root: Path) -> Town:
        town_config = config.load_town_config(root)
        if town_config is None:
            raise InvalidInput(f"not a Gas Town workspace: {root}")
        return cls(
            root=root,
            config=town_config,
            rigs=dict(config.load_rigs_config(root).rigs),
            settings=config.load_town_settings(root),
        )

    @property
    def name(self) -> str:
        return self.config.name or self.root.name

    def rig_names(self) -> list[str]:
        return sorted(self.rigs)

    def is_rig(self, name: str) -> bool:
        return name in self.rigs

    def require_rig(self, name: str) -> RigEntry:
        entry = self.rigs.get(name)
        if entry is None:
            raise InvalidInput(f"unknown rig '{name}'")
        return entry

    def rig_path(self, name: str) -> Path:
        return paths.rig_dir(self.root, name)

    def rig_prefix(self, name: str) -> str:
        """Return the rig's bead prefix without the trailing dash."""
        entry = self.require_rig(name)
        return entry.beads.prefix or name[:2]

    def rig_for_prefix(self, prefix: str) -> str | None:
        normalized = prefix.rstrip("-")
        for name in self.rig_names():
            if self.rig_prefix(name) == normalized:
                return name
        return None

    def rig_settings(self, name: str) -> RigSettings:
        cached = self._rig_settings.get(name)
        if cached is None:
            cached = config.load_rig_settings(self.root, name)
            self._rig_settings[name] = cached
        return cached

    def default_branch(self, name: str) -> str:
        settings = self.rig_settings(name)
        return settings.default_branch or self.require_rig(name).default_branch

    def max_polecats(self, name: str) -> int:
        """Capacity for ``name``: rig setting, then town setting; 0 means unbounded."""
        rig_value = self.rig_settings(name).max_polecats
        if rig_value is not None:
            return max(rig_value, 0)
        return max(self.settings.max_polecats, 0)


def resolve_town(cwd: Path | None = None) -> Town:
    """Locate and load the town containing ``cwd`` (or ``GT_TOWN_ROOT``)."""
    override = os.environ.get(TOWN_ROOT_ENV, "").strip()
    if override:
        return Town.load(Path(override).expanduser().resolve())
    start = cwd or Path.cwd()
    root = find_town_root(start)
    if root is None:
        raise InvalidInput("not in a Gas Town workspace", recovery_hint="run from inside a town")
    return Town.load(root)
