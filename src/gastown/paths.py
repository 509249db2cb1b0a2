"""Path helpers for the town workspace layout.

Example:
    >>> from pathlib import Path
    >>> polecat_clone_dir(Path("/t"), "gastown", "toast").as_posix()
    '/t/gastown/polecats/toast/gastown'
"""

from pathlib import Path

BEADS_DIRNAME = ".beads"
ROUTES_FILENAME = "routes.jsonl"
REDIRECT_FILENAME = "redirect"
MAYOR_DIRNAME = "mayor"
DEACON_DIRNAME = "deacon"
POLECATS_DIRNAME = "polecats"
CREW_DIRNAME = "crew"
RUNTIME_DIRNAME = ".runtime"
SETTINGS_DIRNAME = "settings"
TOWN_CONFIG_FILENAME = "town.json"
RIGS_CONFIG_FILENAME = "rigs.json"
SETTINGS_FILENAME = "config.json"
QUEUE_FILENAME = "sling-queue.jsonl"
EVENTS_FILENAME = ".events.jsonl"


def town_config_path(town_root: Path) -> Path:
    return town_root / MAYOR_DIRNAME / TOWN_CONFIG_FILENAME


def rigs_config_path(town_root: Path) -> Path:
    return town_root / MAYOR_DIRNAME / RIGS_CONFIG_FILENAME


def town_settings_path(town_root: Path) -> Path:
    return town_root / SETTINGS_DIRNAME / SETTINGS_FILENAME


def rig_dir(town_root: Path, rig: str) -> Path:
    return town_root / rig


def rig_settings_path(town_root: Path, rig: str) -> Path:
    return rig_dir(town_root, rig) / SETTINGS_DIRNAME / SETTINGS_FILENAME


def routes_path(town_root: Path) -> Path:
    """Return ``<town>/.beads/routes.jsonl``."""
    return town_root / BEADS_DIRNAME / ROUTES_FILENAME


def queue_path(town_root: Path) -> Path:
    return town_root / BEADS_DIRNAME / QUEUE_FILENAME


def events_path(town_root: Path) -> Path:
    return town_root / EVENTS_FILENAME


def polecats_dir(town_root: Path, rig: str) -> Path:
    return rig_dir(town_root, rig) / POLECATS_DIRNAME


def polecat_dir(town_root: Path, rig: str, name: str) -> Path:
    return polecats_dir(town_root, rig) / name


def polecat_clone_dir(town_root: Path, rig: str, name: str) -> Path:
    """Return the worktree path ``<rig>/polecats/<name>/<rig>``."""
    return polecat_dir(town_root, rig, name) / rig


def polecat_runtime_dir(town_root: Path, rig: str, name: str) -> Path:
    return polecat_dir(town_root, rig, name) / RUNTIME_DIRNAME


def crew_dir(town_root: Path, rig: str, name: str) -> Path:
    return rig_dir(town_root, rig) / CREW_DIRNAME / name


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
