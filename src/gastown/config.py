"""Configuration helpers for Gas Town towns and rigs.

This module reads the town's JSON configuration files, validates them with
Pydantic models, and resolves which agent runtime a role should launch.

Example:
    >>> from gastown.config import utc_now
    >>> utc_now().endswith("Z")
    True
"""

from __future__ import annotations

import datetime as dt
import json
from pathlib import Path

from pydantic import BaseModel, ValidationError

from . import paths
from .errors import InvalidInput
from .models import RigsConfig, RigSettings, RuntimeAgent, TownConfig, TownSettings

RUNTIME_PRESETS: dict[str, RuntimeAgent] = {
    "claude": RuntimeAgent(
        command="claude",
        args=["--dangerously-skip-permissions"],
        process_names=["claude", "node"],
    ),
    "codex": RuntimeAgent(
        command="codex",
        args=["--dangerously-bypass-approvals-and-sandbox"],
        process_names=["codex"],
    ),
    "gemini": RuntimeAgent(
        command="gemini",
        args=["--approval-mode", "yolo"],
        process_names=["gemini", "node"],
    ),
}


def utc_now() -> str:
    """Return the current UTC timestamp in RFC3339 format.

    Returns:
        UTC timestamp like ``2026-01-18T12:34:56Z``.

    Example:
        >>> timestamp = utc_now()
        >>> timestamp.endswith("Z")
        True
    """
    now = dt.datetime.now(tz=dt.timezone.utc).replace(microsecond=0)
    return now.isoformat().replace("+00:00", "Z")


def load_json(path: Path) -> dict | None:
    """Load a JSON file if it exists.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed payload as a dict, or ``None`` if the file does not exist.

    Example:
        >>> from pathlib import Path
        >>> load_json(Path("missing.json")) is None
        True
    """
    if not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        payload = json.load(fh)
    if not isinstance(payload, dict):
        raise InvalidInput(f"expected a JSON object in {path}")
    return payload


def write_json(path: Path, payload: dict | BaseModel) -> None:
    """Write a JSON payload to disk, creating parent directories."""
    if isinstance(payload, BaseModel):
        payload = payload.model_dump(exclude_none=True)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
        fh.write("\n")


def _load_model(path: Path, model_type: type[BaseModel]) -> BaseModel | None:
    payload = load_json(path)
    if payload is None:
        return None
    try:
        return model_type.model_validate(payload)
    except ValidationError as exc:
        raise InvalidInput(f"invalid config {path}: {exc}") from exc


def load_town_config(town_root: Path) -> TownConfig | None:
    loaded = _load_model(paths.town_config_path(town_root), TownConfig)
    return loaded if isinstance(loaded, TownConfig) else None


def load_rigs_config(town_root: Path) -> RigsConfig:
    loaded = _load_model(paths.rigs_config_path(town_root), RigsConfig)
    return loaded if isinstance(loaded, RigsConfig) else RigsConfig()


def load_town_settings(town_root: Path) -> TownSettings:
    loaded = _load_model(paths.town_settings_path(town_root), TownSettings)
    return loaded if isinstance(loaded, TownSettings) else TownSettings()


def load_rig_settings(town_root: Path, rig: str) -> RigSettings:
    loaded = _load_model(paths.rig_settings_path(town_root, rig), RigSettings)
    return loaded if isinstance(loaded, RigSettings) else RigSettings()


def resolve_runtime_agent(
    settings: TownSettings, *, role: str, override: str | None = None
) -> tuple[str, RuntimeAgent]:
    """Pick the runtime for ``role``: explicit override, role mapping, then default.

    Returns:
        ``(alias, runtime)``; aliases resolve against town-defined agents
        first, then the built-in presets.

    Example:
        >>> resolve_runtime_agent(TownSettings(), role="polecat")[0]
        'claude'
    """
    alias = (override or "").strip() or settings.role_agents.get(role) or settings.default_agent
    if alias in settings.agents:
        return alias, settings.agents[alias]
    if alias in RUNTIME_PRESETS:
        return alias, RUNTIME_PRESETS[alias]
    known = sorted({*settings.agents, *RUNTIME_PRESETS})
    raise InvalidInput(f"unknown agent '{alias}' (known: {', '.join(known)})")
