"""Pydantic models for town and rig configuration files."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _strip_or_none(value: object) -> object:
    if value is None:
        return None
    if isinstance(value, str):
        normalized = value.strip()
        return normalized or None
    return value


class TownConfig(BaseModel):
    """Identity of a town, stored in ``mayor/town.json``.

    Example:
        >>> TownConfig(name="hq").name
        'hq'
    """

    model_config = ConfigDict(extra="ignore")

    type: str = "town"
    name: str = ""
    owner: str | None = None


class RigBeadsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    prefix: str = ""

    @field_validator("prefix", mode="before")
    @classmethod
    def normalize_prefix(cls, value: object) -> object:
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip().rstrip("-")
        return value


class RigEntry(BaseModel):
    """A rig registered with the town.

    Attributes:
        git_url: Upstream repository URL.
        default_branch: Branch polecat worktrees start from.
        beads: Issue-tracker settings; ``prefix`` is stored without its dash.

    Example:
        >>> RigEntry(beads={"prefix": "gp-"}).beads.prefix
        'gp'
    """

    model_config = ConfigDict(extra="ignore")

    git_url: str | None = None
    default_branch: str = "main"
    beads: RigBeadsConfig = Field(default_factory=RigBeadsConfig)

    @field_validator("default_branch", mode="before")
    @classmethod
    def normalize_branch(cls, value: object) -> object:
        if value is None:
            return "main"
        if isinstance(value, str):
            return value.strip() or "main"
        return value


class RigsConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    version: int = 1
    rigs: dict[str, RigEntry] = Field(default_factory=dict)


class RuntimeAgent(BaseModel):
    """How to launch one agent runtime inside a session."""

    model_config = ConfigDict(extra="ignore")

    command: str
    args: list[str] = Field(default_factory=list)
    process_names: list[str] = Field(default_factory=list)

    def command_line(self) -> str:
        return " ".join([self.command, *self.args])


class TownSettings(BaseModel):
    """Town-wide settings from ``settings/config.json``.

    Example:
        >>> TownSettings(role_agents={"Polecat": " codex "}).role_agents
        {'polecat': 'codex'}
    """

    model_config = ConfigDict(extra="ignore")

    default_agent: str = "claude"
    role_agents: dict[str, str] = Field(default_factory=dict)
    agents: dict[str, RuntimeAgent] = Field(default_factory=dict)
    max_polecats: int = 0

    @field_validator("role_agents", mode="before")
    @classmethod
    def normalize_role_agents(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        return {
            str(role).strip().lower(): str(agent).strip()
            for role, agent in value.items()
            if agent is not None and str(agent).strip()
        }


class RemotePolecatConfig(BaseModel):
    """SSH settings for rigs whose polecats run on another machine."""

    model_config = ConfigDict(extra="ignore")

    ssh_cmd: str
    rig_path: str | None = None
    local_ssh: str | None = None

    @field_validator("rig_path", "local_ssh", mode="before")
    @classmethod
    def normalize_optional(cls, value: object) -> object:
        return _strip_or_none(value)


class NamepoolConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    style: str = "mad-max"
    names: list[str] = Field(default_factory=list)


class RigSettings(BaseModel):
    """Per-rig settings from ``<rig>/settings/config.json``."""

    model_config = ConfigDict(extra="ignore")

    namepool: NamepoolConfig = Field(default_factory=NamepoolConfig)
    max_polecats: int | None = None
    remote: RemotePolecatConfig | None = None
    default_branch: str | None = None

    @field_validator("default_branch", mode="before")
    @classmethod
    def normalize_branch(cls, value: object) -> object:
        return _strip_or_none(value)
