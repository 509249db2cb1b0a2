"""Agent addresses, agent-bead IDs and the environment agents run with."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from .errors import InvalidInput

ROLE_MAYOR = "mayor"
ROLE_DEACON = "deacon"
ROLE_WITNESS = "witness"
ROLE_REFINERY = "refinery"
ROLE_CREW = "crew"
ROLE_POLECAT = "polecat"

TOWN_ROLES = frozenset({ROLE_MAYOR, ROLE_DEACON})
RIG_SINGLETON_ROLES = frozenset({ROLE_WITNESS, ROLE_REFINERY})
NAMED_ROLES = frozenset({ROLE_CREW, ROLE_POLECAT})

# Shorthands accepted where a target token names a role rather than a rig.
ROLE_ALIASES: dict[str, str] = {
    "mayor": ROLE_MAYOR,
    "may": ROLE_MAYOR,
    "deacon": ROLE_DEACON,
    "dea": ROLE_DEACON,
    "crew": ROLE_CREW,
    "witness": ROLE_WITNESS,
    "wit": ROLE_WITNESS,
    "refinery": ROLE_REFINERY,
    "ref": ROLE_REFINERY,
}

TOWN_BEAD_PREFIX = "hq"


@dataclass(frozen=True)
class AgentAddress:
    """A parsed agent path such as ``gastown/polecats/toast``.

    Example:
        >>> str(AgentAddress.parse("gastown/polecat/toast"))
        'gastown/polecats/toast'
        >>> AgentAddress.parse("mayor/").role
        'mayor'
    """

    role: str
    rig: str | None = None
    name: str | None = None

    @classmethod
    def parse(cls, text: str) -> AgentAddress:
        raw = (text or "").strip().strip("/")
        if not raw:
            raise InvalidInput("empty agent address")
        parts = raw.split("/")
        if len(parts) == 1:
            role = ROLE_ALIASES.get(parts[0])
            if role in TOWN_ROLES:
                return cls(role=role)
            raise InvalidInput(f"invalid agent address '{text}'")
        rig = parts[0]
        if len(parts) == 2:
            role = ROLE_ALIASES.get(parts[1])
            if role in RIG_SINGLETON_ROLES:
                return cls(role=role, rig=rig)
            raise InvalidInput(f"invalid agent address '{text}'")
        if len(parts) == 3 and parts[2]:
            kind = parts[1]
            if kind in {"polecats", "polecat"}:
                return cls(role=ROLE_POLECAT, rig=rig, name=parts[2])
            if kind == ROLE_CREW:
                return cls(role=ROLE_CREW, rig=rig, name=parts[2])
        raise InvalidInput(f"invalid agent address '{text}'")

    @classmethod
    def polecat(cls, rig: str, name: str) -> AgentAddress:
        return cls(role=ROLE_POLECAT, rig=rig, name=name)

    def __str__(self) -> str:
        if self.role in TOWN_ROLES:
            return self.role
        if self.role == ROLE_POLECAT:
            return f"{self.rig}/polecats/{self.name}"
        if self.role == ROLE_CREW:
            return f"{self.rig}/crew/{self.name}"
        return f"{self.rig}/{self.role}"

    @property
    def is_town_role(self) -> bool:
        return self.role in TOWN_ROLES

    @property
    def is_polecat(self) -> bool:
        return self.role == ROLE_POLECAT

    def bead_id(self, prefix: str | None = None) -> str:
        """Agent bead ID; ``prefix`` is the rig's bead prefix without its dash.

        Example:
            >>> AgentAddress.parse("gastown/polecats/toast").bead_id("gp")
            'gp-gastown-polecat-toast'
            >>> AgentAddress.parse("deacon").bead_id()
            'hq-deacon'
        """
        if self.is_town_role:
            return f"{TOWN_BEAD_PREFIX}-{self.role}"
        effective = (prefix or "").rstrip("-") or TOWN_BEAD_PREFIX
        parts = [effective, str(self.rig), self.role]
        if self.name:
            parts.append(self.name)
        return "-".join(parts)


def agent_bead_id(address: AgentAddress | str, prefix: str | None = None) -> str:
    if isinstance(address, str):
        address = AgentAddress.parse(address)
    return address.bead_id(prefix)


def self_address(env: Mapping[str, str] | None = None) -> AgentAddress:
    """Address of the agent running this process, from ``GT_*`` variables."""
    source = os.environ if env is None else env
    role = source.get("GT_ROLE", "").strip().lower()
    rig = source.get("GT_RIG", "").strip()
    if not role:
        raise InvalidInput(
            "cannot determine the current agent (GT_ROLE is not set)",
            recovery_hint="pass an explicit target or run inside an agent session",
        )
    if role in TOWN_ROLES:
        return AgentAddress(role=role)
    if not rig:
        raise InvalidInput(f"GT_RIG is not set for role '{role}'")
    if role in RIG_SINGLETON_ROLES:
        return AgentAddress(role=role, rig=rig)
    if role == ROLE_POLECAT:
        name = source.get("GT_POLECAT", "").strip()
        if name:
            return AgentAddress.polecat(rig, name)
    if role == ROLE_CREW:
        name = source.get("GT_CREW", "").strip()
        if name:
            return AgentAddress(role=ROLE_CREW, rig=rig, name=name)
    raise InvalidInput(f"incomplete agent environment for role '{role}'")


def agent_env(address: AgentAddress, town_root: Path) -> dict[str, str]:
    """Environment variables exported into an agent's session.

    ``BEADS_DIR`` is never set here; routing relies on the working directory.
    """
    env = {"GT_ROLE": address.role, "GT_TOWN_ROOT": str(town_root)}
    if address.rig:
        env["GT_RIG"] = address.rig
        env["BEADS_NO_DAEMON"] = "1"
    if address.role == ROLE_POLECAT and address.name:
        env["GT_POLECAT"] = address.name
    if address.role == ROLE_CREW and address.name:
        env["GT_CREW"] = address.name
    return env
