"""Map a sling destination token to an agent or a rig.

Tokens: nothing or ``.`` (the calling agent), a role path such as
``gastown/witness`` or ``mayor``, a polecat path, or a bare rig name
(meaning "spawn a fresh polecat there").
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from ..addresses import ROLE_ALIASES, ROLE_CREW, AgentAddress, self_address
from ..errors import InvalidInput
from ..workspace import Town

SELF_TOKEN = "."
_ROLE_WORDS = frozenset(ROLE_ALIASES)


@dataclass(frozen=True)
class Target:
    """Either ``rig`` (auto-spawn) or ``agent`` is set."""

    agent: AgentAddress | None = None
    rig: str | None = None
    is_self: bool = False

    @property
    def is_rig(self) -> bool:
        return self.rig is not None


def rig_name(town: Town, token: str) -> str | None:
    """Return ``token`` when it names a registered rig rather than a role."""
    if not token or "/" in token or token.lower() in _ROLE_WORDS:
        return None
    return token if town.is_rig(token) else None


def polecat_rig(token: str) -> str | None:
    """Rig of a ``<rig>/polecats/<name>`` token, else ``None``.

    Example:
        >>> polecat_rig("gastown/polecats/ghost"), polecat_rig("gastown/witness")
        ('gastown', None)
    """
    parts = token.strip("/").split("/")
    if len(parts) >= 3 and parts[1] == "polecats" and parts[0]:
        return parts[0]
    return None


def resolve_target(
    town: Town, token: str | None, *, env: Mapping[str, str] | None = None
) -> Target:
    if token is None or token.strip() in {"", SELF_TOKEN}:
        return Target(agent=self_address(env), is_self=True)
    token = token.strip()
    if token == ROLE_CREW:
        address = self_address(env)
        if address.role != ROLE_CREW:
            raise InvalidInput("target 'crew' needs GT_CREW; use <rig>/crew/<name>")
        return Target(agent=address)
    rig = rig_name(town, token)
    if rig is not None:
        return Target(rig=rig)
    address = AgentAddress.parse(token)
    if address.rig and not town.is_rig(address.rig):
        raise InvalidInput(f"unknown rig '{address.rig}' in target '{token}'")
    return Target(agent=address)
