"""Multiplexer session names and per-role start prompts.

Example:
    >>> polecat_session_name("gastown", "toast")
    'gt-gastown-toast'
    >>> session_name_for(AgentAddress.parse("gastown/witness"))
    'gt-gastown-witness'
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from .. import paths
from ..addresses import (
    ROLE_CREW,
    ROLE_DEACON,
    ROLE_MAYOR,
    ROLE_POLECAT,
    ROLE_REFINERY,
    ROLE_WITNESS,
    AgentAddress,
)

PREFIX = "gt-"
HQ_PREFIX = "hq-"
BOOT_SESSION_NAME = f"{PREFIX}boot"
TOWN_ID_LENGTH = 6
SESSION_ID_FILENAME = "session_id"

_TOWN_ID_SUFFIX = re.compile(r"-([0-9a-f]{6})$")

HOOK_NUDGE = "Run `gt hook` to check your hook and begin work."
_ROLE_NUDGES = {
    ROLE_POLECAT: HOOK_NUDGE,
    ROLE_CREW: HOOK_NUDGE,
    ROLE_WITNESS: "Run `gt prime` to check patrol status and begin work.",
    ROLE_REFINERY: "Run `gt prime` to check MQ status and begin patrol.",
    ROLE_DEACON: "Run `gt prime` to check patrol status and begin heartbeat cycle.",
    ROLE_MAYOR: "Run `gt prime` to check mail and begin coordination.",
}


def mayor_session_name() -> str:
    return f"{HQ_PREFIX}mayor"


def deacon_session_name() -> str:
    return f"{HQ_PREFIX}deacon"


def witness_session_name(rig: str) -> str:
    return f"{PREFIX}{rig}-witness"


def refinery_session_name(rig: str) -> str:
    return f"{PREFIX}{rig}-refinery"


def crew_session_name(rig: str, name: str) -> str:
    return f"{PREFIX}{rig}-crew-{name}"


def polecat_session_name(rig: str, name: str) -> str:
    return f"{PREFIX}{rig}-{name}"


def session_name_for(address: AgentAddress) -> str:
    if address.role == ROLE_MAYOR:
        return mayor_session_name()
    if address.role == ROLE_DEACON:
        return deacon_session_name()
    rig = str(address.rig)
    if address.role == ROLE_WITNESS:
        return witness_session_name(rig)
    if address.role == ROLE_REFINERY:
        return refinery_session_name(rig)
    if address.role == ROLE_CREW:
        return crew_session_name(rig, str(address.name))
    return polecat_session_name(rig, str(address.name))


def town_id(town_root: str | Path | None) -> str:
    """First six hex digits of sha256 over the town root path."""
    if not town_root:
        return ""
    digest = hashlib.sha256(str(town_root).encode("utf-8")).hexdigest()
    return digest[:TOWN_ID_LENGTH]


def with_town_suffix(name: str, town_root: str | Path | None) -> str:
    identifier = town_id(town_root)
    return f"{name}-{identifier}" if identifier else name


def extract_town_id(session_name: str) -> str:
    """Return the town suffix of ``session_name``, or ``""`` for legacy names.

    Example:
        >>> extract_town_id("hq-mayor-a1b2c3"), extract_town_id("hq-mayor")
        ('a1b2c3', '')
    """
    match = _TOWN_ID_SUFFIX.search(session_name)
    return match.group(1) if match else ""


def strip_town_id(session_name: str) -> str:
    return _TOWN_ID_SUFFIX.sub("", session_name)


def matches_town(session_name: str, town_root: str | Path | None) -> bool:
    """Legacy names without a suffix match every town."""
    identifier = extract_town_id(session_name)
    if not identifier:
        return True
    return identifier == town_id(town_root)


def filter_sessions_by_town(sessions: Iterable[str], town_root: str | Path | None) -> list[str]:
    if not town_root:
        return list(sessions)
    return [name for name in sessions if matches_town(name, town_root)]


@dataclass(frozen=True)
class ParsedSession:
    role: str
    rig: str | None = None
    name: str | None = None


def parse_session_name(session_name: str, rigs: Iterable[str] = ()) -> ParsedSession | None:
    """Map a session name back to its role.

    ``rigs`` disambiguates rig names containing dashes; without it the rig is
    taken to be the first dash-separated segment.

    Example:
        >>> parse_session_name("gt-my-rig-crew-max", ["my-rig"])
        ParsedSession(role='crew', rig='my-rig', name='max')
    """
    base = strip_town_id(session_name)
    if base == mayor_session_name():
        return ParsedSession(role=ROLE_MAYOR)
    if base == deacon_session_name():
        return ParsedSession(role=ROLE_DEACON)
    if not base.startswith(PREFIX) or base == BOOT_SESSION_NAME:
        return None
    rest = base[len(PREFIX) :]
    rig = None
    for candidate in sorted(rigs, key=len, reverse=True):
        if rest.startswith(f"{candidate}-"):
            rig = candidate
            break
    if rig is None:
        rig, sep, _tail = rest.partition("-")
        if not sep:
            return None
    tail = rest[len(rig) + 1 :]
    if not tail:
        return None
    if tail in {ROLE_WITNESS, ROLE_REFINERY}:
        return ParsedSession(role=tail, rig=rig)
    if tail.startswith("crew-") and len(tail) > len("crew-"):
        return ParsedSession(role=ROLE_CREW, rig=rig, name=tail[len("crew-") :])
    return ParsedSession(role=ROLE_POLECAT, rig=rig, name=tail)


def read_session_id(work_dir: str | Path | None) -> str:
    if not work_dir:
        return ""
    session_path = Path(work_dir) / paths.RUNTIME_DIRNAME / SESSION_ID_FILENAME
    try:
        return session_path.read_text(encoding="utf-8").strip()
    except OSError:
        return ""


def propulsion_nudge(role: str, work_dir: str | Path | None = None) -> str:
    """Start prompt sent to a freshly started agent of ``role``."""
    message = _ROLE_NUDGES.get(role, HOOK_NUDGE)
    session_id = read_session_id(work_dir)
    if session_id:
        message = f"{message} [session:{session_id}]"
    return message
