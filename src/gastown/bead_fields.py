"""Typed ``key: value`` fields stored inside bead descriptions.

The issue tracker has no spare columns, so operational state lives as lines
in the free-form description. Every setter here rewrites only the keys it
owns and keeps every other line (prose included) in place.
"""

from __future__ import annotations

import dataclasses
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import ClassVar, TypeVar

_FIELD_LINE = re.compile(r"^\s*([A-Za-z_][A-Za-z0-9_.\-]*)\s*:\s?(.*)$")

BlockT = TypeVar("BlockT", bound="_FieldBlock")


def parse_description_fields(description: str | None) -> dict[str, str]:
    """Parse ``key: value`` lines; keys are lower-cased, first occurrence wins.

    Example:
        >>> parse_description_fields("Intro text\\nhook_bead: gp-1\\nNotify: mayor/")
        {'hook_bead': 'gp-1', 'notify': 'mayor/'}
    """
    fields: dict[str, str] = {}
    if not description:
        return fields
    for line in description.splitlines():
        match = _FIELD_LINE.match(line)
        if match is None:
            continue
        key = match.group(1).lower()
        if " " in match.group(1) or key in fields:
            continue
        fields[key] = match.group(2).strip()
    return fields


def normalized_field(fields: Mapping[str, str], key: str) -> str | None:
    raw = fields.get(key.lower())
    if not isinstance(raw, str):
        return None
    normalized = raw.strip()
    if not normalized or normalized.lower() == "null":
        return None
    return normalized


def set_description_fields(description: str | None, updates: Mapping[str, str | None]) -> str:
    """Upsert ``updates`` into ``description``.

    ``None`` removes the key. Unknown lines keep their order; new keys are
    appended in the order given.

    Example:
        >>> set_description_fields("Fix it\\nrig: gastown\\n", {"hook_bead": "gp-1", "rig": None})
        'Fix it\\nhook_bead: gp-1\\n'
    """
    text = (description or "").rstrip("\n")
    lines = text.splitlines() if text else []
    pending = {key.lower(): (key, value) for key, value in updates.items()}
    written: set[str] = set()
    result: list[str] = []
    for line in lines:
        match = _FIELD_LINE.match(line)
        key = match.group(1).lower() if match else None
        if key is None or key not in pending:
            result.append(line)
            continue
        if key in written:
            continue
        written.add(key)
        original_key, value = pending[key]
        if value is not None:
            result.append(f"{match.group(1) if match else original_key}: {value}")
    for key, (original_key, value) in pending.items():
        if key in written or value is None:
            continue
        result.append(f"{original_key}: {value}")
    if not result:
        return ""
    return "\n".join(result) + "\n"


@dataclass(frozen=True)
class _FieldBlock:
    """Base for a group of description fields parsed and written together."""

    _int_fields: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def from_fields(cls: type[BlockT], fields: Mapping[str, str]) -> BlockT:
        kwargs: dict[str, object] = {}
        for field in dataclasses.fields(cls):
            value = normalized_field(fields, field.name)
            if field.name in cls._int_fields:
                try:
                    kwargs[field.name] = int(value) if value is not None else 0
                except ValueError:
                    kwargs[field.name] = 0
            else:
                kwargs[field.name] = value
        return cls(**kwargs)

    @classmethod
    def parse(cls: type[BlockT], description: str | None) -> BlockT | None:
        """Return the block, or ``None`` when none of its keys are present."""
        fields = parse_description_fields(description)
        names = {field.name for field in dataclasses.fields(cls)}
        if not names.intersection(fields):
            return None
        return cls.from_fields(fields)

    def as_updates(self, *, clear_empty: bool = False) -> dict[str, str | None]:
        updates: dict[str, str | None] = {}
        for field in dataclasses.fields(self):
            value = getattr(self, field.name)
            if field.name in self._int_fields:
                updates[field.name] = str(value) if value else None
            else:
                updates[field.name] = value
            if updates[field.name] is None and not clear_empty:
                del updates[field.name]
        return updates

    def apply_to(self, description: str | None, *, clear_empty: bool = False) -> str:
        return set_description_fields(description, self.as_updates(clear_empty=clear_empty))

    def format(self) -> str:
        return set_description_fields("", self.as_updates())


@dataclass(frozen=True)
class AttachmentFields(_FieldBlock):
    """Dispatch metadata a sling writes onto the work bead."""

    attached_molecule: str | None = None
    attached_at: str | None = None
    attached_args: str | None = None
    dispatched_by: str | None = None


@dataclass(frozen=True)
class AgentFields(_FieldBlock):
    """Operational state carried by an agent bead."""

    role_type: str | None = None
    rig: str | None = None
    agent_state: str | None = None
    hook_bead: str | None = None
    role_bead: str | None = None
    cleanup_status: str | None = None
    active_mr: str | None = None
    notification_level: str | None = None


@dataclass(frozen=True)
class MRFields(_FieldBlock):
    """Merge-request metadata recorded when a polecat submits work."""

    _int_fields: ClassVar[tuple[str, ...]] = ("retry_count",)

    branch: str | None = None
    target: str | None = None
    source_issue: str | None = None
    worker: str | None = None
    rig: str | None = None
    merge_commit: str | None = None
    close_reason: str | None = None
    agent_bead: str | None = None
    retry_count: int = 0
    convoy_id: str | None = None
    convoy_created_at: str | None = None


@dataclass(frozen=True)
class ConvoyFields(_FieldBlock):
    """Convoy extras rendered as ``Notify:`` and ``Molecule:`` lines."""

    notify: str | None = None
    molecule: str | None = None

    def as_updates(self, *, clear_empty: bool = False) -> dict[str, str | None]:
        updates: dict[str, str | None] = {"Notify": self.notify, "Molecule": self.molecule}
        if clear_empty:
            return updates
        return {key: value for key, value in updates.items() if value is not None}


def parse_attachment_fields(description: str | None) -> AttachmentFields | None:
    return AttachmentFields.parse(description)


def set_attachment_fields(description: str | None, fields: AttachmentFields) -> str:
    return fields.apply_to(description)


def parse_agent_fields(description: str | None) -> AgentFields | None:
    return AgentFields.parse(description)


def set_agent_fields(description: str | None, fields: AgentFields) -> str:
    return fields.apply_to(description)


def parse_mr_fields(description: str | None) -> MRFields | None:
    return MRFields.parse(description)


def format_mr_fields(fields: MRFields) -> str:
    return fields.format()


def parse_convoy_fields(description: str | None) -> ConvoyFields | None:
    return ConvoyFields.parse(description)


def format_convoy_description(
    tracked_count: int, *, notify: str | None = None, molecule: str | None = None
) -> str:
    """Render a convoy body.

    Example:
        >>> format_convoy_description(1, molecule="gp-wisp-1")
        'Convoy tracking 1 issues\\nMolecule: gp-wisp-1\\n'
    """
    header = f"Convoy tracking {tracked_count} issues"
    return ConvoyFields(notify=notify, molecule=molecule).apply_to(header)
