"""Sling request options and the start prompt they produce."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from ..dispatcher import DEFAULT_PARALLELISM
from ..errors import InvalidInput

DEFAULT_POLECAT_FORMULA = "mol-polecat-work"
NO_FORMULA = "none"


@dataclass(frozen=True)
class SlingRequest:
    """One invocation of the dispatch pipeline.

    ``targets`` holds every positional argument after the first; a rig name
    as the last of several beads selects batch mode.
    """

    bead_or_formula: str | None
    targets: tuple[str, ...] = ()
    on: tuple[str, ...] = ()
    variables: tuple[str, ...] = ()
    args: str | None = None
    subject: str | None = None
    message: str | None = None
    force: bool = False
    create: bool = False
    account: str | None = None
    agent: str | None = None
    no_convoy: bool = False
    dry_run: bool = False
    queue: bool = False
    parallelism: int = DEFAULT_PARALLELISM
    capacity: int | None = None
    polecat_formula: str = DEFAULT_POLECAT_FORMULA

    def formula_variables(self) -> dict[str, str]:
        """Parse ``--var key=value`` pairs.

        Example:
            >>> SlingRequest("f", variables=("disks=3",)).formula_variables()
            {'disks': '3'}
        """
        parsed: dict[str, str] = {}
        for item in self.variables:
            key, sep, value = item.partition("=")
            if not sep or not key.strip():
                raise InvalidInput(f"invalid --var '{item}' (expected key=value)")
            parsed[key.strip()] = value
        return parsed


def parse_on_target(value: str) -> list[str]:
    """Expand an ``--on`` value: a comma list, or ``@file`` with one ID per line.

    Blank lines and ``#`` comments in the file are skipped.

    Example:
        >>> parse_on_target(" gp-1, gp-2 ,,")
        ['gp-1', 'gp-2']
    """
    if value.startswith("@"):
        path = Path(value[1:]).expanduser()
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise InvalidInput(f"cannot read bead list {path}: {exc}") from exc
        return [
            line.strip()
            for line in text.splitlines()
            if line.strip() and not line.strip().startswith("#")
        ]
    return [part.strip() for part in value.split(",") if part.strip()]


def start_prompt(bead_id: str, *, subject: str | None = None, args: str | None = None) -> str:
    """Text typed into a freshly hooked agent's session.

    Example:
        >>> start_prompt("gp-abc")
        'Work slung: gp-abc. Start working on it now - run `gt hook` to see the hook, then begin.'
    """
    if args:
        if subject:
            return (
                f"Work slung: {bead_id} ({subject}). Args: {args}. "
                "Start working now - use these args to guide your execution."
            )
        return (
            f"Work slung: {bead_id}. Args: {args}. "
            "Start working now - use these args to guide your execution."
        )
    if subject:
        return (
            f"Work slung: {bead_id} ({subject}). "
            "Start working on it now - no questions, just begin."
        )
    return (
        f"Work slung: {bead_id}. "
        "Start working on it now - run `gt hook` to see the hook, then begin."
    )
