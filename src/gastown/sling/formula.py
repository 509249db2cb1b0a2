"""Formula-on-bead: instantiate a wisp as guidance for a work bead.

The wisp is never bonded to the bead as a dependency; a blocker would hide
the bead from readiness queries. Its root ID is recorded on the bead as
``attached_molecule`` instead.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..bead_fields import AttachmentFields
from ..beads import Beads, UpdateOptions
from ..config import utc_now
from ..errors import InvalidInput


@dataclass(frozen=True)
class FormulaResult:
    wisp_root: str
    bead_to_hook: str


def verify_formula(beads: Beads, formula: str) -> None:
    if not beads.formula_exists(formula):
        raise InvalidInput(f"formula '{formula}' not found")


def instantiate_on_bead(
    beads: Beads,
    formula: str,
    bead_id: str,
    title: str,
    *,
    variables: dict[str, str] | None = None,
    actor: str | None = None,
) -> FormulaResult:
    """Create a wisp of ``formula`` for ``bead_id``; the base bead stays the hook."""
    merged = {"feature": title, "issue": bead_id}
    merged.update(variables or {})
    wisp = beads.mol_wisp(formula, actor=actor, variables=merged, cwd=beads.workdir_for(bead_id))
    return FormulaResult(wisp_root=wisp.id, bead_to_hook=bead_id)


def store_attachment(
    beads: Beads,
    bead_id: str,
    *,
    molecule: str | None = None,
    args: str | None = None,
    dispatched_by: str | None = None,
) -> str:
    """Write dispatch metadata onto ``bead_id``, keeping an earlier ``attached_at``."""
    issue = beads.show(bead_id)
    current = issue.attachment_fields() or AttachmentFields()
    attached_at = current.attached_at
    if molecule and not attached_at:
        attached_at = utc_now()
    fields = AttachmentFields(
        attached_molecule=molecule or current.attached_molecule,
        attached_at=attached_at,
        attached_args=args or current.attached_args,
        dispatched_by=dispatched_by or current.dispatched_by,
    )
    description = fields.apply_to(issue.description)
    beads.update(bead_id, UpdateOptions(description=description))
    return description
