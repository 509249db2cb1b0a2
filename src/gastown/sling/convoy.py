"""Tracking convoys created by sling.

Every dispatched bead is tracked by some convoy so it shows up on the
dashboard; a single sling creates ``Work: <title>``, a batch one
``Batch: N beads to <rig>``.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Sequence

from .. import log as gt_log
from ..bead_fields import format_convoy_description
from ..beads import Beads, CreateOptions
from ..errors import GastownError
from ..routing import CONVOY_PREFIX

CONVOY_TYPE = "convoy"
TRACKS = "tracks"
_ALPHABET = "abcdefghijklmnopqrstuvwxyz234567"


def short_id(length: int = 5) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def convoy_id(suffix: str) -> str:
    """Town-level convoy ID for a random suffix.

    Example:
        >>> convoy_id("abcde")
        'hq-cv-abcde'
    """
    return f"{CONVOY_PREFIX}{suffix}"


def existing_convoy(beads: Beads, bead_id: str) -> str | None:
    """First convoy tracking ``bead_id``; lookup failures count as untracked."""
    try:
        tracked = beads.tracked_by(bead_id)
    except GastownError as exc:
        gt_log.debug(f"could not look up convoys for {bead_id}: {exc}")
        return None
    return tracked[0] if tracked else None


def create_convoy(
    beads: Beads,
    title: str,
    bead_ids: Sequence[str],
    *,
    molecule: str | None = None,
    new_suffix: Callable[[], str] = short_id,
) -> str:
    """Create a town convoy and add a ``tracks`` relation to each bead."""
    identifier = convoy_id(new_suffix())
    beads.create_with_id(
        identifier,
        CreateOptions(
            title=title,
            type=CONVOY_TYPE,
            description=format_convoy_description(len(bead_ids), molecule=molecule),
        ),
    )
    for bead_id in bead_ids:
        beads.add_dependency(identifier, bead_id, dep_type=TRACKS)
    return identifier


def create_auto_convoy(
    beads: Beads, bead_id: str, title: str, *, new_suffix: Callable[[], str] = short_id
) -> str:
    return create_convoy(beads, f"Work: {title}", [bead_id], new_suffix=new_suffix)


def batch_convoy_title(count: int, rig: str) -> str:
    return f"Batch: {count} beads to {rig}"
