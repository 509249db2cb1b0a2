"""``gt sling``: hook work to an agent, spawning polecats as needed."""

from __future__ import annotations

from .core import sling
from .pipeline import Assignment, SlingContext, SlingOutcome
from .request import (
    DEFAULT_POLECAT_FORMULA,
    NO_FORMULA,
    SlingRequest,
    parse_on_target,
    start_prompt,
)

__all__ = [
    "DEFAULT_POLECAT_FORMULA",
    "NO_FORMULA",
    "Assignment",
    "SlingContext",
    "SlingOutcome",
    "SlingRequest",
    "parse_on_target",
    "sling",
    "start_prompt",
]
