"""Command implementations exposed by the ``gt`` CLI."""

from .agents import run_agents_state
from .hook import run_hook
from .mq import run_mq_process
from .patrol import run_patrol
from .polecats import run_polecats_add, run_polecats_list, run_polecats_remove
from .sling import run_sling
from .town import run_town_next, run_town_prev

__all__ = [
    "run_agents_state",
    "run_hook",
    "run_mq_process",
    "run_patrol",
    "run_polecats_add",
    "run_polecats_list",
    "run_polecats_remove",
    "run_sling",
    "run_town_next",
    "run_town_prev",
]
