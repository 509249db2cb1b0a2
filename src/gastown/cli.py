"""Command-line entry point for ``gt``."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Annotated

import typer

from . import __version__
from . import log as gt_log
from .commands.agents import run_agents_state as agents_state_cmd
from .commands.hook import run_hook as hook_cmd
from .commands.mq import run_mq_process as mq_process_cmd
from .commands.patrol import run_patrol as patrol_cmd
from .commands.polecats import run_polecats_add as polecats_add_cmd
from .commands.polecats import run_polecats_list as polecats_list_cmd
from .commands.polecats import run_polecats_remove as polecats_remove_cmd
from .commands.sling import run_sling as sling_cmd
from .commands.town import run_town_next as town_next_cmd
from .commands.town import run_town_prev as town_prev_cmd

app = typer.Typer(
    help="Gas Town: dispatch work to coding agents.",
    add_completion=False,
    no_args_is_help=True,
)
agents_app = typer.Typer(help="Inspect and update agent beads.", no_args_is_help=True)
mq_app = typer.Typer(help="Work the merge queue.", no_args_is_help=True)
town_app = typer.Typer(help="Move between town sessions.", no_args_is_help=True)
polecats_app = typer.Typer(help="Manage polecat workers.", no_args_is_help=True)
app.add_typer(agents_app, name="agents")
app.add_typer(mq_app, name="mq")
app.add_typer(town_app, name="town")
app.add_typer(polecats_app, name="polecats")


def _validate_log_level(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in gt_log.LEVEL_NAMES:
        raise typer.BadParameter(f"expected one of: {', '.join(gt_log.LEVEL_NAMES)}")
    return normalized


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"gt {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            help="Log level: trace, debug, info, success, warning or error.",
            callback=_validate_log_level,
        ),
    ] = None,
    no_color: Annotated[
        bool, typer.Option("--no-color", help="Disable colored log output.")
    ] = False,
    version: Annotated[
        bool,
        typer.Option(
            "--version", help="Show the version and exit.", callback=_version_callback
        ),
    ] = False,
) -> None:
    """Gas Town command-line interface."""
    if log_level is not None:
        gt_log.set_level(log_level)
    if no_color:
        gt_log.set_no_color(True)


@app.command("sling")
def sling_command(
    args: Annotated[
        list[str] | None,
        typer.Argument(help="Bead or formula, then a target; several beads end with a rig."),
    ] = None,
    on: Annotated[
        str | None,
        typer.Option("--on", help="Apply the formula to these beads (comma list or @file)."),
    ] = None,
    var: Annotated[
        list[str] | None, typer.Option("--var", help="Formula variable as key=value.")
    ] = None,
    sling_args: Annotated[
        str | None, typer.Option("--args", "-a", help="Natural-language instructions.")
    ] = None,
    subject: Annotated[
        str | None, typer.Option("--subject", "-s", help="Context subject for the agent.")
    ] = None,
    message: Annotated[
        str | None, typer.Option("--message", "-m", help="Context message for the agent.")
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", help="Re-sling work that is already hooked.")
    ] = False,
    create: Annotated[
        bool, typer.Option("--create", help="Create the target polecat if it is missing.")
    ] = False,
    account: Annotated[
        str | None, typer.Option("--account", help="Runtime account to use.")
    ] = None,
    agent: Annotated[
        str | None, typer.Option("--agent", help="Runtime agent override (e.g. codex).")
    ] = None,
    no_convoy: Annotated[
        bool, typer.Option("--no-convoy", help="Do not create a tracking convoy.")
    ] = False,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", "-n", help="Show what would happen.")
    ] = False,
    queue: Annotated[
        bool, typer.Option("--queue", help="Queue for the rig and spawn within capacity.")
    ] = False,
    parallel: Annotated[
        int, typer.Option("--parallel", help="Concurrent spawns for batches (0 = default).")
    ] = 0,
    capacity: Annotated[
        int | None,
        typer.Option("--capacity", help="Maximum polecats running in the rig (0 = unbounded)."),
    ] = None,
    formula: Annotated[
        str | None,
        typer.Option("--formula", help="Formula applied to rig-spawned work ('none' to skip)."),
    ] = None,
) -> None:
    """Hook work to an agent, spawning polecats as needed."""
    sling_cmd(
        SimpleNamespace(
            args=args or [],
            on=on,
            var=var or [],
            sling_args=sling_args,
            subject=subject,
            message=message,
            force=force,
            create=create,
            account=account,
            agent=agent,
            no_convoy=no_convoy,
            dry_run=dry_run,
            queue=queue,
            parallel=parallel,
            capacity=capacity,
            formula=formula,
        )
    )


@app.command("hook")
def hook_command(
    bead: Annotated[str | None, typer.Argument(help="Bead to attach.")] = None,
    target: Annotated[
        str | None, typer.Argument(help="Agent to attach to (default: self).")
    ] = None,
    force: Annotated[
        bool, typer.Option("--force", help="Attach even if the bead is pinned.")
    ] = False,
    json_output: Annotated[
        bool, typer.Option("--json", help="Print the current hook as JSON.")
    ] = False,
) -> None:
    """Attach a bead to a hook, or show the current hook."""
    hook_cmd(SimpleNamespace(bead=bead, target=target, force=force, json=json_output))


@agents_app.command("state")
def agents_state_command(
    agent_bead: Annotated[str, typer.Argument(help="Agent bead ID.")],
    set_values: Annotated[
        list[str] | None, typer.Option("--set", help="Set a label as key=value.")
    ] = None,
    incr: Annotated[
        str | None, typer.Option("--incr", help="Increment a numeric label.")
    ] = None,
    delete: Annotated[
        list[str] | None, typer.Option("--del", help="Delete a label by key.")
    ] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Print state as JSON.")] = False,
) -> None:
    """Get or set key:value state labels on an agent bead."""
    agents_state_cmd(
        SimpleNamespace(
            agent_bead=agent_bead,
            set=set_values or [],
            incr=incr,
            delete=delete or [],
            json=json_output,
        )
    )


@mq_app.command("process")
def mq_process_command(
    rig: Annotated[str, typer.Argument(help="Rig whose queue to process.")],
    mr_id: Annotated[
        str | None, typer.Argument(help="Merge request to process (default: next ready).")
    ] = None,
    dry_run: Annotated[
        bool, typer.Option("--dry-run", "-n", help="Show what would be merged.")
    ] = False,
    json_output: Annotated[bool, typer.Option("--json", help="Print the result as JSON.")] = False,
) -> None:
    """Merge the next ready merge request."""
    mq_process_cmd(SimpleNamespace(rig=rig, mr_id=mr_id, dry_run=dry_run, json=json_output))


@town_app.command("next")
def town_next_command(
    session: Annotated[
        str | None, typer.Option("--session", help="Session to cycle from.")
    ] = None,
) -> None:
    """Switch to the next town session."""
    town_next_cmd(SimpleNamespace(session=session))


@town_app.command("prev")
def town_prev_command(
    session: Annotated[
        str | None, typer.Option("--session", help="Session to cycle from.")
    ] = None,
) -> None:
    """Switch to the previous town session."""
    town_prev_cmd(SimpleNamespace(session=session))


@polecats_app.command("add")
def polecats_add_command(
    rig: Annotated[str, typer.Argument(help="Rig to add the polecat to.")],
    name: Annotated[
        str | None, typer.Argument(help="Polecat name (default: next from the pool).")
    ] = None,
    hook: Annotated[
        str | None, typer.Option("--hook", help="Bead recorded on the agent's hook.")
    ] = None,
) -> None:
    """Create a polecat worktree."""
    polecats_add_cmd(SimpleNamespace(rig=rig, name=name, hook=hook))


@polecats_app.command("remove")
def polecats_remove_command(
    rig: Annotated[str, typer.Argument(help="Rig of the polecat.")],
    name: Annotated[str, typer.Argument(help="Polecat name.")],
    force: Annotated[
        bool, typer.Option("--force", help="Ignore uncommitted changes.")
    ] = False,
    nuclear: Annotated[
        bool, typer.Option("--nuclear", help="Discard all work, including unpushed commits.")
    ] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
) -> None:
    """Remove a polecat."""
    polecats_remove_cmd(SimpleNamespace(rig=rig, name=name, force=force, nuclear=nuclear, yes=yes))


@polecats_app.command("list")
def polecats_list_command(
    rig: Annotated[str, typer.Argument(help="Rig to list.")],
    json_output: Annotated[bool, typer.Option("--json", help="Print as JSON.")] = False,
) -> None:
    """List a rig's polecats."""
    polecats_list_cmd(SimpleNamespace(rig=rig, json=json_output))


@app.command("patrol")
def patrol_command(
    role: Annotated[
        str | None,
        typer.Option("--as", help="Agent to patrol as (default: from GT_* environment)."),
    ] = None,
    cycles: Annotated[int, typer.Option("--cycles", help="Number of cycles to run.")] = 1,
    interval: Annotated[
        float, typer.Option("--interval", help="Base seconds between cycles.")
    ] = 30.0,
) -> None:
    """Run witness, refinery or deacon patrol cycles."""
    patrol_cmd(SimpleNamespace(role=role, cycles=cycles, interval=interval))


def main() -> None:
    app()
