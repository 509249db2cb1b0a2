import json
import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from gastown.beads import Beads, CreateOptions
from gastown.dispatcher import Dispatcher
from gastown.errors import PrefixMismatch
from gastown.namepool import THEMES, NamePool
from gastown.queue import SlingQueue
from gastown.routing import Router, resolve_beads_dir
from gastown.runner import CommandRequest, CommandResult
from tests.gastown.helpers import make_town

RIGS = {"gastown": "gp", "beacon": "bc", "trrig": "tr"}
SUFFIXES = st.from_regex(r"[a-z0-9]{1,8}", fullmatch=True)
SUBDIRS = st.lists(st.sampled_from(["crew", "max", "polecats", "toast", "src", "docs"]), max_size=4)


@pytest.fixture(scope="module")
def town_root(tmp_path_factory: pytest.TempPathFactory) -> Path:
    root = tmp_path_factory.mktemp("town")
    make_town(root, RIGS)
    return root


@settings(max_examples=50, deadline=None)
@given(rig=st.sampled_from(sorted(RIGS)), suffix=SUFFIXES, start_rig=st.sampled_from(sorted(RIGS)))
def test_routing_is_independent_of_start_directory(
    town_root: Path, rig: str, suffix: str, start_rig: str
) -> None:
    bead_id = f"{RIGS[rig]}-{suffix}"
    nested = town_root / start_rig / "crew" / "max" / "src"
    nested.mkdir(parents=True, exist_ok=True)

    from_root = Router(town_root).workdir(bead_id)
    from_nested = Router(nested).workdir(bead_id)

    assert from_root == from_nested == (town_root / rig).resolve()


@settings(max_examples=30, deadline=None)
@given(parts=SUBDIRS)
def test_redirect_resolution_is_idempotent(parts: list[str]) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        rig = Path(tmp) / "rig"
        canonical = rig / "mayor" / "rig" / ".beads"
        canonical.mkdir(parents=True)
        worktree = rig.joinpath(*parts) if parts else rig / "worktree"
        (worktree / ".beads").mkdir(parents=True, exist_ok=True)
        relative = Path(*([".."] * len(worktree.relative_to(rig).parts))) / "mayor/rig/.beads"
        (worktree / ".beads" / "redirect").write_text(f"{relative}\n", encoding="utf-8")

        once = resolve_beads_dir(worktree)
        twice = resolve_beads_dir(once.parent)

        assert once == twice == canonical.resolve()


@settings(max_examples=30, deadline=None)
@given(bead_ids=st.lists(SUFFIXES, min_size=1, max_size=12, unique=True))
def test_queue_drains_in_enqueue_order(bead_ids: list[str]) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        queue = SlingQueue(Path(tmp) / "sling-queue.jsonl")
        for bead_id in bead_ids:
            queue.add(f"gp-{bead_id}", "gastown")
        started: list[str] = []

        result = Dispatcher(
            queue, lambda _rig, bead_id: started.append(bead_id), parallelism=1
        ).dispatch()

        assert started == [f"gp-{bead_id}" for bead_id in bead_ids]
        assert result.succeeded == started
        assert len(queue) == 0


@settings(max_examples=30, deadline=None)
@given(bead_id=SUFFIXES, retries=st.integers(min_value=0, max_value=3))
def test_queue_add_is_idempotent(bead_id: str, retries: int) -> None:
    with tempfile.TemporaryDirectory() as tmp:
        queue = SlingQueue(Path(tmp) / "sling-queue.jsonl")
        queue.add(bead_id, "gastown")
        for _ in range(retries):
            queue.increment_retry(bead_id)

        queue.add(bead_id, "gastown")

        items = queue.load()
        assert [item.bead_id for item in items] == [bead_id]
        assert items[0].retry_count == retries


@given(
    count=st.integers(min_value=0, max_value=40),
    live=st.sets(st.sampled_from(THEMES["mad-max"]) | SUFFIXES, max_size=20),
)
def test_batch_names_are_distinct_and_avoid_live_polecats(count: int, live: set[str]) -> None:
    names = NamePool().allocate_many(count, live)

    assert len(names) == count
    assert len(set(names)) == count
    assert not set(names) & live


class _CreateEcho:
    def __init__(self) -> None:
        self.calls: list[CommandRequest] = []

    def run(self, request: CommandRequest) -> CommandResult:
        self.calls.append(request)
        bead_id = next(arg[len("--id=") :] for arg in request.argv if arg.startswith("--id="))
        return CommandResult(request.argv, 0, json.dumps({"id": bead_id}), "")


@given(prefix=st.from_regex(r"[a-z]{2,3}", fullmatch=True), suffix=SUFFIXES)
def test_rig_client_only_creates_its_own_or_town_prefix(prefix: str, suffix: str) -> None:
    runner = _CreateEcho()
    town = Path("/nonexistent/town")
    beads = Beads.for_rig(town, town / "tr", "tr", process_runner=runner)
    bead_id = f"{prefix}-{suffix}"

    if prefix in {"hq", "tr"}:
        assert beads.create_with_id(bead_id, CreateOptions(title="t")).id == bead_id
        assert len(runner.calls) == 1
    else:
        with pytest.raises(PrefixMismatch):
            beads.create_with_id(bead_id, CreateOptions(title="t"))
        assert runner.calls == []
