from pathlib import Path

import pytest

from gastown import feed
from gastown.beads import Beads, CreateOptions
from gastown.errors import (
    BeadAlreadyAssigned,
    BeadsError,
    CapacityExceeded,
    CommandFailed,
    HookFailed,
    InvalidInput,
    PolecatExists,
    SpawnFailed,
)
from gastown.polecat import AddOptions, Polecat
from gastown.queue import SlingQueue
from gastown.session.double import SessionDouble
from gastown.session.factory import SessionFactory
from gastown.sling import SlingRequest, sling
from gastown.sling import core as sling_core
from gastown.sling.pipeline import add_polecat
from gastown.sling.targets import Target
from tests.gastown.helpers import FakeBd, make_harness, make_town, start_session


def test_single_bead_to_rig_spawns_hooked_polecat(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-abc", title="Fix the pump")

    outcome = sling(harness.context(), SlingRequest("gp-abc", targets=("gastown",)))

    assert [item.agent for item in outcome.assignments] == ["gastown/polecats/furiosa"]
    assert (tmp_path / "gastown" / "polecats" / "furiosa" / "gastown").is_dir()
    issue = harness.bd.issue("gp-abc")
    assert issue["status"] == "hooked"
    assert issue["assignee"] == "gastown/polecats/furiosa"
    assert outcome.convoy_id == "hq-cv-c0001"
    assert harness.bd.issue("hq-cv-c0001")["title"] == "Work: Fix the pump"
    assert ("hq-cv-c0001", "gp-abc", "tracks") in harness.bd.db_for("hq-x").deps
    slings = [event for event in feed.read_events(tmp_path) if event.type == feed.EVENT_SLING]
    assert [event.payload["bead"] for event in slings] == ["gp-abc"]
    assert harness.sessions.nudges("gt-gastown-furiosa") == [
        "Work slung: gp-abc. Start working on it now - run `gt hook` to see the hook, then begin."
    ]


def test_single_sling_records_formula_wisp_and_agent_bead(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-abc", title="Fix the pump")

    outcome = sling(harness.context(), SlingRequest("gp-abc", targets=("gastown",)))

    wisp = outcome.assignments[0].wisp_root
    assert wisp is not None and wisp.startswith("gp-wisp-")
    assert harness.bd.wisp_vars[wisp] == {"feature": "Fix the pump", "issue": "gp-abc"}
    assert f"attached_molecule: {wisp}" in harness.bd.issue("gp-abc")["description"]
    agent = harness.bd.issue("gp-gastown-polecat-furiosa")
    assert "hook_bead: gp-abc" in agent["description"]


def test_batch_of_three_spawns_distinct_polecats_with_one_convoy(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    for bead_id in ("gp-1", "gp-2", "gp-3"):
        harness.bd.seed(bead_id)
    start_session(harness, "gt-gastown-witness")
    start_session(harness, "gt-gastown-refinery")

    outcome = sling(
        harness.context(),
        SlingRequest("gp-1", targets=("gp-2", "gp-3", "gastown"), parallelism=2),
    )

    assert outcome.ok
    agents = [item.agent for item in outcome.assignments]
    assert [item.bead_id for item in outcome.assignments] == ["gp-1", "gp-2", "gp-3"]
    assert len(set(agents)) == 3
    hooks = [args for args in harness.bd.commands("update") if "--status=hooked" in args]
    assert sorted(args[1] for args in hooks) == ["gp-1", "gp-2", "gp-3"]
    convoys = [
        issue
        for issue in harness.bd.db_for("hq-x").issues.values()
        if issue["issue_type"] == "convoy"
    ]
    assert [issue["title"] for issue in convoys] == ["Batch: 3 beads to gastown"]
    tracked = {dep[1] for dep in harness.bd.db_for("hq-x").deps if dep[0] == outcome.convoy_id}
    assert tracked == {"gp-1", "gp-2", "gp-3"}
    assert harness.sessions.nudges("gt-gastown-witness") == [
        "Polecat dispatched - check for work"
    ]
    assert harness.sessions.nudges("gt-gastown-refinery") == [
        "Polecat dispatched - check for merge requests"
    ]


def test_batch_failure_does_not_stop_siblings(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-1")
    harness.bd.seed("gp-2", status="pinned", assignee="gastown/polecats/nux")
    harness.bd.seed("gp-3")

    outcome = sling(
        harness.context(), SlingRequest("gp-1", targets=("gp-2", "gp-3", "gastown"))
    )

    assert sorted(outcome.failed) == ["gp-2"]
    assert isinstance(outcome.failed["gp-2"], BeadAlreadyAssigned)
    assert [item.bead_id for item in outcome.assignments] == ["gp-1", "gp-3"]


def test_queue_respects_capacity_and_drains_later(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    for bead_id in ("gp-1", "gp-2", "gp-3", "gp-4"):
        harness.bd.seed(bead_id)
    ctx = harness.context()

    first = sling(
        ctx,
        SlingRequest("gp-1", targets=("gp-2", "gp-3", "gp-4", "gastown"), queue=True, capacity=2),
    )

    assert [item.bead_id for item in first.assignments] == ["gp-1", "gp-2"]
    assert first.queued == ["gp-1", "gp-2", "gp-3", "gp-4"]
    queue = SlingQueue.for_town(tmp_path)
    assert [item.bead_id for item in queue.load()] == ["gp-3", "gp-4"]

    harness.sessions.stop(harness.sessions.list()[0])
    drained = sling(ctx, SlingRequest("gastown", queue=True, capacity=2))

    assert [item.bead_id for item in drained.assignments] == ["gp-3"]
    assert [item.bead_id for item in queue.load()] == ["gp-4"]
    assert harness.bd.issue("gp-4")["status"] == "open"


def test_force_resling_of_pinned_bead(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-x", status="pinned", assignee="gastown/polecats/A")
    harness.bd.seed(
        "gp-gastown-polecat-A",
        issue_type="agent",
        description="role_type: polecat\nhook_bead: gp-x\n",
    )
    ctx = harness.context()

    with pytest.raises(BeadAlreadyAssigned):
        sling(ctx, SlingRequest("gp-x", targets=("gastown",)))
    assert harness.bd.commands("update") == []
    assert harness.bd.commands("create") == []

    outcome = sling(ctx, SlingRequest("gp-x", targets=("gastown",), force=True))

    new_agent = outcome.assignments[0].agent
    assert new_agent != "gastown/polecats/A"
    assert harness.bd.issue("gp-x")["assignee"] == new_agent
    old = harness.bd.issue("gp-gastown-polecat-A")["description"]
    assert "hook_bead" not in old
    assert "role_type: polecat" in old


def test_dead_polecat_target_gets_fresh_polecat(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-y")

    outcome = sling(
        harness.context(), SlingRequest("gp-y", targets=("gastown/polecats/Ghost",))
    )

    agent = outcome.assignments[0].agent
    assert agent.startswith("gastown/polecats/")
    assert agent != "gastown/polecats/Ghost"
    assert harness.bd.issue("gp-y")["assignee"] == agent
    assert not (tmp_path / "gastown" / "polecats" / "Ghost").exists()


def test_hook_is_written_before_session_starts(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-abc")
    seen: list[str] = []

    class _Recording(SessionDouble):
        def start(self, name: str, work_dir: str | None, command: str) -> str:
            seen.append(harness.bd.issue("gp-abc")["status"])
            return super().start(name, work_dir, command)

    local = _Recording()
    harness.sessions = local
    harness.factory = SessionFactory(
        harness.town, local=local, process_runner=harness.process, sleep=lambda _s: None
    )

    sling(harness.context(), SlingRequest("gp-abc", targets=("gastown",)))

    assert seen == ["hooked"]


def test_sling_ignores_beads_dir_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-abc")
    monkeypatch.setenv("BEADS_DIR", str(tmp_path / "elsewhere" / ".beads"))
    monkeypatch.chdir(tmp_path / "gastown")

    sling(harness.context(), SlingRequest("gp-abc", targets=("gastown",)))

    assert harness.bd.issue("gp-abc")["status"] == "hooked"
    assert all("BEADS_DIR" not in (call.env or {}) for call in harness.bd.calls)


def test_nested_worktree_and_rig_share_one_database(tmp_path: Path) -> None:
    town = make_town(tmp_path, {"gastown": "gp", "trrig": "tr"})
    rig = town.rig_path("trrig")
    canonical = rig / "mayor" / "rig"
    (canonical / ".beads").mkdir(parents=True)
    (rig / ".beads" / "redirect").write_text("mayor/rig/.beads\n", encoding="utf-8")
    crew = rig / "crew" / "max"
    (crew / ".beads").mkdir(parents=True)
    (crew / ".beads" / "redirect").write_text("../../mayor/rig/.beads\n", encoding="utf-8")
    bd = FakeBd()
    bd.add_db(town.root, "hq")
    db = bd.add_db(canonical, "tr")

    from_crew = Beads.for_rig(town.root, crew, "tr", process_runner=bd)
    created = from_crew.create_with_id("tr-1", CreateOptions(title="Tracked work"))
    shown = Beads.for_rig(town.root, rig, "tr", process_runner=bd).show("tr-1")

    assert created.id == shown.id == "tr-1"
    assert shown.title == "Tracked work"
    assert list(db.issues) == ["tr-1"]
    assert {call.cwd for call in bd.calls} == {canonical.resolve()}


def test_hooked_bead_needs_force_to_move_to_another_agent(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-h", status="hooked", assignee="gastown/polecats/nux")
    start_session(harness, "gt-gastown-witness")
    ctx = harness.context()

    with pytest.raises(BeadAlreadyAssigned, match="hooked to gastown/polecats/nux"):
        sling(ctx, SlingRequest("gp-h", targets=("gastown/witness",)))
    assert harness.bd.commands("update") == []
    assert harness.bd.commands("create") == []

    forced = sling(ctx, SlingRequest("gp-h", targets=("gastown/witness",), force=True))
    again = sling(ctx, SlingRequest("gp-h", targets=("gastown/witness",)))

    assert [item.agent for item in forced.assignments] == ["gastown/witness"]
    assert [item.agent for item in again.assignments] == ["gastown/witness"]
    assert harness.bd.issue("gp-h")["assignee"] == "gastown/witness"


def test_failed_session_start_removes_worktree_and_keeps_hook(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-abc")

    class _Broken(SessionDouble):
        def start(self, name: str, work_dir: str | None, command: str) -> str:
            raise CommandFailed("tmux new-session: server exited unexpectedly")

    local = _Broken()
    harness.sessions = local
    harness.factory = SessionFactory(
        harness.town, local=local, process_runner=harness.process, sleep=lambda _s: None
    )

    with pytest.raises(SpawnFailed, match="gastown/polecats/furiosa"):
        sling(harness.context(), SlingRequest("gp-abc", targets=("gastown",)))

    assert not (tmp_path / "gastown" / "polecats" / "furiosa").exists()
    assert len(harness.git.commands("worktree", "remove")) == 1
    issue = harness.bd.issue("gp-abc")
    assert (issue["status"], issue["assignee"]) == ("hooked", "gastown/polecats/furiosa")
    assert local.list() == []


def test_failed_hook_creates_no_polecat(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-abc")
    harness.bd.fail_updates.add("gp-abc")

    with pytest.raises(HookFailed, match="hooking gp-abc to gastown/polecats/furiosa"):
        sling(harness.context(), SlingRequest("gp-abc", targets=("gastown",)))

    assert harness.git.commands("worktree", "add") == []
    assert not (tmp_path / "gastown" / "polecats" / "furiosa").exists()
    assert harness.sessions.list() == []
    assert harness.bd.issue("gp-abc")["status"] == "open"


def test_stale_worktree_is_repaired_but_live_polecat_is_not(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    ctx = harness.context()
    stale = tmp_path / "gastown" / "polecats" / "nux" / "gastown"
    stale.mkdir(parents=True)
    (stale / "leftover.txt").write_text("old work\n", encoding="utf-8")

    clone = add_polecat(ctx, "gastown", "nux", "gp-abc")

    assert clone == str(stale)
    assert stale.is_dir()
    assert not (stale / "leftover.txt").exists()
    assert len(harness.git.commands("worktree", "remove")) == 1

    start_session(harness, "gt-gastown-nux")
    with pytest.raises(PolecatExists, match="live session"):
        add_polecat(ctx, "gastown", "nux", "gp-def")
    assert len(harness.git.commands("worktree", "remove")) == 1


def test_concurrent_create_gets_one_nuclear_retry(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    harness = make_harness(tmp_path)
    ctx = harness.context()
    backend = ctx.backend("gastown")
    create = backend.add_with_options
    attempts: list[str] = []

    def racing_create(name: str, opts: AddOptions) -> Polecat:
        attempts.append(name)
        polecat = create(name, opts)
        if len(attempts) == 1:
            raise PolecatExists(f"polecat '{name}' already exists in rig 'gastown'")
        return polecat

    monkeypatch.setattr(backend, "add_with_options", racing_create)

    clone = add_polecat(ctx, "gastown", "toast", "gp-abc")

    assert attempts == ["toast", "toast"]
    assert len(harness.git.commands("worktree", "remove")) == 1
    assert Path(clone).is_dir()


def test_explicit_capacity_with_no_free_slot_queues_then_fails(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-1")
    start_session(harness, "gt-gastown-nux")

    with pytest.raises(CapacityExceeded, match="1 polecats running"):
        sling(
            harness.context(),
            SlingRequest("gp-1", targets=("gastown",), queue=True, capacity=1),
        )

    assert [item.bead_id for item in SlingQueue.for_town(tmp_path).load()] == ["gp-1"]
    assert harness.bd.issue("gp-1")["status"] == "open"
    assert harness.git.commands("worktree", "add") == []


def test_queue_drain_keeps_work_that_failed_transiently(tmp_path: Path) -> None:
    harness = make_harness(tmp_path)
    for bead_id in ("gp-1", "gp-2", "gp-3", "gp-4"):
        harness.bd.seed(bead_id)
    ctx = harness.context()
    sling(
        ctx,
        SlingRequest("gp-1", targets=("gp-2", "gp-3", "gp-4", "gastown"), queue=True, capacity=1),
    )
    queue = SlingQueue.for_town(tmp_path)
    assert [item.bead_id for item in queue.load()] == ["gp-2", "gp-3", "gp-4"]

    harness.bd.fail_shows.add("gp-2")
    harness.bd.issue("gp-3")["status"] = "closed"
    harness.sessions.stop(harness.sessions.list()[0])
    drained = sling(ctx, SlingRequest("gastown", queue=True, capacity=3))

    assert [item.bead_id for item in drained.assignments] == ["gp-4"]
    assert list(drained.failed) == ["gp-2"]
    assert isinstance(drained.failed["gp-2"], BeadsError)
    assert [(item.bead_id, item.retry_count) for item in queue.load()] == [("gp-2", 1)]

    harness.bd.fail_shows.clear()
    retried = sling(ctx, SlingRequest("gastown", queue=True, capacity=3))

    assert [item.bead_id for item in retried.assignments] == ["gp-2"]
    assert queue.load() == []


def test_target_without_agent_or_rig_is_refused(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    harness = make_harness(tmp_path)
    harness.bd.seed("gp-abc")
    monkeypatch.setattr(sling_core, "resolve_target", lambda *_args, **_kwargs: Target())

    with pytest.raises(InvalidInput, match="no agent to hook gp-abc"):
        sling(harness.context(), SlingRequest("gp-abc", targets=("gastown/witness",)))

    assert harness.bd.commands("update") == []
