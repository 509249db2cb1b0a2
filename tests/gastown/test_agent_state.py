from pathlib import Path

import pytest

from gastown import agent_state
from gastown.beads import Beads
from gastown.errors import BeadNotFound, InvalidInput
from tests.gastown.helpers import FakeBd, make_town


def _beads(root: Path) -> tuple[FakeBd, Beads]:
    town = make_town(root)
    bd = FakeBd(town)
    return bd, Beads.town(town.root, process_runner=bd)


def test_parse_set_pairs() -> None:
    assert agent_state.parse_set_pairs(["idle=0", "backoff=2m", "note="]) == {
        "idle": "0",
        "backoff": "2m",
        "note": "",
    }


@pytest.mark.parametrize("pair", ["idle", "=3", ""])
def test_parse_set_pairs_rejects_malformed(pair: str) -> None:
    with pytest.raises(InvalidInput, match="expected key=value"):
        agent_state.parse_set_pairs([pair])


def test_apply_state_changes_keeps_plain_labels_and_deletes_last() -> None:
    labels = agent_state.apply_state_changes(
        ["gt:agent", "idle:4", "pinned"],
        set_values={"idle": "9", "backoff": "5m"},
        delete=["backoff", "missing"],
    )

    assert labels == ("pinned", "gt:agent", "idle:9")


def test_increment_treats_garbage_as_zero() -> None:
    assert agent_state.apply_state_changes(["idle:lots"], incr="idle") == ("idle:1",)


def test_modify_state_round_trips_through_labels(tmp_path: Path) -> None:
    bd, beads = _beads(tmp_path)
    bd.seed("hq-deacon", issue_type="agent", labels=["gt:agent", "idle:1"])

    state = agent_state.modify_state(
        beads, "hq-deacon", incr="idle", set_values={"last_activity": "2026-10-19T08:00:00Z"}
    )

    assert state == {"gt": "agent", "idle": "2", "last_activity": "2026-10-19T08:00:00Z"}
    assert agent_state.read_state(beads, "hq-deacon") == state
    assert bd.commands("update")[-1][:2] == ("update", "hq-deacon")


def test_modify_state_of_missing_bead(tmp_path: Path) -> None:
    _bd, beads = _beads(tmp_path)

    with pytest.raises(BeadNotFound):
        agent_state.modify_state(beads, "hq-nobody", incr="idle")
