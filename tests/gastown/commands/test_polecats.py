import json
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from gastown.commands.polecats import run_polecats_add, run_polecats_list, run_polecats_remove
from gastown.polecat import backend_for
from tests.gastown.helpers import Harness


def test_add_then_list_json(harness: Harness, capsys: pytest.CaptureFixture[str]) -> None:
    run_polecats_add(SimpleNamespace(rig="gastown", name=None, hook=None))
    assert "✓ Created polecat gastown/furiosa" in capsys.readouterr().out

    run_polecats_list(SimpleNamespace(rig="gastown", json=True))

    assert json.loads(capsys.readouterr().out) == [
        {
            "name": "furiosa",
            "running": False,
            "session": "gt-gastown-furiosa",
            "state": "spawning",
        }
    ]


def test_list_without_polecats(harness: Harness, capsys: pytest.CaptureFixture[str]) -> None:
    run_polecats_list(SimpleNamespace(rig="gastown", json=False))

    assert capsys.readouterr().out.strip() == "No polecats in rig 'gastown'."


def test_nuclear_remove_asks_first(harness: Harness, capsys: pytest.CaptureFixture[str]) -> None:
    run_polecats_add(SimpleNamespace(rig="gastown", name="toast", hook=None))
    args = SimpleNamespace(rig="gastown", name="toast", nuclear=True, yes=False, force=False)

    with patch("gastown.commands.polecats.confirm", return_value=False) as confirm:
        run_polecats_remove(args)

    confirm.assert_called_once()
    assert "Aborted." in capsys.readouterr().out
    assert (harness.town.root / "gastown" / "polecats" / "toast").is_dir()


def test_remove_with_uncommitted_work_dies(
    harness: Harness, capsys: pytest.CaptureFixture[str]
) -> None:
    run_polecats_add(SimpleNamespace(rig="gastown", name="toast", hook=None))
    backend = backend_for(harness.town, "gastown", process_runner=harness.process)
    harness.git.dirty.add(backend.clone_path("toast"))
    args = SimpleNamespace(rig="gastown", name="toast", nuclear=False, yes=False, force=False)

    with pytest.raises(SystemExit):
        run_polecats_remove(args)

    assert "uncommitted changes" in capsys.readouterr().err
    assert (harness.town.root / "gastown" / "polecats" / "toast").is_dir()


def test_remove_unknown_polecat(harness: Harness, capsys: pytest.CaptureFixture[str]) -> None:
    args = SimpleNamespace(rig="gastown", name="ghost", nuclear=False, yes=False, force=False)

    with pytest.raises(SystemExit):
        run_polecats_remove(args)

    assert "no polecat 'ghost' in rig 'gastown'" in capsys.readouterr().err
