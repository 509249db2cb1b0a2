from types import SimpleNamespace

from gastown.commands.town import cycle_target, run_town_next, run_town_prev
from gastown.session.names import with_town_suffix
from tests.gastown.helpers import FakeTmux, Harness

MAYOR = with_town_suffix("hq-mayor", "/towns/one")
DEACON = with_town_suffix("hq-deacon", "/towns/one")


def test_cycle_target_ignores_other_towns_and_agents() -> None:
    others = [with_town_suffix("hq-mayor", "/towns/two"), "gt-gastown-toast", "scratch"]

    assert cycle_target([MAYOR, *others], MAYOR, 1) is None
    assert cycle_target([MAYOR, DEACON, *others], MAYOR, 1) == DEACON
    assert cycle_target([MAYOR, DEACON], DEACON, 1) == MAYOR
    assert cycle_target([MAYOR, DEACON], "gt-gastown-toast", 1) is None


def test_town_next_switches_client(harness: Harness) -> None:
    tmux = FakeTmux(sessions=[MAYOR, DEACON], current=MAYOR)
    harness.process.tmux = tmux

    run_town_next(SimpleNamespace(session=None))

    assert tmux.calls[-1] == ("tmux", "switch-client", "-t", DEACON)


def test_town_prev_with_nothing_to_cycle(harness: Harness, capsys) -> None:
    tmux = FakeTmux(sessions=[MAYOR])
    harness.process.tmux = tmux

    run_town_prev(SimpleNamespace(session=MAYOR))

    assert "No other sessions in this town" in capsys.readouterr().out
    assert all(call[1] != "switch-client" for call in tmux.calls)
