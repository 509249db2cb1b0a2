# ruff: noqa: E402

import builtins
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

import gastown.io as io
import gastown.log as gt_log

AGENT_ENV = ("GT_ROLE", "GT_RIG", "GT_POLECAT", "GT_CREW", "GT_TOWN_ROOT", "GT_SESSION_ID")


@pytest.fixture(autouse=True)
def _default_patches(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(io, "_use_questionary", lambda: False)
    for name in AGENT_ENV:
        monkeypatch.delenv(name, raising=False)

    def fail_input(prompt: str = "") -> str:
        raise AssertionError("prompted unexpectedly")

    monkeypatch.setattr(builtins, "input", fail_input)


@pytest.fixture(autouse=True)
def _reset_log_flags() -> Iterator[None]:
    yield
    gt_log.set_level(None)
    gt_log.set_no_color(False)
