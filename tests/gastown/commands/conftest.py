from pathlib import Path

import pytest

import gastown.runner as runner
from tests.gastown.helpers import Harness, make_harness


@pytest.fixture
def harness(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Harness:
    """A town on disk with every external command routed to in-memory fakes."""
    built = make_harness(tmp_path)
    monkeypatch.setattr(runner, "_DEFAULT_COMMAND_RUNNER", built.process)
    monkeypatch.setenv("GT_TOWN_ROOT", str(tmp_path))
    return built
