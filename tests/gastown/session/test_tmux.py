import pytest

from gastown.errors import CommandFailed, SessionExists
from gastown.runner import CommandRequest, CommandResult, LocalRunner
from gastown.session.tmux import TmuxSessions
from tests.gastown.helpers import FakeTmux


def _tmux(fake: FakeTmux) -> TmuxSessions:
    return TmuxSessions(LocalRunner(fake), sleep=lambda _s: None)


def test_start_exists_and_stop() -> None:
    fake = FakeTmux()
    tmux = _tmux(fake)

    tmux.start("gt-gastown-toast", "/town/gastown", "claude")

    assert fake.calls[0] == (
        "tmux", "new-session", "-d", "-s", "gt-gastown-toast", "-c", "/town/gastown", "claude"
    )
    assert tmux.exists("gt-gastown-toast")
    assert not tmux.exists("gt-gastown-nux")
    tmux.stop("gt-gastown-toast")
    tmux.stop("gt-gastown-toast")
    assert tmux.list() == []


def test_local_ssh_is_exported_to_remote_agents() -> None:
    fake = FakeTmux()
    tmux = TmuxSessions(LocalRunner(fake), local_ssh="ssh me@laptop", sleep=lambda _s: None)

    tmux.start("gt-gastown-toast", None, "claude")

    assert fake.calls[0][-1] == "GT_LOCAL_SSH='ssh me@laptop' claude"
    assert "-c" not in fake.calls[0]


def test_nudge_types_literally_then_submits() -> None:
    fake = FakeTmux(sessions=["gt-gastown-toast"])

    _tmux(fake).nudge("gt-gastown-toast", "Work slung: gp-1")

    assert fake.calls == [
        ("tmux", "send-keys", "-t", "gt-gastown-toast", "-l", "Work slung: gp-1"),
        ("tmux", "send-keys", "-t", "gt-gastown-toast", "Escape"),
        ("tmux", "send-keys", "-t", "gt-gastown-toast", "Enter"),
    ]


class _FlakyEnter(FakeTmux):
    def __init__(self) -> None:
        super().__init__(sessions=["gt-gastown-toast"])
        self.enter_failures = 2

    def run(self, request: CommandRequest) -> CommandResult:
        if request.argv[-1] == "Enter" and self.enter_failures:
            self.enter_failures -= 1
            self.calls.append(request.argv)
            return CommandResult(request.argv, 1, "", "pane is busy")
        return super().run(request)


def test_nudge_retries_enter() -> None:
    fake = _FlakyEnter()
    sleeps: list[float] = []

    TmuxSessions(LocalRunner(fake), sleep=sleeps.append).nudge("gt-gastown-toast", "go")

    assert [argv[-1] for argv in fake.calls].count("Enter") == 3
    assert sleeps == [0.5, 0.1, 0.2, 0.2]


def test_errors_are_mapped() -> None:
    class _Duplicate(FakeTmux):
        def run(self, request: CommandRequest) -> CommandResult:
            if request.argv[1] == "new-session":
                return CommandResult(request.argv, 1, "", "duplicate session: gt-x")
            if request.argv[1] == "list-sessions":
                return CommandResult(request.argv, 1, "", "no server running on /tmp/tmux")
            return CommandResult(request.argv, 1, "", "unknown option")

    tmux = _tmux(_Duplicate())

    with pytest.raises(SessionExists):
        tmux.start("gt-x", None, "claude")
    assert tmux.list() == []
    with pytest.raises(CommandFailed, match="tmux send-keys: unknown option"):
        tmux.send("gt-x", "hi")


def test_is_running_checks_pane_command() -> None:
    fake = FakeTmux(sessions=["gt-gastown-toast"], current="node")
    tmux = _tmux(fake)

    assert tmux.is_running("gt-gastown-toast", "claude", "node")
    assert not tmux.is_running("gt-gastown-toast", "codex")
    assert not tmux.is_running("gt-gastown-toast")
