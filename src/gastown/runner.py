"""Command execution locally or over SSH.

``SubprocessCommandRunner`` is the single seam that touches ``subprocess``;
``LocalRunner`` and ``SshRunner`` build on it and raise typed errors instead
of returning status codes.
"""

from __future__ import annotations

import subprocess
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from . import log as gt_log
from .errors import CommandFailed, NotInstalled


@dataclass(frozen=True)
class CommandRequest:
    """Typed command invocation request."""

    argv: tuple[str, ...]
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    capture_output: bool = True
    text: bool = True
    timeout_seconds: float | None = None
    input: str | None = None
    stdin: int | None = None


@dataclass(frozen=True)
class CommandResult:
    """Typed command execution result."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False


class CommandRunner(Protocol):
    """Process-execution interface; returns ``None`` when the executable is missing."""

    def run(self, request: CommandRequest) -> CommandResult | None: ...


class SubprocessCommandRunner:
    """Default command-runner adapter backed by subprocess."""

    def run(self, request: CommandRequest) -> CommandResult | None:
        run_kwargs: dict[str, object] = {
            "cwd": request.cwd,
            "env": request.env,
            "check": False,
        }
        if request.capture_output:
            run_kwargs["capture_output"] = True
            run_kwargs["text"] = request.text
        if request.timeout_seconds is not None:
            run_kwargs["timeout"] = request.timeout_seconds
        if request.input is not None:
            run_kwargs["input"] = request.input
            run_kwargs["text"] = True
        elif request.stdin is not None:
            run_kwargs["stdin"] = request.stdin
        try:
            completed = subprocess.run(list(request.argv), **run_kwargs)
        except FileNotFoundError:
            return None
        except subprocess.TimeoutExpired as exc:
            stdout = (exc.stdout or "") if isinstance(exc.stdout, str) else ""
            stderr = (exc.stderr or "") if isinstance(exc.stderr, str) else ""
            return CommandResult(
                argv=request.argv,
                returncode=124,
                stdout=stdout,
                stderr=stderr,
                timed_out=True,
            )

        stdout = completed.stdout if isinstance(completed.stdout, str) else ""
        stderr = completed.stderr if isinstance(completed.stderr, str) else ""
        return CommandResult(
            argv=request.argv,
            returncode=completed.returncode,
            stdout=stdout,
            stderr=stderr,
        )


_DEFAULT_COMMAND_RUNNER: CommandRunner = SubprocessCommandRunner()


def run_with_runner(
    request: CommandRequest, *, runner: CommandRunner | None = None
) -> CommandResult | None:
    """Execute a typed command request with the given runner."""
    active_runner = runner or _DEFAULT_COMMAND_RUNNER
    return active_runner.run(request)


def shell_escape(value: str) -> str:
    """Quote ``value`` for a POSIX shell.

    Example:
        >>> print(shell_escape("it's"))
        'it'"'"'s'
    """
    return "'" + value.replace("'", "'\"'\"'") + "'"


def quote_remote_arg(value: str) -> str:
    # Leave a leading ~/ outside the quotes so the remote shell expands it.
    if value.startswith("~/"):
        return "~/" + shell_escape(value[2:])
    return shell_escape(value)


def _command_failure(argv: Sequence[str], result: CommandResult) -> CommandFailed:
    output = (result.stderr or result.stdout or "").strip()
    command_text = " ".join(argv)
    message = f"command failed: {command_text}"
    if output:
        message = f"{message}\n{output}"
    return CommandFailed(message, stderr=result.stderr, returncode=result.returncode)


class Runner(Protocol):
    """Uniform command execution; ``cwd`` is interpreted on the executing host."""

    def run(self, argv: Sequence[str], *, cwd: str | Path | None = None) -> None: ...

    def output(
        self,
        argv: Sequence[str],
        *,
        cwd: str | Path | None = None,
        input: str | None = None,
    ) -> str: ...

    def combined_output(self, argv: Sequence[str], *, cwd: str | Path | None = None) -> str: ...

    def run_interactive(self, argv: Sequence[str]) -> None: ...


class _BaseRunner(ABC):
    def __init__(self, process_runner: CommandRunner | None = None) -> None:
        self._process_runner = process_runner

    @abstractmethod
    def _request(
        self, argv: Sequence[str], *, cwd: str | Path | None, input: str | None
    ) -> CommandRequest:
        """Build the request that runs ``argv`` on this runner's host."""

    def _execute(
        self,
        argv: Sequence[str],
        *,
        cwd: str | Path | None = None,
        input: str | None = None,
    ) -> CommandResult:
        request = self._request(argv, cwd=cwd, input=input)
        gt_log.trace(f"exec: {' '.join(request.argv)}")
        result = run_with_runner(request, runner=self._process_runner)
        if result is None:
            raise NotInstalled(f"missing required command: {request.argv[0]}")
        if result.returncode != 0:
            raise _command_failure(argv, result)
        return result

    def run(self, argv: Sequence[str], *, cwd: str | Path | None = None) -> None:
        self._execute(argv, cwd=cwd)

    def output(
        self,
        argv: Sequence[str],
        *,
        cwd: str | Path | None = None,
        input: str | None = None,
    ) -> str:
        return self._execute(argv, cwd=cwd, input=input).stdout

    def combined_output(self, argv: Sequence[str], *, cwd: str | Path | None = None) -> str:
        result = self._execute(argv, cwd=cwd)
        return f"{result.stdout}{result.stderr}"


class LocalRunner(_BaseRunner):
    """Run commands on this machine."""

    def _request(
        self, argv: Sequence[str], *, cwd: str | Path | None, input: str | None
    ) -> CommandRequest:
        return CommandRequest(
            argv=tuple(argv),
            cwd=Path(cwd) if cwd else None,
            input=input,
            stdin=subprocess.DEVNULL if input is None else None,
        )

    def run_interactive(self, argv: Sequence[str]) -> None:
        request = CommandRequest(argv=tuple(argv), capture_output=False)
        result = run_with_runner(request, runner=self._process_runner)
        if result is None:
            raise NotInstalled(f"missing required command: {argv[0]}")
        if result.returncode != 0:
            raise _command_failure(argv, result)


class SshRunner(_BaseRunner):
    """Run commands on a remote host through an SSH command prefix.

    ``ssh_cmd`` is the literal prefix, e.g. ``ssh -o ControlMaster=auto dev@box``.
    """

    def __init__(self, ssh_cmd: str, process_runner: CommandRunner | None = None) -> None:
        super().__init__(process_runner)
        self.ssh_cmd = ssh_cmd.strip()

    def remote_command(self, argv: Sequence[str], *, cwd: str | Path | None = None) -> str:
        """Build the ``sh -c`` payload that runs ``argv`` remotely."""
        if not argv:
            raise ValueError("argv must not be empty")
        parts: list[str] = []
        if cwd:
            parts.append(f"cd {quote_remote_arg(str(cwd))} &&")
        parts.append(argv[0])
        parts.extend(quote_remote_arg(arg) for arg in argv[1:])
        return f"{self.ssh_cmd} {shell_escape(' '.join(parts))}"

    def _request(
        self, argv: Sequence[str], *, cwd: str | Path | None, input: str | None
    ) -> CommandRequest:
        return CommandRequest(
            argv=("sh", "-c", self.remote_command(argv, cwd=cwd)),
            input=input,
            stdin=subprocess.DEVNULL if input is None else None,
        )

    def run_interactive(self, argv: Sequence[str]) -> None:
        inner = " ".join([argv[0], *(quote_remote_arg(arg) for arg in argv[1:])])
        full = f"{self.ssh_cmd} -t {shell_escape(inner)}"
        request = CommandRequest(argv=("sh", "-c", full), capture_output=False)
        result = run_with_runner(request, runner=self._process_runner)
        if result is None:
            raise NotInstalled("missing required command: sh")
        if result.returncode != 0:
            raise _command_failure(argv, result)
