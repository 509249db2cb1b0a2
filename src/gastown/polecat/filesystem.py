"""Filesystem access for polecat homes, on this machine or over SSH."""

from __future__ import annotations

import base64
import shutil
from pathlib import Path
from typing import Protocol

from ..errors import CommandFailed
from ..runner import Runner, quote_remote_arg


class Filesystem(Protocol):
    def mkdir_p(self, path: str) -> None: ...

    def remove_all(self, path: str) -> None: ...

    def exists(self, path: str) -> bool: ...

    def is_dir(self, path: str) -> bool: ...

    def list_dir(self, path: str) -> list[str]: ...

    def read_text(self, path: str) -> str: ...

    def write_text(self, path: str, content: str) -> None: ...


class LocalFilesystem:
    def mkdir_p(self, path: str) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def remove_all(self, path: str) -> None:
        target = Path(path)
        if target.is_dir() and not target.is_symlink():
            shutil.rmtree(target)
        elif target.exists() or target.is_symlink():
            target.unlink()

    def exists(self, path: str) -> bool:
        return Path(path).exists()

    def is_dir(self, path: str) -> bool:
        return Path(path).is_dir()

    def list_dir(self, path: str) -> list[str]:
        target = Path(path)
        if not target.is_dir():
            return []
        return sorted(entry.name for entry in target.iterdir() if entry.is_dir())

    def read_text(self, path: str) -> str:
        return Path(path).read_text(encoding="utf-8")

    def write_text(self, path: str, content: str) -> None:
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")


class RemoteFilesystem:
    """POSIX commands over an SSH ``Runner``; assumes a Linux or macOS host."""

    def __init__(self, runner: Runner) -> None:
        self.runner = runner

    def _succeeds(self, argv: list[str]) -> bool:
        try:
            self.runner.run(argv)
        except CommandFailed:
            return False
        return True

    def mkdir_p(self, path: str) -> None:
        self.runner.run(["mkdir", "-p", path])

    def remove_all(self, path: str) -> None:
        self.runner.run(["rm", "-rf", path])

    def exists(self, path: str) -> bool:
        return self._succeeds(["test", "-e", path])

    def is_dir(self, path: str) -> bool:
        return self._succeeds(["test", "-d", path])

    def list_dir(self, path: str) -> list[str]:
        """Subdirectory names of ``path``; empty when it is missing."""
        script = f"cd {quote_remote_arg(path)} 2>/dev/null && ls -1 -p | sed -n 's:/$::p'"
        try:
            output = self.runner.output(["sh", "-c", script])
        except CommandFailed:
            return []
        return sorted(line.strip() for line in output.splitlines() if line.strip())

    def read_text(self, path: str) -> str:
        return self.runner.output(["cat", path])

    def write_text(self, path: str, content: str) -> None:
        # base64 keeps arbitrary content clear of shell quoting
        encoded = base64.b64encode(content.encode("utf-8")).decode("ascii")
        self.runner.run(["sh", "-c", f"echo {encoded} | base64 -d > {quote_remote_arg(path)}"])
