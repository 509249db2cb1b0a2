"""Git operations driven through a ``Runner`` (local shell or SSH)."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .errors import CommandFailed
from .runner import Runner


def parse_branch_list(output: str) -> list[str]:
    """Parse ``git branch --list`` output.

    Example:
        >>> parse_branch_list("  main\\n* polecat/toast-k2\\n\\n")
        ['main', 'polecat/toast-k2']
    """
    branches: list[str] = []
    for line in output.splitlines():
        branch = line.strip()
        if branch.startswith("* ") or branch.startswith("+ "):
            branch = branch[2:].strip()
        if branch:
            branches.append(branch)
    return branches


def _parse_count(output: str) -> int:
    try:
        return int(output.strip() or "0")
    except ValueError:
        return 0


@dataclass(frozen=True)
class WorkStatus:
    """Local state that a non-nuclear polecat removal must not destroy."""

    has_changes: bool
    stash_count: int
    unpushed_count: int

    def summary(self) -> str:
        """Describe what would be lost.

        Example:
            >>> WorkStatus(True, 0, 2).summary()
            'uncommitted changes, 2 unpushed commit(s)'
        """
        parts: list[str] = []
        if self.has_changes:
            parts.append("uncommitted changes")
        if self.stash_count:
            parts.append(f"{self.stash_count} stash(es)")
        if self.unpushed_count:
            parts.append(f"{self.unpushed_count} unpushed commit(s)")
        return ", ".join(parts) or "clean"


class Git:
    """Git commands executed in a repository directory via ``runner``."""

    def __init__(self, runner: Runner, git_path: str = "git") -> None:
        self.runner = runner
        self.git_path = git_path

    def _argv(self, *args: str) -> list[str]:
        return [self.git_path, *args]

    def fetch(self, repo_dir: str | Path, remote: str = "origin") -> None:
        self.runner.run(self._argv("fetch", remote), cwd=repo_dir)

    def worktree_add(
        self, repo_dir: str | Path, path: str | Path, branch: str, start_point: str
    ) -> None:
        """Create ``path`` on a new ``branch`` started at ``start_point``."""
        self.runner.run(
            self._argv("worktree", "add", "-b", branch, str(path), start_point), cwd=repo_dir
        )

    def worktree_remove(
        self, repo_dir: str | Path, path: str | Path, *, force: bool = False
    ) -> None:
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))
        self.runner.run(self._argv(*args), cwd=repo_dir)

    def worktree_prune(self, repo_dir: str | Path) -> None:
        self.runner.run(self._argv("worktree", "prune"), cwd=repo_dir)

    def current_branch(self, repo_dir: str | Path) -> str:
        return self.runner.output(
            self._argv("rev-parse", "--abbrev-ref", "HEAD"), cwd=repo_dir
        ).strip()

    def clone(self, url: str, dest: str | Path) -> None:
        self.runner.run(self._argv("clone", url, str(dest)))

    def clone_with_branch(self, url: str, dest: str | Path, branch: str) -> None:
        self.runner.run(self._argv("clone", "-b", branch, url, str(dest)))

    def clone_bare(self, url: str, dest: str | Path) -> None:
        self.runner.run(self._argv("clone", "--bare", url, str(dest)))

    def list_branches(self, repo_dir: str | Path, pattern: str | None = None) -> list[str]:
        args = ["branch", "--list"]
        if pattern:
            args.append(pattern)
        return parse_branch_list(self.runner.output(self._argv(*args), cwd=repo_dir))

    def delete_branch(self, repo_dir: str | Path, branch: str, *, force: bool = False) -> None:
        self.runner.run(self._argv("branch", "-D" if force else "-d", branch), cwd=repo_dir)

    def check_uncommitted_work(self, repo_dir: str | Path) -> WorkStatus:
        """Report changes, stashes and unpushed commits.

        Only ``git status`` failing is an error; stash and upstream lookups
        that fail count as zero.
        """
        status = self.runner.output(self._argv("status", "--porcelain"), cwd=repo_dir)
        try:
            stash = self.runner.output(self._argv("stash", "list"), cwd=repo_dir)
        except CommandFailed:
            stash = ""
        try:
            unpushed = self.runner.output(
                self._argv("rev-list", "--count", "@{u}..HEAD"), cwd=repo_dir
            )
        except CommandFailed:
            unpushed = "0"
        return WorkStatus(
            has_changes=bool(status.strip()),
            stash_count=sum(1 for line in stash.splitlines() if line.strip()),
            unpushed_count=_parse_count(unpushed),
        )

    def count_commits_behind(self, repo_dir: str | Path, ref: str) -> int:
        return _parse_count(
            self.runner.output(self._argv("rev-list", "--count", f"HEAD..{ref}"), cwd=repo_dir)
        )

    def checkout(self, repo_dir: str | Path, ref: str) -> None:
        self.runner.run(self._argv("checkout", ref), cwd=repo_dir)

    def pull_ff_only(self, repo_dir: str | Path, remote: str, branch: str) -> None:
        self.runner.run(self._argv("pull", "--ff-only", remote, branch), cwd=repo_dir)

    def merge_no_ff(self, repo_dir: str | Path, ref: str, message: str) -> None:
        self.runner.run(self._argv("merge", "--no-ff", "-m", message, ref), cwd=repo_dir)

    def merge_abort(self, repo_dir: str | Path) -> None:
        self.runner.run(self._argv("merge", "--abort"), cwd=repo_dir)

    def push(self, repo_dir: str | Path, remote: str, refspec: str) -> None:
        self.runner.run(self._argv("push", remote, refspec), cwd=repo_dir)

    def delete_remote_branch(self, repo_dir: str | Path, remote: str, branch: str) -> None:
        self.runner.run(self._argv("push", remote, "--delete", branch), cwd=repo_dir)

    def rev_parse(self, repo_dir: str | Path, ref: str) -> str:
        return self.runner.output(self._argv("rev-parse", ref), cwd=repo_dir).strip()
