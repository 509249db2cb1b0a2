"""Merge queue processing for a rig's refinery.

Polecats submit finished work as ``merge-request`` beads. The refinery
picks the best ready one, claims it, merges the branch under the rig's
merge slot and closes the request together with the issue it resolved.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from . import feed
from . import log as gt_log
from .bead_fields import MRFields
from .beads import STATUS_IN_PROGRESS, STATUS_OPEN, Beads, Issue, ListOptions, UpdateOptions
from .errors import CommandFailed, GastownError, InvalidInput
from .git import Git

MR_TYPE = "merge-request"
REMOTE = "origin"


@dataclass(frozen=True)
class MergeRequest:
    id: str
    branch: str
    target: str
    title: str = ""
    priority: int = 2
    created_at: str = ""
    source_issue: str | None = None
    worker: str | None = None
    rig: str | None = None
    agent_bead: str | None = None
    retry_count: int = 0
    convoy_id: str | None = None

    @classmethod
    def from_issue(cls, issue: Issue, default_target: str) -> MergeRequest:
        fields = MRFields.parse(issue.description)
        if fields is None or not fields.branch:
            raise InvalidInput(f"MR {issue.id} has no merge request fields")
        return cls(
            id=issue.id,
            branch=fields.branch,
            target=fields.target or default_target,
            title=issue.title,
            priority=issue.priority,
            created_at=issue.created_at,
            source_issue=fields.source_issue,
            worker=fields.worker,
            rig=fields.rig,
            agent_bead=fields.agent_bead,
            retry_count=fields.retry_count,
            convoy_id=fields.convoy_id,
        )

    def as_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "branch": self.branch,
            "target": self.target,
            "worker": self.worker,
            "priority": self.priority,
            "source_issue": self.source_issue,
        }


def queue_order(issue: Issue) -> tuple[int, str, str]:
    """Sort key: higher priority (lower number) first, then oldest."""
    return (issue.priority, issue.created_at or "~", issue.id)


def ready_merge_requests(beads: Beads, *, cwd: Path | None = None) -> list[Issue]:
    """Open, unblocked, unclaimed merge requests in processing order."""
    issues = beads.list(ListOptions(status=STATUS_OPEN, type=MR_TYPE), cwd=cwd)
    ready = [issue for issue in issues if not issue.is_blocked and not issue.assignee]
    return sorted(ready, key=queue_order)


def next_ready_mr(
    beads: Beads, default_branch: str, *, cwd: Path | None = None
) -> MergeRequest | None:
    ready = ready_merge_requests(beads, cwd=cwd)
    if not ready:
        return None
    return MergeRequest.from_issue(ready[0], default_branch)


def mr_by_id(beads: Beads, mr_id: str, default_branch: str) -> MergeRequest:
    return MergeRequest.from_issue(beads.show(mr_id), default_branch)


@dataclass(frozen=True)
class MergeResult:
    success: bool
    merge_commit: str = ""
    error: str = ""
    conflict: bool = False

    @property
    def status(self) -> str:
        return "success" if self.success else "failed"


class Engineer:
    """Performs merges for one rig from the refinery's clone."""

    def __init__(
        self,
        beads: Beads,
        git: Git,
        repo_dir: Path,
        rig: str,
        *,
        town_root: Path | None = None,
        delete_merged_branches: bool = True,
    ) -> None:
        self.beads = beads
        self.git = git
        self.repo_dir = repo_dir
        self.rig = rig
        self.town_root = town_root
        self.delete_merged_branches = delete_merged_branches

    @property
    def worker_id(self) -> str:
        return f"{self.rig}/refinery-cli"

    def claim(self, mr: MergeRequest) -> None:
        self.beads.update(
            mr.id, UpdateOptions(status=STATUS_IN_PROGRESS, assignee=self.worker_id)
        )

    def release(self, mr: MergeRequest) -> None:
        try:
            self.beads.update(mr.id, UpdateOptions(status=STATUS_OPEN, unassign=True))
        except GastownError as exc:
            gt_log.warning(f"could not release claim on {mr.id}: {exc}")

    def _merge(self, mr: MergeRequest) -> MergeResult:
        repo = self.repo_dir
        try:
            self.git.fetch(repo, REMOTE)
            self.git.checkout(repo, mr.target)
            self.git.pull_ff_only(repo, REMOTE, mr.target)
        except CommandFailed as exc:
            return MergeResult(success=False, error=f"preparing {mr.target}: {exc}")
        message = f"Merge {mr.branch} into {mr.target} ({mr.id})"
        try:
            self.git.merge_no_ff(repo, f"{REMOTE}/{mr.branch}", message)
        except CommandFailed as exc:
            try:
                self.git.merge_abort(repo)
            except CommandFailed as abort_exc:
                gt_log.warning(f"merge --abort failed in {repo}: {abort_exc}")
            conflict = "conflict" in f"{exc} {exc.stderr}".lower()
            return MergeResult(success=False, error=str(exc), conflict=conflict)
        try:
            self.git.push(repo, REMOTE, mr.target)
        except CommandFailed as exc:
            return MergeResult(success=False, error=f"push failed: {exc}")
        return MergeResult(success=True, merge_commit=self.git.rev_parse(repo, "HEAD"))

    def process(self, mr: MergeRequest) -> MergeResult:
        """Merge ``mr`` while holding the rig's merge slot."""
        holder = self.worker_id
        self.beads.merge_slot_ensure_exists()
        slot = self.beads.merge_slot_acquire(holder)
        if slot.error or (slot.holder and slot.holder != holder):
            return MergeResult(
                success=False, error=slot.error or f"merge slot held by {slot.holder}"
            )
        try:
            return self._merge(mr)
        finally:
            try:
                self.beads.merge_slot_release(holder)
            except GastownError as exc:
                gt_log.warning(f"could not release merge slot: {exc}")

    def handle_success(self, mr: MergeRequest, result: MergeResult) -> None:
        reason = f"Merged in {result.merge_commit}"
        self.beads.update_description_fields(
            mr.id, {"merge_commit": result.merge_commit, "close_reason": reason}
        )
        self.beads.close(mr.id, reason=reason)
        if mr.source_issue:
            try:
                self.beads.close(mr.source_issue, reason=reason)
            except GastownError as exc:
                gt_log.warning(f"could not close source issue {mr.source_issue}: {exc}")
        if self.delete_merged_branches:
            try:
                self.git.delete_remote_branch(self.repo_dir, REMOTE, mr.branch)
            except CommandFailed as exc:
                gt_log.warning(f"could not delete merged branch {mr.branch}: {exc}")
        self._event(feed.EVENT_MERGED, mr, {"commit": result.merge_commit})

    def handle_failure(self, mr: MergeRequest, result: MergeResult) -> None:
        kind = "conflict" if result.conflict else "error"
        try:
            self.beads.comment(mr.id, f"Merge failed ({kind}): {result.error}")
        except GastownError as exc:
            gt_log.debug(f"could not comment on {mr.id}: {exc}")
        self._event(
            feed.EVENT_MERGE_FAILED, mr, {"error": result.error, "conflict": result.conflict}
        )

    def _event(self, event_type: str, mr: MergeRequest, extra: dict[str, object]) -> None:
        if self.town_root is None:
            return
        payload: dict[str, object] = {"mr": mr.id, "branch": mr.branch, "rig": self.rig}
        payload.update(extra)
        feed.log_event(self.town_root, event_type, f"{self.rig}/refinery", payload)

    def run(self, mr: MergeRequest) -> MergeResult:
        """Claim, merge and settle ``mr``; a failed merge releases the claim."""
        self.claim(mr)
        try:
            result = self.process(mr)
        except GastownError:
            self.release(mr)
            raise
        if result.success:
            self.handle_success(mr, result)
        else:
            self.handle_failure(mr, result)
            self.release(mr)
        return result
