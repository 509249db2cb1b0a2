"""Typed boundary over the ``bd`` issue-tracker binary.

Every call runs ``bd`` with an explicit working directory. Per-bead calls
resolve that directory through the town's route table, so the process
environment (``BEADS_DIR`` in particular) never decides which database is
touched.
"""

from __future__ import annotations

import json
import os
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from tempfile import NamedTemporaryFile

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from . import bead_fields
from . import log as gt_log
from .errors import (
    BeadNotFound,
    BeadsError,
    DaemonLegacy,
    InvalidInput,
    NotInstalled,
    PrefixMismatch,
    RouteNotFound,
)
from .routing import Router, bead_prefix
from .runner import CommandRequest, CommandRunner, run_with_runner

TOWN_PREFIX = "hq"
READ_FLAGS = ("--no-daemon", "--allow-stale")
SCRUBBED_ENV = ("BEADS_DIR", "BEADS_DB")

STATUS_OPEN = "open"
STATUS_HOOKED = "hooked"
STATUS_IN_PROGRESS = "in_progress"
STATUS_PINNED = "pinned"
STATUS_CLOSED = "closed"


def _clean_str(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value)


class IssueDep(BaseModel):
    """A dependency or dependent entry from ``bd show --json``."""

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = ""
    status: str = ""
    priority: int = 2
    issue_type: str = ""
    dependency_type: str = ""

    @field_validator("title", "status", "issue_type", "dependency_type", mode="before")
    @classmethod
    def _normalize_text(cls, value: object) -> str:
        return _clean_str(value)


class Issue(BaseModel):
    """Issue payload as returned by ``bd --json``.

    Example:
        >>> issue = Issue.model_validate({"id": "gp-1", "labels": ["a", "a", None]})
        >>> issue.labels
        ('a',)
    """

    model_config = ConfigDict(extra="ignore")

    id: str
    title: str = ""
    description: str = ""
    status: str = ""
    priority: int = 2
    issue_type: str = ""
    created_at: str = ""
    updated_at: str = ""
    parent: str = ""
    assignee: str = ""
    labels: tuple[str, ...] = ()
    blocked_by: tuple[str, ...] = ()
    blocked_by_count: int = 0
    dependencies: list[IssueDep] = Field(default_factory=list)
    dependents: list[IssueDep] = Field(default_factory=list)

    @field_validator(
        "title",
        "description",
        "status",
        "issue_type",
        "created_at",
        "updated_at",
        "parent",
        "assignee",
        mode="before",
    )
    @classmethod
    def _normalize_text(cls, value: object) -> str:
        if isinstance(value, str):
            return value
        return _clean_str(value)

    @field_validator("priority", "blocked_by_count", mode="before")
    @classmethod
    def _normalize_int(cls, value: object) -> object:
        if value is None or value == "":
            return 0
        return value

    @field_validator("labels", "blocked_by", mode="before")
    @classmethod
    def _normalize_list(cls, value: object) -> tuple[str, ...]:
        if not isinstance(value, (list, tuple)):
            return ()
        normalized: list[str] = []
        for entry in value:
            item = _clean_str(entry)
            if item and item not in normalized:
                normalized.append(item)
        return tuple(normalized)

    @property
    def is_blocked(self) -> bool:
        return bool(self.blocked_by) or self.blocked_by_count > 0

    def agent_fields(self) -> bead_fields.AgentFields | None:
        return bead_fields.parse_agent_fields(self.description)

    def attachment_fields(self) -> bead_fields.AttachmentFields | None:
        return bead_fields.parse_attachment_fields(self.description)


class MergeSlotStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = ""
    available: bool = False
    holder: str = ""
    waiters: list[str] = Field(default_factory=list)
    error: str = ""

    @field_validator("holder", "error", mode="before")
    @classmethod
    def _normalize_text(cls, value: object) -> str:
        return _clean_str(value)


class DaemonStatus(BaseModel):
    model_config = ConfigDict(extra="ignore")

    running: bool = False
    pid: int = 0
    uptime: str = ""


class DaemonHealth(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str = ""
    latency_ms: int = 0
    queue_size: int = 0


class DoctorCheck(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    status: str = ""
    message: str = ""


class DoctorReport(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: str = ""
    checks: list[DoctorCheck] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class MoleculeProto(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str = ""
    description: str = ""
    steps: list[str] = Field(default_factory=list)


@dataclass(frozen=True)
class CreateOptions:
    title: str
    type: str = "task"
    priority: int | None = None
    description: str | None = None
    parent: str | None = None
    labels: tuple[str, ...] = ()
    actor: str | None = None
    ephemeral: bool = False


@dataclass(frozen=True)
class ListOptions:
    status: str | None = None
    label: str | None = None
    labels: tuple[str, ...] = ()
    type: str | None = None
    priority: int | None = None
    parent: str | None = None
    assignee: str | None = None
    no_assignee: bool = False
    limit: int = 0
    all: bool = False


@dataclass(frozen=True)
class UpdateOptions:
    """Fields to change; ``None`` leaves a field alone."""

    title: str | None = None
    status: str | None = None
    priority: int | None = None
    description: str | None = None
    assignee: str | None = None
    unassign: bool = False
    notes: str | None = None
    set_labels: tuple[str, ...] | None = None
    add_labels: tuple[str, ...] = ()
    remove_labels: tuple[str, ...] = ()


def _is_not_found(detail: str) -> bool:
    lowered = detail.lower()
    return "not found" in lowered or "no issue found" in lowered


def _parse_json(raw: str, *, args: Sequence[str]) -> object:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise BeadsError(f"bd {' '.join(args)}: invalid JSON output: {exc}") from exc


def _as_issue(payload: object, *, args: Sequence[str]) -> Issue:
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        raise BeadsError(f"bd {' '.join(args)}: unexpected output")
    try:
        return Issue.model_validate(payload)
    except ValidationError as exc:
        raise BeadsError(f"bd {' '.join(args)}: invalid issue payload: {exc}") from exc


@contextmanager
def _body_file(description: str) -> Iterator[Path]:
    with NamedTemporaryFile("w", encoding="utf-8", suffix=".md", delete=False) as handle:
        handle.write(description)
        temp_path = Path(handle.name)
    try:
        yield temp_path
    finally:
        temp_path.unlink(missing_ok=True)


@dataclass
class Beads:
    """Client bound to a working directory and, optionally, a rig prefix.

    ``Beads.town(root)`` may only create ``hq-`` IDs; ``Beads.for_rig`` may
    also create IDs under the rig's prefix.
    """

    work_dir: Path
    town_root: Path | None = None
    rig_prefix: str | None = None
    process_runner: CommandRunner | None = field(default=None, repr=False)

    @classmethod
    def town(cls, town_root: Path, *, process_runner: CommandRunner | None = None) -> Beads:
        return cls(work_dir=town_root, town_root=town_root, process_runner=process_runner)

    @classmethod
    def for_rig(
        cls,
        town_root: Path,
        rig_path: Path,
        prefix: str,
        *,
        process_runner: CommandRunner | None = None,
    ) -> Beads:
        return cls(
            work_dir=rig_path,
            town_root=town_root,
            rig_prefix=prefix.rstrip("-"),
            process_runner=process_runner,
        )

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        for key in SCRUBBED_ENV:
            env.pop(key, None)
        return env

    def workdir_for(self, bead_id: str) -> Path:
        """Directory owning ``bead_id``; falls back to the bound directory."""
        router = Router(self.town_root or self.work_dir)
        try:
            return router.workdir(bead_id)
        except RouteNotFound as exc:
            gt_log.trace(f"bd routing fallback for {bead_id}: {exc}")
            return self.work_dir

    def run(
        self,
        args: Sequence[str],
        *,
        read: bool = False,
        cwd: Path | None = None,
        subject: str | None = None,
    ) -> str:
        """Run ``bd`` and return stdout, mapping failures to typed errors."""
        argv = ["bd", *(READ_FLAGS if read else ()), *args]
        request = CommandRequest(argv=tuple(argv), cwd=cwd or self.work_dir, env=self._env())
        gt_log.trace(f"bd ({request.cwd}): {' '.join(args)}")
        result = run_with_runner(request, runner=self.process_runner)
        if result is None:
            raise NotInstalled(
                "missing required command: bd",
                recovery_hint="install the beads CLI and make sure it is on PATH",
            )
        detail = (result.stderr or "").strip()
        stdout = result.stdout or ""
        failed = result.returncode != 0
        if not failed and read and not stdout.strip() and detail:
            failed = True
        if not failed:
            return stdout
        if "legacy database" in detail.lower():
            raise DaemonLegacy(
                f"bd {' '.join(args)}: {detail}",
                recovery_hint="run 'bd migrate --update-repo-id --yes' in the database directory",
            )
        if _is_not_found(detail) and subject:
            raise BeadNotFound(subject)
        message = f"bd {' '.join(args)}: {detail}" if detail else f"bd {' '.join(args)}: failed"
        raise BeadsError(message, stderr=result.stderr, returncode=result.returncode)

    def _json(
        self,
        args: Sequence[str],
        *,
        read: bool = False,
        cwd: Path | None = None,
        subject: str | None = None,
    ) -> object | None:
        raw = self.run(args, read=read, cwd=cwd, subject=subject).strip()
        if not raw:
            return None
        return _parse_json(raw, args=args)

    # Creation

    def _check_prefix(self, bead_id: str) -> None:
        prefix = bead_prefix(bead_id).rstrip("-")
        allowed = {TOWN_PREFIX}
        if self.rig_prefix:
            allowed.add(self.rig_prefix)
        if prefix not in allowed:
            expected = ", ".join(f"{item}-" for item in sorted(allowed))
            raise PrefixMismatch(
                f"cannot create '{bead_id}': prefix '{prefix}-' is not one of {expected}"
            )

    def _create(self, base: list[str], opts: CreateOptions, *, cwd: Path | None) -> Issue:
        args = [*base, f"--title={opts.title}"]
        if opts.type:
            args.append(f"--type={opts.type}")
        if opts.priority is not None:
            args.append(f"--priority={opts.priority}")
        if opts.parent:
            args.append(f"--parent={opts.parent}")
        if opts.ephemeral:
            args.append("--ephemeral")
        for label in opts.labels:
            args.append(f"--labels={label}")
        actor = opts.actor or os.environ.get("BD_ACTOR", "").strip()
        if actor:
            args.append(f"--actor={actor}")
        if opts.description:
            with _body_file(opts.description) as body:
                payload = self._json([*args, "--body-file", str(body)], cwd=cwd)
        else:
            payload = self._json(args, cwd=cwd)
        return _as_issue(payload, args=base)

    def create(self, opts: CreateOptions) -> Issue:
        """Create with an auto-generated ID under the bound directory's prefix."""
        return self._create(["create", "--json"], opts, cwd=None)

    def create_with_id(self, bead_id: str, opts: CreateOptions) -> Issue:
        self._check_prefix(bead_id)
        return self._create(
            ["create", "--json", f"--id={bead_id}"], opts, cwd=self.workdir_for(bead_id)
        )

    def create_with_prefix(self, prefix: str, opts: CreateOptions) -> Issue:
        normalized = prefix.rstrip("-")
        self._check_prefix(f"{normalized}-x")
        return self._create(
            ["create", "--json", f"--prefix={normalized}"],
            opts,
            cwd=self.workdir_for(f"{normalized}-x"),
        )

    # Reads

    def show(self, bead_id: str) -> Issue:
        args = ["show", bead_id, "--json"]
        payload = self._json(args, read=True, cwd=self.workdir_for(bead_id), subject=bead_id)
        if payload is None or payload == []:
            raise BeadNotFound(bead_id)
        return _as_issue(payload, args=args)

    def exists(self, bead_id: str) -> bool:
        try:
            self.show(bead_id)
        except BeadNotFound:
            return False
        return True

    def list(self, opts: ListOptions | None = None, *, cwd: Path | None = None) -> list[Issue]:
        opts = opts or ListOptions()
        args = ["list", "--json"]
        if opts.status:
            args.append(f"--status={opts.status}")
        if opts.label:
            args.append(f"--label={opts.label}")
        if opts.type:
            args.append(f"--type={opts.type}")
        for label in opts.labels:
            args.extend(["-l", label])
        if opts.priority is not None:
            args.append(f"--priority={opts.priority}")
        if opts.parent:
            args.append(f"--parent={opts.parent}")
        if opts.assignee:
            args.append(f"--assignee={opts.assignee}")
        if opts.no_assignee:
            args.append("--no-assignee")
        if opts.limit > 0:
            args.append(f"--limit={opts.limit}")
        if opts.all:
            args.append("--all")
        payload = self._json(args, read=True, cwd=cwd)
        if not isinstance(payload, list):
            return []
        return [_as_issue(item, args=args) for item in payload if isinstance(item, dict)]

    def tracked_by(self, bead_id: str) -> list[str]:
        """IDs of convoys that track ``bead_id``."""
        if self.town_root is None:
            return []
        args = ["dep", "list", bead_id, "--direction=up", "--type=tracks", "--json"]
        payload = self._json(args, read=True, cwd=self.town_root)
        if not isinstance(payload, list):
            return []
        tracked: list[str] = []
        for item in payload:
            if isinstance(item, dict) and isinstance(item.get("id"), str):
                tracked.append(item["id"])
        return tracked

    # Mutations

    def update(self, bead_id: str, opts: UpdateOptions) -> None:
        args = ["update", bead_id]
        if opts.title is not None:
            args.append(f"--title={opts.title}")
        if opts.status is not None:
            args.append(f"--status={opts.status}")
        if opts.priority is not None:
            args.append(f"--priority={opts.priority}")
        if opts.assignee is not None:
            args.append(f"--assignee={opts.assignee}")
        if opts.unassign:
            args.append("--unassign")
        if opts.notes:
            args.append(f"--notes={opts.notes}")
        if opts.set_labels is not None:
            if opts.set_labels:
                args.extend(f"--set-labels={label}" for label in opts.set_labels)
            else:
                args.append("--set-labels=")
        else:
            args.extend(f"--add-label={label}" for label in opts.add_labels)
            args.extend(f"--remove-label={label}" for label in opts.remove_labels)
        cwd = self.workdir_for(bead_id)
        if opts.description is None:
            self.run(args, cwd=cwd, subject=bead_id)
            return
        with _body_file(opts.description) as body:
            self.run([*args, "--body-file", str(body)], cwd=cwd, subject=bead_id)

    def update_description_fields(
        self, bead_id: str, updates: Mapping[str, str | None]
    ) -> str:
        """Rewrite ``key: value`` lines in a bead's description, keeping all others."""
        issue = self.show(bead_id)
        description = bead_fields.set_description_fields(issue.description, updates)
        self.update(bead_id, UpdateOptions(description=description))
        return description

    def close(
        self, *bead_ids: str, reason: str | None = None, session: str | None = None
    ) -> None:
        groups: dict[Path, list[str]] = {}
        for bead_id in bead_ids:
            groups.setdefault(self.workdir_for(bead_id), []).append(bead_id)
        session = session or os.environ.get("GT_SESSION_ID", "").strip() or None
        for cwd, ids in groups.items():
            args = ["close", *ids]
            if reason:
                args.append(f"--reason={reason}")
            if session:
                args.append(f"--session={session}")
            self.run(args, cwd=cwd, subject=ids[0] if len(ids) == 1 else None)

    def reopen(self, bead_id: str) -> None:
        self.run(["reopen", bead_id], cwd=self.workdir_for(bead_id), subject=bead_id)

    def add_dependency(self, issue: str, depends_on: str, *, dep_type: str | None = None) -> None:
        args = ["dep", "add", issue, depends_on]
        if dep_type:
            args.append(f"--type={dep_type}")
        self.run(args, cwd=self.workdir_for(issue), subject=issue)

    def remove_dependency(self, issue: str, depends_on: str) -> None:
        self.run(
            ["dep", "remove", issue, depends_on], cwd=self.workdir_for(issue), subject=issue
        )

    def label_add(self, bead_id: str, label: str) -> None:
        self.run(["label", "add", bead_id, label], cwd=self.workdir_for(bead_id), subject=bead_id)

    def label_remove(self, bead_id: str, label: str) -> None:
        self.run(
            ["label", "remove", bead_id, label], cwd=self.workdir_for(bead_id), subject=bead_id
        )

    def comment(self, bead_id: str, message: str) -> None:
        self.run(
            ["comments", "add", bead_id, message], cwd=self.workdir_for(bead_id), subject=bead_id
        )

    # Agent beads

    def create_or_reopen_agent_bead(
        self, bead_id: str, title: str, fields: bead_fields.AgentFields
    ) -> Issue:
        """Create the agent bead, or reopen and rewrite a closed one."""
        try:
            existing = self.show(bead_id)
        except BeadNotFound:
            existing = None
        if existing is None:
            return self.create_with_id(
                bead_id,
                CreateOptions(title=title, type="agent", description=fields.format()),
            )
        if existing.status == STATUS_CLOSED:
            self.reopen(bead_id)
        description = fields.apply_to(existing.description, clear_empty=True)
        self.update(bead_id, UpdateOptions(description=description, status=STATUS_OPEN))
        return self.show(bead_id)

    def set_hook_bead(self, agent_bead_id: str, hook_bead: str | None) -> None:
        self.update_description_fields(agent_bead_id, {"hook_bead": hook_bead})

    # Merge slot

    def _merge_slot(self, action: str, *extra: str) -> MergeSlotStatus:
        payload = self._json(["merge-slot", action, *extra, "--json"])
        if not isinstance(payload, dict):
            return MergeSlotStatus()
        return MergeSlotStatus.model_validate(payload)

    def merge_slot_create(self) -> str:
        return self._merge_slot("create").id

    def merge_slot_check(self) -> MergeSlotStatus | None:
        try:
            return self._merge_slot("check")
        except BeadsError as exc:
            if _is_not_found(exc.stderr):
                return None
            raise

    def merge_slot_ensure_exists(self) -> str:
        status = self.merge_slot_check()
        if status is not None and status.id:
            return status.id
        return self.merge_slot_create()

    def merge_slot_acquire(self, holder: str, *, add_waiter: bool = False) -> MergeSlotStatus:
        extra = [f"--holder={holder}"]
        if add_waiter:
            extra.append("--wait")
        return self._merge_slot("acquire", *extra)

    def merge_slot_release(self, holder: str) -> None:
        self._merge_slot("release", f"--holder={holder}")

    # Daemon and maintenance

    def daemon_start(self) -> None:
        self.run(["daemon", "--start"])

    def daemon_status(self) -> DaemonStatus:
        try:
            payload = self._json(["daemon", "--status", "--json"])
        except BeadsError:
            return DaemonStatus(running=False)
        if not isinstance(payload, dict):
            return DaemonStatus(running=False)
        return DaemonStatus.model_validate(payload)

    def daemon_health(self) -> DaemonHealth:
        payload = self._json(["daemon", "health", "--json"])
        if not isinstance(payload, dict):
            raise BeadsError("bd daemon health: unexpected output")
        return DaemonHealth.model_validate(payload)

    def migrate(self, *, update_repo_id: bool = False, yes: bool = False) -> None:
        args = ["migrate"]
        if update_repo_id:
            args.append("--update-repo-id")
        if yes:
            args.append("--yes")
        self.run(args)

    def doctor(self) -> DoctorReport:
        payload = self._json(["doctor", "--json"], read=True)
        if not isinstance(payload, dict):
            return DoctorReport()
        return DoctorReport.model_validate(payload)

    # Formulas and molecules

    def cook(self, formula: str) -> Issue:
        args = ["cook", formula, "--json"]
        payload = self._json(args, cwd=self.town_root)
        if payload is None:
            raise InvalidInput(f"formula '{formula}' produced no proto")
        return _as_issue(payload, args=args)

    def formula_exists(self, formula: str) -> bool:
        try:
            self.run(["formula", "show", formula], read=True, cwd=self.town_root)
        except BeadsError:
            return False
        return True

    def mol_wisp(
        self,
        proto: str,
        *,
        actor: str | None = None,
        variables: Mapping[str, str] | None = None,
        cwd: Path | None = None,
    ) -> Issue:
        args = ["mol", "wisp", proto]
        if actor:
            args.extend(["--actor", actor])
        for key, value in (variables or {}).items():
            args.extend(["--var", f"{key}={value}"])
        args.append("--json")
        return _as_issue(self._json(args, cwd=cwd), args=args)

    def mol_catalog(self) -> list[MoleculeProto]:
        try:
            payload = self._json(["mol", "catalog", "--json"], read=True)
        except BeadsError as exc:
            gt_log.debug(f"mol catalog unavailable: {exc}")
            return []
        if isinstance(payload, dict):
            payload = payload.get("protos")
        if not isinstance(payload, list):
            return []
        protos: list[MoleculeProto] = []
        for item in payload:
            if not isinstance(item, dict):
                continue
            try:
                protos.append(MoleculeProto.model_validate(item))
            except ValidationError:
                continue
        return protos
