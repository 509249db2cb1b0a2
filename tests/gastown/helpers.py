# ruff: noqa: E402

from __future__ import annotations

import json
import shutil
import sys
import threading
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

ROOT = Path(__file__).resolve().parents[2]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from gastown import paths
from gastown.beads import READ_FLAGS
from gastown.routing import Route, find_beads_dir, write_routes
from gastown.runner import CommandRequest, CommandResult
from gastown.session.double import SessionDouble
from gastown.session.factory import SessionFactory
from gastown.sling import SlingContext
from gastown.workspace import Town

_VALUE_FLAGS = {"--body-file", "--actor", "--var", "-l"}


def write_json(path: Path, payload: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")


def make_town(
    root: Path,
    rigs: dict[str, str] | None = None,
    *,
    max_polecats: int = 0,
    rig_settings: dict[str, dict] | None = None,
) -> Town:
    """Lay out a town on disk with one ``.beads`` per rig and a routes table."""
    rigs = {"gastown": "gp"} if rigs is None else rigs
    write_json(paths.town_config_path(root), {"type": "town", "name": "t"})
    write_json(
        paths.rigs_config_path(root),
        {
            "version": 1,
            "rigs": {
                name: {"git_url": f"git@example.com:org/{name}.git", "beads": {"prefix": prefix}}
                for name, prefix in rigs.items()
            },
        },
    )
    write_json(paths.town_settings_path(root), {"max_polecats": max_polecats})
    (root / paths.BEADS_DIRNAME).mkdir(parents=True, exist_ok=True)
    routes = [Route(prefix="hq-", path="."), Route(prefix="hq-cv-", path=".")]
    for name, prefix in rigs.items():
        (root / name / paths.BEADS_DIRNAME).mkdir(parents=True, exist_ok=True)
        routes.append(Route(prefix=f"{prefix}-", path=name))
    write_routes(root, routes)
    for name, settings in (rig_settings or {}).items():
        write_json(paths.rig_settings_path(root, name), settings)
    return Town.load(root)


def _parse_args(tokens: Sequence[str]) -> tuple[list[str], dict[str, list[str]]]:
    positional: list[str] = []
    options: dict[str, list[str]] = {}
    index = 0
    while index < len(tokens):
        token = tokens[index]
        if token in _VALUE_FLAGS and index + 1 < len(tokens):
            options.setdefault(token.lstrip("-"), []).append(tokens[index + 1])
            index += 2
            continue
        if token.startswith("--"):
            key, sep, value = token[2:].partition("=")
            options.setdefault(key, []).append(value if sep else "true")
        else:
            positional.append(token)
        index += 1
    return positional, options


def _first(options: dict[str, list[str]], key: str) -> str | None:
    values = options.get(key)
    return values[-1] if values else None


@dataclass
class FakeDb:
    prefix: str
    issues: dict[str, dict] = field(default_factory=dict)
    deps: list[tuple[str, str, str]] = field(default_factory=list)
    comments: dict[str, list[str]] = field(default_factory=dict)
    slot_id: str = ""
    slot_holder: str = ""


@dataclass
class FakeCall:
    argv: tuple[str, ...]
    cwd: Path | None
    env: Mapping[str, str] | None = None

    @property
    def args(self) -> tuple[str, ...]:
        return tuple(arg for arg in self.argv[1:] if arg not in READ_FLAGS)


class FakeBd:
    """In-memory ``bd``: one database per directory, selected by the call's cwd."""

    def __init__(self, town: Town | None = None) -> None:
        self._lock = threading.Lock()
        self.dbs: dict[Path, FakeDb] = {}
        self.calls: list[FakeCall] = []
        self.formulas: set[str] = set()
        self.catalog: list[dict] = []
        self.wisp_vars: dict[str, dict[str, str]] = {}
        self.fail_updates: set[str] = set()
        self.fail_shows: set[str] = set()
        self._counter = 0
        if town is not None:
            self.add_db(town.root, "hq")
            for name in town.rig_names():
                self.add_db(town.rig_path(name), town.rig_prefix(name))

    def add_db(self, directory: Path, prefix: str) -> FakeDb:
        db = FakeDb(prefix=prefix)
        self.dbs[directory.resolve()] = db
        return db

    def db_for(self, bead_id: str) -> FakeDb:
        head = bead_id.split("-", 1)[0]
        for db in self.dbs.values():
            if db.prefix == head:
                return db
        raise KeyError(bead_id)

    def seed(self, bead_id: str, **fields: object) -> dict:
        """Insert an issue into the database owning its prefix."""
        with self._lock:
            issue = self._new_issue(bead_id, fields)
            self.db_for(bead_id).issues[bead_id] = issue
        return issue

    def issue(self, bead_id: str) -> dict:
        return self.db_for(bead_id).issues[bead_id]

    def _new_issue(self, bead_id: str, fields: dict) -> dict:
        self._counter += 1
        issue = {
            "id": bead_id,
            "title": bead_id,
            "description": "",
            "status": "open",
            "priority": 2,
            "issue_type": "task",
            "created_at": f"2026-01-01T00:{self._counter // 60:02d}:{self._counter % 60:02d}Z",
            "assignee": "",
            "labels": [],
            "parent": "",
            "blocked_by": [],
        }
        issue.update(fields)
        return issue

    def commands(self, verb: str) -> list[tuple[str, ...]]:
        return [call.args for call in self.calls if call.args and call.args[0] == verb]

    def run(self, request: CommandRequest) -> CommandResult:
        with self._lock:
            cwd = request.cwd.resolve() if request.cwd else None
            call = FakeCall(argv=request.argv, cwd=cwd, env=request.env)
            self.calls.append(call)
            db = self._db_at(cwd)
            if db is None:
                return self._fail(request, f"no beads database found in {cwd}")
            try:
                stdout = self._dispatch(db, list(call.args))
            except LookupError as exc:
                return self._fail(request, str(exc.args[0]))
        return CommandResult(argv=request.argv, returncode=0, stdout=stdout, stderr="")

    def _db_at(self, cwd: Path | None) -> FakeDb | None:
        """Database ``bd`` would open from ``cwd``: nearest ``.beads/``, redirect applied."""
        if cwd is None:
            return None
        beads_dir = find_beads_dir(cwd)
        if beads_dir is None:
            return None
        return self.dbs.get(beads_dir.parent)

    def _fail(self, request: CommandRequest, message: str) -> CommandResult:
        return CommandResult(argv=request.argv, returncode=1, stdout="", stderr=f"Error: {message}")

    def _get(self, db: FakeDb, bead_id: str) -> dict:
        issue = db.issues.get(bead_id)
        if issue is None:
            raise LookupError(f"no issue found matching '{bead_id}'")
        return issue

    def _payload(self, db: FakeDb, issue: dict) -> dict:
        payload = dict(issue)
        children = [item for item in db.issues.values() if item.get("parent") == issue["id"]]
        children.extend(
            db.issues[source]
            for source, target, _kind in db.deps
            if target == issue["id"] and source in db.issues
        )
        payload["dependents"] = [
            {"id": item["id"], "title": item["title"], "status": item["status"]}
            for item in children
        ]
        return payload

    def _dispatch(self, db: FakeDb, args: list[str]) -> str:
        positional, options = _parse_args(args)
        verb = positional[0] if positional else ""
        handler = getattr(self, f"_cmd_{verb.replace('-', '_')}", None)
        if handler is None:
            raise LookupError(f"unknown command {verb}")
        return handler(db, positional[1:], options)

    def _cmd_show(self, db: FakeDb, positional: list[str], options: dict) -> str:
        if positional[0] in self.fail_shows:
            raise LookupError(f"database is locked reading {positional[0]}")
        return json.dumps([self._payload(db, self._get(db, positional[0]))])

    def _cmd_list(self, db: FakeDb, positional: list[str], options: dict) -> str:
        status = _first(options, "status")
        kind = _first(options, "type")
        assignee = _first(options, "assignee")
        labels = [*options.get("label", []), *options.get("l", [])]
        found = []
        for issue in db.issues.values():
            if status and issue["status"] != status:
                continue
            if not status and issue["status"] == "closed" and "all" not in options:
                continue
            if kind and issue["issue_type"] != kind:
                continue
            if assignee and issue["assignee"] != assignee:
                continue
            if "no-assignee" in options and issue["assignee"]:
                continue
            if any(label not in issue["labels"] for label in labels):
                continue
            found.append(self._payload(db, issue))
        return json.dumps(found)

    def _cmd_create(self, db: FakeDb, positional: list[str], options: dict) -> str:
        bead_id = _first(options, "id")
        if bead_id is None:
            prefix = _first(options, "prefix") or db.prefix
            bead_id = f"{prefix}-{self._counter + 1}"
        if bead_id in db.issues:
            raise LookupError(f"issue {bead_id} already exists")
        description = ""
        body = _first(options, "body-file")
        if body:
            description = Path(body).read_text(encoding="utf-8")
        issue = self._new_issue(
            bead_id,
            {
                "title": _first(options, "title") or "",
                "issue_type": _first(options, "type") or "task",
                "priority": int(_first(options, "priority") or 2),
                "parent": _first(options, "parent") or "",
                "labels": list(options.get("labels", [])),
                "description": description,
            },
        )
        db.issues[bead_id] = issue
        return json.dumps(issue)

    def _cmd_update(self, db: FakeDb, positional: list[str], options: dict) -> str:
        bead_id = positional[0]
        if bead_id in self.fail_updates:
            raise LookupError(f"database is locked updating {bead_id}")
        issue = self._get(db, bead_id)
        for key in ("title", "status", "assignee", "notes"):
            value = _first(options, key)
            if value is not None:
                issue[key] = value
        if _first(options, "priority") is not None:
            issue["priority"] = int(_first(options, "priority") or 0)
        if "unassign" in options:
            issue["assignee"] = ""
        if "set-labels" in options:
            issue["labels"] = [label for label in options["set-labels"] if label]
        for label in options.get("add-label", []):
            if label not in issue["labels"]:
                issue["labels"].append(label)
        for label in options.get("remove-label", []):
            issue["labels"] = [item for item in issue["labels"] if item != label]
        body = _first(options, "body-file")
        if body:
            issue["description"] = Path(body).read_text(encoding="utf-8")
        return ""

    def _cmd_close(self, db: FakeDb, positional: list[str], options: dict) -> str:
        for bead_id in positional:
            issue = self._get(db, bead_id)
            issue["status"] = "closed"
            issue["close_reason"] = _first(options, "reason") or ""
        return ""

    def _cmd_reopen(self, db: FakeDb, positional: list[str], options: dict) -> str:
        self._get(db, positional[0])["status"] = "open"
        return ""

    def _cmd_dep(self, db: FakeDb, positional: list[str], options: dict) -> str:
        action = positional[0]
        if action == "add":
            db.deps.append((positional[1], positional[2], _first(options, "type") or "blocks"))
            return ""
        if action == "remove":
            db.deps = [dep for dep in db.deps if dep[:2] != (positional[1], positional[2])]
            return ""
        kind = _first(options, "type")
        target = positional[1]
        return json.dumps(
            [
                {"id": source}
                for source, dep_target, dep_kind in db.deps
                if dep_target == target and (kind is None or dep_kind == kind)
            ]
        )

    def _cmd_comments(self, db: FakeDb, positional: list[str], options: dict) -> str:
        self._get(db, positional[1])
        db.comments.setdefault(positional[1], []).append(positional[2])
        return ""

    def _cmd_label(self, db: FakeDb, positional: list[str], options: dict) -> str:
        action, bead_id, label = positional[:3]
        issue = self._get(db, bead_id)
        if action == "add" and label not in issue["labels"]:
            issue["labels"].append(label)
        elif action == "remove":
            issue["labels"] = [item for item in issue["labels"] if item != label]
        return ""

    def _cmd_cook(self, db: FakeDb, positional: list[str], options: dict) -> str:
        formula = positional[0]
        if formula not in self.formulas:
            raise LookupError(f"formula {formula} not found")
        return json.dumps({"id": formula, "title": formula, "issue_type": "molecule"})

    def _cmd_formula(self, db: FakeDb, positional: list[str], options: dict) -> str:
        if positional[1] not in self.formulas:
            raise LookupError(f"formula {positional[1]} not found")
        return f"{positional[1]}\n"

    def _cmd_mol(self, db: FakeDb, positional: list[str], options: dict) -> str:
        if positional[0] == "catalog":
            return json.dumps(self.catalog)
        proto = positional[1]
        known = self.formulas | {item["id"] for item in self.catalog}
        if proto not in known:
            raise LookupError(f"proto {proto} not found")
        self._counter += 1
        wisp_id = f"{db.prefix}-wisp-{self._counter}"
        db.issues[wisp_id] = self._new_issue(
            wisp_id, {"title": proto, "issue_type": "epic", "status": "open"}
        )
        variables = dict(item.partition("=")[::2] for item in options.get("var", []))
        self.wisp_vars[wisp_id] = variables
        return json.dumps(db.issues[wisp_id])

    def _cmd_merge_slot(self, db: FakeDb, positional: list[str], options: dict) -> str:
        action = positional[0]
        holder = _first(options, "holder") or ""
        if action == "check":
            if not db.slot_id:
                raise LookupError("merge slot not found")
        elif action == "create":
            db.slot_id = f"{db.prefix}-merge-slot"
        elif action == "acquire":
            if db.slot_holder and db.slot_holder != holder:
                return json.dumps(
                    {"id": db.slot_id, "available": False, "holder": db.slot_holder}
                )
            db.slot_holder = holder
        elif action == "release":
            if db.slot_holder == holder:
                db.slot_holder = ""
        return json.dumps(
            {"id": db.slot_id, "available": not db.slot_holder, "holder": db.slot_holder}
        )


class FakeGit:
    """``git`` stand-in that creates and removes worktree directories on disk."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.calls: list[tuple[tuple[str, ...], Path | None]] = []
        self.dirty: set[str] = set()
        self.unpushed: dict[str, int] = {}
        self.merge_error = ""
        self.head = "0a1b2c3d"

    def commands(self, *prefix: str) -> list[tuple[str, ...]]:
        return [argv[1:] for argv, _cwd in self.calls if argv[1 : 1 + len(prefix)] == prefix]

    def run(self, request: CommandRequest) -> CommandResult:
        argv = request.argv
        with self._lock:
            self.calls.append((argv, request.cwd))
        args = list(argv[1:])
        stdout = ""
        if args[:2] == ["worktree", "add"]:
            Path(args[4]).mkdir(parents=True, exist_ok=True)
        elif args[:2] == ["worktree", "remove"]:
            shutil.rmtree(args[-1], ignore_errors=True)
        elif args[:2] == ["status", "--porcelain"]:
            stdout = " M file.py\n" if str(request.cwd) in self.dirty else ""
        elif args[:2] == ["rev-list", "--count"]:
            stdout = f"{self.unpushed.get(str(request.cwd), 0)}\n"
        elif args[:1] == ["merge"] and args[1:2] == ["--no-ff"] and self.merge_error:
            return CommandResult(argv=argv, returncode=1, stdout="", stderr=self.merge_error)
        elif args[:1] == ["rev-parse"]:
            stdout = f"{self.head}\n"
        return CommandResult(argv=argv, returncode=0, stdout=stdout, stderr="")


class FakeTmux:
    """``tmux`` stand-in tracking session names only."""

    def __init__(self, sessions: Iterable[str] = (), current: str = "") -> None:
        self.sessions = list(sessions)
        self.current = current
        self.calls: list[tuple[str, ...]] = []

    def run(self, request: CommandRequest) -> CommandResult:
        argv = request.argv
        self.calls.append(argv)
        args = list(argv[1:])
        if args[0] == "list-sessions":
            return CommandResult(argv, 0, "".join(f"{name}\n" for name in self.sessions), "")
        if args[0] == "display-message":
            return CommandResult(argv, 0, f"{self.current}\n", "")
        if args[0] == "has-session":
            name = args[-1].lstrip("=")
            if name in self.sessions:
                return CommandResult(argv, 0, "", "")
            return CommandResult(argv, 1, "", f"can't find session: {name}")
        if args[0] == "new-session":
            self.sessions.append(args[args.index("-s") + 1])
        if args[0] == "kill-session":
            name = args[-1]
            if name not in self.sessions:
                return CommandResult(argv, 1, "", f"can't find session: {name}")
            self.sessions.remove(name)
        return CommandResult(argv, 0, "", "")


class FakeProcess:
    """Route each command to the fake for its executable."""

    def __init__(self, bd: FakeBd, git: FakeGit | None = None, tmux: FakeTmux | None = None):
        self.bd = bd
        self.git = git or FakeGit()
        self.tmux = tmux or FakeTmux()

    def run(self, request: CommandRequest) -> CommandResult | None:
        tool = request.argv[0]
        if tool == "bd":
            return self.bd.run(request)
        if tool == "git":
            return self.git.run(request)
        if tool == "tmux":
            return self.tmux.run(request)
        return None


@dataclass
class Harness:
    town: Town
    bd: FakeBd
    git: FakeGit
    sessions: SessionDouble
    factory: SessionFactory
    process: FakeProcess
    sleeps: list[float]

    def context(self, env: dict[str, str] | None = None) -> SlingContext:
        suffixes = iter(f"c{index:04d}" for index in range(1, 10_000))
        return SlingContext(
            self.town,
            sessions=self.factory,
            process_runner=self.process,
            env={"GT_ROLE": "mayor"} if env is None else env,
            new_convoy_suffix=lambda: next(suffixes),
        )


def make_harness(root: Path, **town_kwargs: object) -> Harness:
    town = make_town(root, **town_kwargs)  # type: ignore[arg-type]
    bd = FakeBd(town)
    bd.formulas.add("mol-polecat-work")
    git = FakeGit()
    process = FakeProcess(bd, git)
    sessions = SessionDouble(process_names=("claude", "node"))
    sleeps: list[float] = []
    factory = SessionFactory(town, local=sessions, process_runner=process, sleep=sleeps.append)
    return Harness(
        town=town,
        bd=bd,
        git=git,
        sessions=sessions,
        factory=factory,
        process=process,
        sleeps=sleeps,
    )


def start_session(harness: Harness, name: str) -> None:
    harness.sessions.start(name, None, "claude")
