"""Bead-ID routing through ``routes.jsonl`` and one-hop redirect files.

Every database mutation for a bead runs with its cwd set to the directory
that owns the bead's ``.beads/``. The router never exports that choice as an
environment variable; ``BEADS_DIR`` in the caller's environment is ignored.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, ConfigDict, ValidationError

from . import paths
from .errors import InvalidInput, RedirectLoop, RouteNotFound

TOWN_PREFIX = "hq-"
CONVOY_PREFIX = "hq-cv-"


class Route(BaseModel):
    """One ``{"prefix": ..., "path": ...}`` line of the routes table.

    Example:
        >>> Route(prefix="gp-", path="gastown").prefix
        'gp-'
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    prefix: str
    path: str


MANDATORY_ROUTES = (Route(prefix=TOWN_PREFIX, path="."), Route(prefix=CONVOY_PREFIX, path="."))


def parse_routes(text: str, *, source: str = "routes.jsonl") -> list[Route]:
    routes: list[Route] = []
    for number, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        try:
            routes.append(Route.model_validate(json.loads(stripped)))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise InvalidInput(f"{source}:{number}: invalid route: {exc}") from exc
    return routes


def load_routes(town_root: Path) -> list[Route]:
    path = paths.routes_path(town_root)
    if not path.exists():
        return []
    return parse_routes(path.read_text(encoding="utf-8"), source=str(path))


def write_routes(town_root: Path, routes: list[Route]) -> None:
    """Write the routes table, one JSON object per line with a trailing newline."""
    path = paths.routes_path(town_root)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps({"prefix": route.prefix, "path": route.path}) for route in routes]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def ensure_mandatory_routes(routes: list[Route]) -> list[Route]:
    """Return ``routes`` with the ``hq-`` and ``hq-cv-`` town routes present."""
    known = {route.prefix for route in routes}
    missing = [route for route in MANDATORY_ROUTES if route.prefix not in known]
    return [*missing, *routes]


def bead_prefix(bead_id: str) -> str:
    """Return the dash-terminated prefix of ``bead_id``.

    Example:
        >>> bead_prefix("gp-abc")
        'gp-'
        >>> bead_prefix("nodash")
        ''
    """
    head, sep, _tail = bead_id.partition("-")
    if not sep or not head:
        return ""
    return f"{head}-"


def match_route(routes: list[Route], bead_id: str) -> Route | None:
    """Longest route prefix that ``bead_id`` starts with."""
    best: Route | None = None
    for route in routes:
        if not bead_id.startswith(route.prefix):
            continue
        if best is None or len(route.prefix) > len(best.prefix):
            best = route
    return best


def find_routes_file(start: Path) -> Path | None:
    """Nearest ``.beads/routes.jsonl`` walking from ``start`` toward ``/``."""
    current = start.resolve()
    for candidate in (current, *current.parents):
        routes_file = paths.routes_path(candidate)
        if routes_file.is_file():
            return routes_file
    return None


def resolve_beads_dir(directory: Path) -> Path:
    """Return the canonical ``.beads/`` for ``directory``, following one redirect.

    The redirect target is relative to ``directory``. A target that itself
    holds a redirect raises ``RedirectLoop``.
    """
    beads_dir = directory / paths.BEADS_DIRNAME
    redirect = beads_dir / paths.REDIRECT_FILENAME
    if not redirect.is_file():
        return beads_dir.resolve()
    target_text = redirect.read_text(encoding="utf-8").strip()
    if not target_text:
        raise InvalidInput(f"empty redirect file: {redirect}")
    target = (directory / target_text).resolve()
    if target.name != paths.BEADS_DIRNAME and (target / paths.BEADS_DIRNAME).is_dir():
        target = target / paths.BEADS_DIRNAME
    if (target / paths.REDIRECT_FILENAME).is_file():
        raise RedirectLoop(
            f"redirect chain exceeds one hop: {redirect} -> {target}",
            recovery_hint=f"point {redirect} at the canonical .beads directory",
        )
    return target


def find_beads_dir(start: Path) -> Path | None:
    """Nearest ``.beads/`` walking up from ``start``, redirect applied."""
    current = start.resolve()
    for candidate in (current, *current.parents):
        if (candidate / paths.BEADS_DIRNAME).is_dir():
            return resolve_beads_dir(candidate)
    return None


@dataclass(frozen=True)
class Router:
    """Resolve bead IDs to the directory whose database stores them."""

    start: Path

    def routes_file(self) -> Path:
        routes_file = find_routes_file(self.start)
        if routes_file is None:
            raise RouteNotFound(f"no routes.jsonl found above {self.start}")
        return routes_file

    def town_root(self) -> Path:
        return self.routes_file().parent.parent

    def route_for(self, bead_id: str) -> tuple[Path, Route]:
        routes_file = self.routes_file()
        town_root = routes_file.parent.parent
        routes = load_routes(town_root)
        route = match_route(routes, bead_id)
        if route is None:
            raise RouteNotFound(
                f"no route for bead '{bead_id}' (prefix '{bead_prefix(bead_id)}')",
                recovery_hint=f"add the prefix to {routes_file}",
            )
        return town_root, route

    def resolve(self, bead_id: str | None = None) -> Path:
        """Absolute path of the ``.beads/`` that stores ``bead_id``.

        Without a bead ID, returns the nearest database above ``start``.
        """
        if bead_id is None:
            found = find_beads_dir(self.start)
            if found is None:
                raise RouteNotFound(f"no .beads directory found above {self.start}")
            return found
        town_root, route = self.route_for(bead_id)
        town_resolved = town_root.resolve()
        directory = (town_root / route.path).resolve()
        if directory != town_resolved and town_resolved not in directory.parents:
            raise RouteNotFound(f"route '{route.prefix}' escapes the town root: {route.path}")
        if not (directory / paths.BEADS_DIRNAME).is_dir():
            raise RouteNotFound(
                f"route '{route.prefix}' points at {directory} which has no .beads directory"
            )
        return resolve_beads_dir(directory)

    def workdir(self, bead_id: str | None = None) -> Path:
        """Directory to use as cwd for commands touching ``bead_id``."""
        return self.resolve(bead_id).parent
