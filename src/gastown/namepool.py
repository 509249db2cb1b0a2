"""Polecat name allocation from a themed pool."""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from . import log as gt_log

THEMES: dict[str, tuple[str, ...]] = {
    "mad-max": (
        "furiosa",
        "nux",
        "slit",
        "rictus",
        "toast",
        "capable",
        "cheedo",
        "dag",
        "angharad",
        "valkyrie",
        "morsov",
        "ace",
        "keeper",
        "organic",
        "corpus",
        "scrotus",
        "max",
        "immortan",
        "splendid",
        "glory",
    ),
    "minerals": (
        "obsidian",
        "quartz",
        "jasper",
        "onyx",
        "garnet",
        "basalt",
        "cobalt",
        "flint",
        "gypsum",
        "mica",
        "opal",
        "pyrite",
        "shale",
        "talc",
        "topaz",
        "zircon",
    ),
}
DEFAULT_THEME = "mad-max"


class NamePool:
    """Hands out the first pool name not in use.

    Once every base name is taken, names get a numeric suffix (``nux2``),
    so allocation never fails.

    Example:
        >>> NamePool(["a", "b"]).allocate({"a"})
        'b'
        >>> NamePool(["a"]).allocate_many(3, set())
        ['a', 'a2', 'a3']
    """

    def __init__(self, names: Sequence[str] | None = None, *, style: str = DEFAULT_THEME) -> None:
        custom = [name.strip() for name in (names or ()) if name and name.strip()]
        if custom:
            self.names: tuple[str, ...] = tuple(dict.fromkeys(custom))
        else:
            theme = THEMES.get(style)
            if theme is None:
                gt_log.warning(f"unknown name pool style '{style}', using {DEFAULT_THEME}")
                theme = THEMES[DEFAULT_THEME]
            self.names = theme

    def _candidates(self) -> Iterable[str]:
        yield from self.names
        suffix = 2
        while True:
            for name in self.names:
                yield f"{name}{suffix}"
            suffix += 1

    def allocate(self, in_use: Iterable[str]) -> str:
        taken = set(in_use)
        for candidate in self._candidates():
            if candidate not in taken:
                return candidate
        raise AssertionError("unreachable")

    def allocate_many(self, count: int, in_use: Iterable[str]) -> list[str]:
        """Allocate ``count`` pairwise-distinct names in one pass."""
        taken = set(in_use)
        allocated: list[str] = []
        for _ in range(max(count, 0)):
            name = self.allocate(taken)
            taken.add(name)
            allocated.append(name)
        return allocated
