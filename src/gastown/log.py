"""Leveled terminal logging for ``gt``.

Dispatch steps that fail without aborting a sling (a convoy that could not
be created, a nudge that did not land) report through ``warning``; those
lines go to stderr with a ``warning:`` tag so they read like ``io.warn``.
Progress and diagnostics go to stdout. ``GT_LOG_LEVEL`` or ``--log-level``
picks the threshold; ``NO_COLOR``, ``GT_NO_COLOR`` or ``--no-color`` turns
styling off.
"""

from __future__ import annotations

import os
import sys
from enum import IntEnum

from rich.console import Console
from rich.text import Text

LEVEL_ENV = "GT_LOG_LEVEL"
NO_COLOR_ENVS = ("NO_COLOR", "GT_NO_COLOR")


class LogLevel(IntEnum):
    TRACE = 10
    DEBUG = 20
    INFO = 30
    SUCCESS = 35
    WARNING = 40
    ERROR = 50


_STYLES = {
    LogLevel.TRACE: "dim",
    LogLevel.DEBUG: "cyan",
    LogLevel.INFO: "",
    LogLevel.SUCCESS: "green",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "bold red",
}
_TAGS = {LogLevel.WARNING: "warning: ", LogLevel.ERROR: "error: "}

LEVEL_NAMES = tuple(level.name.lower() for level in LogLevel)
_ALIASES = {"warn": LogLevel.WARNING}

_threshold: LogLevel | None = None
_no_color: bool | None = None


def parse_level(value: str | None) -> LogLevel:
    """Map a level name to ``LogLevel``; blanks and unknown names mean INFO.

    Example:
        >>> parse_level(" Debug "), parse_level("warn"), parse_level("loud")
        (<LogLevel.DEBUG: 20>, <LogLevel.WARNING: 40>, <LogLevel.INFO: 30>)
    """
    name = (value or "").strip().lower()
    if name in _ALIASES:
        return _ALIASES[name]
    if name in LEVEL_NAMES:
        return LogLevel[name.upper()]
    return LogLevel.INFO


def configured_level() -> LogLevel:
    global _threshold
    if _threshold is None:
        _threshold = parse_level(os.environ.get(LEVEL_ENV))
    return _threshold


def set_level(value: str | None) -> None:
    global _threshold
    _threshold = parse_level(value)


def set_no_color(value: bool) -> None:
    """Force styling off; ``False`` defers to the environment again."""
    global _no_color
    _no_color = True if value else None


def is_enabled(level: LogLevel) -> bool:
    return level >= configured_level()


def _color_disabled() -> bool:
    if _no_color is not None:
        return _no_color
    return any(os.environ.get(name) for name in NO_COLOR_ENVS)


def emit(level: LogLevel, message: str, *, style: str | None = None) -> None:
    if not is_enabled(level):
        return
    console = Console(
        file=sys.stderr if level >= LogLevel.WARNING else sys.stdout,
        soft_wrap=True,
        highlight=False,
        no_color=_color_disabled(),
    )
    console.print(Text(_TAGS.get(level, "") + message, style=style or _STYLES[level]))


def trace(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.TRACE, message, style=style)


def debug(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.DEBUG, message, style=style)


def info(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.INFO, message, style=style)


def success(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.SUCCESS, message, style=style)


def warning(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.WARNING, message, style=style)


def error(message: str, *, style: str | None = None) -> None:
    emit(LogLevel.ERROR, message, style=style)
