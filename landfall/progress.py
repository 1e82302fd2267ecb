"""Operator-facing progress reporting for waiting phases.

Each polling loop announces itself once, emits one tick per attempt and a
final ``done`` so an operator can tell "still polling" from "hung". The
reporting policy is separate from the polling policy: loops accept any
``Progress`` and tests pass a recording one.
"""

from __future__ import annotations

from typing import Protocol

from rich.console import Console


class Progress(Protocol):
    def begin(self, message: str) -> None: ...
    def tick(self) -> None: ...
    def done(self) -> None: ...


class ConsoleProgress:
    """Prints ``message`` followed by a dot per attempt, like a classic CLI spinner."""

    __slots__ = ("_console",)

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(stderr=True, highlight=False)

    def begin(self, message: str) -> None:
        self._console.print()
        self._console.print(f"[magenta]{message}[/magenta]", end="")

    def tick(self) -> None:
        self._console.print(".", end="")

    def done(self) -> None:
        self._console.print("done")


class NullProgress:
    __slots__ = ()

    def begin(self, message: str) -> None:
        pass

    def tick(self) -> None:
        pass

    def done(self) -> None:
        pass
