"""
Console output sinks.

Sessions, validators and the scanner write human-readable progress text
and the raw device output to a console. This is separate from logging:
the console is what the user watches, logging is for diagnostics.

Several sessions may write at once during a scan, so implementations
must tolerate concurrent callers.
"""

import threading
from typing import Protocol

import click


class Console(Protocol):
    """Anything with write_line() and write()."""

    def write_line(self, text: str) -> None: ...

    def write(self, text: str) -> None: ...


class ClickConsole:
    """
    Console that writes through click.echo.

    Each call is written atomically with respect to other threads, so a
    status line from one session never lands inside another's.
    """

    def __init__(self, err: bool = False) -> None:
        self.err = err
        self._lock = threading.Lock()

    def write_line(self, text: str) -> None:
        with self._lock:
            click.echo(text, err=self.err)

    def write(self, text: str) -> None:
        with self._lock:
            click.echo(text, nl=False, err=self.err)


class NullConsole:
    """Discards everything."""

    def write_line(self, text: str) -> None:
        pass

    def write(self, text: str) -> None:
        pass
