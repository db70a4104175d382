"""
Line sinks for subprocess output and pretty-printed info.

A sink spec is ``True`` (console), ``None``/``False`` (discard), a
callable taking one line, or a file path (appended to).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Callable, Optional, TextIO, Union

import click

SinkSpec = Union[bool, None, Callable[[str], object], str, os.PathLike]


class LineSink:
    def __init__(self, spec: SinkSpec = None, *, err: bool = False) -> None:
        self.spec = spec
        self._err = err
        self._file: Optional[TextIO] = None
        self._fn: Optional[Callable[[str], object]] = None
        if spec is True:
            self._fn = self._echo
        elif callable(spec):
            self._fn = spec
        elif isinstance(spec, (str, os.PathLike)):
            path = Path(spec)
            path.parent.mkdir(parents=True, exist_ok=True)
            self._file = path.open("a", encoding="utf-8")
            self._fn = self._write
        elif spec not in (None, False):
            raise TypeError(f"Unsupported log sink: {spec!r}")

    @property
    def enabled(self) -> bool:
        return self._fn is not None

    def _echo(self, line: str) -> None:
        click.echo(line, err=self._err)

    def _write(self, line: str) -> None:
        assert self._file is not None
        self._file.write(click.unstyle(line) + "\n")
        self._file.flush()

    def __call__(self, line: str) -> None:
        if self._fn is not None:
            self._fn(line)

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            self._fn = None
