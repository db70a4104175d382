"""
Invocation of the ``forge`` executable and parsing of its JSON output.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Any, Optional

from ..config import get_forge_path
from ..errors import BuildError, Diagnostic

logger = logging.getLogger(__name__)

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> list[str]:
    return _ANSI_RE.sub("", text).splitlines()


async def run_forge(
    args: list[str],
    forge: Optional[str] = None,
    cwd: Optional[Path] = None,
    env: Optional[dict[str, str]] = None,
) -> str:
    """
    Run ``forge <args>`` and return its stdout.

    A non-zero exit with no stdout is a build failure; with ``--format-json``
    forge still prints diagnostics to stdout when compilation fails, so
    that case is left to ``parse_build_output``.
    """
    command = [forge or get_forge_path(), *args]
    logger.debug("running %s", " ".join(command))
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd) if cwd else None,
            env=env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise BuildError("forge not found", command=command, diagnostics=[]) from exc
    stdout, stderr = await proc.communicate()
    text = stdout.decode("utf-8", errors="replace")
    if proc.returncode != 0 and not text.strip():
        stderr_lines = strip_ansi(stderr.decode("utf-8", errors="replace"))
        raise BuildError(
            "forge failed",
            command=command,
            returncode=proc.returncode,
            stderr=stderr_lines,
            diagnostics=[Diagnostic("error", line) for line in stderr_lines if line.strip()],
        )
    return text


def parse_diagnostics(errors: list[dict[str, Any]]) -> list[Diagnostic]:
    return [
        Diagnostic(
            severity=str(e.get("severity", "error")),
            message=e.get("formattedMessage") or e.get("message", ""),
        )
        for e in errors
    ]


def parse_build_output(text: str) -> dict[str, Any]:
    """
    Decode ``forge build --format-json`` output.

    Raises:
        BuildError: If any diagnostic has ``error`` severity (warnings are ignored)
    """
    start = text.find("{")
    if start < 0:
        raise BuildError("expected forge json output", output=text[:500], diagnostics=[])
    output = json.loads(text[start:])
    diagnostics = parse_diagnostics(output.get("errors") or [])
    if any(d.is_error for d in diagnostics):
        raise BuildError("compile error", diagnostics=diagnostics)
    for d in diagnostics:
        logger.debug("forge %s: %s", d.severity, d.message.strip().splitlines()[0] if d.message else "")
    return output
