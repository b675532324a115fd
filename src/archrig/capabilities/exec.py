"""Subprocess seam shared by every capability."""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from archrig.errors import ApplyError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecResult:
    """Result envelope for subprocess execution."""

    argv: tuple[str, ...]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class ExecError(ApplyError):
    """Raised when a command returns non-zero in check mode."""

    def __init__(self, result: ExecResult):
        rendered = " ".join(result.argv)
        detail = (result.stderr or result.stdout).strip()
        message = f"command failed ({result.returncode}): {rendered}"
        if detail:
            message = f"{message}\n{detail}"
        super().__init__(message)
        self.result = result


class CommandTimeout(ApplyError):
    """Raised when a command outlives its task timeout."""

    def __init__(self, argv: Sequence[str], timeout: float):
        super().__init__(f"timeout after {timeout:g}s: {' '.join(argv)}")
        self.argv = tuple(argv)
        self.timeout = timeout


class CommandRunner:
    """Run external commands and return structured results.

    Capabilities never call :mod:`subprocess` directly; tests substitute a
    runner that records argv and replays canned results.
    """

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> ExecResult:
        logger.debug("exec: %s", " ".join(argv))
        try:
            completed = subprocess.run(
                list(argv),
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise CommandTimeout(argv, timeout or 0.0) from exc
        except FileNotFoundError as exc:
            raise ApplyError(f"command not found: {argv[0]}") from exc

        result = ExecResult(
            argv=tuple(argv),
            returncode=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
        )
        if check and not result.ok:
            raise ExecError(result)
        return result
