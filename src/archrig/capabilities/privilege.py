"""Privilege elevation: acquired once up front, shared read-only afterwards."""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable, Sequence

from archrig.capabilities.exec import CommandRunner, ExecError, ExecResult
from archrig.errors import ApplyError, PreconditionError

logger = logging.getLogger(__name__)


class Elevation:
    """Handle for running root-level commands through sudo.

    ``acquire`` mirrors the provisioning preflight: refuse to run as root
    (unless allowed) and make sure ``sudo -v`` succeeds. After that the handle
    only reads its own state, so tasks on worker threads can share it.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        allow_root: bool = False,
        sudo: str = "sudo",
        geteuid: Callable[[], int] = os.geteuid,
    ) -> None:
        self._runner = runner
        self._allow_root = allow_root
        self._sudo = sudo
        self._geteuid = geteuid
        self._acquired = False
        self._is_root = False
        self._lock = threading.Lock()

    @property
    def acquired(self) -> bool:
        return self._acquired

    def acquire(self) -> None:
        with self._lock:
            if self._acquired:
                return
            if self._geteuid() == 0:
                if not self._allow_root:
                    raise PreconditionError(
                        "Don't run as root. Use a regular user with sudo privileges "
                        "(or set allow_root = true)."
                    )
                self._is_root = True
            else:
                try:
                    self._runner.run([self._sudo, "-v"], check=True)
                except (ExecError, ApplyError) as exc:
                    raise PreconditionError(f"Sudo access required: {exc}") from exc
            self._acquired = True
            logger.debug("privileges acquired (root=%s)", self._is_root)

    def wrap(self, argv: Sequence[str]) -> list[str]:
        """Return ``argv`` prefixed for elevated execution."""
        if not self._acquired:
            raise ApplyError("privileged operation requested before elevation was acquired")
        if self._is_root:
            return list(argv)
        return [self._sudo, "--", *argv]

    def run_elevated(
        self,
        argv: Sequence[str],
        *,
        timeout: float | None = None,
        check: bool = True,
    ) -> ExecResult:
        return self._runner.run(self.wrap(argv), timeout=timeout, check=check)
