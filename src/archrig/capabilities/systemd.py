"""Service manager capability backed by systemctl."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from archrig.capabilities.exec import CommandRunner

if TYPE_CHECKING:
    from archrig.capabilities.privilege import Elevation

logger = logging.getLogger(__name__)


class ServiceManager:
    def __init__(self, runner: CommandRunner, elevation: Elevation) -> None:
        self._runner = runner
        self._elevation = elevation

    def is_enabled(self, unit: str) -> bool:
        return self._runner.run(["systemctl", "is-enabled", "--quiet", "--", unit], check=False).ok

    def enable(self, unit: str, *, timeout: float | None = None) -> None:
        logger.info("Enabling %s", unit)
        self._elevation.run_elevated(["systemctl", "enable", "--", unit], timeout=timeout)

    def daemon_reload(self, *, timeout: float | None = None) -> None:
        logger.info("Reloading systemd daemon")
        self._elevation.run_elevated(["systemctl", "daemon-reload"], timeout=timeout)
