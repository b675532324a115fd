"""Explicit run context handed to every task instead of ambient environment."""

from __future__ import annotations

import getpass
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from archrig.backup import BackupStore
from archrig.capabilities import (
    CommandRunner,
    Elevation,
    FileSystem,
    PackageManager,
    ServiceManager,
)
from archrig.settings import Settings


@dataclass(frozen=True)
class RunContext:
    """Who the run is for and which capabilities it may use."""

    home: Path
    user: str
    vt: int
    settings: Settings
    runner: CommandRunner
    elevation: Elevation
    fs: FileSystem
    packages: PackageManager
    services: ServiceManager
    backups: BackupStore
    variables: Mapping[str, str] = field(default_factory=dict)

    def template_vars(self) -> dict[str, str]:
        values = {"home": str(self.home), "user": self.user, "vt": str(self.vt)}
        values.update(self.variables)
        return values


def build_context(
    settings: Settings,
    *,
    home: Path | None = None,
    user: str | None = None,
    vt: int | None = None,
    runner: CommandRunner | None = None,
    variables: Mapping[str, str] | None = None,
) -> RunContext:
    """Wire the real capabilities together.

    Identity is read from the process exactly once, here; tasks only ever see
    the resulting context.
    """
    runner = runner or CommandRunner()
    if vt is None:
        raw_vt = os.environ.get("XDG_VTNR", "1")
        vt = int(raw_vt) if raw_vt.isdigit() else 1
    elevation = Elevation(runner, allow_root=settings.allow_root)
    fs = FileSystem(elevation)
    return RunContext(
        home=(home or Path.home()).resolve(),
        user=user or getpass.getuser(),
        vt=vt,
        settings=settings,
        runner=runner,
        elevation=elevation,
        fs=fs,
        packages=PackageManager(runner, elevation, fs, aur_helper=settings.aur_helper),
        services=ServiceManager(runner, elevation),
        backups=BackupStore(fs, enabled=settings.backup),
        variables=dict(variables or {}),
    )
