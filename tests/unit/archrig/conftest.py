"""Fake system fixtures: no test here touches real packages, units or sudo."""

from __future__ import annotations

import contextlib
import errno
import io
import os
import shutil
import stat
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

import pytest

from archrig.backup import BackupStore
from archrig.capabilities import (
    CommandRunner,
    CommandTimeout,
    Elevation,
    ExecError,
    ExecResult,
    FileSystem,
    PackageManager,
    ServiceManager,
)
from archrig.context import RunContext
from archrig.settings import Settings


class FakeSystem(CommandRunner):
    """Command runner that simulates pacman, systemctl, sudo and coreutils.

    Package and unit state lives in memory; file commands (``install``, ``mv``,
    ``cp``, ``cat``, ``mkdir``, ``touch``, ``test``, ``stat``) act on the real
    paths, which tests keep under ``tmp_path``. Mutating pacman calls take a
    non-blocking database lock and fail when another one holds it.
    """

    def __init__(self) -> None:
        self.installed: set[str] = set()
        self.enabled: set[str] = set()
        self.calls: list[list[str]] = []
        self.sudo_ok = True
        self.failing: set[str] = set()
        self.hanging: set[str] = set()
        self.exit_codes: dict[tuple[str, ...], int] = {}
        self.db_lock = threading.Lock()
        self.install_delay = 0.0
        self._local = threading.local()

    @property
    def is_root(self) -> bool:
        return getattr(self._local, "root", False)

    @contextlib.contextmanager
    def as_root(self) -> Iterator[None]:
        """Run the enclosed block with the privileges ``sudo --`` commands get."""
        previous = self.is_root
        self._local.root = True
        try:
            yield
        finally:
            self._local.root = previous

    def commands(self, name: str) -> list[list[str]]:
        """Calls whose (unwrapped) program is ``name``."""
        return [c for c in (self._unwrap(call) for call in self.calls) if c and c[0] == name]

    @staticmethod
    def _unwrap(argv: list[str]) -> list[str]:
        if argv[:2] == ["sudo", "--"]:
            return argv[2:]
        return argv

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> ExecResult:
        full = list(argv)
        self.calls.append(full)
        cmd = self._unwrap(full)
        program = cmd[0]
        stdout = ""

        if program in self.hanging:
            raise CommandTimeout(full, timeout or 0.0)

        if program in self.failing:
            code = 1
        elif tuple(cmd) in self.exit_codes:
            code = self.exit_codes[tuple(cmd)]
        elif cmd[:2] == ["sudo", "-v"]:
            code = 0 if self.sudo_ok else 1
        elif full[:2] == ["sudo", "--"]:
            with self.as_root():
                code, stdout = self._simulate(cmd)
        else:
            code, stdout = self._simulate(cmd)

        result = ExecResult(argv=tuple(full), returncode=code, stdout=stdout, stderr="" if code == 0 else "boom")
        if check and not result.ok:
            raise ExecError(result)
        return result

    def _simulate(self, cmd: list[str]) -> tuple[int, str]:
        program, args = cmd[0], [a for a in cmd[1:] if a != "--"]
        if program == "pacman" and args[:1] == ["-Q"]:
            return (0 if args[1] in self.installed else 1), ""
        if program in ("pacman", "yay") and {"-S", "-Sy", "-U"} & set(args):
            # Real pacman refuses to start while another transaction holds db.lck.
            if not self.db_lock.acquire(blocking=False):
                return 1, ""
            try:
                time.sleep(self.install_delay)
                if "-S" in args:
                    self.installed.update(a for a in args if not a.startswith("-"))
            finally:
                self.db_lock.release()
            return 0, ""
        if program == "systemctl" and args[:1] == ["is-enabled"]:
            return (0 if args[-1] in self.enabled else 1), ""
        if program == "systemctl" and args[:1] == ["enable"]:
            self.enabled.add(args[-1])
            return 0, ""
        if program == "test" and args[:1] == ["-e"]:
            return (0 if Path(args[1]).exists() else 1), ""
        if program == "stat" and args[:2] == ["-c", "%a"]:
            target = Path(args[2])
            if not target.exists():
                return 1, ""
            return 0, f"{stat.S_IMODE(target.stat().st_mode):o}\n"
        if program == "mkdir":
            Path(args[-1]).mkdir(parents=True, exist_ok=True)
        elif program == "install":
            mode = int(args[args.index("-m") + 1], 8)
            src, dest = Path(args[-2]), Path(args[-1])
            shutil.copyfile(src, dest)
            os.chmod(dest, mode)
        elif program == "mv":
            os.replace(args[-2], args[-1])
        elif program == "cp":
            shutil.copy2(args[-2], args[-1])
        elif program == "cat":
            target = Path(args[-1])
            if not target.exists():
                return 1, ""
            return 0, target.read_text(encoding="utf-8")
        elif program == "touch":
            Path(args[-1]).touch()
        return 0, ""


@pytest.fixture
def fake_system() -> FakeSystem:
    return FakeSystem()


@pytest.fixture
def root_only_dir(tmp_path: Path, fake_system: FakeSystem, monkeypatch) -> Path:
    """A directory only root may look into, like ``/etc/sudoers.d`` (0750 root).

    Outside commands run through ``sudo --``, every ``os.stat`` and ``io.open``
    of a path below it fails with EACCES.
    """
    locked = tmp_path / "etc" / "sudoers.d"
    locked.mkdir(parents=True)
    real_stat, real_open = os.stat, io.open

    def denied(path: object) -> bool:
        if fake_system.is_root or not isinstance(path, (str, os.PathLike)):
            return False
        raw = os.fspath(path)
        if not isinstance(raw, str):
            return False
        target = Path(raw)
        return target != locked and target.is_relative_to(locked)

    def guarded_stat(path, *args, **kwargs):
        if denied(path):
            raise PermissionError(errno.EACCES, os.strerror(errno.EACCES), os.fspath(path))
        return real_stat(path, *args, **kwargs)

    def guarded_open(file, *args, **kwargs):
        if denied(file):
            raise PermissionError(errno.EACCES, os.strerror(errno.EACCES), os.fspath(file))
        return real_open(file, *args, **kwargs)

    monkeypatch.setattr(os, "stat", guarded_stat)
    monkeypatch.setattr(io, "open", guarded_open)
    return locked


@pytest.fixture
def home(tmp_path: Path) -> Path:
    path = tmp_path / "home" / "tester"
    path.mkdir(parents=True)
    return path


def build_fake_context(
    runner: CommandRunner,
    home: Path,
    *,
    settings: Settings | None = None,
    fs: FileSystem | None = None,
    clock: Callable | None = None,
) -> RunContext:
    settings = settings or Settings(state_dir=home / ".state")
    elevation = Elevation(runner, allow_root=settings.allow_root, geteuid=lambda: 1000)
    fs = fs or FileSystem(elevation)
    backups = BackupStore(fs, enabled=settings.backup, clock=clock) if clock else BackupStore(fs, enabled=settings.backup)
    return RunContext(
        home=home,
        user="tester",
        vt=1,
        settings=settings,
        runner=runner,
        elevation=elevation,
        fs=fs,
        packages=PackageManager(runner, elevation, fs, aur_helper=settings.aur_helper),
        services=ServiceManager(runner, elevation),
        backups=backups,
    )


@pytest.fixture
def make_ctx(fake_system: FakeSystem, home: Path) -> Callable[..., RunContext]:
    """Factory for a RunContext wired to ``fake_system``."""

    def factory(**kwargs) -> RunContext:
        runner = kwargs.pop("runner", fake_system)
        return build_fake_context(runner, home, **kwargs)

    return factory


@pytest.fixture
def ctx(make_ctx) -> RunContext:
    return make_ctx()
