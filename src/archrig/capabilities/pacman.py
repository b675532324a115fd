"""Package manager capability: pacman, pacman-key and an AUR helper."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Sequence
from typing import TYPE_CHECKING

from archrig.capabilities.exec import CommandRunner, ExecResult

if TYPE_CHECKING:
    from archrig.capabilities.fs import FileSystem
    from archrig.capabilities.privilege import Elevation
    from archrig.reconcile.types import RepositorySpec

logger = logging.getLogger(__name__)

_SECTION_RE = re.compile(r"^\s*\[(?P<name>[^\]]+)\]\s*$")
_COMMENTED_SECTION_RE = re.compile(r"^\s*#\s*\[(?P<name>[^\]]+)\]\s*$")


def has_section(text: str, name: str) -> bool:
    """True when ``text`` holds an uncommented ``[name]`` header."""
    for line in text.splitlines():
        match = _SECTION_RE.match(line)
        if match and match.group("name").strip() == name:
            return True
    return False


def enable_section(text: str, spec: RepositorySpec) -> str:
    """Return config text with ``[spec.name]`` enabled.

    A commented-out section (``#[multilib]`` plus its commented body) is
    uncommented in place; otherwise a new section is appended.
    """
    lines = text.splitlines(keepends=True)
    for row, line in enumerate(lines):
        match = _COMMENTED_SECTION_RE.match(line)
        if not match or match.group("name").strip() != spec.name:
            continue
        lines[row] = re.sub(r"^(\s*)#\s*", r"\1", line)
        body = row + 1
        while body < len(lines):
            candidate = lines[body]
            stripped = candidate.lstrip()
            if not stripped.startswith("#") or _COMMENTED_SECTION_RE.match(candidate):
                break
            if "=" not in stripped:
                break
            lines[body] = re.sub(r"^(\s*)#\s*", r"\1", candidate)
            body += 1
        return "".join(lines)

    section = [f"[{spec.name}]\n"]
    if spec.server:
        section.append(f"Server = {spec.server}\n")
    if spec.include:
        section.append(f"Include = {spec.include}\n")
    prefix = text
    if prefix and not prefix.endswith("\n"):
        prefix += "\n"
    if prefix and not prefix.endswith("\n\n"):
        prefix += "\n"
    return prefix + "".join(section)


class PackageManager:
    """Query and install packages, and register repositories.

    Queries run unprivileged; mutations go through the shared ``Elevation``
    handle, except the AUR helper which must run as the invoking user and
    elevates on its own. pacman holds an exclusive lock on its database while
    it mutates it, so mutating calls from concurrent tasks are serialized here.
    """

    def __init__(
        self,
        runner: CommandRunner,
        elevation: Elevation,
        fs: FileSystem,
        *,
        aur_helper: str = "yay",
    ) -> None:
        self._runner = runner
        self._elevation = elevation
        self._fs = fs
        self._aur_helper = aur_helper
        self._db_lock = threading.Lock()

    def is_installed(self, name: str) -> bool:
        return self._runner.run(["pacman", "-Q", "--", name], check=False).ok

    def missing(self, names: Sequence[str]) -> list[str]:
        return [name for name in names if not self.is_installed(name)]

    def install(
        self,
        names: Sequence[str],
        *,
        source: str = "repo",
        timeout: float | None = None,
    ) -> ExecResult:
        """Install ``names`` in the given order, skipping ones already present."""
        with self._db_lock:
            if source == "aur":
                argv = [self._aur_helper, "-S", "--noconfirm", "--needed", *names]
                logger.info("Installing from AUR: %s", " ".join(names))
                return self._runner.run(argv, timeout=timeout)
            logger.info("Installing: %s", " ".join(names))
            return self._elevation.run_elevated(
                ["pacman", "-S", "--noconfirm", "--needed", *names],
                timeout=timeout,
            )

    def add_repository(self, spec: RepositorySpec, *, timeout: float | None = None) -> None:
        with self._db_lock:
            if spec.key_id:
                logger.info("Trusting key %s for [%s]", spec.key_id, spec.name)
                self._elevation.run_elevated(
                    ["pacman-key", "--recv-key", spec.key_id, "--keyserver", spec.keyserver],
                    timeout=timeout,
                )
                self._elevation.run_elevated(["pacman-key", "--lsign-key", spec.key_id], timeout=timeout)
            if spec.keyring_urls:
                self._elevation.run_elevated(
                    ["pacman", "--noconfirm", "-U", *spec.keyring_urls],
                    timeout=timeout,
                )

            current = self._fs.read_text(spec.config_path) or ""
            updated = enable_section(current, spec)
            if updated != current:
                self._fs.write_text(spec.config_path, updated, elevated=True)
            self._elevation.run_elevated(["pacman", "-Sy", "--noconfirm"], timeout=timeout)
