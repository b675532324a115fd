"""Filesystem capability with atomic writes and an elevation fallback."""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING

from archrig.errors import ApplyError

if TYPE_CHECKING:
    from archrig.capabilities.privilege import Elevation

logger = logging.getLogger(__name__)

# Mode for files created without an explicit one, elevated or not.
DEFAULT_MODE = 0o644


def _atomic_write(path: Path, content: str, mode: int | None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=path.parent,
            delete=False,
            prefix=f".{path.name}.",
            suffix=".archrig.tmp",
        ) as tmp_file:
            tmp_file.write(content)
            tmp_path = Path(tmp_file.name)
        if mode is None:
            try:
                mode = stat.S_IMODE(path.stat().st_mode)
            except FileNotFoundError:
                mode = DEFAULT_MODE
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except Exception:
        if "tmp_path" in locals() and tmp_path.exists():
            tmp_path.unlink()
        raise


class FileSystem:
    """Read, write and copy files, escalating through ``Elevation`` when needed.

    Writes always land in a sibling temp file first and are moved into place
    with a rename, so an interrupted write never leaves a truncated target.
    """

    def __init__(self, elevation: Elevation | None = None) -> None:
        self._elevation = elevation

    def _can_elevate(self) -> bool:
        return self._elevation is not None and self._elevation.acquired

    def exists(self, path: Path) -> bool:
        """Existence check that also sees into root-only directories."""
        try:
            os.stat(path)
            return True
        except FileNotFoundError:
            return False
        except PermissionError:
            if not self._can_elevate():
                raise
            return self._elevation.run_elevated(["test", "-e", str(path)], check=False).ok

    def mode(self, path: Path) -> int | None:
        """Permission bits of ``path``, or ``None`` when it does not exist."""
        try:
            return stat.S_IMODE(os.stat(path).st_mode)
        except FileNotFoundError:
            return None
        except PermissionError:
            if not self._can_elevate():
                raise
            result = self._elevation.run_elevated(["stat", "-c", "%a", "--", str(path)], check=False)
            if not result.ok:
                return None
            return int(result.stdout.strip(), 8)

    def read_text(self, path: Path) -> str | None:
        """Return file text, or ``None`` when the file does not exist."""
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except PermissionError:
            if not self._can_elevate():
                raise
            if not self.exists(path):
                return None
            return self._elevation.run_elevated(["cat", "--", str(path)]).stdout

    def write_text(self, path: Path, content: str, *, mode: int | None = None, elevated: bool = False) -> None:
        if not elevated:
            try:
                _atomic_write(path, content, mode)
                return
            except PermissionError:
                if self._elevation is None or not self._elevation.acquired:
                    raise ApplyError(f"Failed to write {path}: permission denied") from None
                logger.debug("permission denied writing %s, retrying elevated", path)
            except OSError as exc:
                raise ApplyError(f"Failed to write {path}: {exc}") from exc
        self._write_elevated(path, content, mode)

    def copy(self, src: Path, dest: Path, *, elevated: bool = False) -> None:
        """Copy content and permission bits from ``src`` to ``dest``."""
        if not elevated:
            try:
                shutil.copy2(src, dest)
                return
            except PermissionError:
                if self._elevation is None or not self._elevation.acquired:
                    raise ApplyError(f"Failed to copy {src} to {dest}: permission denied") from None
            except OSError as exc:
                raise ApplyError(f"Failed to copy {src} to {dest}: {exc}") from exc
        if self._elevation is None:
            raise ApplyError(f"Failed to copy {src} to {dest}: elevation unavailable")
        self._elevation.run_elevated(["cp", "-p", "--", str(src), str(dest)])

    def _write_elevated(self, path: Path, content: str, mode: int | None) -> None:
        if self._elevation is None:
            raise ApplyError(f"Failed to write {path}: elevation unavailable")
        if mode is None:
            mode = self.mode(path) or DEFAULT_MODE
        staged = path.with_name(f".{path.name}.archrig.tmp")
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", suffix=".archrig", delete=False) as handle:
            handle.write(content)
            source = Path(handle.name)
        try:
            self._elevation.run_elevated(["mkdir", "-p", "--", str(path.parent)])
            self._elevation.run_elevated(["install", "-m", f"{mode:o}", "--", str(source), str(staged)])
            self._elevation.run_elevated(["mv", "-f", "--", str(staged), str(path)])
        finally:
            source.unlink(missing_ok=True)
