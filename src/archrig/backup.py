"""Timestamped backups taken before a file is overwritten."""

from __future__ import annotations

import datetime
import logging
import re
import threading
from collections.abc import Callable
from pathlib import Path

from archrig.capabilities.fs import FileSystem
from archrig.errors import ApplyError, BackupError
from archrig.reconcile.types import Snapshot

logger = logging.getLogger(__name__)

BACKUP_INFIX = ".bak."
_SUFFIX_RE = re.compile(r"^(?P<stamp>\d{14})(?:\.(?P<counter>\d+))?$")


def _now() -> datetime.datetime:
    return datetime.datetime.now()


class BackupStore:
    """Takes the snapshots a run needs before it overwrites files.

    Backups sit next to their source as ``<name>.bak.<YYYYmmddHHMMSS>``. A
    second snapshot of the same file within the same second gets a ``.1``,
    ``.2`` ... counter, so names never collide and sort in creation order.
    """

    def __init__(
        self,
        fs: FileSystem,
        *,
        enabled: bool = True,
        clock: Callable[[], datetime.datetime] = _now,
    ) -> None:
        self._fs = fs
        self.enabled = enabled
        self._clock = clock
        self._lock = threading.Lock()
        self._issued: set[Path] = set()

    def _reserve(self, path: Path) -> tuple[Path, str]:
        now = self._clock()
        stamp = now.strftime("%Y%m%d%H%M%S")
        with self._lock:
            candidate = path.with_name(f"{path.name}{BACKUP_INFIX}{stamp}")
            counter = 0
            while candidate in self._issued or self._fs.exists(candidate):
                counter += 1
                candidate = path.with_name(f"{path.name}{BACKUP_INFIX}{stamp}.{counter}")
            self._issued.add(candidate)
        return candidate, now.isoformat(timespec="seconds")

    def snapshot(self, path: Path, *, elevated: bool = False) -> Snapshot | None:
        """Copy ``path`` aside before it is mutated.

        Returns ``None`` when there is nothing to preserve (missing file) or
        backups are disabled. Raises ``BackupError`` when the copy fails; the
        caller must then leave ``path`` untouched.
        """
        if not self.enabled:
            return None
        try:
            if not self._fs.exists(path):
                return None
            backup_path, created_at = self._reserve(path)
            self._fs.copy(path, backup_path, elevated=elevated)
        except (ApplyError, OSError) as exc:
            raise BackupError(f"Failed to back up {path}: {exc}") from exc

        snapshot = Snapshot(source=path, path=backup_path, created_at=created_at)
        logger.info("Backed up %s -> %s", path, backup_path.name)
        return snapshot

    def restore(self, snapshot: Snapshot, *, elevated: bool = False) -> Snapshot | None:
        """Put a snapshot's content back, snapshotting the current file first."""
        if not self._fs.exists(snapshot.path):
            raise ApplyError(f"Snapshot not found: {snapshot.path}")
        content = self._fs.read_text(snapshot.path)
        if content is None:
            raise ApplyError(f"Snapshot not readable: {snapshot.path}")
        current = self.snapshot(snapshot.source, elevated=elevated)
        self._fs.write_text(
            snapshot.source,
            content,
            mode=self._fs.mode(snapshot.path),
            elevated=elevated,
        )
        logger.info("Restored %s from %s", snapshot.source, snapshot.id)
        return current


def parse_snapshot(path: Path) -> Snapshot | None:
    """Recognize ``<source>.bak.<stamp>[.<n>]`` files."""
    name = path.name
    idx = name.rfind(BACKUP_INFIX)
    if idx <= 0:
        return None
    match = _SUFFIX_RE.match(name[idx + len(BACKUP_INFIX):])
    if match is None:
        return None
    stamp = datetime.datetime.strptime(match.group("stamp"), "%Y%m%d%H%M%S")
    return Snapshot(
        source=path.with_name(name[:idx]),
        path=path,
        created_at=stamp.isoformat(timespec="seconds"),
    )


def _sort_key(snapshot: Snapshot) -> tuple[str, int]:
    match = _SUFFIX_RE.match(snapshot.id[snapshot.id.rfind(BACKUP_INFIX) + len(BACKUP_INFIX):])
    counter = int(match.group("counter") or 0) if match else 0
    return snapshot.created_at, counter


def list_snapshots(target: Path) -> list[Snapshot]:
    """Existing backups of ``target``, newest first."""
    if not target.parent.is_dir():
        return []
    found = []
    for candidate in target.parent.glob(f"{target.name}{BACKUP_INFIX}*"):
        snapshot = parse_snapshot(candidate)
        if snapshot is not None and snapshot.source == target:
            found.append(snapshot)
    return sorted(found, key=_sort_key, reverse=True)
