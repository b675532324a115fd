"""Error taxonomy for archrig runs."""

from __future__ import annotations


class ArchrigError(Exception):
    """Base class for every error archrig raises on purpose."""


class ConfigError(ArchrigError):
    """Malformed manifest, settings, or task graph. Fatal before any mutation."""

    def __init__(self, message: str, problems: list[str] | None = None) -> None:
        self.problems = list(problems or [])
        if self.problems:
            message = message + "\n" + "\n".join(f"  - {p}" for p in self.problems)
        super().__init__(message)


class PreconditionError(ArchrigError):
    """Privilege preflight failed. Fatal before any mutation."""


class ApplyError(ArchrigError):
    """Applying a resource failed; recorded against its task only."""


class BackupError(ApplyError):
    """A snapshot could not be taken, so the target must not be touched."""


class PostconditionError(ApplyError):
    """The resource still is not satisfied after its action ran."""
