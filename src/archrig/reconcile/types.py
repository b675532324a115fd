"""Resource and outcome types for reconciliation."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Literal

from archrig.errors import ConfigError

PACMAN_CONF = Path("/etc/pacman.conf")
DEFAULT_KEYSERVER = "keyserver.ubuntu.com"


class ResourceKind(str, Enum):
    """Closed set of resource kinds the reconciler understands."""

    FILE_CONTENT = "file-content"
    LINE_IN_FILE = "line-in-file"
    REPOSITORY_ENTRY = "repository-entry"
    INSTALLED_PACKAGE = "installed-package"
    ENABLED_SERVICE = "enabled-service"
    COMMAND = "command"


# Kinds whose action rewrites a file in place and therefore snapshots first.
OVERWRITING_KINDS = frozenset(
    {
        ResourceKind.FILE_CONTENT,
        ResourceKind.LINE_IN_FILE,
        ResourceKind.REPOSITORY_ENTRY,
    }
)


@dataclass(frozen=True)
class FileSpec:
    """Whole-file content, or one marker-delimited block inside a file."""

    path: Path
    content: str
    mode: Literal["replace", "block"] = "replace"
    permissions: int | None = None
    marker: str = "ARCHRIG"
    comment: str = "#"

    @property
    def begin_marker(self) -> str:
        return f"{self.comment} >>> {self.marker} BEGIN >>>"

    @property
    def end_marker(self) -> str:
        return f"{self.comment} <<< {self.marker} END <<<"


@dataclass(frozen=True)
class LineSpec:
    """A single line that must be present; ``match`` lines are replaced by it."""

    path: Path
    line: str
    match: str | None = None
    position: Literal["end", "start"] = "end"


@dataclass(frozen=True)
class RepositorySpec:
    """A pacman repository section, optionally with a signing key and keyring packages."""

    name: str
    config_path: Path = PACMAN_CONF
    include: str | None = None
    server: str | None = None
    key_id: str | None = None
    keyserver: str = DEFAULT_KEYSERVER
    keyring_urls: tuple[str, ...] = ()


@dataclass(frozen=True)
class PackageSpec:
    """Packages installed together, in order, from the repos or the AUR."""

    names: tuple[str, ...]
    source: Literal["repo", "aur"] = "repo"


@dataclass(frozen=True)
class ServiceSpec:
    unit: str


@dataclass(frozen=True)
class CommandSpec:
    """An arbitrary command guarded by a ``creates`` path or an ``unless`` check."""

    argv: tuple[str, ...]
    creates: Path | None = None
    unless: tuple[str, ...] | None = None
    cwd: Path | None = None


ResourceSpec = FileSpec | LineSpec | RepositorySpec | PackageSpec | ServiceSpec | CommandSpec

_SPEC_FOR_KIND: dict[ResourceKind, type] = {
    ResourceKind.FILE_CONTENT: FileSpec,
    ResourceKind.LINE_IN_FILE: LineSpec,
    ResourceKind.REPOSITORY_ENTRY: RepositorySpec,
    ResourceKind.INSTALLED_PACKAGE: PackageSpec,
    ResourceKind.ENABLED_SERVICE: ServiceSpec,
    ResourceKind.COMMAND: CommandSpec,
}


@dataclass(frozen=True)
class Resource:
    """Immutable description of one unit of desired state."""

    id: str
    kind: ResourceKind
    spec: ResourceSpec
    elevated: bool = False

    def __post_init__(self) -> None:
        expected = _SPEC_FOR_KIND[self.kind]
        if not isinstance(self.spec, expected):
            raise ConfigError(
                f"Resource {self.id!r}: kind {self.kind.value} needs {expected.__name__}, "
                f"got {type(self.spec).__name__}"
            )
        if isinstance(self.spec, PackageSpec) and not self.spec.names:
            raise ConfigError(f"Resource {self.id!r}: no packages named")
        if isinstance(self.spec, CommandSpec):
            if not self.spec.argv:
                raise ConfigError(f"Resource {self.id!r}: empty command")
            if self.spec.creates is None and not self.spec.unless:
                raise ConfigError(f"Resource {self.id!r}: command needs 'creates' or 'unless'")
        if isinstance(self.spec, LineSpec) and "\n" in self.spec.line:
            raise ConfigError(f"Resource {self.id!r}: line must not contain a newline")
        if isinstance(self.spec, FileSpec) and self.spec.mode == "block":
            for marker in (self.spec.begin_marker, self.spec.end_marker):
                if marker in self.spec.content:
                    raise ConfigError(f"Resource {self.id!r}: block content contains its own marker")

    @property
    def target_path(self) -> Path | None:
        """File this resource mutates, if any."""
        if isinstance(self.spec, (FileSpec, LineSpec)):
            return self.spec.path
        if isinstance(self.spec, RepositorySpec):
            return self.spec.config_path
        return None

    def describe(self) -> str:
        spec = self.spec
        if isinstance(spec, (FileSpec, LineSpec)):
            return str(spec.path)
        if isinstance(spec, RepositorySpec):
            return f"[{spec.name}] in {spec.config_path}"
        if isinstance(spec, PackageSpec):
            return " ".join(spec.names)
        if isinstance(spec, ServiceSpec):
            return spec.unit
        return " ".join(spec.argv)


@dataclass(frozen=True)
class Snapshot:
    """Copy of a file's previous state, owned by the backup store."""

    source: Path
    path: Path
    created_at: str

    @property
    def id(self) -> str:
        return self.path.name

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "source": str(self.source), "path": str(self.path), "created_at": self.created_at}


OutcomeStatus = Literal["applied", "skipped", "failed"]


@dataclass(frozen=True)
class Outcome:
    status: OutcomeStatus
    reason: str | None = None
    snapshots: tuple[Snapshot, ...] = field(default_factory=tuple)

    @classmethod
    def applied(cls, snapshots: tuple[Snapshot, ...] = ()) -> Outcome:
        return cls(status="applied", snapshots=snapshots)

    @classmethod
    def skipped(cls, reason: str = "already satisfied") -> Outcome:
        return cls(status="skipped", reason=reason)

    @classmethod
    def failed(cls, reason: str, snapshots: tuple[Snapshot, ...] = ()) -> Outcome:
        return cls(status="failed", reason=reason, snapshots=snapshots)


@dataclass(frozen=True)
class Change:
    """Dry-run view of what reconciling a resource would do."""

    resource: Resource
    pending: bool
    diff: str = ""
    detail: str | None = None
