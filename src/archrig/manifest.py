"""Load declarative manifests into tasks.

A manifest is YAML validated against ``manifest.schema.json``. String values
may use ``{{ home }}``, ``{{ user }}``, ``{{ vt }}`` and any manifest-level
``variables``; paths may start with ``~``. Everything is expanded from the
run context, never from the process environment.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from importlib.resources import files
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]

from archrig.errors import ConfigError
from archrig.graph.types import Task
from archrig.reconcile.types import (
    PACMAN_CONF,
    CommandSpec,
    FileSpec,
    LineSpec,
    PackageSpec,
    RepositorySpec,
    Resource,
    ResourceKind,
    ServiceSpec,
)
from archrig.schemas.validator import validate_data

PROFILE_PACKAGE = "archrig.profiles"
DEFAULT_PROFILE = "workstation"
RESERVED_VARIABLES = frozenset({"home", "user", "vt"})

_PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


class _Expander:
    """Collects every expansion problem instead of stopping at the first."""

    def __init__(self, variables: Mapping[str, str], home: Path) -> None:
        self.variables = dict(variables)
        self.home = home
        self.problems: list[str] = []

    def text(self, value: str, where: str) -> str:
        def substitute(match: re.Match[str]) -> str:
            name = match.group(1)
            if name not in self.variables:
                self.problems.append(f"{where}: unknown placeholder {{{{ {name} }}}}")
                return match.group(0)
            return self.variables[name]

        return _PLACEHOLDER_RE.sub(substitute, value)

    def path(self, value: str, where: str) -> Path:
        expanded = self.text(value, where)
        if expanded == "~":
            return self.home
        if expanded.startswith("~/"):
            return self.home / expanded[2:]
        path = Path(expanded)
        if not path.is_absolute():
            self.problems.append(f"{where}: path must be absolute or start with '~/': {value!r}")
        return path

    def argv(self, values: list[str], where: str) -> tuple[str, ...]:
        return tuple(self.text(v, where) for v in values)


def _permissions(value: int | str | None) -> int | None:
    if value is None:
        return None
    if isinstance(value, int):
        return value
    digits = value.lower().removeprefix("0o").removeprefix("o")
    return int(digits, 8)


def _outside_home(path: Path, home: Path) -> bool:
    return not path.is_relative_to(home)


def _build_resource(raw: dict[str, Any], ex: _Expander) -> Resource:
    task_id = raw["id"]
    where = f"tasks[{task_id}]"
    explicit = raw.get("elevated")

    if "file" in raw:
        body = raw["file"]
        path = ex.path(body["path"], f"{where}.file.path")
        spec: Any = FileSpec(
            path=path,
            content=ex.text(body["content"], f"{where}.file.content"),
            mode=body.get("mode", "replace"),
            permissions=_permissions(body.get("permissions")),
            marker=body.get("marker", "ARCHRIG"),
            comment=body.get("comment", "#"),
        )
        kind = ResourceKind.FILE_CONTENT
        elevated = _outside_home(path, ex.home)
    elif "line" in raw:
        body = raw["line"]
        path = ex.path(body["path"], f"{where}.line.path")
        spec = LineSpec(
            path=path,
            line=ex.text(body["line"], f"{where}.line.line"),
            match=body.get("match"),
            position=body.get("position", "end"),
        )
        if spec.match is not None:
            try:
                re.compile(spec.match)
            except re.error as exc:
                ex.problems.append(f"{where}.line.match: invalid regex: {exc}")
        kind = ResourceKind.LINE_IN_FILE
        elevated = _outside_home(path, ex.home)
    elif "repository" in raw:
        body = raw["repository"]
        config = body.get("config")
        spec = RepositorySpec(
            name=body["name"],
            config_path=ex.path(config, f"{where}.repository.config") if config else PACMAN_CONF,
            include=ex.text(body["include"], where) if "include" in body else None,
            server=ex.text(body["server"], where) if "server" in body else None,
            key_id=body.get("key_id"),
            keyserver=body.get("keyserver", "keyserver.ubuntu.com"),
            keyring_urls=tuple(body.get("keyring", ())),
        )
        if spec.include is None and spec.server is None:
            ex.problems.append(f"{where}.repository: needs 'include' or 'server'")
        kind = ResourceKind.REPOSITORY_ENTRY
        elevated = True
    elif "packages" in raw:
        body = raw["packages"]
        names = body["names"]
        spec = PackageSpec(
            names=(names,) if isinstance(names, str) else tuple(names),
            source=body.get("source", "repo"),
        )
        kind = ResourceKind.INSTALLED_PACKAGE
        elevated = spec.source == "repo"
    elif "service" in raw:
        spec = ServiceSpec(unit=ex.text(raw["service"]["unit"], f"{where}.service.unit"))
        kind = ResourceKind.ENABLED_SERVICE
        elevated = True
    else:
        body = raw["command"]
        spec = CommandSpec(
            argv=ex.argv(body["run"], f"{where}.command.run"),
            creates=ex.path(body["creates"], f"{where}.command.creates") if "creates" in body else None,
            unless=ex.argv(body["unless"], f"{where}.command.unless") if "unless" in body else None,
            cwd=ex.path(body["cwd"], f"{where}.command.cwd") if "cwd" in body else None,
        )
        kind = ResourceKind.COMMAND
        elevated = False

    return Resource(
        id=task_id,
        kind=kind,
        spec=spec,
        elevated=elevated if explicit is None else bool(explicit),
    )


def parse_manifest(
    data: Any,
    *,
    home: Path,
    variables: Mapping[str, str],
    source: str = "<manifest>",
) -> list[Task]:
    """Turn a parsed manifest document into tasks.

    Raises:
        ConfigError: Listing every schema violation or expansion problem
    """
    ok, errors = validate_data(data, "manifest", strict=False)
    if not ok:
        raise ConfigError(f"Invalid manifest {source}:", errors)

    declared = data.get("variables", {})
    clashes = sorted(RESERVED_VARIABLES & set(declared))
    if clashes:
        raise ConfigError(f"Invalid manifest {source}:", [f"variables: {name!r} is reserved" for name in clashes])

    ex = _Expander({**declared, **variables}, home)
    tasks: list[Task] = []
    for raw in data["tasks"]:
        try:
            resource = _build_resource(raw, ex)
        except ConfigError as exc:
            ex.problems.append(str(exc))
            continue
        tasks.append(
            Task(
                id=raw["id"],
                resource=resource,
                requires=tuple(raw.get("requires", ())),
                timeout=raw.get("timeout"),
            )
        )

    if ex.problems:
        raise ConfigError(f"Invalid manifest {source}:", ex.problems)
    return tasks


def load_manifest_text(text: str, *, home: Path, variables: Mapping[str, str], source: str = "<manifest>") -> list[Task]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigError(f"Malformed YAML in {source}: {exc}") from exc
    return parse_manifest(data, home=home, variables=variables, source=source)


def load_manifest(path: Path, *, home: Path, variables: Mapping[str, str]) -> list[Task]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read manifest {path}: {exc}") from exc
    return load_manifest_text(text, home=home, variables=variables, source=str(path))


def builtin_profile_text(name: str = DEFAULT_PROFILE) -> str:
    resource = files(PROFILE_PACKAGE) / f"{name}.yaml"
    if not resource.is_file():
        raise ConfigError(f"Unknown built-in profile: {name!r}")
    return resource.read_text(encoding="utf-8")


def load_builtin_profile(name: str = DEFAULT_PROFILE, *, home: Path, variables: Mapping[str, str]) -> list[Task]:
    return load_manifest_text(
        builtin_profile_text(name),
        home=home,
        variables=variables,
        source=f"profile:{name}",
    )
