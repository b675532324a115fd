"""Idempotency oracle: does a resource's desired state already hold?

Every predicate here only reads. They are safe to call repeatedly and from
several worker threads at once, as long as each resource belongs to one task.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import TYPE_CHECKING

from archrig.capabilities.pacman import has_section
from archrig.reconcile.blocks import MalformedBlockError, locate_block, render_block
from archrig.reconcile.types import (
    CommandSpec,
    FileSpec,
    LineSpec,
    PackageSpec,
    RepositorySpec,
    Resource,
    ResourceKind,
    ServiceSpec,
)

if TYPE_CHECKING:
    from archrig.context import RunContext


def file_satisfied(spec: FileSpec, ctx: RunContext) -> bool:
    current = ctx.fs.read_text(spec.path)
    if current is None:
        return False
    if spec.permissions is not None and ctx.fs.mode(spec.path) != spec.permissions:
        return False
    if spec.mode == "replace":
        return current == spec.content
    try:
        span = locate_block(current, begin=spec.begin_marker, end=spec.end_marker)
    except MalformedBlockError:
        return False
    if span is None:
        return False
    start, stop = span
    expected = render_block(spec.content, begin=spec.begin_marker, end=spec.end_marker)
    return current[start:stop] == expected


def line_satisfied(spec: LineSpec, ctx: RunContext) -> bool:
    current = ctx.fs.read_text(spec.path)
    if current is None:
        return False
    lines = current.splitlines()
    if spec.position == "start":
        if not lines or lines[0] != spec.line:
            return False
    elif spec.line not in lines:
        return False
    if spec.match is not None:
        pattern = re.compile(spec.match)
        return all(line == spec.line for line in lines if pattern.search(line))
    return True


def repository_satisfied(spec: RepositorySpec, ctx: RunContext) -> bool:
    current = ctx.fs.read_text(spec.config_path)
    return current is not None and has_section(current, spec.name)


def packages_satisfied(spec: PackageSpec, ctx: RunContext) -> bool:
    return all(ctx.packages.is_installed(name) for name in spec.names)


def service_satisfied(spec: ServiceSpec, ctx: RunContext) -> bool:
    return ctx.services.is_enabled(spec.unit)


def command_satisfied(spec: CommandSpec, ctx: RunContext, *, elevated: bool = False) -> bool:
    if spec.creates is not None and not ctx.fs.exists(spec.creates):
        return False
    if spec.unless:
        if elevated and ctx.elevation.acquired:
            result = ctx.elevation.run_elevated(spec.unless, check=False)
        else:
            result = ctx.runner.run(spec.unless, cwd=spec.cwd, check=False)
        return result.ok
    return True


_PREDICATES: dict[ResourceKind, Callable[..., bool]] = {
    ResourceKind.FILE_CONTENT: file_satisfied,
    ResourceKind.LINE_IN_FILE: line_satisfied,
    ResourceKind.REPOSITORY_ENTRY: repository_satisfied,
    ResourceKind.INSTALLED_PACKAGE: packages_satisfied,
    ResourceKind.ENABLED_SERVICE: service_satisfied,
}


def is_satisfied(resource: Resource, ctx: RunContext) -> bool:
    """Dispatch on the resource kind. Never mutates anything."""
    if resource.kind is ResourceKind.COMMAND:
        return command_satisfied(resource.spec, ctx, elevated=resource.elevated)  # type: ignore[arg-type]
    return _PREDICATES[resource.kind](resource.spec, ctx)
