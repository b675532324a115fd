"""Bring one resource from its actual state to its desired state."""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

from archrig.capabilities.exec import CommandTimeout
from archrig.errors import ApplyError, BackupError, PostconditionError
from archrig.reconcile.blocks import apply_block, render_block, unified_diff
from archrig.reconcile.oracle import is_satisfied
from archrig.reconcile.types import (
    OVERWRITING_KINDS,
    Change,
    CommandSpec,
    FileSpec,
    LineSpec,
    Outcome,
    PackageSpec,
    RepositorySpec,
    Resource,
    ServiceSpec,
    Snapshot,
)

if TYPE_CHECKING:
    from archrig.context import RunContext

logger = logging.getLogger(__name__)

POSTCONDITION_NOT_MET = "postcondition not met"
TIMEOUT = "timeout"


def render_file(spec: FileSpec, current: str) -> str:
    """Desired full text of a file-content target given its current text."""
    if spec.mode == "replace":
        return spec.content
    block = render_block(spec.content, begin=spec.begin_marker, end=spec.end_marker)
    new, _ = apply_block(current, block=block, begin=spec.begin_marker, end=spec.end_marker)
    return new


def render_line(spec: LineSpec, current: str) -> str:
    """Desired full text of a line-in-file target given its current text."""
    lines = current.splitlines()
    pattern = re.compile(spec.match) if spec.match is not None else None

    if spec.position == "start":
        kept = [line for line in lines if line != spec.line and not (pattern and pattern.search(line))]
        lines = [spec.line, *kept]
    else:
        out: list[str] = []
        placed = False
        for line in lines:
            hit = line == spec.line or (pattern is not None and pattern.search(line) is not None)
            if not hit:
                out.append(line)
            elif not placed:
                out.append(spec.line)
                placed = True
        if not placed:
            out.append(spec.line)
        lines = out
    return "\n".join(lines) + "\n"


class Reconciler:
    """One polymorphic reconciler over the closed set of resource kinds."""

    def __init__(self, ctx: RunContext) -> None:
        self.ctx = ctx

    def plan(self, resource: Resource) -> Change:
        """Report whether reconciling ``resource`` would change anything."""
        try:
            if is_satisfied(resource, self.ctx):
                return Change(resource=resource, pending=False)
        except (ApplyError, OSError) as exc:
            return Change(resource=resource, pending=True, detail=f"cannot inspect: {exc}")

        spec = resource.spec
        if isinstance(spec, (FileSpec, LineSpec)):
            current = self.ctx.fs.read_text(spec.path) or ""
            try:
                desired = render_file(spec, current) if isinstance(spec, FileSpec) else render_line(spec, current)
            except ApplyError as exc:
                return Change(resource=resource, pending=True, detail=str(exc))
            detail = None
            if isinstance(spec, FileSpec) and desired == current:
                detail = "permissions differ"
            return Change(
                resource=resource,
                pending=True,
                diff=unified_diff(current, desired, path=spec.path),
                detail=detail,
            )
        if isinstance(spec, PackageSpec):
            missing = self.ctx.packages.missing(spec.names)
            return Change(resource=resource, pending=True, detail="install " + " ".join(missing))
        if isinstance(spec, RepositorySpec):
            return Change(resource=resource, pending=True, detail=f"add [{spec.name}]")
        if isinstance(spec, ServiceSpec):
            return Change(resource=resource, pending=True, detail=f"enable {spec.unit}")
        return Change(resource=resource, pending=True, detail="run " + " ".join(spec.argv))

    def reconcile(self, resource: Resource, *, timeout: float | None = None) -> Outcome:
        """Check, snapshot, apply, re-check.

        Returns ``skipped`` without touching anything when the resource already
        holds, and ``failed`` with a reason for every error the action raises.
        """
        try:
            satisfied = is_satisfied(resource, self.ctx)
        except (ApplyError, OSError) as exc:
            logger.error("%s: cannot inspect: %s", resource.id, exc)
            return Outcome.failed(f"cannot inspect: {exc}")
        if satisfied:
            logger.debug("%s: already satisfied", resource.id)
            return Outcome.skipped()

        snapshots: tuple[Snapshot, ...] = ()
        target = resource.target_path
        if resource.kind in OVERWRITING_KINDS and target is not None:
            try:
                snapshot = self.ctx.backups.snapshot(target, elevated=resource.elevated)
            except BackupError as exc:
                logger.error("%s: %s", resource.id, exc)
                return Outcome.failed(str(exc))
            if snapshot is not None:
                snapshots = (snapshot,)

        try:
            self._apply(resource, timeout=timeout)
            if not is_satisfied(resource, self.ctx):
                raise PostconditionError(POSTCONDITION_NOT_MET)
        except CommandTimeout as exc:
            logger.error("%s: %s", resource.id, exc)
            return Outcome.failed(TIMEOUT, snapshots)
        except (ApplyError, OSError) as exc:
            logger.error("%s: %s", resource.id, exc)
            return Outcome.failed(str(exc), snapshots)

        logger.info("%s: applied (%s)", resource.id, resource.describe())
        return Outcome.applied(snapshots)

    def _apply(self, resource: Resource, *, timeout: float | None) -> None:
        spec = resource.spec
        ctx = self.ctx
        if isinstance(spec, FileSpec):
            current = ctx.fs.read_text(spec.path) or ""
            ctx.fs.write_text(
                spec.path,
                render_file(spec, current),
                mode=spec.permissions,
                elevated=resource.elevated,
            )
        elif isinstance(spec, LineSpec):
            current = ctx.fs.read_text(spec.path) or ""
            ctx.fs.write_text(spec.path, render_line(spec, current), elevated=resource.elevated)
        elif isinstance(spec, RepositorySpec):
            ctx.packages.add_repository(spec, timeout=timeout)
        elif isinstance(spec, PackageSpec):
            missing = ctx.packages.missing(spec.names)
            if missing:
                ctx.packages.install(missing, source=spec.source, timeout=timeout)
        elif isinstance(spec, ServiceSpec):
            ctx.services.enable(spec.unit, timeout=timeout)
        elif isinstance(spec, CommandSpec):
            self._run_command(spec, elevated=resource.elevated, timeout=timeout)
        else:
            raise ApplyError(f"{resource.id}: unsupported resource kind {resource.kind.value}")

    def _run_command(self, spec: CommandSpec, *, elevated: bool, timeout: float | None) -> None:
        if elevated:
            argv = list(spec.argv)
            if spec.cwd is not None:
                argv = ["env", "-C", str(spec.cwd), *argv]
            self.ctx.elevation.run_elevated(argv, timeout=timeout)
        else:
            self.ctx.runner.run(spec.argv, cwd=spec.cwd, timeout=timeout)
