"""Glue between the manifest, the reconciler and the task graph runner."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import TYPE_CHECKING

from rich.markup import escape
from rich.table import Table

from archrig.errors import ApplyError, ConfigError
from archrig.graph.runner import TaskGraphRunner, validate_graph
from archrig.graph.types import RunReport, Task, TaskState
from archrig.reconcile import Reconciler, ResourceKind
from archrig.reconcile.types import Change, Outcome

if TYPE_CHECKING:
    from rich.console import Console

    from archrig.context import RunContext

logger = logging.getLogger(__name__)

# Kinds whose capability always goes through sudo (or yay's own sudo prompt).
PRIVILEGED_KINDS = frozenset(
    {
        ResourceKind.REPOSITORY_ENTRY,
        ResourceKind.INSTALLED_PACKAGE,
        ResourceKind.ENABLED_SERVICE,
    }
)
UNIT_DIRS = (Path("/etc/systemd"), Path("/usr/lib/systemd"))

_STATE_STYLE = {
    TaskState.SUCCEEDED: "green",
    TaskState.FAILED: "bold red",
    TaskState.SKIPPED: "yellow",
}


def select_tasks(tasks: Sequence[Task], only: Iterable[str] | None) -> list[Task]:
    """Restrict ``tasks`` to ``only`` plus everything they transitively require.

    Raises:
        ConfigError: If ``only`` names an unknown task
    """
    wanted = list(only or ())
    if not wanted:
        return list(tasks)
    by_id = {task.id: task for task in tasks}
    unknown = [task_id for task_id in wanted if task_id not in by_id]
    if unknown:
        raise ConfigError("Unknown task id(s):", unknown)

    keep: set[str] = set()
    stack = list(wanted)
    while stack:
        task_id = stack.pop()
        if task_id in keep or task_id not in by_id:
            continue
        keep.add(task_id)
        stack.extend(by_id[task_id].requires)
    return [task for task in tasks if task.id in keep]


def needs_elevation(tasks: Iterable[Task]) -> bool:
    return any(t.resource.elevated or t.resource.kind in PRIVILEGED_KINDS for t in tasks)


def needs_daemon_reload(report: RunReport, tasks: Iterable[Task]) -> bool:
    """True when an applied task enabled a unit or wrote under a systemd dir."""
    applied = {result.task_id for result in report.applied}
    for task in tasks:
        if task.id not in applied:
            continue
        if task.resource.kind is ResourceKind.ENABLED_SERVICE:
            return True
        target = task.resource.target_path
        if target is not None and any(target.is_relative_to(d) for d in UNIT_DIRS):
            return True
    return False


def run_tasks(
    ctx: RunContext,
    tasks: Sequence[Task],
    *,
    runner: TaskGraphRunner | None = None,
    run_id: str | None = None,
) -> RunReport:
    """Reconcile every task through the graph runner.

    Elevation is acquired once, up front, when any task needs it, so a
    missing sudo grant fails the run before anything is touched.

    Raises:
        ConfigError: If the task graph is invalid
        PreconditionError: If elevation is needed but cannot be acquired
    """
    validate_graph(tasks)
    if needs_elevation(tasks):
        ctx.elevation.acquire()

    if runner is None:
        runner = make_runner(ctx)
    report = runner.run(tasks, run_id=run_id)

    if needs_daemon_reload(report, tasks):
        try:
            ctx.services.daemon_reload()
        except ApplyError as exc:
            logger.error("systemctl daemon-reload failed: %s", exc)
    return report


def make_runner(ctx: RunContext) -> TaskGraphRunner:
    """Build a runner whose action reconciles through ``ctx``."""
    reconciler = Reconciler(ctx)

    def action(task: Task, timeout: float | None) -> Outcome:
        return reconciler.reconcile(task.resource, timeout=timeout)

    return TaskGraphRunner(
        action,
        max_workers=ctx.settings.max_workers,
        default_timeout=ctx.settings.default_timeout,
    )


def plan_tasks(ctx: RunContext, tasks: Sequence[Task]) -> list[Change]:
    """Oracle-only pass: what would ``apply`` change, in manifest order."""
    validate_graph(tasks)
    reconciler = Reconciler(ctx)
    return [reconciler.plan(task.resource) for task in tasks]


def render_report(report: RunReport, console: Console) -> None:
    table = Table(title=f"archrig run {report.run_id}", show_lines=False)
    table.add_column("Task", style="bold")
    table.add_column("State")
    table.add_column("Outcome")
    table.add_column("Detail", overflow="fold")
    for task_id in report.order:
        result = report.results[task_id]
        style = _STATE_STYLE.get(result.state, "")
        detail = result.reason or ""
        if result.outcome.snapshots:
            backups = ", ".join(str(s.path) for s in result.outcome.snapshots)
            detail = f"{detail} backup: {backups}".strip()
        table.add_row(
            escape(task_id),
            f"[{style}]{result.state.value}[/{style}]" if style else result.state.value,
            result.outcome.status,
            escape(detail),
        )
    console.print(table)
    console.print(
        f"applied {len(report.applied)}, unchanged {len(report.unchanged)}, "
        f"failed {len(report.failed)}, skipped {len(report.skipped)}"
        + (" (cancelled)" if report.cancelled else "")
    )


def render_plan(changes: Sequence[Change], console: Console, *, show_diff: bool = False) -> None:
    table = Table(title="archrig plan")
    table.add_column("Task", style="bold")
    table.add_column("Kind")
    table.add_column("Status")
    table.add_column("Detail", overflow="fold")
    for change in changes:
        status = "[yellow]pending[/yellow]" if change.pending else "[green]ok[/green]"
        detail = change.detail or ("content differs" if change.diff else "")
        table.add_row(escape(change.resource.id), change.resource.kind.value, status, escape(detail))
    console.print(table)
    if show_diff:
        for change in changes:
            if change.diff:
                console.print(change.diff, markup=False, highlight=False, end="")
    pending = sum(1 for change in changes if change.pending)
    console.print(f"{pending} of {len(changes)} task(s) pending")
