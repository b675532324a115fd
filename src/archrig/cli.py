"""archrig CLI - apply, plan and roll back workstation manifests."""

from __future__ import annotations

import logging
import signal
from pathlib import Path
from typing import Any

import typer
from rich.markup import escape

from archrig import __version__
from archrig.artifacts import canonical_dumps, write_run_report
from archrig.backup import list_snapshots, parse_snapshot
from archrig.context import RunContext, build_context
from archrig.engine import make_runner, plan_tasks, render_plan, render_report, run_tasks, select_tasks
from archrig.errors import ApplyError, ConfigError, PreconditionError
from archrig.graph.runner import validate_graph
from archrig.graph.types import Task
from archrig.log import configure_logging, console, err_console
from archrig.manifest import builtin_profile_text, load_builtin_profile, load_manifest
from archrig.reconcile.blocks import unified_diff
from archrig.settings import Settings, load_settings

logger = logging.getLogger(__name__)

EXIT_FAILED = 1
EXIT_USAGE = 2

cli = typer.Typer(
    name="archrig",
    help="archrig - declarative, idempotent Arch workstation setup",
    no_args_is_help=True,
)
profile_app = typer.Typer(help="Built-in manifest profiles.")
cli.add_typer(profile_app, name="profile")


def _version_option_callback(value: bool) -> None:
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@cli.callback()
def _cli_callback(
    ctx: typer.Context,
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Settings file (default: $XDG_CONFIG_HOME/archrig/config.toml).",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
    version: bool = typer.Option(
        False,
        "--version",
        help="Show archrig version and exit.",
        is_eager=True,
        callback=_version_option_callback,
    ),
) -> None:
    """Declarative, idempotent Arch workstation setup."""
    _ = version
    configure_logging(verbose)
    ctx.obj = {"config": config}


def _fail(message: str, code: int = EXIT_USAGE) -> typer.Exit:
    err_console.print(f"[bold red]Error:[/bold red] {escape(message)}", highlight=False, soft_wrap=True)
    return typer.Exit(code)


def _settings(ctx: typer.Context, **overrides: Any) -> Settings:
    try:
        settings = load_settings((ctx.obj or {}).get("config"))
    except ConfigError as exc:
        raise _fail(str(exc)) from exc
    return settings.with_overrides(**overrides)


def _tasks(run_ctx: RunContext, manifest: Path | None, only: list[str] | None = None) -> list[Task]:
    try:
        if manifest is None:
            tasks = load_builtin_profile(home=run_ctx.home, variables=run_ctx.template_vars())
        else:
            tasks = load_manifest(manifest, home=run_ctx.home, variables=run_ctx.template_vars())
        selected = select_tasks(tasks, only)
        validate_graph(selected)
    except ConfigError as exc:
        raise _fail(str(exc)) from exc
    return selected


MANIFEST_ARGUMENT = typer.Argument(
    None,
    help="Manifest YAML (default: the built-in workstation profile).",
    exists=True,
    dir_okay=False,
)


@cli.command()
def apply(
    ctx: typer.Context,
    manifest: Path | None = MANIFEST_ARGUMENT,
    only: list[str] | None = typer.Option(
        None,
        "--only",
        help="Apply only this task and its prerequisites (repeatable).",
    ),
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Do not snapshot files before overwriting them.",
    ),
    workers: int | None = typer.Option(None, "--workers", min=1, help="Maximum concurrent tasks."),
    timeout: float | None = typer.Option(
        None,
        "--timeout",
        min=1,
        help="Default per-task timeout in seconds.",
    ),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change and exit."),
    json_output: bool = typer.Option(False, "--json", help="Print the run report as JSON."),
) -> None:
    """Bring the system to the state the manifest describes."""
    settings = _settings(
        ctx,
        backup=False if no_backup else None,
        max_workers=workers,
        default_timeout=timeout,
    )
    run_ctx = build_context(settings)
    tasks = _tasks(run_ctx, manifest, only)

    if dry_run:
        render_plan(plan_tasks(run_ctx, tasks), console, show_diff=True)
        return

    runner = make_runner(run_ctx)
    previous = signal.getsignal(signal.SIGTERM)
    signal.signal(signal.SIGTERM, lambda *_: runner.cancel())
    try:
        report = run_tasks(run_ctx, tasks, runner=runner)
    except (ConfigError, PreconditionError) as exc:
        raise _fail(str(exc)) from exc
    except KeyboardInterrupt:
        raise _fail("interrupted before the run started", EXIT_FAILED) from None
    finally:
        signal.signal(signal.SIGTERM, previous)

    try:
        run_dir = write_run_report(report, settings.resolved_state_dir)
        logger.debug("run artifacts in %s", run_dir)
    except OSError as exc:
        logger.warning("Could not write run report: %s", exc)

    if json_output:
        typer.echo(canonical_dumps(report.to_dict()))
    else:
        render_report(report, console)

    if not report.ok:
        raise typer.Exit(EXIT_FAILED)


@cli.command()
def plan(
    ctx: typer.Context,
    manifest: Path | None = MANIFEST_ARGUMENT,
    only: list[str] | None = typer.Option(None, "--only", help="Plan only this task and its prerequisites."),
    diff: bool = typer.Option(False, "--diff", help="Print unified diffs for file changes."),
) -> None:
    """Report pending changes without touching anything."""
    run_ctx = build_context(_settings(ctx))
    tasks = _tasks(run_ctx, manifest, only)
    render_plan(plan_tasks(run_ctx, tasks), console, show_diff=diff)


@cli.command()
def check(
    ctx: typer.Context,
    manifest: Path | None = MANIFEST_ARGUMENT,
) -> None:
    """Validate a manifest and its task graph."""
    run_ctx = build_context(_settings(ctx))
    tasks = _tasks(run_ctx, manifest)
    console.print(f"[green]OK[/green] {len(tasks)} task(s)")


@cli.command()
def snapshots(
    path: Path = typer.Argument(..., help="File whose backups to list."),
) -> None:
    """List backups taken of a file, newest first."""
    found = list_snapshots(path.expanduser().absolute())
    if not found:
        console.print(f"No snapshots of {escape(str(path))}", soft_wrap=True)
        return
    for snap in found:
        console.print(f"{snap.created_at}  {snap.path}", highlight=False, soft_wrap=True)


@cli.command()
def restore(
    ctx: typer.Context,
    snapshot: Path = typer.Argument(..., help="Backup file to restore from."),
    yes: bool = typer.Option(False, "--yes", help="Write the restore (default shows a diff)."),
) -> None:
    """Roll a file back to one of its snapshots."""
    parsed = parse_snapshot(snapshot.expanduser().absolute())
    if parsed is None:
        raise _fail(f"Not a snapshot: {snapshot}")
    if not parsed.path.exists():
        raise _fail(f"Snapshot not found: {parsed.path}")

    run_ctx = build_context(_settings(ctx))
    elevated = not parsed.source.is_relative_to(run_ctx.home)

    if not yes:
        try:
            current = run_ctx.fs.read_text(parsed.source) or ""
            wanted = run_ctx.fs.read_text(parsed.path) or ""
        except PermissionError as exc:
            raise _fail(f"Cannot read {exc.filename}: permission denied") from exc
        text = unified_diff(current, wanted, path=parsed.source)
        if text:
            console.print(text, markup=False, highlight=False, end="")
        else:
            console.print("No changes.")
        console.print("[dim]Re-run with --yes to restore.[/dim]")
        return

    try:
        if elevated:
            run_ctx.elevation.acquire()
        backup = run_ctx.backups.restore(parsed, elevated=elevated)
    except PreconditionError as exc:
        raise _fail(str(exc)) from exc
    except ApplyError as exc:
        raise _fail(str(exc), EXIT_FAILED) from exc

    console.print(f"[green]Restored[/green] {escape(str(parsed.source))} from {escape(parsed.id)}", soft_wrap=True)
    if backup is not None:
        console.print(f"[cyan]Backup:[/cyan] {escape(str(backup.path))}", soft_wrap=True)


@profile_app.command("export")
def profile_export(
    dest: Path | None = typer.Argument(None, help="Where to write the profile (default: stdout)."),
    name: str = typer.Option("workstation", "--name", help="Built-in profile name."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
) -> None:
    """Write a built-in profile out as an editable manifest."""
    try:
        text = builtin_profile_text(name)
    except ConfigError as exc:
        raise _fail(str(exc)) from exc
    if dest is None:
        typer.echo(text, nl=False)
        return
    if dest.exists() and not force:
        raise _fail(f"{dest} exists (use --force to overwrite)")
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(text, encoding="utf-8")
    console.print(f"Wrote {dest}", highlight=False, soft_wrap=True)


if __name__ == "__main__":
    cli()
