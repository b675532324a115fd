"""Dependency-ordered, wave-based task execution."""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
import uuid
from collections.abc import Callable, Iterable
from pathlib import Path

from archrig.errors import ConfigError
from archrig.graph.types import (
    CANCELLED,
    DEPENDENCY_FAILED,
    RunReport,
    Task,
    TaskResult,
    TaskState,
)
from archrig.reconcile.types import Outcome

logger = logging.getLogger(__name__)

TaskAction = Callable[[Task, float | None], Outcome]
StateListener = Callable[[str, TaskState], None]


def _find_cycle(graph: dict[str, tuple[str, ...]]) -> list[str] | None:
    """Return one dependency cycle as ``[a, b, ..., a]``, or ``None``."""
    white, grey, black = 0, 1, 2
    color = dict.fromkeys(graph, white)
    stack: list[str] = []

    def visit(node: str) -> list[str] | None:
        color[node] = grey
        stack.append(node)
        for dep in graph[node]:
            if color[dep] == grey:
                return [*stack[stack.index(dep):], dep]
            if color[dep] == white:
                found = visit(dep)
                if found:
                    return found
        stack.pop()
        color[node] = black
        return None

    for node in graph:
        if color[node] == white:
            found = visit(node)
            if found:
                return found
    return None


def _ancestors(graph: dict[str, tuple[str, ...]]) -> dict[str, set[str]]:
    memo: dict[str, set[str]] = {}

    def walk(node: str) -> set[str]:
        if node not in memo:
            found: set[str] = set()
            for dep in graph[node]:
                found.add(dep)
                found |= walk(dep)
            memo[node] = found
        return memo[node]

    for node in graph:
        walk(node)
    return memo


def validate_graph(tasks: Iterable[Task]) -> list[Task]:
    """Reject graphs that cannot be run safely, before anything runs.

    Raises:
        ConfigError: On duplicate ids, unknown prerequisites, cycles, or two
            unordered tasks that write the same file
    """
    ordered = list(tasks)
    problems: list[str] = []

    by_id: dict[str, Task] = {}
    for task in ordered:
        if task.id in by_id:
            problems.append(f"duplicate task id {task.id!r}")
        by_id[task.id] = task
    for task in ordered:
        for dep in task.requires:
            if dep not in by_id:
                problems.append(f"task {task.id!r} requires unknown task {dep!r}")
            elif dep == task.id:
                problems.append(f"task {task.id!r} requires itself")
    if problems:
        raise ConfigError("Invalid task graph:", problems)

    graph = {task.id: tuple(dict.fromkeys(task.requires)) for task in ordered}
    cycle = _find_cycle(graph)
    if cycle:
        raise ConfigError(f"Dependency cycle: {' -> '.join(cycle)}")

    ancestors = _ancestors(graph)
    owners: dict[Path, list[str]] = {}
    for task in ordered:
        target = task.resource.target_path
        if target is not None:
            owners.setdefault(Path(target), []).append(task.id)
    for target, ids in owners.items():
        for i, first in enumerate(ids):
            for second in ids[i + 1:]:
                if first not in ancestors[second] and second not in ancestors[first]:
                    problems.append(
                        f"tasks {first!r} and {second!r} both write {target} "
                        "but neither requires the other"
                    )
    if problems:
        raise ConfigError("Invalid task graph:", problems)
    return ordered


class TaskGraphRunner:
    """Run tasks in waves of ready tasks on a bounded thread pool.

    A wave is every pending task whose prerequisites are terminal. Tasks in a
    wave run concurrently and the runner waits for the whole wave before
    computing the next one. A failure never stops siblings; it only turns
    dependents into ``skipped("dependency failed")``.
    """

    def __init__(
        self,
        action: TaskAction,
        *,
        max_workers: int = 4,
        default_timeout: float | None = None,
        on_state: StateListener | None = None,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self._action = action
        self._max_workers = max_workers
        self._default_timeout = default_timeout
        self._on_state = on_state
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Stop starting new tasks; in-flight tasks finish their current step."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _notify(self, task_id: str, state: TaskState) -> None:
        if self._on_state is not None:
            self._on_state(task_id, state)

    def _execute(self, task: Task, wave: int) -> TaskResult:
        if self._cancel.is_set():
            return TaskResult(task.id, TaskState.SKIPPED, Outcome.skipped(CANCELLED), wave=wave)

        self._notify(task.id, TaskState.RUNNING)
        timeout = task.timeout if task.timeout is not None else self._default_timeout
        started = time.monotonic()
        try:
            outcome = self._action(task, timeout)
        except Exception as exc:
            logger.exception("%s: unexpected error", task.id)
            outcome = Outcome.failed(f"unexpected error: {exc}")
        elapsed = time.monotonic() - started

        state = TaskState.FAILED if outcome.status == "failed" else TaskState.SUCCEEDED
        return TaskResult(task.id, state, outcome, wave=wave, duration_s=elapsed)

    def _run_wave(self, wave: list[Task], number: int, report: RunReport) -> None:
        workers = min(len(wave), self._max_workers)
        logger.debug("wave %d: %s", number, ", ".join(t.id for t in wave))
        pool = concurrent.futures.ThreadPoolExecutor(max_workers=workers, thread_name_prefix="archrig")
        futures = {pool.submit(self._execute, task, number): task for task in wave}
        try:
            for future in concurrent.futures.as_completed(futures):
                result = future.result()
                report.record(result)
                self._notify(result.task_id, result.state)
        except KeyboardInterrupt:
            logger.warning("Interrupted: letting running tasks finish")
            self.cancel()
            report.cancelled = True
        finally:
            pool.shutdown(wait=True)
        for future, task in futures.items():
            if task.id not in report.results and future.done() and not future.cancelled():
                result = future.result()
                report.record(result)
                self._notify(result.task_id, result.state)

    def run(self, tasks: Iterable[Task], *, run_id: str | None = None) -> RunReport:
        """Execute ``tasks`` respecting dependencies and return the run report.

        Raises:
            ConfigError: If the graph is invalid; no task runs in that case
        """
        ordered = validate_graph(tasks)
        report = RunReport(run_id=run_id or uuid.uuid4().hex[:12])
        pending = list(ordered)
        number = 0

        while pending:
            if self._cancel.is_set():
                report.cancelled = True
                for task in pending:
                    report.record(TaskResult(task.id, TaskState.SKIPPED, Outcome.skipped(CANCELLED)))
                    self._notify(task.id, TaskState.SKIPPED)
                break

            ready = [t for t in pending if all(report.state_of(dep).terminal for dep in t.requires)]
            blocked = [
                t
                for t in ready
                if any(report.state_of(dep) in (TaskState.FAILED, TaskState.SKIPPED) for dep in t.requires)
            ]
            for task in blocked:
                logger.warning("%s: skipped, %s", task.id, DEPENDENCY_FAILED)
                report.record(TaskResult(task.id, TaskState.SKIPPED, Outcome.skipped(DEPENDENCY_FAILED)))
                self._notify(task.id, TaskState.SKIPPED)

            runnable = [t for t in ready if t not in blocked]
            done = {t.id for t in ready}
            pending = [t for t in pending if t.id not in done]
            if not runnable:
                if not ready:
                    raise RuntimeError("task graph stalled with pending tasks")
                continue

            number += 1
            self._run_wave(runnable, number, report)

        report.finalize()
        return report
