"""Wave-based task graph runner."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from archrig.errors import ConfigError
from archrig.graph import RunReport, Task, TaskGraphRunner, TaskState, validate_graph
from archrig.graph.types import CANCELLED, DEPENDENCY_FAILED
from archrig.reconcile import Outcome, Resource, ResourceKind
from archrig.reconcile.types import FileSpec, PackageSpec


def _pkg(task_id: str, *requires: str, timeout: float | None = None) -> Task:
    resource = Resource(id=task_id, kind=ResourceKind.INSTALLED_PACKAGE, spec=PackageSpec(names=(task_id,)))
    return Task(id=task_id, resource=resource, requires=requires, timeout=timeout)


def _file_task(task_id: str, path: str, *requires: str) -> Task:
    resource = Resource(id=task_id, kind=ResourceKind.FILE_CONTENT, spec=FileSpec(path=Path(path), content="x\n"))
    return Task(id=task_id, resource=resource, requires=requires)


class _Recorder:
    def __init__(self, failing: set[str] | None = None) -> None:
        self.failing = failing or set()
        self.seen: list[str] = []
        self.timeouts: dict[str, float | None] = {}
        self._lock = threading.Lock()

    def __call__(self, task: Task, timeout: float | None) -> Outcome:
        with self._lock:
            self.seen.append(task.id)
            self.timeouts[task.id] = timeout
        if task.id in self.failing:
            return Outcome.failed("exit 1")
        return Outcome.applied()


def test_cycle_is_rejected_and_nothing_runs() -> None:
    action = _Recorder()
    runner = TaskGraphRunner(action)

    with pytest.raises(ConfigError, match="Dependency cycle: .*a.*b"):
        runner.run([_pkg("a", "b"), _pkg("b", "a"), _pkg("c")])

    assert action.seen == []


def test_unknown_prerequisite_and_duplicate_ids_are_config_errors() -> None:
    with pytest.raises(ConfigError, match="requires unknown task 'ghost'"):
        validate_graph([_pkg("a", "ghost")])
    with pytest.raises(ConfigError, match="duplicate task id 'a'"):
        validate_graph([_pkg("a"), _pkg("a")])


def test_unordered_tasks_sharing_a_target_are_rejected() -> None:
    with pytest.raises(ConfigError, match="both write /etc/pacman.conf"):
        validate_graph([_file_task("one", "/etc/pacman.conf"), _file_task("two", "/etc/pacman.conf")])

    ordered = validate_graph([_file_task("one", "/etc/pacman.conf"), _file_task("two", "/etc/pacman.conf", "one")])
    assert [t.id for t in ordered] == ["one", "two"]


def test_independent_installs_both_reported() -> None:
    started = threading.Barrier(2, timeout=5)

    def action(task: Task, timeout: float | None) -> Outcome:
        # Both tasks must be in flight at once for the barrier to release.
        started.wait()
        return Outcome.applied()

    report = TaskGraphRunner(action, max_workers=4).run([_pkg("A"), _pkg("B")])

    assert set(report.results) == {"A", "B"}
    assert all(r.state is TaskState.SUCCEEDED for r in report.results.values())
    assert {r.wave for r in report.results.values()} == {1}
    assert report.ok


def test_failed_runtime_skips_dependent_tool() -> None:
    action = _Recorder(failing={"install-runtime"})

    report = TaskGraphRunner(action).run([_pkg("install-runtime"), _pkg("install-tool", "install-runtime")])

    assert report.state_of("install-runtime") is TaskState.FAILED
    tool = report.results["install-tool"]
    assert tool.state is TaskState.SKIPPED
    assert tool.reason == DEPENDENCY_FAILED
    assert "install-tool" not in action.seen
    assert not report.ok


def test_skip_propagates_transitively_but_siblings_still_run() -> None:
    action = _Recorder(failing={"a"})
    tasks = [_pkg("a"), _pkg("b", "a"), _pkg("c", "b"), _pkg("sibling")]

    report = TaskGraphRunner(action).run(tasks)

    assert report.results["b"].reason == DEPENDENCY_FAILED
    assert report.results["c"].reason == DEPENDENCY_FAILED
    assert report.state_of("sibling") is TaskState.SUCCEEDED
    assert sorted(action.seen) == ["a", "sibling"]


def test_waves_respect_dependencies() -> None:
    action = _Recorder()
    tasks = [_pkg("go-tools", "packages"), _pkg("packages", "repo"), _pkg("repo")]

    report = TaskGraphRunner(action).run(tasks)

    assert action.seen == ["repo", "packages", "go-tools"]
    assert [report.results[t].wave for t in ("repo", "packages", "go-tools")] == [1, 2, 3]


def test_task_timeout_overrides_default() -> None:
    action = _Recorder()

    TaskGraphRunner(action, default_timeout=30).run([_pkg("slow", timeout=600), _pkg("fast")])

    assert action.timeouts == {"slow": 600, "fast": 30}


def test_already_satisfied_counts_as_success_for_dependents() -> None:
    def action(task: Task, timeout: float | None) -> Outcome:
        return Outcome.skipped() if task.id == "base" else Outcome.applied()

    report = TaskGraphRunner(action).run([_pkg("base"), _pkg("top", "base")])

    assert [r.task_id for r in report.unchanged] == ["base"]
    assert [r.task_id for r in report.applied] == ["top"]
    assert report.ok


def test_unexpected_exception_becomes_failed_task() -> None:
    def action(task: Task, timeout: float | None) -> Outcome:
        raise RuntimeError("kaboom")

    report = TaskGraphRunner(action).run([_pkg("x")])

    assert report.results["x"].state is TaskState.FAILED
    assert report.results["x"].reason == "unexpected error: kaboom"


def test_cancel_skips_pending_tasks_and_lets_running_finish() -> None:
    runner: TaskGraphRunner

    def action(task: Task, timeout: float | None) -> Outcome:
        runner.cancel()
        return Outcome.applied()

    runner = TaskGraphRunner(action, max_workers=1)
    report = runner.run([_pkg("first"), _pkg("second", "first"), _pkg("third", "second")])

    assert report.state_of("first") is TaskState.SUCCEEDED
    assert report.results["second"].reason == CANCELLED
    assert report.results["third"].reason == CANCELLED
    assert report.cancelled is True


def test_state_listener_sees_running_then_terminal() -> None:
    events: list[tuple[str, TaskState]] = []
    runner = TaskGraphRunner(_Recorder(), on_state=lambda tid, state: events.append((tid, state)))

    runner.run([_pkg("a")])

    assert events == [("a", TaskState.RUNNING), ("a", TaskState.SUCCEEDED)]


def test_report_dict_summary() -> None:
    report = TaskGraphRunner(_Recorder(failing={"a"})).run([_pkg("a"), _pkg("b", "a"), _pkg("c")], run_id="r1")

    payload = report.to_dict()

    assert isinstance(report, RunReport)
    assert payload["run_id"] == "r1"
    assert payload["summary"] == {"applied": 1, "unchanged": 0, "failed": 1, "skipped": 1}
    assert payload["finished_at"] is not None
    order = [t["task_id"] for t in payload["tasks"]]
    assert sorted(order[:2]) == ["a", "c"]
    assert order[2] == "b"
