"""Task graph types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from archrig.reconcile.types import Outcome, Resource, Snapshot

DEPENDENCY_FAILED = "dependency failed"
CANCELLED = "cancelled"


class TaskState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.SKIPPED)


@dataclass(frozen=True)
class Task:
    """A resource plus the tasks that must finish before it may start."""

    id: str
    resource: Resource
    requires: tuple[str, ...] = ()
    timeout: float | None = None


@dataclass(frozen=True)
class TaskResult:
    """Terminal record of one task."""

    task_id: str
    state: TaskState
    outcome: Outcome
    wave: int | None = None
    duration_s: float = 0.0

    @property
    def reason(self) -> str | None:
        return self.outcome.reason

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "state": self.state.value,
            "outcome": self.outcome.status,
            "reason": self.outcome.reason,
            "wave": self.wave,
            "duration_s": round(self.duration_s, 3),
            "snapshots": [s.id for s in self.outcome.snapshots],
        }


def _utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds")


@dataclass
class RunReport:
    """Aggregate of one run: per-task results plus every snapshot taken.

    Created when the run starts and finalized when it ends; owned by the
    invoking process.
    """

    run_id: str
    started_at: str = field(default_factory=_utc_now)
    finished_at: str | None = None
    cancelled: bool = False
    results: dict[str, TaskResult] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)

    def record(self, result: TaskResult) -> None:
        if result.task_id not in self.results:
            self.order.append(result.task_id)
        self.results[result.task_id] = result

    def finalize(self) -> None:
        self.finished_at = _utc_now()

    def _select(self, predicate: Any) -> list[TaskResult]:
        return [self.results[task_id] for task_id in self.order if predicate(self.results[task_id])]

    @property
    def applied(self) -> list[TaskResult]:
        return self._select(lambda r: r.state is TaskState.SUCCEEDED and r.outcome.status == "applied")

    @property
    def unchanged(self) -> list[TaskResult]:
        """Tasks that ran and found their resource already satisfied."""
        return self._select(lambda r: r.state is TaskState.SUCCEEDED and r.outcome.status == "skipped")

    @property
    def failed(self) -> list[TaskResult]:
        return self._select(lambda r: r.state is TaskState.FAILED)

    @property
    def skipped(self) -> list[TaskResult]:
        """Tasks that never ran (failed dependency or cancellation)."""
        return self._select(lambda r: r.state is TaskState.SKIPPED)

    @property
    def snapshots(self) -> list[Snapshot]:
        return [s for task_id in self.order for s in self.results[task_id].outcome.snapshots]

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def state_of(self, task_id: str) -> TaskState:
        result = self.results.get(task_id)
        return result.state if result is not None else TaskState.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": "1.0",
            "run_id": self.run_id,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "cancelled": self.cancelled,
            "summary": {
                "applied": len(self.applied),
                "unchanged": len(self.unchanged),
                "failed": len(self.failed),
                "skipped": len(self.skipped),
            },
            "tasks": [self.results[task_id].to_dict() for task_id in self.order],
            "snapshots": [s.to_dict() for s in self.snapshots],
        }
