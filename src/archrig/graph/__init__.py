"""Task graph: dependency validation and wave-based concurrent execution."""

from archrig.graph.runner import TaskGraphRunner, validate_graph
from archrig.graph.types import RunReport, Task, TaskResult, TaskState

__all__ = ["RunReport", "Task", "TaskGraphRunner", "TaskResult", "TaskState", "validate_graph"]
