"""Build task graph construction and validation."""

from buildgate.planning.task_graph import CycleError, TaskGraph

__all__ = ["CycleError", "TaskGraph"]
