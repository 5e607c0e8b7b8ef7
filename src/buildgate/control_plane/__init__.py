"""Control plane: dependency-respecting task execution."""

from buildgate.control_plane.scheduler import (
    Scheduler,
    SchedulerReport,
    Task,
    TaskAction,
    TaskContext,
    TaskOutcome,
    TaskStatus,
)

__all__ = [
    "Scheduler",
    "SchedulerReport",
    "Task",
    "TaskAction",
    "TaskContext",
    "TaskOutcome",
    "TaskStatus",
]
