"""
Task graph scheduler.

Runs an explicit DAG of async tasks on a bounded pool:
- tasks start only after every dependency succeeded
- independent tasks run concurrently, longest downstream chain first
- a failure skips every transitive dependent, attributed to the failing task
- unrelated branches keep running (not fail-fast)

Task-local errors never leave ``run()``; they become ``TaskOutcome`` records.
Graph errors (duplicate ids, unknown dependencies, cycles) raise
``ConfigurationError`` from the constructor, before anything executes.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from heapq import heapify, heappop, heappush
from types import MappingProxyType
from typing import Any

import structlog

from buildgate.domain.errors import ConfigurationError, TaskTimeout
from buildgate.observability.logging import correlation_scope
from buildgate.planning.task_graph import TaskGraph
from buildgate.utils.concurrency import BoundedSemaphore, run_with_timeout


class TaskStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({TaskStatus.SUCCEEDED, TaskStatus.FAILED, TaskStatus.SKIPPED})


@dataclass(frozen=True, slots=True)
class TaskContext:
    """What a running task may see: its own id and its dependencies' outputs."""

    task_id: str
    dependency_outputs: Mapping[str, object]

    def output_of(self, dependency_id: str) -> object:
        try:
            return self.dependency_outputs[dependency_id]
        except KeyError:
            raise KeyError(f"{dependency_id!r} is not a dependency of {self.task_id!r}") from None


TaskAction = Callable[[TaskContext], Awaitable[object]]


@dataclass(slots=True)
class Task:
    """Unit of build work. ``status`` is owned by the scheduler."""

    task_id: str
    action: TaskAction
    dependencies: frozenset[str] = frozenset()
    timeout_seconds: float | None = None
    status: TaskStatus = TaskStatus.PENDING

    def __post_init__(self) -> None:
        if not isinstance(self.task_id, str) or not self.task_id.strip():
            raise ConfigurationError("task_id must be a non-empty string")
        self.dependencies = frozenset(self.dependencies)
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ConfigurationError(f"task {self.task_id!r}: timeout_seconds must be > 0")


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Terminal record of one task, published once."""

    task_id: str
    status: TaskStatus
    output: object = None
    error: BaseException | None = None
    blocked_by: str | None = None
    reason: str = ""
    duration_ms: int = 0


@dataclass(frozen=True, slots=True)
class SchedulerReport:
    """Outcomes of a finished run, in topological order."""

    order: tuple[str, ...]
    outcomes: Mapping[str, TaskOutcome]
    peak_concurrency: int = 0

    def outcome(self, task_id: str) -> TaskOutcome:
        return self.outcomes[task_id]

    def with_status(self, status: TaskStatus) -> tuple[str, ...]:
        return tuple(task_id for task_id in self.order if self.outcomes[task_id].status is status)

    @property
    def succeeded(self) -> tuple[str, ...]:
        return self.with_status(TaskStatus.SUCCEEDED)

    @property
    def failed(self) -> tuple[str, ...]:
        return self.with_status(TaskStatus.FAILED)

    @property
    def skipped(self) -> tuple[str, ...]:
        return self.with_status(TaskStatus.SKIPPED)

    @property
    def all_succeeded(self) -> bool:
        return len(self.succeeded) == len(self.order)


class Scheduler:
    """Dependency-respecting executor for a fixed set of tasks. Single use."""

    def __init__(
        self,
        tasks: Iterable[Task],
        *,
        max_workers: int = 4,
        default_timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        if max_workers <= 0:
            raise ConfigurationError("max_workers must be > 0")
        if default_timeout_seconds is not None and default_timeout_seconds <= 0:
            raise ConfigurationError("default_timeout_seconds must be > 0")

        by_id: dict[str, Task] = {}
        for task in tasks:
            if task.task_id in by_id:
                raise ConfigurationError(f"duplicate task id {task.task_id!r}")
            by_id[task.task_id] = task

        graph = TaskGraph(nodes=by_id)
        for task_id, task in by_id.items():
            for dependency in sorted(task.dependencies):
                if dependency not in by_id:
                    raise ConfigurationError(
                        f"task {task_id!r} depends on unknown task {dependency!r}"
                    )
                graph.add_edge(dependency, task_id)

        self._tasks = by_id
        self._graph = graph
        self._order = graph.topological_sort()
        self._depth = graph.downstream_depth()
        self._max_workers = max_workers
        self._default_timeout_seconds = default_timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._started = False

    @property
    def graph(self) -> TaskGraph:
        return self._graph

    @property
    def tasks(self) -> Mapping[str, Task]:
        return MappingProxyType(self._tasks)

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def plan(self) -> tuple[str, ...]:
        """Topological execution order, without running anything."""
        return self._order

    async def run(self) -> SchedulerReport:
        if self._started:
            raise RuntimeError("Scheduler.run() may only be called once")
        self._started = True

        semaphore = BoundedSemaphore(self._max_workers)
        outcomes: dict[str, TaskOutcome] = {}
        waiting_on = {task_id: set(task.dependencies) for task_id, task in self._tasks.items()}
        ready = [(-self._depth[task_id], task_id) for task_id, deps in waiting_on.items() if not deps]
        heapify(ready)
        running: dict[asyncio.Task[TaskOutcome], str] = {}

        self._logger.info(
            "scheduler_run_started",
            task_count=len(self._tasks),
            max_workers=self._max_workers,
            order=list(self._order),
            critical_path=list(self._graph.critical_path()),
        )

        try:
            while ready or running:
                while ready:
                    _, task_id = heappop(ready)
                    handle = asyncio.create_task(
                        self._execute(self._tasks[task_id], outcomes, semaphore),
                        name=f"buildgate-task:{task_id}",
                    )
                    running[handle] = task_id

                done, _ = await asyncio.wait(running, return_when=asyncio.FIRST_COMPLETED)
                for handle in sorted(done, key=running.__getitem__):
                    task_id = running.pop(handle)
                    outcome = handle.result()
                    self._publish(outcome, outcomes)
                    if outcome.status is TaskStatus.SUCCEEDED:
                        for dependent in self._graph.get_dependents(task_id):
                            waiting_on[dependent].discard(task_id)
                            if not waiting_on[dependent] and dependent not in outcomes:
                                heappush(ready, (-self._depth[dependent], dependent))
                    else:
                        self._skip_dependents(task_id, outcomes)
        except asyncio.CancelledError:
            for handle in running:
                handle.cancel()
            await asyncio.gather(*running, return_exceptions=True)
            raise

        unfinished = sorted(set(self._tasks) - set(outcomes))
        if unfinished:
            raise RuntimeError(f"scheduler stalled with non-terminal tasks: {unfinished}")

        report = SchedulerReport(
            order=self._order,
            outcomes=MappingProxyType({task_id: outcomes[task_id] for task_id in self._order}),
            peak_concurrency=semaphore.peak,
        )
        self._logger.info(
            "scheduler_run_finished",
            succeeded=list(report.succeeded),
            failed=list(report.failed),
            skipped=list(report.skipped),
            peak_concurrency=report.peak_concurrency,
        )
        return report

    async def _execute(
        self,
        task: Task,
        outcomes: Mapping[str, TaskOutcome],
        semaphore: BoundedSemaphore,
    ) -> TaskOutcome:
        context = TaskContext(
            task_id=task.task_id,
            dependency_outputs=MappingProxyType(
                {dependency: outcomes[dependency].output for dependency in sorted(task.dependencies)}
            ),
        )
        timeout = (
            task.timeout_seconds
            if task.timeout_seconds is not None
            else self._default_timeout_seconds
        )

        async with semaphore.permit():
            task.status = TaskStatus.RUNNING
            started = time.monotonic()
            with correlation_scope(task_id=task.task_id):
                self._logger.info(
                    "scheduler_task_started", task_id=task.task_id, timeout_seconds=timeout
                )
                error: BaseException
                try:
                    output = await run_with_timeout(task.action(context), timeout)
                except TaskTimeout as exc:
                    error = exc
                except TimeoutError as exc:
                    error = TaskTimeout(task.task_id, timeout) if timeout is not None else exc
                except asyncio.CancelledError as exc:
                    # Only a cancellation aimed at this task tears the run down.
                    current = asyncio.current_task()
                    if current is not None and current.cancelling():
                        raise
                    error = exc
                except Exception as exc:
                    error = exc
                else:
                    duration_ms = _elapsed_ms(started)
                    self._logger.info(
                        "scheduler_task_succeeded", task_id=task.task_id, duration_ms=duration_ms
                    )
                    return TaskOutcome(
                        task_id=task.task_id,
                        status=TaskStatus.SUCCEEDED,
                        output=output,
                        duration_ms=duration_ms,
                    )

                duration_ms = _elapsed_ms(started)
                self._logger.warning(
                    "scheduler_task_failed",
                    task_id=task.task_id,
                    error_type=type(error).__name__,
                    error=str(error),
                    duration_ms=duration_ms,
                )
                return TaskOutcome(
                    task_id=task.task_id,
                    status=TaskStatus.FAILED,
                    error=error,
                    reason=f"{type(error).__name__}: {error}",
                    duration_ms=duration_ms,
                )

    def _skip_dependents(self, root_id: str, outcomes: dict[str, TaskOutcome]) -> None:
        for dependent in self._graph.get_dependents(root_id, transitive=True):
            if dependent in outcomes:
                continue
            self._publish(
                TaskOutcome(
                    task_id=dependent,
                    status=TaskStatus.SKIPPED,
                    blocked_by=root_id,
                    reason=f"upstream task {root_id!r} failed",
                ),
                outcomes,
            )
            self._logger.info("scheduler_task_skipped", task_id=dependent, blocked_by=root_id)

    def _publish(self, outcome: TaskOutcome, outcomes: dict[str, TaskOutcome]) -> None:
        outcomes[outcome.task_id] = outcome
        self._tasks[outcome.task_id].status = outcome.status


def _elapsed_ms(started: float) -> int:
    return max(int((time.monotonic() - started) * 1000), 0)


__all__ = [
    "Scheduler",
    "SchedulerReport",
    "Task",
    "TaskAction",
    "TaskContext",
    "TaskOutcome",
    "TaskStatus",
]
