"""
buildgate: gate evaluator.

Combines check results, terminal task outcomes and the merged coverage report
into one ``GateVerdict``. The gate fails when:
- a check result is over its threshold and fails the build on violations
- a task failed, or was skipped because an upstream task failed
- a configured line/branch coverage minimum is not met

Every failing task is listed by identity with its reason and violation count.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

from buildgate.control_plane.scheduler import TaskOutcome, TaskStatus
from buildgate.domain.errors import ConfigurationError
from buildgate.verification_plane.checkers.base import CheckResult, Severity

if TYPE_CHECKING:
    from buildgate.coverage.merger import MergedCoverageReport


@dataclass(frozen=True, slots=True)
class GateThresholds:
    """Coverage minimums in percent; ``None`` disables a check."""

    min_line_percent: float | None = None
    min_branch_percent: float | None = None

    def __post_init__(self) -> None:
        for name in ("min_line_percent", "min_branch_percent"):
            value = getattr(self, name)
            if value is not None and not 0.0 <= value <= 100.0:
                raise ConfigurationError(f"{name} must be between 0 and 100, got {value}")


@dataclass(frozen=True, slots=True)
class FailingTask:
    task_id: str
    reason: str
    violation_count: int = 0


@dataclass(frozen=True, slots=True)
class SkippedTask:
    task_id: str
    blocked_by: str | None
    reason: str


@dataclass(frozen=True, slots=True)
class CoverageBreach:
    metric: str
    actual_percent: float | None
    minimum_percent: float

    @property
    def message(self) -> str:
        actual = "no data" if self.actual_percent is None else f"{self.actual_percent:.2f}%"
        return f"{self.metric} coverage {actual} is below the {self.minimum_percent:.2f}% minimum"


@dataclass(frozen=True, slots=True)
class GateVerdict:
    """Final pass/fail decision. Created once, never mutated."""

    passed: bool
    failing: tuple[FailingTask, ...] = ()
    skipped: tuple[SkippedTask, ...] = ()
    severity_counts: Mapping[str, int] = field(default_factory=dict)
    line_percent: float | None = None
    branch_percent: float | None = None
    coverage_breaches: tuple[CoverageBreach, ...] = ()

    @property
    def failing_task_ids(self) -> tuple[str, ...]:
        return tuple(item.task_id for item in self.failing)

    @property
    def total_violations(self) -> int:
        return sum(self.severity_counts.values())

    def to_dict(self) -> dict[str, object]:
        return {
            "passed": self.passed,
            "failing": [
                {
                    "task_id": item.task_id,
                    "reason": item.reason,
                    "violation_count": item.violation_count,
                }
                for item in self.failing
            ],
            "skipped": [
                {"task_id": item.task_id, "blocked_by": item.blocked_by, "reason": item.reason}
                for item in self.skipped
            ],
            "severity_counts": dict(self.severity_counts),
            "total_violations": self.total_violations,
            "coverage": {
                "line_percent": self.line_percent,
                "branch_percent": self.branch_percent,
                "breaches": [item.message for item in self.coverage_breaches],
            },
        }


def evaluate(
    check_results: Iterable[CheckResult],
    merged_coverage: MergedCoverageReport | None,
    thresholds: GateThresholds | None = None,
    *,
    task_outcomes: Iterable[TaskOutcome] = (),
) -> GateVerdict:
    """Issue the verdict. Call only after every task is terminal and the merge finished."""

    results = tuple(check_results)
    outcomes = tuple(task_outcomes)
    limits = thresholds if thresholds is not None else GateThresholds()

    non_terminal = sorted(item.task_id for item in outcomes if not item.status.is_terminal)
    if non_terminal:
        raise ValueError(f"gate evaluated before tasks finished: {non_terminal}")

    severity_counts = {severity.value: 0 for severity in Severity}
    by_task: dict[str, CheckResult] = {}
    for result in results:
        by_task[result.task_id] = result
        for severity, count in result.severity_counts().items():
            severity_counts[severity] += count

    failing: dict[str, FailingTask] = {}
    for result in results:
        if not result.passed and result.fail_build_on_violation:
            failing[result.task_id] = FailingTask(
                task_id=result.task_id,
                reason=(
                    f"{result.violation_count} violation(s) exceed "
                    f"max_warnings={result.threshold}"
                ),
                violation_count=result.violation_count,
            )

    skipped: list[SkippedTask] = []
    for outcome in outcomes:
        if outcome.status is TaskStatus.FAILED and outcome.task_id not in failing:
            matching = by_task.get(outcome.task_id)
            failing[outcome.task_id] = FailingTask(
                task_id=outcome.task_id,
                reason=outcome.reason or "task failed",
                violation_count=matching.violation_count if matching is not None else 0,
            )
        elif outcome.status is TaskStatus.SKIPPED:
            skipped.append(
                SkippedTask(
                    task_id=outcome.task_id,
                    blocked_by=outcome.blocked_by,
                    reason=outcome.reason or "skipped",
                )
            )

    line_percent = merged_coverage.line_percent if merged_coverage is not None else None
    branch_percent = merged_coverage.branch_percent if merged_coverage is not None else None
    breaches: list[CoverageBreach] = []
    for metric, actual, minimum in (
        ("line", line_percent, limits.min_line_percent),
        ("branch", branch_percent, limits.min_branch_percent),
    ):
        if minimum is None:
            continue
        if actual is None or actual < minimum:
            breaches.append(CoverageBreach(metric=metric, actual_percent=actual, minimum_percent=minimum))

    order = {outcome.task_id: index for index, outcome in enumerate(outcomes)}
    ordered_failing = tuple(
        sorted(failing.values(), key=lambda item: (order.get(item.task_id, len(order)), item.task_id))
    )

    return GateVerdict(
        passed=not ordered_failing and not skipped and not breaches,
        failing=ordered_failing,
        skipped=tuple(skipped),
        severity_counts=MappingProxyType(severity_counts),
        line_percent=line_percent,
        branch_percent=branch_percent,
        coverage_breaches=tuple(breaches),
    )


__all__ = [
    "CoverageBreach",
    "FailingTask",
    "GateThresholds",
    "GateVerdict",
    "SkippedTask",
    "evaluate",
]
