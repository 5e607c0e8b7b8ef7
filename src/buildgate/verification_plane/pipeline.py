"""
buildgate: build pipeline.

Turns the validated config into an explicit task DAG, runs it through the
scheduler and hands every terminal outcome to the gate.

Task kinds:
- ``format`` / ``style`` / ``bugs``: command-backed checkers
- ``compile`` / ``command``: plain command steps
- ``test``: forked test workers with coverage collection

When the graph holds at least one ``test`` task, a ``coverage-merge`` task is
appended behind all of them. It is the only synchronization point between the
workers' coverage files and the gate.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

from buildgate.control_plane.scheduler import (
    Scheduler,
    SchedulerReport,
    Task,
    TaskAction,
    TaskContext,
    TaskOutcome,
    TaskStatus,
)
from buildgate.coverage.collector import CoverageCollector
from buildgate.coverage.merger import MERGED_REPORT_FILENAME, CoverageMerger, MergeOutcome
from buildgate.domain.errors import ConfigurationError, ViolationThresholdExceeded
from buildgate.utils.fs import atomic_write
from buildgate.utils.hashing import canonical_json_dumps
from buildgate.verification_plane.checkers import (
    CheckerSettings,
    CheckResult,
    CheckTarget,
    CommandExecutor,
    LocalSubprocessExecutor,
    create_checker,
)
from buildgate.verification_plane.checkers.command_checker import render_command
from buildgate.verification_plane.command_step import CommandStep
from buildgate.verification_plane.gate import GateThresholds, GateVerdict, evaluate
from buildgate.verification_plane.test_execution import (
    TestExecution,
    TestExecutionResult,
    TestWorker,
)

COVERAGE_MERGE_TASK_ID: Final[str] = "coverage-merge"
GATE_SUMMARY_FILENAME: Final[str] = "gate-summary.json"

_CHECKER_KINDS: Final[frozenset[str]] = frozenset({"format", "style", "bugs"})
_COMMAND_KINDS: Final[frozenset[str]] = frozenset({"compile", "command"})


@dataclass(frozen=True, slots=True)
class BuildReport:
    """Everything a finished build produced, in one read-only record."""

    scheduler_report: SchedulerReport
    check_results: tuple[CheckResult, ...]
    coverage: MergeOutcome | None
    verdict: GateVerdict
    summary_path: Path | None = None
    coverage_path: Path | None = None

    @property
    def passed(self) -> bool:
        return self.verdict.passed

    def to_dict(self) -> dict[str, object]:
        report = self.scheduler_report
        return {
            "passed": self.verdict.passed,
            "verdict": self.verdict.to_dict(),
            "tasks": [
                {
                    "task_id": task_id,
                    "status": report.outcome(task_id).status.value,
                    "duration_ms": report.outcome(task_id).duration_ms,
                    "reason": report.outcome(task_id).reason,
                    "blocked_by": report.outcome(task_id).blocked_by,
                }
                for task_id in report.order
            ],
            "checks": [result.to_dict() for result in self.check_results],
            "coverage": None
            if self.coverage is None
            else {
                "report": self.coverage_path.as_posix() if self.coverage_path is not None else None,
                "files": [path.as_posix() for path in self.coverage.merged_files],
                "skipped_files": [str(error) for error in self.coverage.errors],
                "line_percent": self.coverage.report.line_percent,
                "branch_percent": self.coverage.report.branch_percent,
                "classes": [
                    summary.to_dict() for summary in self.coverage.report.class_summaries()
                ],
            },
            "peak_concurrency": report.peak_concurrency,
        }


class BuildPipeline:
    """Builds the task graph from config and runs it to a gate verdict."""

    def __init__(
        self,
        config: Mapping[str, Any],
        *,
        executor: CommandExecutor | None = None,
        logger: Any | None = None,
    ) -> None:
        self._config = config
        self._build = config["build"]
        self._checks = config["checks"]
        self._coverage = config["coverage"]
        self._scheduler_config = config["scheduler"]
        self._executor = (
            executor
            if executor is not None
            else LocalSubprocessExecutor(encoding=self._build["file_encoding"])
        )
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._collector = CoverageCollector(
            self._coverage["agent_path"],
            self._coverage["output_dir"],
            file_encoding=self._build["file_encoding"],
            logger=self._logger,
        )
        self._merger = CoverageMerger(
            self._coverage["merge_policy"],
            suffixes=self._coverage["output_suffixes"],
            logger=self._logger,
        )

    @property
    def collector(self) -> CoverageCollector:
        return self._collector

    @property
    def reports_dir(self) -> Path:
        return Path(self._build["reports_dir"])

    @property
    def coverage_report_path(self) -> Path:
        return Path(self._coverage["output_dir"]) / MERGED_REPORT_FILENAME

    def build_tasks(self) -> tuple[Task, ...]:
        """Materialize ``[[tasks]]`` into scheduler tasks. Raises ``ConfigurationError``."""

        entries: Sequence[Mapping[str, Any]] = self._config["tasks"]
        tasks: list[Task] = []
        test_task_ids: list[str] = []
        for entry in entries:
            task_id = entry["id"]
            kind = entry["kind"]
            if task_id == COVERAGE_MERGE_TASK_ID:
                raise ConfigurationError(f"task id {task_id!r} is reserved")
            if kind in _CHECKER_KINDS:
                action = self._checker_action(entry)
            elif kind in _COMMAND_KINDS:
                action = self._command_action(entry)
            elif kind == "test":
                action = self._test_action(entry)
                test_task_ids.append(task_id)
            else:
                raise ConfigurationError(f"task {task_id!r}: unknown kind {kind!r}")
            tasks.append(
                Task(
                    task_id=task_id,
                    action=action,
                    dependencies=frozenset(entry.get("depends_on", ())),
                    timeout_seconds=entry.get("timeout_seconds"),
                )
            )

        if test_task_ids:
            tasks.append(
                Task(
                    task_id=COVERAGE_MERGE_TASK_ID,
                    action=self._merge_coverage,
                    dependencies=frozenset(test_task_ids),
                )
            )
        return tuple(tasks)

    def scheduler(self) -> Scheduler:
        return Scheduler(
            self.build_tasks(),
            max_workers=self._scheduler_config["max_workers"],
            default_timeout_seconds=self._scheduler_config["default_timeout_seconds"],
            logger=self._logger,
        )

    def plan(self) -> tuple[str, ...]:
        return self.scheduler().plan()

    async def run(self) -> BuildReport:
        scheduler = self.scheduler()
        self._logger.info(
            "build_started",
            order=list(scheduler.plan()),
            max_workers=scheduler.max_workers,
        )
        report = await scheduler.run()
        outcomes = tuple(report.outcome(task_id) for task_id in report.order)

        check_results = tuple(
            result for result in (check_result_of(outcome) for outcome in outcomes) if result is not None
        )
        merge_outcome: MergeOutcome | None = None
        coverage_path: Path | None = None
        if COVERAGE_MERGE_TASK_ID in report.outcomes:
            merge_task = report.outcome(COVERAGE_MERGE_TASK_ID)
            if merge_task.status is TaskStatus.SUCCEEDED and isinstance(merge_task.output, MergeOutcome):
                merge_outcome = merge_task.output
                coverage_path = self.coverage_report_path

        thresholds = GateThresholds(
            min_line_percent=self._coverage.get("min_line_percent"),
            min_branch_percent=self._coverage.get("min_branch_percent"),
        )
        verdict = evaluate(
            check_results,
            merge_outcome.report if merge_outcome is not None else None,
            thresholds,
            task_outcomes=outcomes,
        )

        if self._checks["show_violations"]:
            self._log_violations(check_results)

        summary_path = self.reports_dir / GATE_SUMMARY_FILENAME
        build_report = BuildReport(
            scheduler_report=report,
            check_results=check_results,
            coverage=merge_outcome,
            verdict=verdict,
            summary_path=summary_path,
            coverage_path=coverage_path,
        )
        await asyncio.to_thread(
            atomic_write, summary_path, canonical_json_dumps(build_report.to_dict(), indent=2) + "\n"
        )
        self._logger.info(
            "build_finished",
            passed=verdict.passed,
            failing=list(verdict.failing_task_ids),
            skipped=[item.task_id for item in verdict.skipped],
            total_violations=verdict.total_violations,
            summary_path=summary_path.as_posix(),
        )
        return build_report

    def _placeholders(self) -> dict[str, str | None]:
        return {
            "source_root": self._build["source_root"],
            "classes_root": self._build["classes_root"],
            "output_root": self._build["output_root"],
            "reports_dir": self._build["reports_dir"],
            "file_encoding": self._build["file_encoding"],
        }

    def _checker_action(self, entry: Mapping[str, Any]) -> TaskAction:
        task_id = entry["id"]
        rule_config = _existing_rule_config(task_id, entry.get("rule_config"))
        # Build-wide names are rendered here; the checker fills in target/rule_config/report_dir.
        command = render_command(entry["command"], self._placeholders(), task_id=task_id)
        settings = CheckerSettings(
            task_id=task_id,
            command=command,
            max_warnings=entry.get("max_warnings", self._checks["max_warnings"]),
            fail_build_on_violation=entry.get(
                "fail_build_on_violation", self._checks["fail_build_on_violation"]
            ),
            rule_config=rule_config,
            report_dir=self.reports_dir / task_id,
            report_formats=tuple(self._checks["report_formats"]),
            violation_exit_codes=tuple(entry.get("violation_exit_codes", (1,))),
            output_format=entry.get("output_format", "text"),
            version_command=tuple(entry["version_command"]) if "version_command" in entry else None,
            timeout_seconds=self._timeout_for(entry),
            cwd=Path(entry["cwd"]) if "cwd" in entry else None,
        )
        checker = create_checker(entry["kind"], settings, executor=self._executor, logger=self._logger)
        target = CheckTarget(
            root=Path(entry.get("target", self._build["source_root"])), label=entry["kind"]
        )
        checker.render_argv(target)

        async def action(context: TaskContext) -> CheckResult:
            return await checker.evaluate(target)

        return action

    def _command_action(self, entry: Mapping[str, Any]) -> TaskAction:
        step = CommandStep(
            entry["id"],
            entry["command"],
            executor=self._executor,
            placeholders={
                **self._placeholders(),
                "target": entry.get("target", self._build["source_root"]),
            },
            cwd=Path(entry["cwd"]) if "cwd" in entry else None,
            timeout_seconds=self._timeout_for(entry),
            logger=self._logger,
        )

        async def action(context: TaskContext) -> object:
            return await step.run()

        return action

    def _test_action(self, entry: Mapping[str, Any]) -> TaskAction:
        task_id = entry["id"]
        count = entry.get("workers", 1)
        cwd = Path(entry["cwd"]) if "cwd" in entry else None
        workers = tuple(
            TestWorker(
                process_id=f"{task_id}-{index}",
                command=render_command(
                    entry["command"],
                    {"worker_index": str(index), "worker_count": str(count)},
                    task_id=task_id,
                ),
                cwd=cwd,
            )
            for index in range(1, count + 1)
        )
        execution = TestExecution(
            task_id,
            workers,
            self._collector,
            executor=self._executor,
            timeout_seconds=self._timeout_for(entry),
            failure_exit_codes=tuple(entry.get("violation_exit_codes", (1,))),
            placeholders={
                **self._placeholders(),
                "target": entry.get("target", self._build["source_root"]),
            },
            logger=self._logger,
        )

        async def action(context: TaskContext) -> TestExecutionResult:
            return await execution.run()

        return action

    async def _merge_coverage(self, context: TaskContext) -> MergeOutcome:
        outcome = await asyncio.to_thread(self._merger.merge, self._coverage["output_dir"])
        await asyncio.to_thread(self._merger.write, outcome.report, self.coverage_report_path)
        return outcome

    def _timeout_for(self, entry: Mapping[str, Any]) -> float | None:
        return entry.get("timeout_seconds", self._scheduler_config["default_timeout_seconds"])

    def _log_violations(self, results: Sequence[CheckResult]) -> None:
        for result in results:
            for violation in result.violations:
                self._logger.warning(
                    "violation",
                    task_id=result.task_id,
                    rule_id=violation.rule_id,
                    severity=violation.severity.value,
                    location=violation.location,
                    detail=violation.message,
                )


def check_result_of(outcome: TaskOutcome) -> CheckResult | None:
    """The ``CheckResult`` a task produced, whether it succeeded or failed on its threshold."""

    if isinstance(outcome.output, CheckResult):
        return outcome.output
    if isinstance(outcome.output, TestExecutionResult):
        return outcome.output.check_result
    if isinstance(outcome.error, ViolationThresholdExceeded):
        return outcome.error.result
    return None


def _existing_rule_config(task_id: str, value: str | None) -> Path | None:
    if value is None:
        return None
    path = Path(value)
    if not path.is_file():
        raise ConfigurationError(f"task {task_id!r}: rule config {path.as_posix()} does not exist")
    return path


__all__ = [
    "BuildPipeline",
    "BuildReport",
    "COVERAGE_MERGE_TASK_ID",
    "GATE_SUMMARY_FILENAME",
    "check_result_of",
]
