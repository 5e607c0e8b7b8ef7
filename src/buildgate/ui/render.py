"""Output rendering for the buildgate CLI.

Plain-text, deterministic output. ``NO_COLOR`` and ``--no-color`` are
respected; color is only a status prefix, never required to read the summary.
"""

from __future__ import annotations

import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

    from buildgate.verification_plane.pipeline import BuildReport

_GREEN = "\033[32m"
_RED = "\033[31m"
_RESET = "\033[0m"


def _color_allowed(no_color_flag: bool) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


class CLIRenderer:
    """Thin CLI output renderer."""

    def __init__(self, *, no_color: bool = False, verbose: bool = False) -> None:
        self.verbose = verbose
        self._color = _color_allowed(no_color)

    def kv(self, key: str, value: object) -> None:
        print(f"{key}: {value}")

    def text(self, line: str) -> None:
        print(line)

    def section(self, title: str) -> None:
        """Print a section header with a preceding blank line."""

        print(f"\n{title}")

    def items(self, entries: Sequence[str], *, prefix: str = "- ") -> None:
        for entry in entries:
            print(f"  {prefix}{entry}")

    def table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[str]],
        *,
        title: str | None = None,
    ) -> None:
        """Print a formatted ASCII table."""

        if not rows:
            return

        col_count = len(headers)
        widths = [len(h) for h in headers]
        for row in rows:
            for i in range(min(len(row), col_count)):
                widths[i] = max(widths[i], len(str(row[i])))

        def _pad(cells: Sequence[str]) -> str:
            parts: list[str] = []
            for i in range(col_count):
                cell = str(cells[i]) if i < len(cells) else ""
                parts.append(cell.ljust(widths[i]))
            return "  ".join(parts).rstrip()

        if title:
            self.section(title)
        print(f"  {_pad(list(headers))}")
        print(f"  {'  '.join('-' * w for w in widths)}")
        for row in rows:
            print(f"  {_pad(list(row))}")

    def status(self, passed: bool) -> None:
        label = "PASSED" if passed else "FAILED"
        if self._color:
            label = f"{_GREEN if passed else _RED}{label}{_RESET}"
        print(f"Build gate: {label}")


def create_renderer(*, no_color: bool = False, verbose: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color, verbose=verbose)


def render_build_report(renderer: CLIRenderer, report: BuildReport) -> None:
    """Human-readable gate summary: task table, failures, skips, coverage."""

    verdict = report.verdict
    scheduler_report = report.scheduler_report
    violations_by_task = {result.task_id: result for result in report.check_results}

    renderer.status(verdict.passed)
    rows: list[list[str]] = []
    for task_id in scheduler_report.order:
        outcome = scheduler_report.outcome(task_id)
        result = violations_by_task.get(task_id)
        rows.append(
            [
                task_id,
                outcome.status.value,
                "-" if result is None else f"{result.violation_count}/{result.threshold}",
                f"{outcome.duration_ms}ms",
            ]
        )
    renderer.table(("task", "status", "violations/max", "duration"), rows, title="Tasks:")

    if verdict.failing:
        renderer.section("Failing tasks:")
        renderer.items([f"{item.task_id}: {item.reason}" for item in verdict.failing])
    if verdict.skipped:
        renderer.section("Skipped tasks:")
        renderer.items(
            [
                f"{item.task_id}: blocked by {item.blocked_by}" if item.blocked_by else item.task_id
                for item in verdict.skipped
            ]
        )

    counts = ", ".join(f"{severity}={count}" for severity, count in verdict.severity_counts.items())
    renderer.section("Violations:")
    renderer.kv("  total", verdict.total_violations)
    renderer.kv("  by severity", counts or "none")
    if renderer.verbose:
        for result in report.check_results:
            for violation in result.violations:
                renderer.text(
                    f"  [{violation.severity.value}] {result.task_id} {violation.location}: "
                    f"{violation.message} ({violation.rule_id})"
                )

    renderer.section("Coverage:")
    renderer.kv("  line", _percent(verdict.line_percent))
    renderer.kv("  branch", _percent(verdict.branch_percent))
    if verdict.coverage_breaches:
        renderer.items([breach.message for breach in verdict.coverage_breaches])
    if renderer.verbose and report.coverage is not None:
        renderer.table(
            ("class", "line", "branch"),
            [
                [
                    summary.class_name,
                    _percent(summary.lines.percent),
                    _percent(summary.branches.percent),
                ]
                for summary in report.coverage.report.class_summaries()
            ],
        )
    if report.summary_path is not None:
        renderer.section(f"Summary written to {report.summary_path.as_posix()}")


def _percent(value: float | None) -> str:
    return "n/a" if value is None else f"{value:.2f}%"


__all__ = ["CLIRenderer", "create_renderer", "render_build_report"]
