"""
buildgate: error taxonomy.

Only ``ConfigurationError`` aborts a build. Every other error here is local to
one task: the scheduler records it as task state and the gate reports it.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from buildgate.verification_plane.checkers.base import CheckResult


class BuildGateError(Exception):
    """Base class for all buildgate errors."""


class ConfigurationError(BuildGateError, ValueError):
    """Invalid build definition detected before any task executes."""


class ToolInvocationError(BuildGateError):
    """An external tool could not run or exited with an unexpected status."""

    def __init__(
        self,
        message: str,
        *,
        argv: Sequence[str] = (),
        exit_code: int | None = None,
    ) -> None:
        self.argv = tuple(argv)
        self.exit_code = exit_code
        super().__init__(message)


class ViolationThresholdExceeded(BuildGateError):
    """A checker found more violations than its threshold tolerates."""

    def __init__(self, result: CheckResult) -> None:
        self.result = result
        super().__init__(
            f"{result.task_id}: {len(result.violations)} violation(s) "
            f"exceed max_warnings={result.threshold}"
        )


class CoverageMergeError(BuildGateError):
    """A raw coverage data file could not be read or decoded."""

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        self.path = path
        super().__init__(message if path is None else f"{path}: {message}")


class TaskTimeout(BuildGateError, TimeoutError):
    """A task exceeded its deadline."""

    def __init__(self, task_id: str, timeout_seconds: float) -> None:
        self.task_id = task_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"task {task_id!r} exceeded its {timeout_seconds:g}s deadline")


__all__ = [
    "BuildGateError",
    "ConfigurationError",
    "CoverageMergeError",
    "TaskTimeout",
    "ToolInvocationError",
    "ViolationThresholdExceeded",
]
