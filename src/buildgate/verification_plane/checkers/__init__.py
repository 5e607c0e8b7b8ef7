"""
Checker adapters.

The set of checker kinds is fixed: ``format``, ``style`` and ``bugs``. Config
selects a kind by name; there is no plugin discovery.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Final

from buildgate.domain.errors import ConfigurationError
from buildgate.verification_plane.checkers.base import (
    Checker,
    CheckResult,
    CheckTarget,
    CommandExecutor,
    CommandResult,
    CommandSpec,
    LocalSubprocessExecutor,
    Severity,
    Violation,
    normalize_violations,
)
from buildgate.verification_plane.checkers.bug_checker import BugChecker
from buildgate.verification_plane.checkers.command_checker import (
    CheckerSettings,
    CommandChecker,
    split_command,
)
from buildgate.verification_plane.checkers.format_checker import FormatChecker
from buildgate.verification_plane.checkers.style_checker import StyleChecker

if TYPE_CHECKING:
    from collections.abc import Mapping

CHECKER_KINDS: Final[Mapping[str, type[CommandChecker]]] = {
    FormatChecker.kind: FormatChecker,
    StyleChecker.kind: StyleChecker,
    BugChecker.kind: BugChecker,
}


def create_checker(
    kind: str,
    settings: CheckerSettings,
    *,
    executor: CommandExecutor,
    logger: Any | None = None,
) -> CommandChecker:
    """Build the checker for ``kind``; unknown kinds are configuration errors."""

    checker_cls = CHECKER_KINDS.get(kind)
    if checker_cls is None:
        known = ", ".join(sorted(CHECKER_KINDS))
        raise ConfigurationError(
            f"task {settings.task_id!r}: unknown checker kind {kind!r}; expected one of: {known}"
        )
    return checker_cls(settings, executor=executor, logger=logger)


__all__ = [
    "BugChecker",
    "CHECKER_KINDS",
    "CheckResult",
    "CheckTarget",
    "Checker",
    "CheckerSettings",
    "CommandChecker",
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "FormatChecker",
    "LocalSubprocessExecutor",
    "Severity",
    "StyleChecker",
    "Violation",
    "create_checker",
    "normalize_violations",
    "split_command",
]
