"""Format checker: reports files the formatter would rewrite."""

from __future__ import annotations

import re
from typing import Final

from buildgate.verification_plane.checkers.base import Severity, Violation
from buildgate.verification_plane.checkers.command_checker import (
    CommandChecker,
    normalize_report_path,
)

_UNFORMATTED_PATTERNS: Final[tuple[re.Pattern[str], ...]] = (
    re.compile(r"^would reformat (?P<path>.+)$"),
    re.compile(r"^(?P<path>\S.*?):\s*needs formatting$"),
    re.compile(r"^(?:Would reformat|Incorrectly formatted):\s*(?P<path>.+)$"),
)


class FormatChecker(CommandChecker):
    """Wraps a ``--check`` style formatter run (black, ruff format, spotless)."""

    kind = "format"
    default_rule_id = "format.unformatted"
    default_severity = Severity.ERROR

    def parse_text(self, output: str) -> tuple[Violation, ...]:
        paths: set[str] = set()
        for raw_line in output.splitlines():
            line = raw_line.strip()
            for pattern in _UNFORMATTED_PATTERNS:
                match = pattern.match(line)
                if match is None:
                    continue
                path = normalize_report_path(match.group("path"))
                if path is not None:
                    paths.add(path)
                break
        return tuple(
            Violation(
                rule_id=self.default_rule_id,
                severity=self.default_severity,
                message="file is not formatted",
                path=path,
            )
            for path in sorted(paths)
        )


__all__ = ["FormatChecker"]
