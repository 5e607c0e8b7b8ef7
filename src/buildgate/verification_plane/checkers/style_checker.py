"""Style checker: checkstyle-like and ruff-like text reports."""

from __future__ import annotations

import re
from typing import Final

from buildgate.verification_plane.checkers.base import Severity, Violation
from buildgate.verification_plane.checkers.command_checker import (
    CommandChecker,
    normalize_report_path,
)

# [WARN] src/Foo.java:12:5: Missing a Javadoc comment. [MissingJavadocMethod]
_CHECKSTYLE_RE: Final[re.Pattern[str]] = re.compile(
    r"^\[(?P<severity>[A-Z]+)\]\s+(?P<path>[^:\s][^:]*?):(?P<line>\d+)(?::(?P<column>\d+))?:\s*"
    r"(?P<message>.+?)(?:\s+\[(?P<rule>[\w.-]+)\])?$"
)
# src/app.py:3:1: F401 `os` imported but unused
_RUFF_RE: Final[re.Pattern[str]] = re.compile(
    r"^(?P<path>[^:\s][^:]*?):(?P<line>\d+):(?P<column>\d+):\s*"
    r"(?P<rule>[A-Z]+[0-9]+)\s+(?P<message>.+)$"
)


class StyleChecker(CommandChecker):
    kind = "style"
    default_rule_id = "style.violation"
    default_severity = Severity.WARNING

    def parse_text(self, output: str) -> tuple[Violation, ...]:
        findings: list[Violation] = []
        for raw_line in output.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            checkstyle = _CHECKSTYLE_RE.match(line)
            if checkstyle is not None:
                findings.append(
                    Violation(
                        rule_id=checkstyle.group("rule") or self.default_rule_id,
                        severity=self._severity(checkstyle.group("severity")),
                        message=checkstyle.group("message").strip(),
                        path=normalize_report_path(checkstyle.group("path")),
                        line=int(checkstyle.group("line")),
                        column=int(checkstyle.group("column"))
                        if checkstyle.group("column")
                        else None,
                    )
                )
                continue
            ruff = _RUFF_RE.match(line)
            if ruff is not None:
                findings.append(
                    Violation(
                        rule_id=ruff.group("rule"),
                        severity=self.default_severity,
                        message=ruff.group("message").strip(),
                        path=normalize_report_path(ruff.group("path")),
                        line=int(ruff.group("line")),
                        column=int(ruff.group("column")),
                    )
                )
        return tuple(findings)

    def _severity(self, label: str) -> Severity:
        try:
            return Severity.coerce(label)
        except ValueError:
            return self.default_severity


__all__ = ["StyleChecker"]
