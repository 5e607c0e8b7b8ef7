"""
Static bug-finder checker.

Understands the SpotBugs text report, one finding per line::

    H C EC_UNRELATED_TYPES: Call to equals() comparing different types In method pkg.Cls.m() At Cls.java:[line 15]

The leading letter is the priority (H/M/L -> error/warning/info). Lines in the
plain ``path:line:col: message`` form (pyflakes and friends) are accepted too.
"""

from __future__ import annotations

import re
from typing import Final

from buildgate.verification_plane.checkers.base import Severity, Violation
from buildgate.verification_plane.checkers.command_checker import (
    CommandChecker,
    parse_location_lines,
)

_FINDING_RE: Final[re.Pattern[str]] = re.compile(
    r"^(?P<priority>[HML])\s+(?P<category>[A-Z_]+)\s+(?P<rule>[A-Za-z0-9_]+):\s+(?P<rest>.+)$"
)
_METHOD_RE: Final[re.Pattern[str]] = re.compile(
    r"\b(?:In method|in)\s+(?P<qualified>[\w$]+(?:\.[\w$<>]+)+)\((?P<args>[^)]*)\)"
)
_AT_RE: Final[re.Pattern[str]] = re.compile(
    r"\b[Aa]t\s+(?P<file>[\w$./-]+):\[lines?\s+(?P<line>\d+)"
)
_PRIORITY_SEVERITY: Final[dict[str, Severity]] = {
    "H": Severity.ERROR,
    "M": Severity.WARNING,
    "L": Severity.INFO,
}


class BugChecker(CommandChecker):
    kind = "bugs"
    default_rule_id = "bugs.finding"
    default_severity = Severity.ERROR

    def parse_text(self, output: str) -> tuple[Violation, ...]:
        findings: list[Violation] = []
        plain_lines: list[str] = []
        for raw_line in output.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            match = _FINDING_RE.match(line)
            if match is None:
                plain_lines.append(line)
                continue
            findings.append(self._parse_finding(match))

        findings.extend(
            parse_location_lines(
                "\n".join(plain_lines), rule_id=self.default_rule_id, severity=self.default_severity
            )
        )
        return tuple(findings)

    def _parse_finding(self, match: re.Match[str]) -> Violation:
        rest = match.group("rest")
        method_match = _METHOD_RE.search(rest)
        at_match = _AT_RE.search(rest)

        cut = min(
            (found.start() for found in (method_match, at_match) if found is not None),
            default=len(rest),
        )
        message = rest[:cut].strip() or rest.strip()

        class_name: str | None = None
        method_name: str | None = None
        if method_match is not None:
            owner, _, method = method_match.group("qualified").rpartition(".")
            class_name = owner
            method_name = f"{method}({method_match.group('args')})"

        return Violation(
            rule_id=match.group("rule"),
            severity=_PRIORITY_SEVERITY[match.group("priority")],
            message=message,
            path=at_match.group("file") if at_match is not None else None,
            line=int(at_match.group("line")) if at_match is not None else None,
            class_name=class_name,
            method_name=method_name,
        )


__all__ = ["BugChecker"]
