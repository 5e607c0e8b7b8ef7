"""
Command-backed checker adapter.

Runs an external verification tool and turns its exit status and output into a
``CheckResult``:
- exit 0: no blocking findings (printed warnings are still parsed)
- exit in ``violation_exit_codes``: violations found
- any other exit, or a process that cannot start: ``ToolInvocationError``
- deadline exceeded: ``TaskTimeout``

Subclasses only supply ``parse_text`` for their tool's plain-text format;
``output_format = "json"`` switches any kind to a JSON array of violations.
"""

from __future__ import annotations

import json
import re
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any, Final, Literal

import structlog

from buildgate.domain.errors import (
    ConfigurationError,
    TaskTimeout,
    ToolInvocationError,
    ViolationThresholdExceeded,
)
from buildgate.verification_plane.checkers.base import (
    Checker,
    CheckResult,
    CheckTarget,
    CommandExecutor,
    CommandResult,
    CommandSpec,
    Severity,
    Violation,
)

OutputFormat = Literal["text", "json"]

REPORT_FORMATS_ENV: Final[str] = "BUILDGATE_REPORT_FORMATS"
REPORT_DIR_ENV: Final[str] = "BUILDGATE_REPORT_DIR"

_PLACEHOLDER_RE: Final[re.Pattern[str]] = re.compile(r"\{(?P<name>[a-z_]+)\}")
_PATH_LINE_COL_RE: Final[re.Pattern[str]] = re.compile(
    r"^(?P<path>[^:\s][^:]*?):(?P<line>\d+):(?P<column>\d+):\s*(?P<message>.+)$"
)
_PATH_LINE_RE: Final[re.Pattern[str]] = re.compile(
    r"^(?P<path>[^:\s][^:]*?):(?P<line>\d+):\s*(?P<message>.+)$"
)


@dataclass(frozen=True, slots=True)
class CheckerSettings:
    """Per-task checker configuration, resolved from ``[[tasks]]`` and ``[checks]``."""

    task_id: str
    command: tuple[str, ...]
    max_warnings: int = 0
    fail_build_on_violation: bool = True
    rule_config: Path | None = None
    report_dir: Path | None = None
    report_formats: tuple[str, ...] = ()
    violation_exit_codes: tuple[int, ...] = (1,)
    output_format: OutputFormat = "text"
    version_command: tuple[str, ...] | None = None
    timeout_seconds: float | None = None
    cwd: Path | None = None
    capture_version: bool = True
    extra_env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.command:
            raise ConfigurationError(f"task {self.task_id!r}: command must not be empty")
        if self.max_warnings < 0:
            raise ConfigurationError(f"task {self.task_id!r}: max_warnings must be >= 0")
        if 0 in self.violation_exit_codes:
            raise ConfigurationError(
                f"task {self.task_id!r}: exit code 0 cannot signal violations"
            )
        if self.output_format not in ("text", "json"):
            raise ConfigurationError(
                f"task {self.task_id!r}: output_format must be 'text' or 'json'"
            )


class CommandChecker(Checker):
    """Shared implementation for the fixed checker kinds."""

    kind: str = "command"
    default_rule_id: str = "command.violation"
    default_severity: Severity = Severity.ERROR

    def __init__(
        self,
        settings: CheckerSettings,
        *,
        executor: CommandExecutor,
        logger: Any | None = None,
    ) -> None:
        self._settings = settings
        self._executor = executor
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def settings(self) -> CheckerSettings:
        return self._settings

    @property
    def tool_name(self) -> str:
        return Path(self._settings.command[0]).name

    def render_argv(self, target: CheckTarget) -> tuple[str, ...]:
        """Substitute ``{target}``, ``{rule_config}`` and ``{report_dir}`` placeholders."""
        values = {
            "target": target.root.as_posix(),
            "rule_config": self._settings.rule_config.as_posix()
            if self._settings.rule_config is not None
            else None,
            "report_dir": self._settings.report_dir.as_posix()
            if self._settings.report_dir is not None
            else None,
        }
        rendered = render_command(self._settings.command, values, task_id=self._settings.task_id)
        return (*rendered, *target.files)

    def build_spec(self, target: CheckTarget) -> CommandSpec:
        env = dict(self._settings.extra_env)
        if self._settings.report_formats:
            env[REPORT_FORMATS_ENV] = ",".join(sorted(self._settings.report_formats))
        if self._settings.report_dir is not None:
            env[REPORT_DIR_ENV] = self._settings.report_dir.as_posix()
        return CommandSpec(
            argv=self.render_argv(target),
            cwd=self._settings.cwd.as_posix() if self._settings.cwd is not None else None,
            env=env,
            timeout_seconds=self._settings.timeout_seconds,
        )

    async def evaluate(self, target: CheckTarget) -> CheckResult:
        settings = self._settings
        if settings.report_dir is not None:
            settings.report_dir.mkdir(parents=True, exist_ok=True)

        spec = self.build_spec(target)
        result = await self._executor.run(spec)

        if result.timed_out:
            raise TaskTimeout(settings.task_id, settings.timeout_seconds or 0.0)
        if result.error is not None:
            raise ToolInvocationError(
                f"{settings.task_id}: could not start {spec.argv[0]!r}: {result.error}",
                argv=spec.argv,
            )
        if result.exit_code != 0 and result.exit_code not in settings.violation_exit_codes:
            raise ToolInvocationError(
                f"{settings.task_id}: {self.tool_name} exited with unexpected status "
                f"{result.exit_code}",
                argv=spec.argv,
                exit_code=result.exit_code,
            )

        violations = self.parse_violations(result)
        if result.exit_code != 0 and not violations:
            # The tool signalled findings in a form we could not parse.
            first_line = next(
                (line.strip() for line in result.output.splitlines() if line.strip()),
                f"{self.tool_name} reported violations (exit {result.exit_code})",
            )
            violations = (
                Violation(
                    rule_id=self.default_rule_id,
                    severity=self.default_severity,
                    message=first_line,
                ),
            )

        tool_version = (
            await self.capture_tool_version() if settings.capture_version else "unavailable"
        )

        check_result = CheckResult(
            task_id=settings.task_id,
            violations=violations,
            threshold=settings.max_warnings,
            tool=self.tool_name,
            tool_version=tool_version,
            report_dir=settings.report_dir.as_posix() if settings.report_dir is not None else None,
            fail_build_on_violation=settings.fail_build_on_violation,
            duration_ms=result.duration_ms,
        )

        self._logger.info(
            "checker_evaluated",
            task_id=settings.task_id,
            kind=self.kind,
            tool=check_result.tool,
            tool_version=tool_version,
            exit_code=result.exit_code,
            violation_count=check_result.violation_count,
            threshold=check_result.threshold,
            passed=check_result.passed,
        )

        if not check_result.passed and settings.fail_build_on_violation:
            raise ViolationThresholdExceeded(check_result)
        return check_result

    def parse_violations(self, result: CommandResult) -> tuple[Violation, ...]:
        if self._settings.output_format == "json":
            return parse_json_violations(
                result.stdout, task_id=self._settings.task_id, default_rule_id=self.default_rule_id
            )
        return self.parse_text(result.output)

    def parse_text(self, output: str) -> tuple[Violation, ...]:
        return parse_location_lines(
            output, rule_id=self.default_rule_id, severity=self.default_severity
        )

    async def capture_tool_version(self) -> str:
        """First non-empty line of ``<tool> --version``, or ``"unavailable"``."""
        version_command = (
            self._settings.version_command
            if self._settings.version_command is not None
            else (self._settings.command[0], "--version")
        )
        timeout = min(self._settings.timeout_seconds or 10.0, 10.0)
        result = await self._executor.run(
            CommandSpec(
                argv=version_command,
                cwd=self._settings.cwd.as_posix() if self._settings.cwd is not None else None,
                timeout_seconds=timeout,
            )
        )
        if result.timed_out or result.error is not None:
            return "unavailable"
        for line in result.output.splitlines():
            stripped = line.strip()
            if stripped:
                return stripped
        return "unavailable"


def split_command(value: str | Sequence[str]) -> tuple[str, ...]:
    """Accept a shell-style string or an argv list."""
    if isinstance(value, str):
        return tuple(part for part in shlex.split(value) if part.strip())
    return tuple(item for item in value if item.strip())


def parse_location_lines(
    output: str,
    *,
    rule_id: str,
    severity: Severity,
) -> tuple[Violation, ...]:
    """Parse ``path:line[:col]: message`` lines; other lines are ignored."""
    findings: dict[tuple[str, int | None, int | None, str], Violation] = {}
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        match = _PATH_LINE_COL_RE.match(line) or _PATH_LINE_RE.match(line)
        if match is None:
            continue
        groups = match.groupdict()
        violation = Violation(
            rule_id=rule_id,
            severity=severity,
            message=groups["message"].strip(),
            path=normalize_report_path(groups["path"]),
            line=int(groups["line"]),
            column=int(groups["column"]) if groups.get("column") else None,
        )
        findings[(violation.path or "", violation.line, violation.column, violation.message)] = (
            violation
        )
    return tuple(sorted(findings.values(), key=lambda item: item.sort_key()))


def parse_json_violations(
    stdout: str,
    *,
    task_id: str,
    default_rule_id: str,
) -> tuple[Violation, ...]:
    """Parse a JSON array of violation objects (``rule_id`` defaults per kind)."""
    text = stdout.strip()
    if not text:
        return ()
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ToolInvocationError(f"{task_id}: tool output is not valid JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise ToolInvocationError(f"{task_id}: JSON output must be an array of violations")

    parsed: list[Violation] = []
    for index, item in enumerate(payload):
        if not isinstance(item, Mapping):
            raise ToolInvocationError(f"{task_id}: violation [{index}] must be an object")
        try:
            parsed.append(Violation.from_dict({"rule_id": default_rule_id, **item}))
        except ValueError as exc:
            raise ToolInvocationError(f"{task_id}: violation [{index}]: {exc}") from exc
    return tuple(parsed)


def normalize_report_path(value: str) -> str | None:
    candidate = value.replace("\\", "/").strip()
    if not candidate:
        return None
    pure = PurePosixPath(candidate)
    cleaned = [part for part in pure.parts if part not in {"", "."}]
    if not cleaned:
        return None
    if pure.is_absolute():
        return pure.as_posix()
    return "/".join(cleaned)


def render_command(
    command: Sequence[str],
    values: Mapping[str, str | None],
    *,
    task_id: str,
) -> tuple[str, ...]:
    """Substitute ``{name}`` placeholders; unknown names are left untouched."""
    return tuple(_substitute(argument, values, task_id=task_id) for argument in command)


def _substitute(argument: str, values: Mapping[str, str | None], *, task_id: str) -> str:
    def replace(match: re.Match[str]) -> str:
        name = match.group("name")
        if name not in values:
            return match.group(0)
        value = values[name]
        if value is None:
            raise ConfigurationError(
                f"task {task_id!r}: command uses {{{name}}} but no {name} is configured"
            )
        return value

    return _PLACEHOLDER_RE.sub(replace, argument)


__all__ = [
    "CheckerSettings",
    "CommandChecker",
    "OutputFormat",
    "REPORT_DIR_ENV",
    "REPORT_FORMATS_ENV",
    "normalize_report_path",
    "parse_json_violations",
    "parse_location_lines",
    "render_command",
    "split_command",
]
