"""
buildgate: checker adapter base types.

A checker wraps an external verification tool behind one capability,
``evaluate(target) -> CheckResult``. This module defines the result shapes
(``Violation``, ``CheckResult``), the portable command contract
(``CommandSpec`` / ``CommandResult``) and the asyncio subprocess executor the
checkers, compile step and test workers share.
"""

from __future__ import annotations

import asyncio
import json
import math
import os
import time
from collections.abc import Iterable, Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import NoReturn, Protocol, runtime_checkable

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_TEXT_LENGTH = 8192
_MAX_ENV_ENTRIES = 256


class Severity(StrEnum):
    """Violation severity, ordered from most to least serious."""

    ERROR = "error"
    WARNING = "warning"
    INFO = "info"

    @classmethod
    def coerce(cls, value: Severity | str, *, path: str = "severity") -> Severity:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            _fail(path, f"expected string, got {type(value).__name__}")
        normalized = _SEVERITY_ALIASES.get(value.strip().lower(), value.strip().lower())
        try:
            return cls(normalized)
        except ValueError:
            allowed = ", ".join(item.value for item in cls)
            _fail(path, f"invalid value {value!r}; expected one of: {allowed}")


_SEVERITY_ALIASES = {
    "err": "error",
    "fatal": "error",
    "high": "error",
    "warn": "warning",
    "medium": "warning",
    "low": "info",
    "note": "info",
}


@dataclass(frozen=True, slots=True)
class Violation:
    """One rule breach. Located by file + line/column or by class + method."""

    rule_id: str
    severity: Severity
    message: str
    path: str | None = None
    line: int | None = None
    column: int | None = None
    class_name: str | None = None
    method_name: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "rule_id", _as_str(self.rule_id, "Violation.rule_id", max_len=256))
        object.__setattr__(self, "severity", Severity.coerce(self.severity, path="Violation.severity"))
        object.__setattr__(self, "message", _as_str(self.message, "Violation.message"))
        object.__setattr__(self, "path", _as_optional_str(self.path, "Violation.path", max_len=4096))
        object.__setattr__(self, "line", _as_positive_int_or_none(self.line, "Violation.line"))
        object.__setattr__(self, "column", _as_positive_int_or_none(self.column, "Violation.column"))
        object.__setattr__(
            self, "class_name", _as_optional_str(self.class_name, "Violation.class_name")
        )
        object.__setattr__(
            self, "method_name", _as_optional_str(self.method_name, "Violation.method_name")
        )

    @property
    def location(self) -> str:
        if self.path is not None:
            if self.line is None:
                return self.path
            if self.column is None:
                return f"{self.path}:{self.line}"
            return f"{self.path}:{self.line}:{self.column}"
        if self.class_name is not None:
            if self.method_name is None:
                return self.class_name
            return f"{self.class_name}.{self.method_name}"
        return "<unknown>"

    @classmethod
    def from_dict(cls, payload: Mapping[str, object]) -> Violation:
        if not isinstance(payload, Mapping):
            _fail("Violation", f"expected object, got {type(payload).__name__}")
        unknown = sorted(str(key) for key in payload if key not in _VIOLATION_FIELDS)
        if unknown:
            _fail("Violation", f"unexpected fields: {unknown}")
        missing = sorted(key for key in ("rule_id", "message") if key not in payload)
        if missing:
            _fail("Violation", f"missing required fields: {missing}")
        return cls(
            rule_id=payload["rule_id"],  # type: ignore[arg-type]
            severity=payload.get("severity", Severity.ERROR),  # type: ignore[arg-type]
            message=payload["message"],  # type: ignore[arg-type]
            path=payload.get("path"),  # type: ignore[arg-type]
            line=payload.get("line"),  # type: ignore[arg-type]
            column=payload.get("column"),  # type: ignore[arg-type]
            class_name=payload.get("class_name"),  # type: ignore[arg-type]
            method_name=payload.get("method_name"),  # type: ignore[arg-type]
        )

    def sort_key(self) -> tuple[str, int, int, str, str, str, str]:
        return (
            self.path or "",
            self.line if self.line is not None else -1,
            self.column if self.column is not None else -1,
            self.class_name or "",
            self.method_name or "",
            self.rule_id,
            self.message,
        )

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "rule_id": self.rule_id,
            "severity": self.severity.value,
            "message": self.message,
            "path": self.path,
            "line": self.line,
            "column": self.column,
            "class_name": self.class_name,
            "method_name": self.method_name,
        }


_VIOLATION_FIELDS = frozenset(
    {"rule_id", "severity", "message", "path", "line", "column", "class_name", "method_name"}
)


@dataclass(frozen=True, slots=True)
class CheckTarget:
    """What a checker inspects: a source tree, compiled classes or a file set."""

    root: Path
    files: tuple[str, ...] = ()
    label: str = "source"

    def __post_init__(self) -> None:
        object.__setattr__(self, "root", Path(self.root))
        object.__setattr__(self, "files", tuple(sorted(set(self.files))))


@dataclass(frozen=True, slots=True)
class CheckResult:
    """Published result of one checker run. ``passed`` is derived from the threshold."""

    task_id: str
    violations: tuple[Violation, ...] = ()
    threshold: int = 0
    tool: str = ""
    tool_version: str = "unavailable"
    report_dir: str | None = None
    fail_build_on_violation: bool = True
    duration_ms: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "task_id", _as_str(self.task_id, "CheckResult.task_id", max_len=256))
        object.__setattr__(self, "violations", normalize_violations(self.violations))
        if isinstance(self.threshold, bool) or not isinstance(self.threshold, int):
            _fail("CheckResult.threshold", f"expected integer, got {type(self.threshold).__name__}")
        if self.threshold < 0:
            _fail("CheckResult.threshold", "must be >= 0")
        if self.duration_ms < 0:
            _fail("CheckResult.duration_ms", "must be >= 0")

    @property
    def violation_count(self) -> int:
        return len(self.violations)

    @property
    def passed(self) -> bool:
        return len(self.violations) <= self.threshold

    def severity_counts(self) -> dict[str, int]:
        counts = {severity.value: 0 for severity in Severity}
        for violation in self.violations:
            counts[violation.severity.value] += 1
        return counts

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "task_id": self.task_id,
            "passed": self.passed,
            "threshold": self.threshold,
            "violation_count": self.violation_count,
            "severity_counts": dict(self.severity_counts()),
            "violations": [item.to_dict() for item in self.violations],
            "tool": self.tool,
            "tool_version": self.tool_version,
            "report_dir": self.report_dir,
            "fail_build_on_violation": self.fail_build_on_violation,
            "duration_ms": self.duration_ms,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


@runtime_checkable
class Checker(Protocol):
    """Capability implemented by the fixed set of checker kinds."""

    kind: str

    async def evaluate(self, target: CheckTarget) -> CheckResult: ...


@dataclass(slots=True)
class CommandSpec:
    """Portable command invocation contract."""

    argv: tuple[str, ...]
    cwd: str | None = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_seconds: float | None = None
    inherit_env: bool = True

    def __post_init__(self) -> None:
        self.argv = _as_non_empty_str_tuple(self.argv, "CommandSpec.argv")
        self.cwd = _as_optional_str(self.cwd, "CommandSpec.cwd", max_len=4096)
        if not isinstance(self.env, Mapping):
            _fail("CommandSpec.env", f"expected object, got {type(self.env).__name__}")
        if len(self.env) > _MAX_ENV_ENTRIES:
            _fail("CommandSpec.env", f"contains too many entries (>{_MAX_ENV_ENTRIES})")
        env: dict[str, str] = {}
        for key in sorted(self.env):
            value = self.env[key]
            if not isinstance(value, str):
                _fail(f"CommandSpec.env.{key}", f"expected string, got {type(value).__name__}")
            env[_as_str(key, "CommandSpec.env.<key>", max_len=256)] = value
        self.env = env
        self.timeout_seconds = _as_positive_float_or_none(
            self.timeout_seconds, "CommandSpec.timeout_seconds"
        )

    def build_env(self) -> dict[str, str] | None:
        if self.inherit_env:
            if not self.env:
                return None
            merged = dict(os.environ)
            merged.update(self.env)
            return merged
        return dict(self.env)

    def to_dict(self) -> dict[str, JSONValue]:
        return {
            "argv": list(self.argv),
            "cwd": self.cwd,
            "env": dict(self.env),
            "timeout_seconds": self.timeout_seconds,
            "inherit_env": self.inherit_env,
        }


@dataclass(slots=True)
class CommandResult:
    """Outcome of one command. ``error`` is set when the process could not start."""

    argv: tuple[str, ...]
    exit_code: int | None
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False
    error: str | None = None

    def __post_init__(self) -> None:
        self.argv = _as_non_empty_str_tuple(self.argv, "CommandResult.argv")
        if self.timed_out and self.exit_code is not None:
            _fail("CommandResult.exit_code", "must be None when timed_out is true")
        if self.duration_ms < 0:
            _fail("CommandResult.duration_ms", "must be >= 0")

    @property
    def started(self) -> bool:
        return self.error is None

    @property
    def output(self) -> str:
        return f"{self.stdout}\n{self.stderr}"

    def is_success(self) -> bool:
        return not self.timed_out and self.error is None and self.exit_code == 0


@runtime_checkable
class CommandExecutor(Protocol):
    """Pluggable async command execution interface."""

    async def run(self, spec: CommandSpec) -> CommandResult: ...


class LocalSubprocessExecutor(CommandExecutor):
    """Runs commands as asyncio subprocesses. Timed-out or cancelled processes are killed."""

    def __init__(
        self,
        *,
        encoding: str = "utf-8",
        default_timeout_seconds: float | None = None,
        max_output_chars: int | None = 200_000,
    ) -> None:
        self._encoding = _as_str(encoding, "LocalSubprocessExecutor.encoding", max_len=64)
        self._default_timeout_seconds = _as_positive_float_or_none(
            default_timeout_seconds, "LocalSubprocessExecutor.default_timeout_seconds"
        )
        self._max_output_chars = _as_positive_int_or_none(
            max_output_chars, "LocalSubprocessExecutor.max_output_chars"
        )

    async def run(self, spec: CommandSpec) -> CommandResult:
        started_ns = time.monotonic_ns()
        timeout = (
            spec.timeout_seconds
            if spec.timeout_seconds is not None
            else self._default_timeout_seconds
        )

        try:
            process = await asyncio.create_subprocess_exec(
                *spec.argv,
                cwd=spec.cwd,
                env=spec.build_env(),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            return CommandResult(
                argv=spec.argv,
                exit_code=None,
                duration_ms=_elapsed_ms(started_ns),
                error=str(exc),
            )

        try:
            stdout_bytes, stderr_bytes = await _communicate_with_timeout(
                process=process, timeout_seconds=timeout
            )
            timed_out = False
            exit_code = process.returncode
        except _CommandTimeoutError as exc:
            stdout_bytes = exc.stdout
            stderr_bytes = exc.stderr
            timed_out = True
            exit_code = None

        return CommandResult(
            argv=spec.argv,
            exit_code=exit_code,
            stdout=_truncate_text(self._decode(stdout_bytes), self._max_output_chars),
            stderr=_truncate_text(self._decode(stderr_bytes), self._max_output_chars),
            duration_ms=_elapsed_ms(started_ns),
            timed_out=timed_out,
        )

    def _decode(self, raw: bytes) -> str:
        text = raw.decode(self._encoding, errors="replace")
        return text.replace("\r\n", "\n").replace("\r", "\n")


def normalize_violations(violations: Iterable[Violation]) -> tuple[Violation, ...]:
    """Return violations sorted by location, then rule."""

    parsed: list[Violation] = []
    for index, item in enumerate(violations):
        if not isinstance(item, Violation):
            _fail(f"violations[{index}]", f"expected Violation, got {type(item).__name__}")
        parsed.append(item)
    parsed.sort(key=lambda item: item.sort_key())
    return tuple(parsed)


class _CommandTimeoutError(Exception):
    def __init__(self, stdout: bytes, stderr: bytes) -> None:
        super().__init__("command timed out")
        self.stdout = stdout
        self.stderr = stderr


async def _communicate_with_timeout(
    *,
    process: asyncio.subprocess.Process,
    timeout_seconds: float | None,
) -> tuple[bytes, bytes]:
    try:
        if timeout_seconds is None:
            return await process.communicate()
        return await asyncio.wait_for(process.communicate(), timeout=timeout_seconds)
    except TimeoutError as exc:
        with suppress(ProcessLookupError):
            process.kill()
        stdout_bytes, stderr_bytes = await process.communicate()
        raise _CommandTimeoutError(stdout=stdout_bytes, stderr=stderr_bytes) from exc
    except asyncio.CancelledError:
        with suppress(ProcessLookupError):
            process.kill()
        await process.communicate()
        raise


def _elapsed_ms(started_ns: int) -> int:
    delta_ns = time.monotonic_ns() - started_ns
    if delta_ns < 0:
        return 0
    return delta_ns // 1_000_000


def _truncate_text(text: str, max_chars: int | None) -> str:
    if max_chars is None or len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"{text[:max_chars]}\n...[truncated {omitted} chars]"


def _as_str(
    value: object,
    path: str,
    *,
    min_len: int = 1,
    max_len: int = _MAX_TEXT_LENGTH,
) -> str:
    if not isinstance(value, str):
        _fail(path, f"expected string, got {type(value).__name__}")
    parsed = value.strip()
    if len(parsed) < min_len:
        _fail(path, f"must be at least {min_len} character(s)")
    if len(parsed) > max_len:
        _fail(path, f"must be <= {max_len} characters")
    return parsed


def _as_optional_str(value: object, path: str, *, max_len: int = _MAX_TEXT_LENGTH) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, max_len=max_len)


def _as_positive_int_or_none(value: object, path: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        _fail(path, f"expected integer, got {type(value).__name__}")
    if value < 1:
        _fail(path, "must be >= 1")
    return value


def _as_positive_float_or_none(value: object, path: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _fail(path, f"expected number, got {type(value).__name__}")
    parsed = float(value)
    if not math.isfinite(parsed):
        _fail(path, "must be finite")
    if parsed <= 0.0:
        _fail(path, "must be > 0")
    return parsed


def _as_non_empty_str_tuple(value: object, path: str) -> tuple[str, ...]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes, bytearray)):
        _fail(path, f"expected sequence, got {type(value).__name__}")
    parsed = tuple(_as_str(item, f"{path}[{index}]", max_len=4096) for index, item in enumerate(value))
    if not parsed:
        _fail(path, "must not be empty")
    return parsed


def _fail(path: str, message: str) -> NoReturn:
    raise ValueError(f"{path}: {message}")


__all__ = [
    "CheckResult",
    "CheckTarget",
    "Checker",
    "CommandExecutor",
    "CommandResult",
    "CommandSpec",
    "JSONScalar",
    "JSONValue",
    "LocalSubprocessExecutor",
    "Severity",
    "Violation",
    "normalize_violations",
]
