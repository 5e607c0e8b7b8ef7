"""
buildgate: configuration schema and validation.

Defaults, strict validation with structured issues (field path + message),
deterministic deep-merge and redaction for ``buildgate.toml``.

``[[tasks]]`` declares the task graph explicitly. When a config file provides
``tasks`` the list replaces the default graph as a whole.
"""

from __future__ import annotations

import codecs
import copy
import math
import re
import shlex
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, NotRequired, TypedDict

from buildgate.domain.errors import ConfigurationError

TaskKind = Literal["format", "style", "bugs", "compile", "command", "test"]

TASK_KINDS: Final[tuple[str, ...]] = ("bugs", "command", "compile", "format", "style", "test")
CHECKER_TASK_KINDS: Final[frozenset[str]] = frozenset({"format", "style", "bugs"})
REPORT_FORMATS: Final[tuple[str, ...]] = ("html", "xml")
MERGE_POLICIES: Final[tuple[str, ...]] = ("max", "sum")
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")
OUTPUT_FORMATS: Final[tuple[str, ...]] = ("json", "text")

_TASK_ID_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_CAMEL_CASE_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")

_SENSITIVE_KEY_TOKENS: Final[frozenset[str]] = frozenset(
    {"secret", "token", "password", "passwd", "apikey", "credential", "credentials", "auth"}
)

# Config paths normalized relative to the config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("build", "source_root"),
    ("build", "classes_root"),
    ("build", "output_root"),
    ("build", "reports_dir"),
    ("coverage", "agent_path"),
    ("coverage", "output_dir"),
    ("observability", "log_dir"),
)
TASK_PATH_FIELDS: Final[tuple[str, ...]] = ("rule_config", "target", "cwd")


class BuildConfig(TypedDict):
    file_encoding: str
    source_root: str
    classes_root: str
    output_root: str
    reports_dir: str


class ChecksConfig(TypedDict):
    max_warnings: int
    fail_build_on_violation: bool
    report_formats: list[str]
    show_violations: bool


class CoverageConfig(TypedDict):
    agent_path: str
    output_dir: str
    output_suffixes: list[str]
    merge_policy: Literal["sum", "max"]
    min_line_percent: NotRequired[float]
    min_branch_percent: NotRequired[float]


class SchedulerConfig(TypedDict):
    max_workers: int
    default_timeout_seconds: float


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str
    log_to_stdout: bool
    redact_secrets: bool


class TaskConfig(TypedDict):
    id: str
    kind: TaskKind
    command: list[str]
    depends_on: NotRequired[list[str]]
    timeout_seconds: NotRequired[float]
    max_warnings: NotRequired[int]
    fail_build_on_violation: NotRequired[bool]
    rule_config: NotRequired[str]
    target: NotRequired[str]
    cwd: NotRequired[str]
    workers: NotRequired[int]
    violation_exit_codes: NotRequired[list[int]]
    output_format: NotRequired[Literal["text", "json"]]
    version_command: NotRequired[list[str]]


class BuildGateConfig(TypedDict):
    build: BuildConfig
    checks: ChecksConfig
    coverage: CoverageConfig
    scheduler: SchedulerConfig
    observability: ObservabilityConfig
    tasks: list[TaskConfig]


DEFAULT_CONFIG: Final[BuildGateConfig] = {
    "build": {
        "file_encoding": "utf-8",
        "source_root": "src",
        "classes_root": "build/classes",
        "output_root": "build",
        "reports_dir": "build/reports",
    },
    "checks": {
        "max_warnings": 0,
        "fail_build_on_violation": True,
        "report_formats": ["html", "xml"],
        "show_violations": True,
    },
    "coverage": {
        "agent_path": "build/agents/coverage-agent",
        "output_dir": "build/coverage",
        "output_suffixes": ["*.exec", "*.ec"],
        "merge_policy": "sum",
    },
    "scheduler": {
        "max_workers": 4,
        "default_timeout_seconds": 1800.0,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "build/logs",
        "log_to_stdout": False,
        "redact_secrets": True,
    },
    "tasks": [
        {"id": "format", "kind": "format", "command": ["black", "--check", "{target}"]},
        {
            "id": "compile",
            "kind": "compile",
            "command": ["python", "-m", "compileall", "-q", "{source_root}"],
            "depends_on": ["format"],
        },
        {
            "id": "style",
            "kind": "style",
            "command": ["ruff", "check", "--output-format", "concise", "{target}"],
            "depends_on": ["compile"],
        },
        {
            "id": "bugs-main",
            "kind": "bugs",
            "command": ["pyflakes", "{target}"],
            "depends_on": ["compile"],
        },
        {
            "id": "bugs-test",
            "kind": "bugs",
            "command": ["pyflakes", "{target}"],
            "target": "tests",
            "depends_on": ["compile"],
        },
        {
            "id": "test",
            "kind": "test",
            "command": ["python", "-m", "pytest", "-q"],
            "workers": 1,
            "depends_on": ["compile"],
        },
    ],
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    config: dict[str, Any] | None
    issues: tuple[ConfigValidationIssue, ...]

    @property
    def is_valid(self) -> bool:
        return self.config is not None and not self.issues


class ConfigValidationError(ConfigurationError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> BuildGateConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``; lists are replaced."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> ConfigValidationResult:
    """Validate config and return structured issues with deterministic paths."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, issues=issues.items())

    normalized = _validate_root(root, issues)
    if issues.has_issues:
        return ConfigValidationResult(config=None, issues=issues.items())
    return ConfigValidationResult(config=normalized, issues=())


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(config)
    if result.config is None:
        raise ConfigValidationError(result.issues)
    return result.config


def redact_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Return a redacted copy for logs and ``buildgate config``."""

    if not isinstance(config, Mapping):
        return {}
    redacted = _redact_value(config, parent_key=None)
    if isinstance(redacted, dict):
        return redacted
    return {}


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    sections = {
        "build": _validate_build,
        "checks": _validate_checks,
        "coverage": _validate_coverage,
        "scheduler": _validate_scheduler,
        "observability": _validate_observability,
    }
    _reject_unknown_keys(payload, {*sections, "tasks"}, "", issues)
    _require_keys(payload, {*sections, "tasks"}, "", issues)

    out: dict[str, Any] = {}
    for key in sorted(sections):
        raw = payload.get(key)
        if raw is None:
            continue
        section = _as_object(raw, key, issues)
        if section is not None:
            out[key] = sections[key](section, key, issues)

    if "tasks" in payload:
        out["tasks"] = _validate_tasks(payload["tasks"], "tasks", issues)
    return out


def _validate_build(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"file_encoding", "source_root", "classes_root", "output_root", "reports_dir"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "file_encoding" in payload:
        encoding = _as_str(payload["file_encoding"], _join(path, "file_encoding"), issues)
        if encoding is not None:
            if _is_known_encoding(encoding):
                out["file_encoding"] = encoding
            else:
                issues.add(_join(path, "file_encoding"), f"unknown text encoding {encoding!r}")
    for key in ("source_root", "classes_root", "output_root", "reports_dir"):
        if key in payload:
            parsed = _as_path_text(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed
    return out


def _validate_checks(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = {"max_warnings", "fail_build_on_violation", "report_formats", "show_violations"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "max_warnings" in payload:
        parsed_max = _as_int(payload["max_warnings"], _join(path, "max_warnings"), issues, minimum=0)
        if parsed_max is not None:
            out["max_warnings"] = parsed_max
    for key in ("fail_build_on_violation", "show_violations"):
        if key in payload:
            parsed_bool = _as_bool(payload[key], _join(path, key), issues)
            if parsed_bool is not None:
                out[key] = parsed_bool
    if "report_formats" in payload:
        formats = _as_str_list(payload["report_formats"], _join(path, "report_formats"), issues)
        if formats is not None:
            unknown = sorted(set(formats) - set(REPORT_FORMATS))
            if unknown:
                issues.add(
                    _join(path, "report_formats"),
                    f"unsupported formats {unknown}; expected a subset of: {', '.join(REPORT_FORMATS)}",
                )
            else:
                out["report_formats"] = sorted(set(formats))
    return out


def _validate_coverage(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    required = {"agent_path", "output_dir", "output_suffixes", "merge_policy"}
    allowed = {*required, "min_line_percent", "min_branch_percent"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, required, path, issues)

    out: dict[str, Any] = {}
    for key in ("agent_path", "output_dir"):
        if key in payload:
            parsed_path = _as_path_text(payload[key], _join(path, key), issues)
            if parsed_path is not None:
                out[key] = parsed_path
    if "output_suffixes" in payload:
        suffixes = _as_str_list(payload["output_suffixes"], _join(path, "output_suffixes"), issues)
        if suffixes is not None:
            if not suffixes:
                issues.add(_join(path, "output_suffixes"), "must list at least one pattern")
            else:
                out["output_suffixes"] = sorted(set(suffixes))
    if "merge_policy" in payload:
        policy = _as_enum(
            payload["merge_policy"], _join(path, "merge_policy"), issues, allowed_values=MERGE_POLICIES
        )
        if policy is not None:
            out["merge_policy"] = policy
    for key in ("min_line_percent", "min_branch_percent"):
        if key in payload:
            parsed_percent = _as_float(
                payload[key], _join(path, key), issues, minimum=0.0, maximum=100.0
            )
            if parsed_percent is not None:
                out[key] = parsed_percent
    return out


def _validate_scheduler(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"max_workers", "default_timeout_seconds"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "max_workers" in payload:
        workers = _as_int(payload["max_workers"], _join(path, "max_workers"), issues, minimum=1)
        if workers is not None:
            out["max_workers"] = workers
    if "default_timeout_seconds" in payload:
        timeout = _as_positive_float(
            payload["default_timeout_seconds"], _join(path, "default_timeout_seconds"), issues
        )
        if timeout is not None:
            out["default_timeout_seconds"] = timeout
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = {"log_level", "log_dir", "log_to_stdout", "redact_secrets"}
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        level = payload["log_level"]
        parsed_level = _as_enum(
            level.upper() if isinstance(level, str) else level,
            _join(path, "log_level"),
            issues,
            allowed_values=LOG_LEVELS,
        )
        if parsed_level is not None:
            out["log_level"] = parsed_level
    if "log_dir" in payload:
        log_dir = _as_path_text(payload["log_dir"], _join(path, "log_dir"), issues)
        if log_dir is not None:
            out["log_dir"] = log_dir
    for key in ("log_to_stdout", "redact_secrets"):
        if key in payload:
            parsed_bool = _as_bool(payload[key], _join(path, key), issues)
            if parsed_bool is not None:
                out[key] = parsed_bool
    return out


def _validate_tasks(value: object, path: str, issues: _IssueCollector) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        issues.add(path, f"expected array of tables, got {type(value).__name__}")
        return []
    if not value:
        issues.add(path, "at least one task is required")
        return []

    tasks: list[dict[str, Any]] = []
    for index, raw in enumerate(value):
        task_path = f"{path}[{index}]"
        entry = _as_object(raw, task_path, issues)
        if entry is None:
            continue
        tasks.append(_validate_task(entry, task_path, issues))

    seen: dict[str, int] = {}
    for index, task in enumerate(tasks):
        task_id = task.get("id")
        if not isinstance(task_id, str):
            continue
        if task_id in seen:
            issues.add(f"{path}[{index}].id", f"duplicate task id {task_id!r}")
        else:
            seen[task_id] = index
    for index, task in enumerate(tasks):
        for dependency in task.get("depends_on", []):
            if dependency not in seen:
                issues.add(f"{path}[{index}].depends_on", f"unknown task {dependency!r}")
    return tasks


def _validate_task(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    required = {"id", "kind", "command"}
    allowed = {
        *required,
        "depends_on",
        "timeout_seconds",
        "max_warnings",
        "fail_build_on_violation",
        "rule_config",
        "target",
        "cwd",
        "workers",
        "violation_exit_codes",
        "output_format",
        "version_command",
    }
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, required, path, issues)

    out: dict[str, Any] = {}
    if "id" in payload:
        task_id = _as_str(payload["id"], _join(path, "id"), issues)
        if task_id is not None:
            if _TASK_ID_PATTERN.fullmatch(task_id):
                out["id"] = task_id
            else:
                issues.add(_join(path, "id"), "must start with a letter or digit and use [A-Za-z0-9_.-]")

    kind: str | None = None
    if "kind" in payload:
        kind = _as_enum(payload["kind"], _join(path, "kind"), issues, allowed_values=TASK_KINDS)
        if kind is not None:
            out["kind"] = kind

    if "command" in payload:
        command = _as_command(payload["command"], _join(path, "command"), issues)
        if command is not None:
            out["command"] = command

    if "depends_on" in payload:
        depends_on = _as_str_list(payload["depends_on"], _join(path, "depends_on"), issues)
        if depends_on is not None:
            out["depends_on"] = sorted(set(depends_on))

    if "timeout_seconds" in payload:
        timeout = _as_positive_float(payload["timeout_seconds"], _join(path, "timeout_seconds"), issues)
        if timeout is not None:
            out["timeout_seconds"] = timeout

    if "max_warnings" in payload:
        parsed_max = _as_int(payload["max_warnings"], _join(path, "max_warnings"), issues, minimum=0)
        if parsed_max is not None:
            out["max_warnings"] = parsed_max

    if "fail_build_on_violation" in payload:
        parsed_fail = _as_bool(
            payload["fail_build_on_violation"], _join(path, "fail_build_on_violation"), issues
        )
        if parsed_fail is not None:
            out["fail_build_on_violation"] = parsed_fail

    for key in TASK_PATH_FIELDS:
        if key in payload:
            parsed_path = _as_path_text(payload[key], _join(path, key), issues)
            if parsed_path is not None:
                out[key] = parsed_path

    if "workers" in payload:
        if kind is not None and kind != "test":
            issues.add(_join(path, "workers"), "only test tasks fork workers")
        workers = _as_int(payload["workers"], _join(path, "workers"), issues, minimum=1)
        if workers is not None:
            out["workers"] = workers

    if "violation_exit_codes" in payload:
        codes = _as_int_list(payload["violation_exit_codes"], _join(path, "violation_exit_codes"), issues)
        if codes is not None:
            if not codes or 0 in codes:
                issues.add(_join(path, "violation_exit_codes"), "must be non-empty and must not contain 0")
            else:
                out["violation_exit_codes"] = sorted(set(codes))

    if "output_format" in payload:
        output_format = _as_enum(
            payload["output_format"], _join(path, "output_format"), issues, allowed_values=OUTPUT_FORMATS
        )
        if output_format is not None:
            out["output_format"] = output_format

    if "version_command" in payload:
        version_command = _as_command(payload["version_command"], _join(path, "version_command"), issues)
        if version_command is not None:
            out["version_command"] = version_command

    if kind is not None and kind not in CHECKER_TASK_KINDS:
        for key in ("max_warnings", "rule_config", "output_format", "version_command"):
            if key in payload:
                issues.add(_join(path, key), f"only applies to checker tasks ({', '.join(sorted(CHECKER_TASK_KINDS))})")
    return out


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_path_text(value: object, path: str, issues: _IssueCollector) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if "\x00" in parsed:
        issues.add(path, "must not contain NUL bytes")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None and parsed < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    if maximum is not None and parsed > maximum:
        issues.add(path, f"must be <= {maximum}")
        return None
    return parsed


def _as_positive_float(value: object, path: str, issues: _IssueCollector) -> float | None:
    parsed = _as_float(value, path, issues)
    if parsed is not None and parsed <= 0.0:
        issues.add(path, "must be > 0")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, list):
        issues.add(path, f"expected array, got {type(value).__name__}")
        return None
    parsed: list[str] = []
    for index, item in enumerate(value):
        text = _as_str(item, f"{path}[{index}]", issues)
        if text is None:
            return None
        parsed.append(text)
    return parsed


def _as_int_list(value: object, path: str, issues: _IssueCollector) -> list[int] | None:
    if not isinstance(value, list):
        issues.add(path, f"expected array, got {type(value).__name__}")
        return None
    parsed: list[int] = []
    for index, item in enumerate(value):
        number = _as_int(item, f"{path}[{index}]", issues)
        if number is None:
            return None
        parsed.append(number)
    return parsed


def _as_command(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if isinstance(value, str):
        try:
            parts = [part for part in shlex.split(value) if part.strip()]
        except ValueError as exc:
            issues.add(path, f"cannot split command: {exc}")
            return None
    else:
        listed = _as_str_list(value, path, issues)
        if listed is None:
            return None
        parts = listed
    if not parts:
        issues.add(path, "must not be empty")
        return None
    return parts


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key in allowed:
            continue
        key_path = _join(path, key)
        if _looks_sensitive_key(key):
            issues.add(key_path, "embedded secret values are forbidden in buildgate.toml")
        else:
            issues.add(key_path, "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key) if path else key, "missing required field")


def _is_known_encoding(name: str) -> bool:
    try:
        codecs.lookup(name)
    except LookupError:
        return False
    return True


def _looks_sensitive_key(key: str) -> bool:
    normalized = _normalize_key(key)
    if "api_key" in normalized or "private_key" in normalized:
        return True
    tokens = tuple(token for token in normalized.split("_") if token)
    return any(token in _SENSITIVE_KEY_TOKENS for token in tokens)


def _normalize_key(key: str) -> str:
    with_boundaries = _CAMEL_CASE_BOUNDARY.sub(r"\1_\2", key.strip())
    return _NON_ALNUM.sub("_", with_boundaries.lower()).strip("_")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: _deep_copy_value(value[key]) for key in sorted(value)}


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, (list, tuple)):
        return [_deep_copy_value(item) for item in value]
    return copy.deepcopy(value)


def _redact_value(value: object, parent_key: str | None) -> object:
    if isinstance(value, Mapping):
        out: dict[str, object] = {}
        for key in sorted(value):
            if _looks_sensitive_key(key):
                out[key] = "<redacted>"
            else:
                out[key] = _redact_value(value[key], key)
        return out
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, parent_key) for item in value]
    return value


__all__ = [
    "BuildGateConfig",
    "CHECKER_TASK_KINDS",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "DEFAULT_CONFIG",
    "LOG_LEVELS",
    "MERGE_POLICIES",
    "PATH_FIELDS",
    "REPORT_FORMATS",
    "TASK_KINDS",
    "TASK_PATH_FIELDS",
    "TaskConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "redact_config",
    "validate_config",
]
