"""
buildgate: unit tests for config loader

Covers precedence (CLI > env > file > defaults), env var coercion, path
normalization relative to the config file and the redacted effective dump.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path

import pytest

from buildgate.config.loader import (
    ConfigLoadError,
    dump_effective_config,
    env_bindings,
    load_config,
)
from buildgate.config.schema import ConfigValidationError
from buildgate.domain.errors import ConfigurationError


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


def _sha256_json(data: dict[str, object]) -> str:
    payload = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def test_loader_precedence_default_file_env_cli(tmp_path: Path) -> None:
    default_path = tmp_path / "default.toml"
    config_path = tmp_path / "buildgate.toml"
    _write_config(default_path, "")
    _write_config(
        config_path,
        """
[checks]
max_warnings = 4
""".strip(),
    )

    default_loaded = load_config(default_path, environ={})
    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(config_path, environ={"BUILDGATE_CHECKS_MAX_WARNINGS": "6"})
    cli_loaded = load_config(
        config_path,
        environ={"BUILDGATE_CHECKS_MAX_WARNINGS": "6"},
        cli_overrides={"checks.max_warnings": 7},
    )

    assert default_loaded["checks"]["max_warnings"] == 0
    assert file_loaded["checks"]["max_warnings"] == 4
    assert env_loaded["checks"]["max_warnings"] == 6
    assert cli_loaded["checks"]["max_warnings"] == 7


def test_env_values_are_coerced_by_setting_type(tmp_path: Path) -> None:
    config_path = tmp_path / "buildgate.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "BUILDGATE_SCHEDULER_MAX_WORKERS": "8",
            "BUILDGATE_SCHEDULER_DEFAULT_TIMEOUT_SECONDS": "90.5",
            "BUILDGATE_CHECKS_FAIL_BUILD_ON_VIOLATION": "no",
            "BUILDGATE_COVERAGE_OUTPUT_SUFFIXES": "*.exec, *.cov",
            "BUILDGATE_COVERAGE_MIN_LINE_PERCENT": "80",
            "BUILDGATE_BUILD_FILE_ENCODING": "latin-1",
        },
    )

    assert loaded["scheduler"]["max_workers"] == 8
    assert loaded["scheduler"]["default_timeout_seconds"] == 90.5
    assert loaded["checks"]["fail_build_on_violation"] is False
    assert loaded["coverage"]["output_suffixes"] == ["*.cov", "*.exec"]
    assert loaded["coverage"]["min_line_percent"] == 80.0
    assert loaded["build"]["file_encoding"] == "latin-1"


def test_invalid_env_coercion_raises_actionable_error(tmp_path: Path) -> None:
    config_path = tmp_path / "buildgate.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigLoadError, match="BUILDGATE_SCHEDULER_MAX_WORKERS"):
        load_config(config_path, environ={"BUILDGATE_SCHEDULER_MAX_WORKERS": "many"})
    with pytest.raises(ConfigLoadError, match="must be a boolean"):
        load_config(config_path, environ={"BUILDGATE_CHECKS_SHOW_VIOLATIONS": "maybe"})


def test_env_override_is_validated_like_file_values(tmp_path: Path) -> None:
    config_path = tmp_path / "buildgate.toml"
    _write_config(config_path, "")

    with pytest.raises(ConfigValidationError) as excinfo:
        load_config(config_path, environ={"BUILDGATE_SCHEDULER_MAX_WORKERS": "0"})

    assert [issue.path for issue in excinfo.value.issues] == ["scheduler.max_workers"]


def test_tasks_are_not_bound_to_env_or_cli(tmp_path: Path) -> None:
    config_path = tmp_path / "buildgate.toml"
    _write_config(config_path, "")
    loaded = load_config(config_path, environ={})

    bindings = env_bindings(loaded)

    assert bindings["BUILDGATE_CHECKS_MAX_WARNINGS"] == ("checks", "max_warnings")
    assert bindings["BUILDGATE_COVERAGE_MIN_BRANCH_PERCENT"] == ("coverage", "min_branch_percent")
    assert not any(name.startswith("BUILDGATE_TASKS") for name in bindings)
    with pytest.raises(ConfigLoadError, match="tasks"):
        load_config(config_path, environ={}, cli_overrides={"tasks": []})


def test_cli_overrides_skip_unset_values(tmp_path: Path) -> None:
    config_path = tmp_path / "buildgate.toml"
    _write_config(config_path, "[scheduler]\nmax_workers = 3\n")

    loaded = load_config(
        config_path,
        environ={},
        cli_overrides={"scheduler.max_workers": None, "checks.fail_build_on_violation": False},
    )

    assert loaded["scheduler"]["max_workers"] == 3
    assert loaded["checks"]["fail_build_on_violation"] is False


def test_loader_is_deterministic_for_same_inputs(tmp_path: Path) -> None:
    config_path = tmp_path / "buildgate.toml"
    _write_config(config_path, "")

    env = {"BUILDGATE_SCHEDULER_MAX_WORKERS": "6", "BUILDGATE_OBSERVABILITY_LOG_TO_STDOUT": "true"}
    cli = {"checks.max_warnings": 2}

    first = load_config(config_path, environ=env, cli_overrides=cli)
    second = load_config(config_path, environ=env, cli_overrides=cli)

    assert _sha256_json(first) == _sha256_json(second)


def test_path_normalization_is_relative_to_config_file(tmp_path: Path) -> None:
    config_path = tmp_path / "nested" / "buildgate.toml"
    _write_config(
        config_path,
        """
[build]
source_root = "app/src"

[[tasks]]
id = "style"
kind = "style"
command = "checkstyle -c {rule_config} {target}"
rule_config = "config/checkstyle.xml"
""".strip(),
    )

    loaded = load_config(config_path, environ={})

    base = config_path.parent.resolve()
    assert loaded["build"]["source_root"] == (base / "app/src").as_posix()
    assert loaded["coverage"]["output_dir"] == (base / "build/coverage").as_posix()
    (task,) = loaded["tasks"]
    assert task["rule_config"] == (base / "config/checkstyle.xml").as_posix()
    assert task["command"] == ["checkstyle", "-c", "{rule_config}", "{target}"]


def test_file_tasks_replace_the_default_graph(tmp_path: Path) -> None:
    config_path = tmp_path / "buildgate.toml"
    _write_config(
        config_path,
        """
[[tasks]]
id = "lint"
kind = "style"
command = ["ruff", "check", "{target}"]
max_warnings = 2
""".strip(),
    )

    loaded = load_config(config_path, environ={})

    assert [task["id"] for task in loaded["tasks"]] == ["lint"]


def test_missing_explicit_file_and_bad_toml_are_load_errors(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="not found"):
        load_config(tmp_path / "absent.toml", environ={})

    broken = tmp_path / "broken.toml"
    _write_config(broken, "[checks\nmax_warnings = 1\n")
    with pytest.raises(ConfigLoadError, match="invalid TOML") as excinfo:
        load_config(broken, environ={})
    assert isinstance(excinfo.value, ConfigurationError)


def test_missing_default_file_falls_back_to_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    loaded = load_config(environ={})

    assert loaded["scheduler"]["max_workers"] == 4
    assert loaded["build"]["source_root"] == (tmp_path.resolve() / "src").as_posix()


def test_dump_effective_config_is_redacted_and_stable(tmp_path: Path) -> None:
    config_path = tmp_path / "buildgate.toml"
    _write_config(config_path, "")
    loaded = load_config(config_path, environ={})
    loaded["build"]["auth_token"] = "s3cr3t"

    dumped = dump_effective_config(loaded)

    assert "s3cr3t" not in dumped
    assert json.loads(dumped)["build"]["auth_token"] == "<redacted>"
    assert dumped == dump_effective_config(loaded)
