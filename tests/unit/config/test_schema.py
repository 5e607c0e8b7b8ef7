"""Unit tests for config schema validation, merging and redaction."""

from __future__ import annotations

import pytest

from buildgate.config.schema import (
    DEFAULT_CONFIG,
    ConfigValidationError,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
    validate_config,
)
from buildgate.domain.errors import ConfigurationError


def _with_tasks(*tasks: dict[str, object]) -> dict[str, object]:
    config = default_config()
    config["tasks"] = list(tasks)  # type: ignore[typeddict-item]
    return config


def _issue_paths(config: object) -> list[str]:
    return [issue.path for issue in validate_config(config).issues]


def test_defaults_are_valid_and_copies_are_independent() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert [task["id"] for task in result.config["tasks"]] == [
        "format",
        "compile",
        "style",
        "bugs-main",
        "bugs-test",
        "test",
    ]

    copy = default_config()
    copy["checks"]["max_warnings"] = 99
    assert DEFAULT_CONFIG["checks"]["max_warnings"] == 0


def test_merge_replaces_lists_and_merges_tables() -> None:
    merged = merge_config(
        {"checks": {"max_warnings": 0, "report_formats": ["html", "xml"]}},
        {"checks": {"report_formats": ["xml"]}, "scheduler": {"max_workers": 2}},
    )

    assert merged == {
        "checks": {"max_warnings": 0, "report_formats": ["xml"]},
        "scheduler": {"max_workers": 2},
    }


def test_unknown_and_secret_looking_keys_are_rejected() -> None:
    config = default_config()
    config["checks"]["maxWarnings"] = 3  # type: ignore[typeddict-unknown-key]
    config["build"]["api_key"] = "sk-live"  # type: ignore[typeddict-unknown-key]

    result = validate_config(config)

    messages = {issue.path: issue.message for issue in result.issues}
    assert messages["checks.maxWarnings"] == "unknown field"
    assert "secret" in messages["build.api_key"]
    assert not result.is_valid


def test_section_values_are_type_checked() -> None:
    config = default_config()
    config["checks"]["max_warnings"] = -1
    config["checks"]["report_formats"] = ["pdf"]
    config["coverage"]["merge_policy"] = "average"  # type: ignore[typeddict-item]
    config["coverage"]["output_suffixes"] = []
    config["coverage"]["min_line_percent"] = 140.0
    config["build"]["file_encoding"] = "no-such-codec"
    config["scheduler"]["default_timeout_seconds"] = 0
    config["observability"]["log_to_stdout"] = "yes"  # type: ignore[typeddict-item]

    assert sorted(_issue_paths(config)) == [
        "build.file_encoding",
        "checks.max_warnings",
        "checks.report_formats",
        "coverage.merge_policy",
        "coverage.min_line_percent",
        "coverage.output_suffixes",
        "observability.log_to_stdout",
        "scheduler.default_timeout_seconds",
    ]


def test_missing_sections_and_fields_are_reported() -> None:
    config = default_config()
    del config["scheduler"]  # type: ignore[misc]
    del config["build"]["source_root"]  # type: ignore[misc]

    assert sorted(_issue_paths(config)) == ["build.source_root", "scheduler"]
    assert _issue_paths([]) == ["<root>"]


def test_log_level_is_case_insensitive() -> None:
    config = default_config()
    config["observability"]["log_level"] = "debug"  # type: ignore[typeddict-item]

    assert assert_valid_config(config)["observability"]["log_level"] == "DEBUG"


def test_task_commands_accept_strings_and_lists() -> None:
    validated = assert_valid_config(
        _with_tasks(
            {"id": "fmt", "kind": "format", "command": "black --check '{target}'"},
            {"id": "compile", "kind": "compile", "command": ["make", "classes"], "depends_on": ["fmt"]},
        )
    )

    assert validated["tasks"][0]["command"] == ["black", "--check", "{target}"]
    assert validated["tasks"][1]["depends_on"] == ["fmt"]


def test_task_graph_references_are_checked() -> None:
    config = _with_tasks(
        {"id": "a", "kind": "command", "command": "true", "depends_on": ["ghost"]},
        {"id": "a", "kind": "command", "command": "true"},
        {"id": "-bad", "kind": "command", "command": "true"},
    )

    result = validate_config(config)

    messages = [(issue.path, issue.message) for issue in result.issues]
    assert ("tasks[2].id", "must start with a letter or digit and use [A-Za-z0-9_.-]") in messages
    assert ("tasks[1].id", "duplicate task id 'a'") in messages
    assert ("tasks[0].depends_on", "unknown task 'ghost'") in messages


def test_task_options_are_restricted_by_kind() -> None:
    config = _with_tasks(
        {"id": "compile", "kind": "compile", "command": "make", "max_warnings": 2, "workers": 2},
        {"id": "style", "kind": "style", "command": "ruff", "violation_exit_codes": [0, 1]},
        {"id": "test", "kind": "test", "command": "pytest", "workers": 0},
        {"id": "scan", "kind": "security", "command": "scan"},
    )

    assert sorted(_issue_paths(config)) == [
        "tasks[0].max_warnings",
        "tasks[0].workers",
        "tasks[1].violation_exit_codes",
        "tasks[2].workers",
        "tasks[3].kind",
    ]


def test_empty_task_list_and_empty_command_are_rejected() -> None:
    assert _issue_paths(_with_tasks()) == ["tasks"]
    assert _issue_paths(_with_tasks({"id": "a", "kind": "command", "command": "  "})) == [
        "tasks[0].command"
    ]


def test_validation_error_lists_every_issue() -> None:
    config = default_config()
    config["scheduler"]["max_workers"] = 0
    config["checks"]["show_violations"] = 1  # type: ignore[typeddict-item]

    with pytest.raises(ConfigValidationError) as excinfo:
        assert_valid_config(config)

    assert isinstance(excinfo.value, ConfigurationError)
    rendered = str(excinfo.value)
    assert "- scheduler.max_workers: must be >= 1" in rendered
    assert "- checks.show_violations: expected boolean, got int" in rendered


def test_redaction_masks_sensitive_keys_at_any_depth() -> None:
    redacted = redact_config(
        {"build": {"source_root": "src", "privateKey": "pem"}, "extra": [{"password": "hunter2"}]}
    )

    assert redacted == {
        "build": {"privateKey": "<redacted>", "source_root": "src"},
        "extra": [{"password": "<redacted>"}],
    }
    assert redact_config("not a mapping") == {}
