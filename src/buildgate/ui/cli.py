"""Command-line interface router for buildgate."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from buildgate.config import dump_effective_config, load_config
from buildgate.observability import setup_logging, shutdown_logging
from buildgate.ui.render import CLIRenderer, create_renderer, render_build_report
from buildgate.verification_plane.pipeline import BuildPipeline


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router."""

    parser = argparse.ArgumentParser(
        prog="buildgate",
        description=(
            "buildgate: build-time quality gate.\n\n"
            "Common workflows:\n"
            "  buildgate run               Run every check and evaluate the gate\n"
            "  buildgate plan              Show the task execution order\n"
            "  buildgate config            Show the effective configuration\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to buildgate TOML config (default: ./buildgate.toml if present).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show every violation, not just counts.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run all checks and evaluate the gate",
        description=(
            "Run format, compile, static analysis, style and test tasks, merge coverage\n"
            "and evaluate the gate. Exit 0 on pass, 1 on gate failure.\n\n"
            "Examples:\n"
            "  buildgate run\n"
            "  buildgate run --max-warnings 10 --no-fail-on-violation\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument(
        "--max-warnings",
        type=int,
        default=None,
        help="Violation threshold for every checker (overrides checks.max_warnings).",
    )
    run_parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="Number of tasks allowed to run at once (overrides scheduler.max_workers).",
    )
    run_parser.add_argument(
        "--no-fail-on-violation",
        action="store_true",
        default=False,
        help="Report checks over their threshold without failing the build.",
    )
    run_parser.set_defaults(handler=_cmd_run)

    # plan ----------------------------------------------------------------
    plan_parser = subparsers.add_parser(
        "plan",
        parents=[common],
        help="Print the task execution order without running anything",
    )
    plan_parser.set_defaults(handler=_cmd_plan)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Show effective configuration (redacted)",
        description=(
            "Display the effective config after merging defaults, file and env.\n"
            "Sensitive values are redacted.\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    return int(handler(namespace))


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    overrides: dict[str, object] = {
        "checks.max_warnings": getattr(args, "max_warnings", None),
        "scheduler.max_workers": getattr(args, "max_workers", None),
    }
    if _flag(args, "no_fail_on_violation"):
        overrides["checks.fail_build_on_violation"] = False
    config = _load_effective_config(args, overrides)

    run_id = _new_run_id()
    setup_logging(config["observability"], run_id=run_id)
    try:
        report = asyncio.run(BuildPipeline(config).run())
    finally:
        shutdown_logging()

    exit_code = 0 if report.passed else 1
    if _flag(args, "json"):
        _emit_json({"command": "run", "run_id": run_id, **report.to_dict()})
        return exit_code

    renderer = _get_renderer(args)
    renderer.kv("Run ID", run_id)
    render_build_report(renderer, report)
    return exit_code


def _cmd_plan(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    order = BuildPipeline(config).plan()

    if _flag(args, "json"):
        _emit_json({"command": "plan", "order": list(order)})
        return 0

    renderer = _get_renderer(args)
    renderer.section("Execution order:")
    renderer.items([f"{index}. {task_id}" for index, task_id in enumerate(order, start=1)], prefix="")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    redacted = json.loads(dump_effective_config(config))

    if _flag(args, "json"):
        _emit_json({"command": "config", "config": redacted})
        return 0

    renderer = _get_renderer(args)
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _load_effective_config(
    args: argparse.Namespace, cli_overrides: Mapping[str, object] | None = None
) -> dict[str, Any]:
    config_path = getattr(args, "config_path", None)
    config = load_config(config_path, cli_overrides=cli_overrides)
    if _flag(args, "verbose"):
        config["checks"]["show_violations"] = True
    return config


def _new_run_id() -> str:
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    return f"{stamp}-{uuid.uuid4().hex[:8]}"


def _flag(args: argparse.Namespace, name: str) -> bool:
    value = getattr(args, name, False)
    return bool(value)


__all__ = ["build_parser", "run_cli"]
