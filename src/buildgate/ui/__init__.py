"""CLI router and summary rendering."""

from buildgate.ui.cli import build_parser, run_cli
from buildgate.ui.render import CLIRenderer, create_renderer, render_build_report

__all__ = [
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "render_build_report",
    "run_cli",
]
