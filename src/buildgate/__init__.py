"""
buildgate: quality-gate orchestrator for build output trees.

Runs format, style, bug and test tasks as an explicit dependency graph, merges
per-worker coverage data and issues one pass/fail verdict.

Import boundary: no side effects at import time (no config loading, no logging
setup). Heavy submodules are imported by their callers.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
