"""
buildgate: verification plane public API.

Checkers, the test-execution task, the gate evaluator and the pipeline that
wires them into one build.
"""

from buildgate.verification_plane.command_step import CommandStep, CommandStepResult
from buildgate.verification_plane.gate import (
    CoverageBreach,
    FailingTask,
    GateThresholds,
    GateVerdict,
    SkippedTask,
    evaluate,
)
from buildgate.verification_plane.pipeline import (
    COVERAGE_MERGE_TASK_ID,
    GATE_SUMMARY_FILENAME,
    BuildPipeline,
    BuildReport,
    check_result_of,
)
from buildgate.verification_plane.test_execution import (
    TestExecution,
    TestExecutionResult,
    TestWorker,
    WorkerOutcome,
    parse_test_failures,
)

__all__ = [
    "BuildPipeline",
    "BuildReport",
    "COVERAGE_MERGE_TASK_ID",
    "CommandStep",
    "CommandStepResult",
    "CoverageBreach",
    "FailingTask",
    "GATE_SUMMARY_FILENAME",
    "GateThresholds",
    "GateVerdict",
    "SkippedTask",
    "TestExecution",
    "TestExecutionResult",
    "TestWorker",
    "WorkerOutcome",
    "check_result_of",
    "evaluate",
    "parse_test_failures",
]
