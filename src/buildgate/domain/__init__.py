"""Domain-level error types shared by every plane."""

from buildgate.domain.errors import (
    BuildGateError,
    ConfigurationError,
    CoverageMergeError,
    TaskTimeout,
    ToolInvocationError,
    ViolationThresholdExceeded,
)

__all__ = [
    "BuildGateError",
    "ConfigurationError",
    "CoverageMergeError",
    "TaskTimeout",
    "ToolInvocationError",
    "ViolationThresholdExceeded",
]
