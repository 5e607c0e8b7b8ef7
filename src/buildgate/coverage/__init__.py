"""Per-worker coverage collection and the commutative merge of raw data files."""

from buildgate.coverage.collector import CoverageCollector, WorkerCoverageConfig
from buildgate.coverage.merger import (
    DEFAULT_OUTPUT_SUFFIXES,
    CoverageMerger,
    MergedCoverageReport,
    MergeOutcome,
    MergePolicy,
    discover_raw_data_files,
)
from buildgate.coverage.records import CoverageData, CoverageRecord, decode_record, encode_record

__all__ = [
    "CoverageCollector",
    "CoverageData",
    "CoverageMerger",
    "CoverageRecord",
    "DEFAULT_OUTPUT_SUFFIXES",
    "MergeOutcome",
    "MergePolicy",
    "MergedCoverageReport",
    "WorkerCoverageConfig",
    "decode_record",
    "discover_raw_data_files",
    "encode_record",
]
