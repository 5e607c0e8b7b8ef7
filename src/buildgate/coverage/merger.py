"""
buildgate: coverage merger.

Folds every raw data file under an output tree into one
``MergedCoverageReport``. The report is the set of folded records, keyed by
content digest, plus the counters derived from them. Because the fold is a set
union:
- merge order never changes the result (commutative, associative)
- re-merging an included record changes nothing (idempotent)

Counters for the same ``(class, method, index)`` combine by the configured
``MergePolicy``: ``sum`` (default) or ``max``.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Final

import structlog

from buildgate.coverage.records import (
    CoverageData,
    CoverageRecord,
    MethodCoverage,
    MethodKey,
    decode_record,
)
from buildgate.domain.errors import CoverageMergeError
from buildgate.utils.fs import atomic_write
from buildgate.utils.hashing import canonical_json_dumps

DEFAULT_OUTPUT_SUFFIXES: Final[tuple[str, ...]] = ("*.exec", "*.ec")
MERGED_REPORT_FILENAME: Final[str] = "merged-coverage.json"


class MergePolicy(StrEnum):
    SUM = "sum"
    MAX = "max"

    def combine(self, left: int, right: int) -> int:
        if self is MergePolicy.MAX:
            return max(left, right)
        return left + right


def discover_raw_data_files(root: Path | str, suffixes: Iterable[str]) -> tuple[Path, ...]:
    """Sorted recursive enumeration of files under ``root`` matching any suffix pattern.

    Patterns are globs on the file name (``*.exec``); a bare suffix (``.exec``)
    is treated as ``*.exec``. A missing root yields no files.
    """

    patterns = tuple(sorted({_as_pattern(item) for item in suffixes}))
    base = Path(root)
    if not patterns or not base.is_dir():
        return ()
    return tuple(
        sorted(
            (
                candidate
                for candidate in base.rglob("*")
                if candidate.is_file()
                and any(fnmatch.fnmatchcase(candidate.name, pattern) for pattern in patterns)
            ),
            key=lambda item: item.as_posix(),
        )
    )


@dataclass(frozen=True, slots=True)
class CoverageTotals:
    covered: int = 0
    total: int = 0

    @property
    def percent(self) -> float | None:
        if self.total == 0:
            return None
        return round(100.0 * self.covered / self.total, 2)

    def __add__(self, other: CoverageTotals) -> CoverageTotals:
        return CoverageTotals(self.covered + other.covered, self.total + other.total)

    def to_dict(self) -> dict[str, object]:
        return {"covered": self.covered, "total": self.total, "percent": self.percent}


@dataclass(frozen=True, slots=True)
class ClassSummary:
    """Line and branch totals of every method in one class."""

    class_name: str
    lines: CoverageTotals
    branches: CoverageTotals

    def to_dict(self) -> dict[str, object]:
        return {
            "class": self.class_name,
            "lines": self.lines.to_dict(),
            "branches": self.branches.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class MergedCoverageReport:
    """Union of folded coverage records with derived hit counters."""

    policy: MergePolicy = MergePolicy.SUM
    contributions: Mapping[str, CoverageData] = field(default_factory=dict)
    counters: Mapping[MethodKey, MethodCoverage] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        contributions = dict(sorted(self.contributions.items()))
        object.__setattr__(self, "contributions", MappingProxyType(contributions))
        object.__setattr__(
            self, "counters", MappingProxyType(_fold(contributions.values(), self.policy))
        )

    @classmethod
    def empty(cls, policy: MergePolicy = MergePolicy.SUM) -> MergedCoverageReport:
        return cls(policy=policy)

    @classmethod
    def from_data(
        cls, items: Iterable[CoverageData], policy: MergePolicy = MergePolicy.SUM
    ) -> MergedCoverageReport:
        return cls(policy=policy, contributions={item.digest: item for item in items})

    @property
    def is_empty(self) -> bool:
        return not self.contributions

    @property
    def process_ids(self) -> tuple[str, ...]:
        return tuple(sorted({item.process_id for item in self.contributions.values()}))

    def include(self, data: CoverageData) -> MergedCoverageReport:
        """Fold one record in; a record already included is a no-op."""
        if data.digest in self.contributions:
            return self
        return MergedCoverageReport(
            policy=self.policy, contributions={**self.contributions, data.digest: data}
        )

    def merge(self, other: MergedCoverageReport) -> MergedCoverageReport:
        if other.policy is not self.policy:
            raise ValueError(
                f"cannot merge reports with different policies: {self.policy} != {other.policy}"
            )
        return MergedCoverageReport(
            policy=self.policy, contributions={**self.contributions, **other.contributions}
        )

    def hits(self, class_name: str, method_name: str) -> MethodCoverage | None:
        return self.counters.get((class_name, method_name))

    def line_totals(self) -> CoverageTotals:
        return _totals(coverage.lines for coverage in self.counters.values())

    def branch_totals(self) -> CoverageTotals:
        return _totals(coverage.branches for coverage in self.counters.values())

    @property
    def line_percent(self) -> float | None:
        return self.line_totals().percent

    @property
    def branch_percent(self) -> float | None:
        return self.branch_totals().percent

    def class_summaries(self) -> tuple[ClassSummary, ...]:
        by_class: dict[str, list[MethodCoverage]] = {}
        for (class_name, _), coverage in self.counters.items():
            by_class.setdefault(class_name, []).append(coverage)
        return tuple(
            ClassSummary(
                class_name=class_name,
                lines=_totals(item.lines for item in methods),
                branches=_totals(item.branches for item in methods),
            )
            for class_name, methods in sorted(by_class.items())
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "policy": self.policy.value,
            "records": list(self.contributions),
            "process_ids": list(self.process_ids),
            "lines": self.line_totals().to_dict(),
            "branches": self.branch_totals().to_dict(),
            "class_summaries": [summary.to_dict() for summary in self.class_summaries()],
            "classes": [
                {"class": class_name, "method": method_name, **coverage.to_dict()}
                for (class_name, method_name), coverage in self.counters.items()
            ],
        }

    def to_json(self, *, indent: int | None = 2) -> str:
        return canonical_json_dumps(self.to_dict(), indent=indent)


@dataclass(frozen=True, slots=True)
class MergeOutcome:
    """Merged report plus the per-file errors recovered along the way."""

    report: MergedCoverageReport
    files: tuple[Path, ...] = ()
    errors: tuple[CoverageMergeError, ...] = ()

    @property
    def merged_files(self) -> tuple[Path, ...]:
        failed = {error.path for error in self.errors}
        return tuple(path for path in self.files if path not in failed)


class CoverageMerger:
    """Reads raw data files and folds them into one report. Single writer."""

    def __init__(
        self,
        policy: MergePolicy | str = MergePolicy.SUM,
        *,
        suffixes: Sequence[str] = DEFAULT_OUTPUT_SUFFIXES,
        logger: Any | None = None,
    ) -> None:
        self._policy = MergePolicy(policy)
        self._suffixes = tuple(suffixes)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def policy(self) -> MergePolicy:
        return self._policy

    def merge(self, output_root: Path | str) -> MergeOutcome:
        return self.merge_files(discover_raw_data_files(output_root, self._suffixes))

    def merge_files(self, paths: Iterable[Path]) -> MergeOutcome:
        files = tuple(paths)
        decoded: list[CoverageData] = []
        errors: list[CoverageMergeError] = []

        for path in files:
            try:
                decoded.append(decode_record(CoverageRecord.read(path)))
            except CoverageMergeError as exc:
                errors.append(exc)
                self._logger.warning("coverage_file_skipped", path=path.as_posix(), error=str(exc))

        if files and not decoded:
            raise CoverageMergeError(f"none of the {len(files)} raw data file(s) could be read")

        report = MergedCoverageReport.from_data(decoded, self._policy)
        self._logger.info(
            "coverage_merged",
            files=len(files),
            skipped=len(errors),
            records=len(report.contributions),
            policy=self._policy.value,
            line_percent=report.line_percent,
            branch_percent=report.branch_percent,
        )
        return MergeOutcome(report=report, files=files, errors=tuple(errors))

    def write(self, report: MergedCoverageReport, path: Path | str) -> Path:
        target = Path(path)
        atomic_write(target, report.to_json() + "\n")
        return target


def _fold(items: Iterable[CoverageData], policy: MergePolicy) -> dict[MethodKey, MethodCoverage]:
    lines: dict[MethodKey, dict[int, int]] = {}
    branches: dict[MethodKey, dict[int, int]] = {}
    for data in items:
        for key, coverage in data.methods.items():
            _combine_into(lines.setdefault(key, {}), coverage.lines, policy)
            _combine_into(branches.setdefault(key, {}), coverage.branches, policy)
    return {
        key: MethodCoverage(lines=lines[key], branches=branches[key]) for key in sorted(lines)
    }


def _combine_into(target: dict[int, int], counters: Mapping[int, int], policy: MergePolicy) -> None:
    for index, hits in counters.items():
        existing = target.get(index)
        target[index] = hits if existing is None else policy.combine(existing, hits)


def _totals(counter_maps: Iterable[Mapping[int, int]]) -> CoverageTotals:
    covered = 0
    total = 0
    for counters in counter_maps:
        total += len(counters)
        covered += sum(1 for hits in counters.values() if hits > 0)
    return CoverageTotals(covered=covered, total=total)


def _as_pattern(suffix: str) -> str:
    cleaned = suffix.strip()
    if not cleaned:
        raise ValueError("coverage output suffix must not be empty")
    if any(char in cleaned for char in "*?["):
        return cleaned
    return f"*{cleaned}"


__all__ = [
    "ClassSummary",
    "CoverageMerger",
    "CoverageTotals",
    "DEFAULT_OUTPUT_SUFFIXES",
    "MERGED_REPORT_FILENAME",
    "MergeOutcome",
    "MergePolicy",
    "MergedCoverageReport",
    "discover_raw_data_files",
]
