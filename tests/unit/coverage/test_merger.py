"""
Unit tests for the coverage merger.

The merge laws (commutative, associative, idempotent) are checked as
properties over generated records; the rest covers discovery, recovery from
malformed files and the two-worker scenario.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from buildgate.coverage.merger import (
    CoverageMerger,
    MergedCoverageReport,
    MergePolicy,
    discover_raw_data_files,
)
from buildgate.coverage.records import CoverageData, MethodCoverage, encode_record
from buildgate.domain.errors import CoverageMergeError

if TYPE_CHECKING:
    from pathlib import Path

_counters = st.dictionaries(st.integers(0, 12), st.integers(0, 5), max_size=6)
_method_keys = st.sampled_from(
    [("pkg.A", "run()"), ("pkg.A", "stop()"), ("pkg.B", "<init>()"), ("pkg.C", "m(int)")]
)
_records = st.builds(
    lambda process_id, methods: CoverageData(process_id=process_id, methods=methods),
    st.sampled_from(["test-1", "test-2", "test-3", "bugs"]),
    st.dictionaries(
        _method_keys,
        st.builds(lambda lines, branches: MethodCoverage(lines=lines, branches=branches),
                  _counters, _counters),
        max_size=3,
    ),
)
_policies = st.sampled_from(list(MergePolicy))


def _report(items: list[CoverageData], policy: MergePolicy) -> MergedCoverageReport:
    return MergedCoverageReport.from_data(items, policy)


@settings(max_examples=75, deadline=None)
@given(left=st.lists(_records, max_size=3), right=st.lists(_records, max_size=3), policy=_policies)
def test_merge_is_commutative(
    left: list[CoverageData], right: list[CoverageData], policy: MergePolicy
) -> None:
    a = _report(left, policy)
    b = _report(right, policy)

    assert a.merge(b) == b.merge(a)
    assert a.merge(b).counters == b.merge(a).counters


@settings(max_examples=75, deadline=None)
@given(
    first=st.lists(_records, max_size=2),
    second=st.lists(_records, max_size=2),
    third=st.lists(_records, max_size=2),
    policy=_policies,
)
def test_merge_is_associative(
    first: list[CoverageData],
    second: list[CoverageData],
    third: list[CoverageData],
    policy: MergePolicy,
) -> None:
    a, b, c = (_report(items, policy) for items in (first, second, third))

    assert a.merge(b).merge(c).counters == a.merge(b.merge(c)).counters


@settings(max_examples=75, deadline=None)
@given(items=st.lists(_records, min_size=1, max_size=4), policy=_policies)
def test_merging_an_included_record_changes_nothing(
    items: list[CoverageData], policy: MergePolicy
) -> None:
    report = _report(items, policy)

    for item in items:
        assert report.include(item) == report
    assert report.merge(report).counters == report.counters


def _write_record(path: Path, process_id: str, lines: dict[int, int], branches: dict[int, int] | None = None) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(
        encode_record(process_id, {("pkg.Calc", "add(int,int)"): {"lines": lines, "branches": branches or {}}})
    )
    return path


def test_two_workers_with_disjoint_indices_union_their_coverage(tmp_path: Path) -> None:
    root = tmp_path / "coverage"
    _write_record(root / "test-1.exec", "test-1", {0: 1, 1: 1})
    _write_record(root / "test-2.exec", "test-2", {2: 4, 3: 0}, {0: 1, 1: 0})

    outcome = CoverageMerger().merge(root)

    report = outcome.report
    assert outcome.errors == ()
    assert report.process_ids == ("test-1", "test-2")
    assert dict(report.hits("pkg.Calc", "add(int,int)").lines) == {0: 1, 1: 1, 2: 4, 3: 0}
    assert report.line_percent == 75.0
    assert report.branch_percent == 50.0


def test_policy_decides_how_overlapping_counters_combine(tmp_path: Path) -> None:
    root = tmp_path / "coverage"
    _write_record(root / "test-1.exec", "test-1", {0: 2})
    _write_record(root / "test-2.exec", "test-2", {0: 3})

    summed = CoverageMerger("sum").merge(root).report
    maxed = CoverageMerger(MergePolicy.MAX).merge(root).report

    assert summed.hits("pkg.Calc", "add(int,int)").lines[0] == 5
    assert maxed.hits("pkg.Calc", "add(int,int)").lines[0] == 3


def test_zero_files_yield_an_empty_report(tmp_path: Path) -> None:
    outcome = CoverageMerger().merge(tmp_path / "does-not-exist")

    assert outcome.files == ()
    assert outcome.report.is_empty
    assert outcome.report.line_percent is None


def test_malformed_file_is_skipped_and_reported(tmp_path: Path) -> None:
    root = tmp_path / "coverage"
    good = _write_record(root / "test-1.exec", "test-1", {0: 1})
    bad = root / "nested" / "test-2.ec"
    bad.parent.mkdir(parents=True)
    bad.write_bytes(b"truncated{")

    outcome = CoverageMerger().merge(root)

    assert outcome.files == (bad, good)
    assert [error.path for error in outcome.errors] == [bad]
    assert outcome.merged_files == (good,)
    assert outcome.report.process_ids == ("test-1",)


def test_all_files_malformed_raises(tmp_path: Path) -> None:
    root = tmp_path / "coverage"
    root.mkdir()
    (root / "test-1.exec").write_bytes(b"nope")

    with pytest.raises(CoverageMergeError, match="none of the 1"):
        CoverageMerger().merge(root)


def test_discovery_matches_configured_suffixes_only(tmp_path: Path) -> None:
    for name in ("b.exec", "a/c.ec", "notes.txt", "d.exec.bak"):
        target = tmp_path / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(b"")

    found = discover_raw_data_files(tmp_path, ["*.exec", ".ec"])

    assert [path.relative_to(tmp_path).as_posix() for path in found] == ["a/c.ec", "b.exec"]


def test_written_report_is_stable_json(tmp_path: Path) -> None:
    root = tmp_path / "coverage"
    _write_record(root / "test-1.exec", "test-1", {0: 1, 1: 0})
    merger = CoverageMerger()
    report = merger.merge(root).report

    target = merger.write(report, tmp_path / "out" / "merged-coverage.json")

    text = target.read_text(encoding="utf-8")
    assert text == report.to_json() + "\n"
    assert '"policy": "sum"' in text


def test_class_summaries_total_each_class_and_reach_the_written_report(tmp_path: Path) -> None:
    root = tmp_path / "coverage"
    root.mkdir()
    (root / "test-1.exec").write_bytes(
        encode_record(
            "test-1",
            {
                ("pkg.Calc", "add(int,int)"): {"lines": {0: 1, 1: 0}, "branches": {0: 1}},
                ("pkg.Calc", "sub(int,int)"): {"lines": {0: 2}, "branches": {}},
                ("pkg.Io", "read()"): {"lines": {0: 0, 1: 0}, "branches": {0: 0, 1: 1}},
            },
        )
    )
    merger = CoverageMerger()
    report = merger.merge(root).report

    calc, io = report.class_summaries()

    assert (calc.class_name, calc.lines.covered, calc.lines.total) == ("pkg.Calc", 2, 3)
    assert calc.branches.percent == 100.0
    assert io.lines.percent == 0.0
    assert io.branches.percent == 50.0

    written = json.loads(merger.write(report, tmp_path / "merged.json").read_text("utf-8"))
    assert written["class_summaries"] == [
        {
            "class": "pkg.Calc",
            "lines": {"covered": 2, "total": 3, "percent": 66.67},
            "branches": {"covered": 1, "total": 1, "percent": 100.0},
        },
        {
            "class": "pkg.Io",
            "lines": {"covered": 0, "total": 2, "percent": 0.0},
            "branches": {"covered": 1, "total": 2, "percent": 50.0},
        },
    ]


def test_reports_with_different_policies_do_not_merge() -> None:
    with pytest.raises(ValueError):
        MergedCoverageReport.empty(MergePolicy.SUM).merge(MergedCoverageReport.empty(MergePolicy.MAX))
