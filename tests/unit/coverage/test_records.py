"""Unit tests for the raw coverage record codec."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import pytest

from buildgate.coverage.records import (
    RAW_FORMAT,
    CoverageRecord,
    decode_record,
    encode_record,
)
from buildgate.domain.errors import CoverageMergeError

if TYPE_CHECKING:
    from pathlib import Path


def _write(path: Path, payload: object) -> CoverageRecord:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return CoverageRecord.read(path)


def test_decoded_record_exposes_method_counters(tmp_path: Path) -> None:
    path = tmp_path / "test-1.exec"
    path.write_bytes(
        encode_record(
            "test-1",
            {
                ("pkg.B", "run()"): {"lines": {4: 0, 3: 2}, "branches": {7: 1}},
                ("pkg.A", "init()"): {"lines": {0: 1}},
            },
        )
    )

    data = decode_record(CoverageRecord.read(path))

    assert data.process_id == "test-1"
    assert list(data.methods) == [("pkg.A", "init()"), ("pkg.B", "run()")]
    run = data.methods[("pkg.B", "run()")]
    assert dict(run.lines) == {3: 2, 4: 0}
    assert dict(run.branches) == {7: 1}


def test_payload_process_id_wins_over_file_name(tmp_path: Path) -> None:
    record = _write(
        tmp_path / "renamed.exec",
        {"format": RAW_FORMAT, "version": 1, "process_id": "test-2", "classes": []},
    )

    assert record.process_id == "renamed"
    assert decode_record(record).process_id == "test-2"


def test_repeated_entries_in_one_file_take_the_maximum(tmp_path: Path) -> None:
    entry = {"class": "pkg.A", "method": "m()"}
    record = _write(
        tmp_path / "w.exec",
        {
            "format": RAW_FORMAT,
            "version": 1,
            "classes": [
                {**entry, "lines": {"1": 3, "2": 0}},
                {**entry, "lines": {"1": 1, "2": 5}},
            ],
        },
    )

    data = decode_record(record)

    assert dict(data.methods[("pkg.A", "m()")].lines) == {1: 3, 2: 5}


def test_equal_content_has_equal_digest(tmp_path: Path) -> None:
    methods = {("pkg.A", "m()"): {"lines": {1: 1}, "branches": {}}}
    (tmp_path / "a.exec").write_bytes(encode_record("test-1", methods))
    (tmp_path / "b.exec").write_bytes(encode_record("test-1", methods))
    (tmp_path / "c.exec").write_bytes(encode_record("test-2", methods))

    first, second, other = (
        decode_record(CoverageRecord.read(tmp_path / name)) for name in ("a.exec", "b.exec", "c.exec")
    )

    assert first.digest == second.digest
    assert first.digest != other.digest


@pytest.mark.parametrize(
    ("payload", "fragment"),
    [
        (b"\x00\x01garbage", "not a valid raw data file"),
        (b"[]", "root must be an object"),
        (b'{"format": "jacoco", "version": 1}', "unknown format"),
        (b'{"format": "buildgate-coverage", "version": 9}', "unsupported version"),
        (
            b'{"format": "buildgate-coverage", "version": 1, "classes": [{"class": "A"}]}',
            "method must be a non-empty string",
        ),
        (
            b'{"format": "buildgate-coverage", "version": 1,'
            b' "classes": [{"class": "A", "method": "m", "lines": {"x": 1}}]}',
            "not an instruction index",
        ),
        (
            b'{"format": "buildgate-coverage", "version": 1,'
            b' "classes": [{"class": "A", "method": "m", "lines": {"1": -4}}]}',
            "non-negative integer",
        ),
    ],
)
def test_malformed_records_raise_coverage_merge_error(
    tmp_path: Path, payload: bytes, fragment: str
) -> None:
    path = tmp_path / "bad.exec"
    path.write_bytes(payload)

    with pytest.raises(CoverageMergeError, match=fragment) as excinfo:
        decode_record(CoverageRecord.read(path))

    assert excinfo.value.path == path


def test_unreadable_file_is_a_coverage_merge_error(tmp_path: Path) -> None:
    with pytest.raises(CoverageMergeError, match="unable to read"):
        CoverageRecord.read(tmp_path / "missing.exec")
