"""
buildgate: raw coverage records and their codec.

Each instrumented worker writes one JSON document::

    {"format": "buildgate-coverage", "version": 1, "process_id": "worker-0",
     "classes": [{"class": "pkg.Cls", "method": "m()",
                  "lines": {"3": 1, "4": 0}, "branches": {"7": 2}}]}

Keys of ``lines`` / ``branches`` are canonical instruction indices within the
method; values are hit counters.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Final

from buildgate.domain.errors import CoverageMergeError
from buildgate.utils.hashing import canonical_json_dumps, sha256_text

RAW_FORMAT: Final[str] = "buildgate-coverage"
RAW_FORMAT_VERSION: Final[int] = 1

MethodKey = tuple[str, str]


@dataclass(frozen=True, slots=True)
class CoverageRecord:
    """One raw data file as written by a worker process."""

    process_id: str
    payload: bytes
    path: Path

    @classmethod
    def read(cls, path: Path | str) -> CoverageRecord:
        resolved = Path(path)
        try:
            payload = resolved.read_bytes()
        except OSError as exc:
            raise CoverageMergeError(f"unable to read raw data file: {exc}", path=resolved) from exc
        return cls(process_id=resolved.stem, payload=payload, path=resolved)


@dataclass(frozen=True, slots=True)
class MethodCoverage:
    """Hit counters for one method, keyed by instruction index."""

    lines: Mapping[int, int]
    branches: Mapping[int, int]

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", MappingProxyType(dict(sorted(self.lines.items()))))
        object.__setattr__(self, "branches", MappingProxyType(dict(sorted(self.branches.items()))))

    def to_dict(self) -> dict[str, dict[str, int]]:
        return {
            "lines": {str(index): hits for index, hits in self.lines.items()},
            "branches": {str(index): hits for index, hits in self.branches.items()},
        }


@dataclass(frozen=True, slots=True)
class CoverageData:
    """Decoded content of one record."""

    process_id: str
    methods: Mapping[MethodKey, MethodCoverage]

    def __post_init__(self) -> None:
        object.__setattr__(self, "methods", MappingProxyType(dict(sorted(self.methods.items()))))

    @property
    def digest(self) -> str:
        """Content identity: equal data from the same process hashes equal."""
        return sha256_text(canonical_json_dumps(self.to_dict()))

    def to_dict(self) -> dict[str, object]:
        return {
            "format": RAW_FORMAT,
            "version": RAW_FORMAT_VERSION,
            "process_id": self.process_id,
            "classes": [
                {"class": class_name, "method": method_name, **coverage.to_dict()}
                for (class_name, method_name), coverage in self.methods.items()
            ],
        }


def decode_record(record: CoverageRecord) -> CoverageData:
    """Parse a record, raising ``CoverageMergeError`` when it is malformed."""

    try:
        payload = json.loads(record.payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise CoverageMergeError(f"not a valid raw data file: {exc}", path=record.path) from exc

    if not isinstance(payload, dict):
        raise CoverageMergeError("raw data root must be an object", path=record.path)
    if payload.get("format") != RAW_FORMAT:
        raise CoverageMergeError(f"unknown format {payload.get('format')!r}", path=record.path)
    if payload.get("version") != RAW_FORMAT_VERSION:
        raise CoverageMergeError(
            f"unsupported version {payload.get('version')!r}", path=record.path
        )

    process_id = payload.get("process_id", record.process_id)
    if not isinstance(process_id, str) or not process_id.strip():
        raise CoverageMergeError("process_id must be a non-empty string", path=record.path)

    classes = payload.get("classes", [])
    if not isinstance(classes, list):
        raise CoverageMergeError("classes must be an array", path=record.path)

    methods: dict[MethodKey, MethodCoverage] = {}
    for index, entry in enumerate(classes):
        where = f"classes[{index}]"
        if not isinstance(entry, dict):
            raise CoverageMergeError(f"{where} must be an object", path=record.path)
        class_name = entry.get("class")
        method_name = entry.get("method")
        if not isinstance(class_name, str) or not class_name:
            raise CoverageMergeError(f"{where}.class must be a non-empty string", path=record.path)
        if not isinstance(method_name, str) or not method_name:
            raise CoverageMergeError(f"{where}.method must be a non-empty string", path=record.path)

        key = (class_name, method_name)
        lines = _decode_counters(entry.get("lines", {}), f"{where}.lines", record.path)
        branches = _decode_counters(entry.get("branches", {}), f"{where}.branches", record.path)
        if key in methods:
            # Repeated entries inside one file describe the same probes.
            previous = methods[key]
            lines = _union_max(previous.lines, lines)
            branches = _union_max(previous.branches, branches)
        methods[key] = MethodCoverage(lines=lines, branches=branches)

    return CoverageData(process_id=process_id.strip(), methods=methods)


def encode_record(
    process_id: str,
    methods: Mapping[MethodKey, Mapping[str, Mapping[int, int]]],
) -> bytes:
    """Serialize counters in the raw data format (used by agents and fixtures)."""

    data = CoverageData(
        process_id=process_id,
        methods={
            key: MethodCoverage(
                lines=dict(counters.get("lines", {})),
                branches=dict(counters.get("branches", {})),
            )
            for key, counters in methods.items()
        },
    )
    return canonical_json_dumps(data.to_dict()).encode("utf-8")


def _decode_counters(value: object, where: str, path: Path) -> dict[int, int]:
    if not isinstance(value, dict):
        raise CoverageMergeError(f"{where} must be an object", path=path)
    counters: dict[int, int] = {}
    for raw_index, hits in value.items():
        try:
            index = int(raw_index)
        except (TypeError, ValueError):
            raise CoverageMergeError(
                f"{where} key {raw_index!r} is not an instruction index", path=path
            ) from None
        if index < 0:
            raise CoverageMergeError(f"{where} index {index} must be >= 0", path=path)
        if isinstance(hits, bool) or not isinstance(hits, int) or hits < 0:
            raise CoverageMergeError(
                f"{where}[{raw_index}] must be a non-negative integer", path=path
            )
        counters[index] = hits
    return counters


def _union_max(left: Mapping[int, int], right: Mapping[int, int]) -> dict[int, int]:
    merged = dict(left)
    for index, hits in right.items():
        merged[index] = max(merged.get(index, 0), hits)
    return merged


__all__ = [
    "CoverageData",
    "CoverageRecord",
    "MethodCoverage",
    "MethodKey",
    "RAW_FORMAT",
    "RAW_FORMAT_VERSION",
    "decode_record",
    "encode_record",
]
