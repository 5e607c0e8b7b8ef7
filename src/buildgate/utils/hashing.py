"""Deterministic digests and canonical JSON encoding."""

from __future__ import annotations

import hashlib
import json
from typing import Any

__all__ = [
    "canonical_json_dumps",
    "sha256_text",
]


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return hashlib.sha256(text.encode(encoding)).hexdigest()


def canonical_json_dumps(value: Any, *, indent: int | None = None) -> str:
    """Stable JSON: sorted keys, no ASCII escaping, compact unless ``indent`` is set."""

    separators = (",", ":") if indent is None else (",", ": ")
    return json.dumps(value, sort_keys=True, separators=separators, ensure_ascii=False, indent=indent)
