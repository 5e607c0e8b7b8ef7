"""Utility exports for filesystem, hashing, and concurrency helpers."""

from buildgate.utils.concurrency import BoundedSemaphore, run_with_timeout
from buildgate.utils.fs import atomic_write, is_within, remove_within
from buildgate.utils.hashing import canonical_json_dumps, sha256_text

__all__ = [
    "BoundedSemaphore",
    "atomic_write",
    "canonical_json_dumps",
    "is_within",
    "remove_within",
    "run_with_timeout",
    "sha256_text",
]
