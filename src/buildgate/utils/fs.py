"""
buildgate: filesystem helpers.

Atomic writes for the artifacts buildgate persists (merged coverage, gate
summary) and guarded removal of partial worker output.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "atomic_write",
    "is_within",
    "remove_within",
]


def atomic_write(path: PathLike, data: bytes | str, *, encoding: str = "utf-8") -> None:
    """
    Atomically write ``data`` to ``path``, creating parent directories.

    The data goes to a temp file in the destination directory, is fsynced, and
    replaces the target via ``os.replace``. Readers never observe a partial file.
    """

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target_parent = target.parent.resolve(strict=True)

    fd, temp_name = tempfile.mkstemp(
        prefix=f".{target.name}.",
        suffix=".tmp",
        dir=str(target_parent),
    )
    temp_path = Path(temp_name)

    try:
        payload = data if isinstance(data, bytes) else data.encode(encoding)
        with os.fdopen(fd, "wb") as file_handle:
            file_handle.write(payload)
            file_handle.flush()
            os.fsync(file_handle.fileno())
        os.replace(temp_path, target)
    except Exception:
        with contextlib.suppress(OSError):
            temp_path.unlink(missing_ok=True)
        raise


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if ``child`` resolves to a location under ``parent``."""

    resolved_parent = Path(parent).resolve(strict=False)
    resolved_child = Path(child).resolve(strict=False)
    try:
        resolved_child.relative_to(resolved_parent)
    except ValueError:
        return False
    return True


def remove_within(path: PathLike, root: PathLike) -> bool:
    """Delete file ``path`` if it exists and lies under ``root``.

    Returns whether a file was removed. Paths outside ``root`` raise ``ValueError``.
    """

    target = Path(path)
    if not is_within(target, root):
        raise ValueError(f"refusing to delete path outside {root!s}: {target!s}")
    if target.is_symlink() or target.is_file():
        target.unlink()
        return True
    return False
