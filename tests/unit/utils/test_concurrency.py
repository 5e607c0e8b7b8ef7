"""Regression tests for concurrency utility edge cases."""

from __future__ import annotations

import asyncio
import gc
import sys
import warnings
from contextlib import contextmanager
from types import SimpleNamespace
from typing import TYPE_CHECKING

import pytest

from buildgate.utils.concurrency import BoundedSemaphore, run_with_timeout

if TYPE_CHECKING:
    from collections.abc import Iterator


@contextmanager
def _capture_unraisable() -> Iterator[list[SimpleNamespace]]:
    captured: list[SimpleNamespace] = []
    original = sys.unraisablehook

    def hook(unraisable: object) -> None:
        captured.append(
            SimpleNamespace(
                exc_type=getattr(unraisable, "exc_type", None),
                err_msg=getattr(unraisable, "err_msg", None),
            )
        )

    sys.unraisablehook = hook
    try:
        yield captured
    finally:
        sys.unraisablehook = original


async def _slow() -> int:
    await asyncio.sleep(0.01)
    return 1


async def _slower() -> int:
    await asyncio.sleep(0.05)
    return 1


async def test_run_with_timeout_returns_result_before_deadline() -> None:
    assert await run_with_timeout(_slow(), 1.0) == 1
    assert await run_with_timeout(_slow(), None) == 1


async def test_run_with_timeout_timeout_path_does_not_leak_coroutine() -> None:
    with _capture_unraisable() as leaked, warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        with pytest.raises(TimeoutError):
            await run_with_timeout(_slower(), 0.001)
        gc.collect()

    assert leaked == []


async def test_run_with_timeout_rejects_non_positive_deadline_without_leaking() -> None:
    with _capture_unraisable() as leaked, warnings.catch_warnings():
        warnings.simplefilter("error", RuntimeWarning)
        with pytest.raises(ValueError):
            await run_with_timeout(_slow(), 0)
        gc.collect()

    assert leaked == []


async def test_run_with_timeout_cancels_inner_work_on_deadline() -> None:
    cleaned_up = asyncio.Event()

    async def hang() -> None:
        try:
            await asyncio.sleep(10)
        finally:
            cleaned_up.set()

    with pytest.raises(TimeoutError):
        await run_with_timeout(hang(), 0.01)

    assert cleaned_up.is_set()


async def test_bounded_semaphore_tracks_peak_and_blocks_over_limit() -> None:
    semaphore = BoundedSemaphore(2)
    release = asyncio.Event()

    async def hold() -> None:
        async with semaphore.permit():
            await release.wait()

    holders = [asyncio.create_task(hold()) for _ in range(3)]
    await asyncio.sleep(0.01)

    assert semaphore.in_use == 2
    assert semaphore.available == 0

    release.set()
    await asyncio.gather(*holders)

    assert semaphore.in_use == 0
    assert semaphore.peak == 2


def test_bounded_semaphore_rejects_bad_limit_and_extra_release() -> None:
    with pytest.raises(ValueError):
        BoundedSemaphore(0)
    with pytest.raises(RuntimeError):
        BoundedSemaphore(1).release()
