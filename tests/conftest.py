"""Shared fixtures: a scripted ``CommandExecutor`` that never spawns processes."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import TYPE_CHECKING

import pytest

from buildgate.observability.logging import shutdown_logging
from buildgate.verification_plane.checkers.base import CommandResult, CommandSpec

if TYPE_CHECKING:
    from collections.abc import Iterator

Responder = Callable[[CommandSpec], CommandResult]


class FakeExecutor:
    """Answers each command from ``responders`` keyed by the program name.

    Version probes (``<tool> --version``) answer ``"<tool> 1.0"`` unless a
    responder is registered under ``"<tool> --version"``.
    """

    def __init__(
        self,
        responders: dict[str, Responder] | None = None,
        *,
        delay_seconds: float = 0.0,
    ) -> None:
        self.responders = dict(responders or {})
        self.delay_seconds = delay_seconds
        self.calls: list[CommandSpec] = []
        self.active = 0
        self.peak_active = 0

    async def run(self, spec: CommandSpec) -> CommandResult:
        self.calls.append(spec)
        self.active += 1
        self.peak_active = max(self.peak_active, self.active)
        try:
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            key = " ".join(spec.argv[:2]) if spec.argv[1:2] == ("--version",) else spec.argv[0]
            responder = self.responders.get(key)
            if responder is None:
                if spec.argv[1:2] == ("--version",):
                    return CommandResult(argv=spec.argv, exit_code=0, stdout=f"{spec.argv[0]} 1.0\n")
                return CommandResult(argv=spec.argv, exit_code=0)
            return responder(spec)
        finally:
            self.active -= 1

    def argvs(self, program: str) -> list[tuple[str, ...]]:
        return [spec.argv for spec in self.calls if spec.argv[0] == program]


def reply(exit_code: int | None = 0, stdout: str = "", stderr: str = "", **extra: object) -> Responder:
    def _responder(spec: CommandSpec) -> CommandResult:
        return CommandResult(
            argv=spec.argv, exit_code=exit_code, stdout=stdout, stderr=stderr, **extra  # type: ignore[arg-type]
        )

    return _responder


@pytest.fixture
def fake_executor() -> type[FakeExecutor]:
    return FakeExecutor


@pytest.fixture
def make_reply() -> Callable[..., Responder]:
    return reply


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()
