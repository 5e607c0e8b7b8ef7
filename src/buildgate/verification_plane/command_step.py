"""Plain command task (compile and friends): succeeds on exit 0, no violations."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import structlog

from buildgate.domain.errors import TaskTimeout, ToolInvocationError
from buildgate.verification_plane.checkers.base import CommandExecutor, CommandSpec
from buildgate.verification_plane.checkers.command_checker import render_command


@dataclass(frozen=True, slots=True)
class CommandStepResult:
    task_id: str
    argv: tuple[str, ...]
    exit_code: int
    duration_ms: int


class CommandStep:
    def __init__(
        self,
        task_id: str,
        command: Sequence[str],
        *,
        executor: CommandExecutor,
        placeholders: Mapping[str, str | None] | None = None,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
        logger: Any | None = None,
    ) -> None:
        self._task_id = task_id
        self._argv = render_command(command, placeholders or {}, task_id=task_id)
        self._executor = executor
        self._cwd = cwd
        self._env = dict(env or {})
        self._timeout_seconds = timeout_seconds
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def argv(self) -> tuple[str, ...]:
        return self._argv

    async def run(self) -> CommandStepResult:
        spec = CommandSpec(
            argv=self._argv,
            cwd=self._cwd.as_posix() if self._cwd is not None else None,
            env=self._env,
            timeout_seconds=self._timeout_seconds,
        )
        result = await self._executor.run(spec)

        if result.timed_out:
            raise TaskTimeout(self._task_id, self._timeout_seconds or 0.0)
        if result.error is not None:
            raise ToolInvocationError(
                f"{self._task_id}: could not start {spec.argv[0]!r}: {result.error}",
                argv=spec.argv,
            )
        if result.exit_code != 0:
            detail = _last_line(result.stderr) or _last_line(result.stdout)
            suffix = f": {detail}" if detail else ""
            raise ToolInvocationError(
                f"{self._task_id}: {Path(spec.argv[0]).name} exited with status "
                f"{result.exit_code}{suffix}",
                argv=spec.argv,
                exit_code=result.exit_code,
            )

        self._logger.info(
            "command_step_succeeded", task_id=self._task_id, duration_ms=result.duration_ms
        )
        return CommandStepResult(
            task_id=self._task_id,
            argv=spec.argv,
            exit_code=0,
            duration_ms=result.duration_ms,
        )


def _last_line(text: str) -> str:
    for line in reversed(text.splitlines()):
        if line.strip():
            return line.strip()
    return ""


__all__ = ["CommandStep", "CommandStepResult"]
