"""Unit tests for plain command tasks (compile and friends)."""

from __future__ import annotations

from pathlib import Path

import pytest

from buildgate.domain.errors import ConfigurationError, TaskTimeout, ToolInvocationError
from buildgate.verification_plane.command_step import CommandStep


@pytest.mark.asyncio
async def test_successful_command_renders_placeholders(fake_executor) -> None:
    executor = fake_executor()
    step = CommandStep(
        "compile",
        ("python", "-m", "compileall", "-q", "{source_root}"),
        executor=executor,
        placeholders={"source_root": "src"},
        cwd=Path("/work"),
        timeout_seconds=30.0,
    )

    result = await step.run()

    assert result.exit_code == 0
    assert result.argv == ("python", "-m", "compileall", "-q", "src")
    spec = executor.calls[0]
    assert spec.cwd == "/work"
    assert spec.timeout_seconds == 30.0


@pytest.mark.asyncio
async def test_non_zero_exit_reports_the_last_error_line(fake_executor, make_reply) -> None:
    executor = fake_executor(
        {"javac": make_reply(1, stderr="Foo.java:3: error: ';' expected\n1 error\n")}
    )
    step = CommandStep("compile", ("javac", "Foo.java"), executor=executor)

    with pytest.raises(ToolInvocationError) as excinfo:
        await step.run()

    assert excinfo.value.exit_code == 1
    assert str(excinfo.value) == "compile: javac exited with status 1: 1 error"


@pytest.mark.asyncio
async def test_timeout_and_start_failures(fake_executor, make_reply) -> None:
    slow = CommandStep(
        "compile",
        ("make",),
        executor=fake_executor({"make": make_reply(None, timed_out=True)}),
        timeout_seconds=2.0,
    )
    with pytest.raises(TaskTimeout):
        await slow.run()

    missing = CommandStep(
        "compile",
        ("make",),
        executor=fake_executor({"make": make_reply(None, error="No such file or directory")}),
    )
    with pytest.raises(ToolInvocationError, match="could not start 'make'"):
        await missing.run()


def test_unset_placeholder_fails_at_construction(fake_executor) -> None:
    with pytest.raises(ConfigurationError):
        CommandStep(
            "compile",
            ("tool", "{classes_root}"),
            executor=fake_executor(),
            placeholders={"classes_root": None},
        )
