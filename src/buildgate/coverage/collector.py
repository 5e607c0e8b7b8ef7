"""
buildgate: coverage collector.

Hands every instrumented worker process its configuration before it starts:
the agent location, a private destination file and the text encoding. Two live
workers never share a destination. Only files of workers that exited cleanly
are published; partial output of killed or failed workers is deleted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Final

import structlog

from buildgate.domain.errors import ConfigurationError
from buildgate.utils.fs import remove_within

if TYPE_CHECKING:
    from collections.abc import Mapping

AGENT_ENV: Final[str] = "BUILDGATE_COVERAGE_AGENT"
DESTFILE_ENV: Final[str] = "BUILDGATE_COVERAGE_DESTFILE"
ENCODING_ENV: Final[str] = "BUILDGATE_FILE_ENCODING"

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(frozen=True, slots=True)
class WorkerCoverageConfig:
    """Process-scoped coverage configuration for one worker."""

    process_id: str
    agent_path: Path
    destfile: Path
    file_encoding: str

    @property
    def env(self) -> Mapping[str, str]:
        return MappingProxyType(
            {
                AGENT_ENV: self.agent_path.as_posix(),
                DESTFILE_ENV: self.destfile.as_posix(),
                ENCODING_ENV: self.file_encoding,
                "PYTHONIOENCODING": self.file_encoding,
            }
        )

    def placeholders(self) -> dict[str, str]:
        """Values for ``{coverage_agent}`` / ``{coverage_destfile}`` in worker argv."""
        return {
            "coverage_agent": self.agent_path.as_posix(),
            "coverage_destfile": self.destfile.as_posix(),
            "file_encoding": self.file_encoding,
            "process_id": self.process_id,
        }


class CoverageCollector:
    """Allocates destination files and tracks which workers exited cleanly."""

    def __init__(
        self,
        agent_path: Path | str,
        output_dir: Path | str,
        *,
        file_encoding: str = "utf-8",
        suffix: str = ".exec",
        logger: Any | None = None,
    ) -> None:
        if not suffix.startswith(".") or len(suffix) < 2:
            raise ConfigurationError(f"coverage file suffix must look like '.exec', got {suffix!r}")
        if not file_encoding.strip():
            raise ConfigurationError("file_encoding must not be empty")
        self._agent_path = Path(agent_path)
        self._output_dir = Path(output_dir)
        self._file_encoding = file_encoding.strip()
        self._suffix = suffix
        self._live: dict[str, WorkerCoverageConfig] = {}
        self._destinations: set[Path] = set()
        self._published: dict[str, Path] = {}
        self._discarded: set[str] = set()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    @property
    def file_encoding(self) -> str:
        return self._file_encoding

    @property
    def live_process_ids(self) -> tuple[str, ...]:
        return tuple(sorted(self._live))

    def destination_for(self, process_id: str) -> Path:
        safe = _UNSAFE_NAME_CHARS.sub("_", process_id.strip()).strip("._")
        if not safe:
            raise ConfigurationError(f"process id {process_id!r} has no usable characters")
        return self._output_dir / f"{safe}{self._suffix}"

    def allocate(self, process_id: str) -> WorkerCoverageConfig:
        """Reserve a private destination for ``process_id``; call before the worker starts."""
        destfile = self.destination_for(process_id)
        if process_id in self._live or process_id in self._published or process_id in self._discarded:
            raise ConfigurationError(f"coverage already allocated for process {process_id!r}")
        if destfile in self._destinations:
            raise ConfigurationError(f"coverage destination {destfile} is already in use")

        self._output_dir.mkdir(parents=True, exist_ok=True)
        # A stale file from an earlier build must not be mistaken for this worker's output.
        remove_within(destfile, self._output_dir)

        config = WorkerCoverageConfig(
            process_id=process_id,
            agent_path=self._agent_path,
            destfile=destfile,
            file_encoding=self._file_encoding,
        )
        self._live[process_id] = config
        self._destinations.add(destfile)
        self._logger.debug("coverage_allocated", process_id=process_id, destfile=destfile.as_posix())
        return config

    def complete(self, process_id: str, *, exited_cleanly: bool) -> Path | None:
        """Release a worker's allocation. Returns the published file, if any."""
        config = self._live.pop(process_id, None)
        if config is None:
            raise KeyError(f"no live coverage allocation for process {process_id!r}")

        if exited_cleanly and config.destfile.is_file():
            self._published[process_id] = config.destfile
            self._logger.debug(
                "coverage_published", process_id=process_id, destfile=config.destfile.as_posix()
            )
            return config.destfile

        self._discarded.add(process_id)
        removed = remove_within(config.destfile, self._output_dir)
        self._logger.info(
            "coverage_discarded",
            process_id=process_id,
            exited_cleanly=exited_cleanly,
            removed_partial_file=removed,
        )
        return None

    def published(self) -> tuple[Path, ...]:
        """Raw data files of cleanly exited workers, in process-id order."""
        return tuple(self._published[process_id] for process_id in sorted(self._published))


__all__ = [
    "AGENT_ENV",
    "CoverageCollector",
    "DESTFILE_ENV",
    "ENCODING_ENV",
    "WorkerCoverageConfig",
]
