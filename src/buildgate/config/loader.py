"""
buildgate: runtime config loader.

Layers, lowest precedence first: built-in defaults, ``buildgate.toml``,
``BUILDGATE_<SECTION>_<KEY>`` environment variables, CLI overrides. The file
layer is validated on its own so a broken file is reported before any
override can mask it; the fully merged result is validated again.

Relative paths are resolved against the directory holding the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from buildgate.config.schema import (
    PATH_FIELDS,
    TASK_PATH_FIELDS,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from buildgate.domain.errors import ConfigurationError

DEFAULT_CONFIG_FILE: Final[str] = "buildgate.toml"
ENV_PREFIX: Final[str] = "BUILDGATE_"

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

Coercer = Callable[[str], object]


class ConfigLoadError(ConfigurationError):
    """The config file cannot be read or an override cannot be coerced."""


def _as_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError("must be a boolean (true/false/1/0/yes/no/on/off)")


def _as_int(raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValueError("must be an integer") from None


def _as_float(raw: str) -> float:
    try:
        return float(raw)
    except ValueError:
        raise ValueError("must be a number") from None


def _as_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


# Settings without a default still get an env binding.
_UNSET_SETTINGS: Final[dict[tuple[str, str], Coercer]] = {
    ("coverage", "min_line_percent"): _as_float,
    ("coverage", "min_branch_percent"): _as_float,
}


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Effective config for one invocation. Raises ``ConfigurationError`` subclasses."""

    path = (
        Path.cwd() / DEFAULT_CONFIG_FILE
        if config_path is None
        else Path(config_path).expanduser()
    ).resolve()
    file_layer = _read_toml(path, required=config_path is not None)
    config = assert_valid_config(merge_config(default_config(), file_layer))

    env = os.environ if environ is None else environ
    config = merge_config(config, _env_layer(config, env))
    config = merge_config(config, _cli_layer(cli_overrides or {}))
    return normalize_paths(assert_valid_config(config), base_dir=path.parent)


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Copy of ``config`` with every path setting made absolute against ``base_dir``."""

    result = merge_config({}, config)
    for section, key in PATH_FIELDS:
        table = result.get(section)
        if isinstance(table, dict) and isinstance(table.get(key), str):
            table[key] = _absolute(table[key], base_dir)
    for task in result.get("tasks") or ():
        if isinstance(task, dict):
            for key in TASK_PATH_FIELDS:
                if isinstance(task.get(key), str):
                    task[key] = _absolute(task[key], base_dir)
    return result


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Redacted config as canonical JSON."""

    return json.dumps(
        redact_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def env_bindings(config: Mapping[str, object]) -> dict[str, tuple[str, ...]]:
    """Environment variable name -> config path for every overridable setting."""

    return {name: path for name, (path, _) in sorted(_settings(config).items())}


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _settings(config: Mapping[str, object]) -> dict[str, tuple[tuple[str, str], Coercer]]:
    settings: dict[str, tuple[tuple[str, str], Coercer]] = {}
    for section, key, coerce in _typed_settings(config):
        settings[_env_name(section, key)] = ((section, key), coerce)
    for (section, key), coerce in _UNSET_SETTINGS.items():
        settings.setdefault(_env_name(section, key), ((section, key), coerce))
    return settings


def _typed_settings(config: Mapping[str, object]) -> Iterator[tuple[str, str, Coercer]]:
    # The task graph is file-only; every other section is a flat table.
    for section, table in config.items():
        if section == "tasks" or not isinstance(table, Mapping):
            continue
        for key, value in table.items():
            coerce: Coercer | None
            if isinstance(value, bool):
                coerce = _as_bool
            elif isinstance(value, int):
                coerce = _as_int
            elif isinstance(value, float):
                coerce = _as_float
            elif isinstance(value, str):
                coerce = str
            elif isinstance(value, list):
                coerce = _as_list
            else:
                coerce = None
            if coerce is not None:
                yield section, key, coerce


def _env_layer(config: Mapping[str, object], environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, dict[str, object]] = {}
    for name, ((section, key), coerce) in sorted(_settings(config).items()):
        raw = environ.get(name)
        if raw is None:
            continue
        try:
            value = coerce(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {section}.{key} {exc}") from exc
        layer.setdefault(section, {})[key] = value
    return layer


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted, value in sorted(overrides.items()):
        if value is None:
            continue
        parts = [part for part in dotted.split(".") if part]
        if not parts:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        if parts[0] == "tasks":
            raise ConfigLoadError("tasks cannot be overridden from the command line")
        cursor = layer
        for part in parts[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[parts[-1]] = value
    return layer


def _absolute(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


def _env_name(section: str, key: str) -> str:
    return f"{ENV_PREFIX}{section.upper()}_{key.upper()}"


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_bindings",
    "load_config",
    "normalize_paths",
]
