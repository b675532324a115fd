"""User settings: config.toml, then ARCHRIG_* environment, then CLI flags.

The settings file lives at ``$XDG_CONFIG_HOME/archrig/config.toml``::

    backup = true
    max_workers = 4
    default_timeout = 1800
    allow_root = false
    aur_helper = "yay"
    state_dir = "~/.local/state/archrig"
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

from archrig.errors import ConfigError

ENV_PREFIX = "ARCHRIG_"


def _xdg(env: Mapping[str, str], name: str, fallback: str) -> Path:
    value = env.get(name, "").strip()
    if value:
        return Path(value).expanduser()
    return Path(fallback).expanduser()


def default_config_path(env: Mapping[str, str] | None = None) -> Path:
    env = os.environ if env is None else env
    return _xdg(env, "XDG_CONFIG_HOME", "~/.config") / "archrig" / "config.toml"


def _default_state_dir() -> Path:
    return _xdg(os.environ, "XDG_STATE_HOME", "~/.local/state") / "archrig"


@dataclass(frozen=True)
class Settings:
    """Run-wide knobs. Immutable; derive variants with ``with_overrides``."""

    backup: bool = True
    max_workers: int = 4
    default_timeout: float | None = 1800.0
    allow_root: bool = False
    aur_helper: str = "yay"
    state_dir: Path | None = None

    @property
    def resolved_state_dir(self) -> Path:
        return self.state_dir if self.state_dir is not None else _default_state_dir()

    def with_overrides(self, **overrides: Any) -> Settings:
        """Apply non-``None`` overrides (typically CLI flags)."""
        values = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **values) if values else self


def _coerce(name: str, value: Any, source: str) -> Any:
    try:
        if name in {"backup", "allow_root"}:
            if isinstance(value, bool):
                return value
            if isinstance(value, str) and value.strip().lower() in {"1", "true", "yes", "on"}:
                return True
            if isinstance(value, str) and value.strip().lower() in {"0", "false", "no", "off"}:
                return False
            raise ValueError("expected a boolean")
        if name == "max_workers":
            if isinstance(value, bool):
                raise ValueError("expected an integer")
            workers = int(value)
            if workers < 1:
                raise ValueError("must be at least 1")
            return workers
        if name == "default_timeout":
            if isinstance(value, bool):
                raise ValueError("expected a number")
            timeout = float(value)
            return None if timeout <= 0 else timeout
        if name == "aur_helper":
            if not isinstance(value, str) or not value.strip():
                raise ValueError("expected a command name")
            return value.strip()
        if name == "state_dir":
            if not isinstance(value, str) or not value.strip():
                raise ValueError("expected a path")
            return Path(value).expanduser()
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid setting {name!r} in {source}: {exc}") from exc
    raise ConfigError(f"Unknown setting {name!r} in {source}")


def load_settings(path: Path | None = None, env: Mapping[str, str] | None = None) -> Settings:
    """Load settings from ``path`` (default location when omitted) and ``env``.

    Raises:
        ConfigError: If the file is malformed or holds unknown or mistyped keys
    """
    env = os.environ if env is None else env
    config_path = path if path is not None else default_config_path(env)
    known = {f.name for f in fields(Settings)}
    values: dict[str, Any] = {}

    if config_path.exists():
        try:
            with open(config_path, "rb") as f:
                data = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Malformed TOML config at {config_path}: {e}") from e
        for key, value in data.items():
            if key not in known:
                raise ConfigError(f"Unknown setting {key!r} in {config_path}")
            values[key] = _coerce(key, value, str(config_path))
    elif path is not None:
        raise ConfigError(f"Settings file not found: {config_path}")

    for key in sorted(known):
        raw = env.get(f"{ENV_PREFIX}{key.upper()}")
        if raw is not None and raw.strip():
            values[key] = _coerce(key, raw, f"${ENV_PREFIX}{key.upper()}")

    return Settings(**values)
