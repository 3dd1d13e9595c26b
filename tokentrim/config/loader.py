"""
Configuration management and loading.

Reads the optional YAML settings file and environment overrides.
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from tokentrim.storage.db import DB_PATH_ENV

CONFIG_PATH_ENV = "TOKENTRIM_CONFIG"
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "tokentrim" / "config.yaml"

DEFAULT_CONFIG_TEXT = """\
# tokentrim settings; every key is optional
# database_path: ~/.local/share/tokentrim/history.db
runner:
  timeout_seconds: null
tee:
  enabled: true
  mode: failures        # failures | always | never
  # directory: ~/.local/share/tokentrim/tee
adapters:
  disabled: []          # adapter names (git.log) or programs (docker)
  # max_lines: 100
economics:
  # feed_path: ~/.cache/ccusage/usage.json
"""


class TeeMode(Enum):
    """When the full raw output of a run is saved."""
    FAILURES = "failures"
    ALWAYS = "always"
    NEVER = "never"


@dataclass(frozen=True)
class RunnerConfig:
    timeout_seconds: Optional[float] = None

    def __post_init__(self):
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError("runner.timeout_seconds must be > 0")


@dataclass(frozen=True)
class TeeConfig:
    enabled: bool = True
    mode: TeeMode = TeeMode.FAILURES
    directory: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.enabled and self.mode is not TeeMode.NEVER


@dataclass(frozen=True)
class AdaptersConfig:
    disabled: Tuple[str, ...] = ()
    max_lines: Optional[int] = None

    def __post_init__(self):
        if self.max_lines is not None and self.max_lines <= 0:
            raise ValueError("adapters.max_lines must be > 0")


@dataclass(frozen=True)
class EconomicsConfig:
    feed_path: Optional[str] = None


@dataclass(frozen=True)
class AppConfig:
    """Complete tokentrim configuration."""
    database_path: Optional[str] = None
    runner: RunnerConfig = field(default_factory=RunnerConfig)
    tee: TeeConfig = field(default_factory=TeeConfig)
    adapters: AdaptersConfig = field(default_factory=AdaptersConfig)
    economics: EconomicsConfig = field(default_factory=EconomicsConfig)


def config_path(path=None) -> Path:
    """Settings file location: argument, then $TOKENTRIM_CONFIG, then default."""
    if path:
        return Path(path).expanduser()
    env_path = os.environ.get(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH


def load_config(path=None) -> AppConfig:
    """Load and validate configuration from YAML.

    A missing file at the default location means defaults. Strict validation
    rejects unknown keys so a typo never silently disables a setting.

    Args:
        path: Explicit config file, or None to use the environment/default

    Returns:
        Validated AppConfig, with $TOKENTRIM_DB_PATH applied on top

    Raises:
        FileNotFoundError: If an explicitly given config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    explicit = bool(path) or bool(os.environ.get(CONFIG_PATH_ENV))
    config_file = config_path(path)

    raw_config: Dict = {}
    if config_file.exists():
        with open(config_file, "r", encoding="utf-8") as f:
            try:
                raw_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise yaml.YAMLError(f"Invalid YAML in config file {config_file}: {e}")
    elif explicit:
        raise FileNotFoundError(f"Config file not found: {config_file}")

    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {"database_path", "runner", "tee", "adapters", "economics"}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    database_path = raw_config.get("database_path")
    if database_path is not None and not isinstance(database_path, str):
        raise ValueError("'database_path' must be a string")
    database_path = os.environ.get(DB_PATH_ENV) or database_path

    return AppConfig(
        database_path=database_path,
        runner=_parse_runner(_section(raw_config, "runner", {"timeout_seconds"})),
        tee=_parse_tee(_section(raw_config, "tee", {"enabled", "mode", "directory"})),
        adapters=_parse_adapters(_section(raw_config, "adapters", {"disabled", "max_lines"})),
        economics=_parse_economics(_section(raw_config, "economics", {"feed_path"})),
    )


def _section(raw_config: Dict, name: str, allowed_keys) -> Dict:
    data = raw_config.get(name)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - set(allowed_keys)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _parse_runner(data: Dict) -> RunnerConfig:
    timeout = data.get("timeout_seconds")
    if timeout is not None:
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)):
            raise ValueError("'runner.timeout_seconds' must be a number")
        timeout = float(timeout)
    return RunnerConfig(timeout_seconds=timeout)


def _parse_tee(data: Dict) -> TeeConfig:
    enabled = data.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ValueError("'tee.enabled' must be true or false")

    mode_str = data.get("mode", TeeMode.FAILURES.value)
    if not isinstance(mode_str, str):
        raise ValueError("'tee.mode' must be a string")
    try:
        mode = TeeMode(mode_str.lower())
    except ValueError:
        valid_modes = [mode.value for mode in TeeMode]
        raise ValueError(f"'tee.mode' must be one of: {valid_modes}")

    directory = data.get("directory")
    if directory is not None and not isinstance(directory, str):
        raise ValueError("'tee.directory' must be a string")
    return TeeConfig(enabled=enabled, mode=mode, directory=directory)


def _parse_adapters(data: Dict) -> AdaptersConfig:
    disabled = data.get("disabled") or []
    if not isinstance(disabled, list) or not all(isinstance(d, str) for d in disabled):
        raise ValueError("'adapters.disabled' must be a list of names")

    max_lines = data.get("max_lines")
    if max_lines is not None and (isinstance(max_lines, bool) or not isinstance(max_lines, int)):
        raise ValueError("'adapters.max_lines' must be an integer")
    return AdaptersConfig(disabled=tuple(disabled), max_lines=max_lines)


def _parse_economics(data: Dict) -> EconomicsConfig:
    feed_path = data.get("feed_path")
    if feed_path is not None and not isinstance(feed_path, str):
        raise ValueError("'economics.feed_path' must be a string")
    return EconomicsConfig(feed_path=feed_path)


def write_default_config(path=None) -> Optional[Path]:
    """Write the commented template unless a config file already exists.

    Returns:
        The path written, or None if a file was already there
    """
    target = config_path(path)
    if target.exists():
        return None
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(DEFAULT_CONFIG_TEXT, encoding="utf-8")
    return target
