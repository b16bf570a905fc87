"""typeprof Configuration: project-level .typeprofrc.yml support.

Loads configuration from .typeprofrc.yml (or .typeprofrc.yaml,
.typeprofrc.json) found by walking up from the analysed file. Allows teams
to tune:
  - branch exploration strictness
  - union splitting and widening bounds
  - fixed-point and inference ceilings
  - parallel evaluation of toplevel calls
  - output format and watch polling

Example .typeprofrc.yml:
    explore_both_branches: true
    max_union_splitting: 4
    widen_after: 3
    max_fixpoint_iterations: 32
    parallel: true
    format: pretty
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, fields
from typing import Any, Optional

import yaml

from typeprof.errors import ConfigError


@dataclass
class ProfilerConfig:
    """Settings of one profiling session."""
    # Interpret both branches of every conditional. When false, a branch
    # guarded by a literal true/false constant is pruned.
    explore_both_branches: bool = True
    # Resolve union-typed calls per member combination up to this many.
    max_union_splitting: int = 4
    # Widening bounds
    max_union_size: int = 4
    max_type_depth: int = 3
    # Fixed-point iterations before widening, and the hard ceiling
    widen_after: int = 3
    max_fixpoint_iterations: int = 32
    # Distinct call inferences per toplevel call
    max_inferences: int = 10000
    # Toplevel calls
    parallel: bool = False
    parallel_workers: int = 0  # 0 = auto
    # Output
    format: str = "pretty"  # "pretty", "text", "json"
    color: Optional[bool] = None  # None = auto-detect
    # Watch
    poll_interval: float = 1.0

    def validate(self) -> ProfilerConfig:
        for name in ("max_union_splitting", "max_union_size", "max_type_depth",
                     "widen_after", "max_fixpoint_iterations", "max_inferences"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be at least 1")
        if self.widen_after > self.max_fixpoint_iterations:
            raise ConfigError("widen_after must not exceed max_fixpoint_iterations")
        if self.parallel_workers < 0:
            raise ConfigError("parallel_workers must not be negative")
        if self.format not in ("pretty", "text", "json"):
            raise ConfigError(f"unknown format {self.format!r}")
        if self.poll_interval <= 0:
            raise ConfigError("poll_interval must be positive")
        return self


# ---------------------------------------------------------------------------
# Config file names (in priority order)
# ---------------------------------------------------------------------------

_CONFIG_FILES = [
    ".typeprofrc.yml",
    ".typeprofrc.yaml",
    ".typeprofrc.json",
]


def find_config(start_dir: str = ".") -> Optional[str]:
    """Find the nearest config file by walking up from start_dir."""
    current = os.path.abspath(start_dir)
    while True:
        for name in _CONFIG_FILES:
            path = os.path.join(current, name)
            if os.path.isfile(path):
                return path
        parent = os.path.dirname(current)
        if parent == current:
            break
        current = parent
    return None


def load_config(path: Optional[str] = None, start_dir: str = ".") -> ProfilerConfig:
    """Load configuration from a file.

    If no path is given, searches for a config file starting from start_dir.
    If no config file is found, returns defaults.
    """
    if path is None:
        path = find_config(start_dir)

    if path is None:
        return ProfilerConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e

    try:
        if path.endswith(".json"):
            data = json.loads(content) if content.strip() else {}
        else:
            data = yaml.safe_load(content) or {}
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at the top level")
    return dict_to_config(data)


_BOOL_KEYS = {"explore_both_branches", "parallel"}
_INT_KEYS = {"max_union_splitting", "max_union_size", "max_type_depth", "widen_after",
             "max_fixpoint_iterations", "max_inferences", "parallel_workers"}


def dict_to_config(data: dict[str, Any], base: Optional[ProfilerConfig] = None) -> ProfilerConfig:
    """Convert a parsed mapping to ``ProfilerConfig``; unknown keys are errors."""
    config = base if base is not None else ProfilerConfig()
    known = {f.name for f in fields(ProfilerConfig)}
    for key, value in data.items():
        if key not in known:
            raise ConfigError(f"unknown configuration key {key!r}")
        try:
            if key in _BOOL_KEYS:
                value = bool(value)
            elif key in _INT_KEYS:
                value = int(value)
            elif key == "poll_interval":
                value = float(value)
            elif key == "color":
                value = None if value is None else bool(value)
            elif key == "format":
                value = str(value)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"invalid value for {key}: {value!r}") from e
        setattr(config, key, value)
    return config.validate()
