"""Dispatcher configuration.

Defaults live in code; an optional JSON file overrides any subset of them and
may declare executor profiles for the CLI and API entry points.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Final

from dispatcher.errors import ConfigError

# ═══════════════════════════════════════════════════════════════════════════
# CONSTANTS
# ═══════════════════════════════════════════════════════════════════════════

HOME_ENV: Final[str] = "DISPATCHER_HOME"
CONFIG_FILENAME: Final[str] = "config.json"


def default_data_dir() -> Path:
    """Data directory, overridable via ``DISPATCHER_HOME``."""
    override = os.environ.get(HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".dispatcher"


# ═══════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ExecutorSpec:
    """Executor declared in the configuration file."""

    executor_id: str
    tags: tuple[str, ...] = ()
    complexity: str = "medium"
    speed: str = "medium"
    quality_class: str = "standard"
    kind: str = "command"
    description: str = ""
    command: tuple[str, ...] = ()
    timeout: float = 300.0


@dataclass(frozen=True)
class DispatchConfig:
    """Tunable parameters of the dispatch engine."""

    # Quality bar (validator scores are 0-10)
    base_threshold: float = 7.0
    max_relaxation: float = 2.0
    quality_floor: float = 4.0

    # Retry budget
    base_attempts: int = 3
    hard_task_difficulty: float = 0.7

    # k-NN recommender
    k: int = 5
    min_history: int = 5
    min_confidence: float = 0.3
    recency_half_life_days: float | None = None

    # Reframing
    enable_reframing: bool = True
    reframe_margin: float = 2.0

    # Blend the policy threshold with qualities seen on similar tasks
    calibrate_from_history: bool = False

    data_dir: Path = field(default_factory=default_data_dir)
    executors: tuple[ExecutorSpec, ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.quality_floor <= 10.0:
            raise ConfigError(f"quality_floor must be in [0, 10], got {self.quality_floor}")
        if not 0.0 <= self.base_threshold <= 10.0:
            raise ConfigError(f"base_threshold must be in [0, 10], got {self.base_threshold}")
        if self.max_relaxation < 0.0:
            raise ConfigError(f"max_relaxation must be >= 0, got {self.max_relaxation}")
        if self.base_attempts < 1:
            raise ConfigError(f"base_attempts must be >= 1, got {self.base_attempts}")
        if self.k < 1:
            raise ConfigError(f"k must be >= 1, got {self.k}")
        if self.min_history < 0:
            raise ConfigError(f"min_history must be >= 0, got {self.min_history}")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ConfigError(f"min_confidence must be in [0, 1], got {self.min_confidence}")


# ═══════════════════════════════════════════════════════════════════════════
# LOADING
# ═══════════════════════════════════════════════════════════════════════════


def _parse_executor(raw: Any) -> ExecutorSpec:
    if not isinstance(raw, dict) or not raw.get("id"):
        raise ConfigError(f"executor entry needs an 'id': {raw!r}")

    command = raw.get("command", ())
    if isinstance(command, str):
        command = command.split()

    return ExecutorSpec(
        executor_id=str(raw["id"]),
        tags=tuple(str(t) for t in raw.get("tags", ())),
        complexity=str(raw.get("complexity", "medium")),
        speed=str(raw.get("speed", "medium")),
        quality_class=str(raw.get("quality", raw.get("quality_class", "standard"))),
        kind=str(raw.get("kind", "command")),
        description=str(raw.get("description", "")),
        command=tuple(str(c) for c in command),
        timeout=float(raw.get("timeout", 300.0)),
    )


def load_config(config_path: Path | None = None) -> DispatchConfig:
    """Load configuration from a JSON file or use defaults.

    Args:
        config_path: Path to a JSON config file. If None, looks for
            ``config.json`` in the data directory.

    Returns:
        DispatchConfig with file values layered over the defaults.

    Raises:
        ConfigError: The file exists but cannot be parsed or holds invalid values.
    """
    defaults = DispatchConfig()
    path = config_path or defaults.data_dir / CONFIG_FILENAME

    if not path.exists():
        return defaults

    try:
        with path.open("r") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Cannot read config {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must hold a JSON object")

    known = {f.name for f in fields(DispatchConfig)} - {"executors", "data_dir"}
    unknown = set(data) - known - {"executors", "data_dir"}
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    overrides: dict[str, Any] = {key: data[key] for key in known if key in data}
    if "data_dir" in data:
        overrides["data_dir"] = Path(data["data_dir"]).expanduser()
    overrides["executors"] = tuple(_parse_executor(e) for e in data.get("executors", ()))

    try:
        return replace(defaults, **overrides)
    except TypeError as e:
        raise ConfigError(f"Invalid config {path}: {e}") from e
