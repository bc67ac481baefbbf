"""Tests for configuration loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from dispatcher.config import DispatchConfig, default_data_dir, load_config
from dispatcher.errors import ConfigError


def _write(path: Path, data: object) -> Path:
    path.write_text(json.dumps(data))
    return path


def test_defaults_when_file_missing(data_dir: Path) -> None:
    config = load_config()
    assert config == DispatchConfig()
    assert config.base_threshold == 7.0
    assert config.base_attempts == 3
    assert config.data_dir == data_dir
    assert config.executors == ()


def test_default_data_dir_follows_env(data_dir: Path) -> None:
    assert default_data_dir() == data_dir


def test_file_overrides_defaults(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "config.json",
        {"base_threshold": 8.0, "k": 3, "enable_reframing": False, "data_dir": str(tmp_path)},
    )
    config = load_config(path)
    assert config.base_threshold == 8.0
    assert config.k == 3
    assert config.enable_reframing is False
    assert config.data_dir == tmp_path
    assert config.min_history == 5


def test_config_in_data_dir_is_picked_up(data_dir: Path) -> None:
    data_dir.mkdir(parents=True)
    _write(data_dir / "config.json", {"min_confidence": 0.5})
    assert load_config().min_confidence == 0.5


def test_executors(tmp_path: Path) -> None:
    path = _write(
        tmp_path / "config.json",
        {
            "executors": [
                {
                    "id": "calc",
                    "tags": ["math", "finance"],
                    "complexity": "simple",
                    "quality": "high",
                    "command": "calc-bot --fast",
                    "timeout": 30,
                },
                {"id": "writer", "command": ["writer", "--tone", "formal"]},
            ]
        },
    )
    calc, writer = load_config(path).executors
    assert calc.executor_id == "calc"
    assert calc.tags == ("math", "finance")
    assert calc.quality_class == "high"
    assert calc.command == ("calc-bot", "--fast")
    assert calc.timeout == 30.0
    assert writer.command == ("writer", "--tone", "formal")
    assert writer.complexity == "medium"


def test_executor_without_id(tmp_path: Path) -> None:
    path = _write(tmp_path / "config.json", {"executors": [{"command": "x"}]})
    with pytest.raises(ConfigError):
        load_config(path)


def test_unknown_key(tmp_path: Path) -> None:
    path = _write(tmp_path / "config.json", {"treshold": 7})
    with pytest.raises(ConfigError, match="treshold"):
        load_config(path)


def test_bad_json(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError):
        load_config(path)


def test_non_object(tmp_path: Path) -> None:
    path = _write(tmp_path / "config.json", [1, 2, 3])
    with pytest.raises(ConfigError):
        load_config(path)


@pytest.mark.parametrize(
    "overrides",
    [
        {"base_attempts": 0},
        {"k": 0},
        {"k": "five"},
        {"min_confidence": 1.5},
        {"quality_floor": -1},
        {"base_threshold": 11},
    ],
)
def test_invalid_values(tmp_path: Path, overrides: dict[str, object]) -> None:
    path = _write(tmp_path / "config.json", overrides)
    with pytest.raises(ConfigError):
        load_config(path)
