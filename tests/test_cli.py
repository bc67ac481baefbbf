"""Tests for the dispatcher CLI."""

from __future__ import annotations

import json
import sys
from pathlib import Path

from click.testing import CliRunner

from dispatcher.cli import main

ECHO_COMMAND = [
    sys.executable,
    "-c",
    "import sys; print(sys.argv[-1] + ' with a detailed explanation' * 20)",
]


def _config_with_executor(data_dir: Path) -> Path:
    data_dir.mkdir(parents=True, exist_ok=True)
    path = data_dir / "config.json"
    path.write_text(
        json.dumps({"executors": [{"id": "echo", "tags": ["code"], "command": ECHO_COMMAND}]})
    )
    return path


def test_version() -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["--version"])
    assert result.exit_code == 0
    assert "0.1.0" in result.output


def test_init(data_dir: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["init"])
    assert result.exit_code == 0
    assert "initialized" in result.output.lower()
    assert (data_dir / "data" / "dispatcher.db").exists()


def test_stats_empty(data_dir: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["stats"])
    assert result.exit_code == 0
    assert "No dispatch history" in result.output


def test_history_empty(data_dir: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["history"])
    assert result.exit_code == 0
    assert "No dispatch history" in result.output


def test_performance_empty(data_dir: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["performance"])
    assert result.exit_code == 0
    assert "No executors registered" in result.output


def test_recommend_without_executors(data_dir: Path) -> None:
    runner = CliRunner()
    result = runner.invoke(main, ["recommend", "Calculate 2+2"])
    assert result.exit_code == 1
    assert "No executors registered" in result.output


def test_bad_config(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text('{"bogus": 1}')
    runner = CliRunner()
    result = runner.invoke(main, ["--config", str(path), "stats"])
    assert result.exit_code == 1
    assert "bogus" in result.output


def test_recommend(data_dir: Path) -> None:
    _config_with_executor(data_dir)
    runner = CliRunner()
    result = runner.invoke(main, ["recommend", "Write a python function"])
    assert result.exit_code == 0
    assert "echo" in result.output
    assert "rule" in result.output


def test_run_then_inspect(data_dir: Path) -> None:
    _config_with_executor(data_dir)
    runner = CliRunner()

    result = runner.invoke(main, ["run", "explain the quick sort algorithm"])
    assert result.exit_code == 0, result.output
    assert "Status: accepted" in result.output

    result = runner.invoke(main, ["history"])
    assert result.exit_code == 0
    assert "echo" in result.output

    result = runner.invoke(main, ["stats"])
    assert result.exit_code == 0
    assert "Records:" in result.output

    result = runner.invoke(main, ["performance"])
    assert result.exit_code == 0
    assert "echo" in result.output

    result = runner.invoke(main, ["similar", "explain the merge sort algorithm"])
    assert result.exit_code == 0
    assert "echo" in result.output
