"""Shared fixtures for dispatcher tests."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from pathlib import Path

import pytest

from dispatcher.engine import (
    DispatchController,
    ExecutorProfile,
    ExecutorRegistry,
    FunctionExecutor,
    Outcome,
)
from dispatcher.learning import HistoryStore
from dispatcher.scoring import Validation


class ScriptedValidator:
    """Scores answers from a lookup table; unknown answers get ``default``."""

    def __init__(
        self,
        scores: dict[str, float] | None = None,
        default: float = 0.0,
        pass_score: float = 5.0,
    ) -> None:
        self.scores = scores or {}
        self.default = default
        self.pass_score = pass_score
        self.calls: list[tuple[str, str]] = []

    def validate(self, task: str, outcome: Outcome) -> Validation:
        self.calls.append((task, outcome.answer))
        score = self.scores.get(outcome.answer, self.default)
        passed = score >= self.pass_score
        return Validation(
            score=score,
            passed=passed,
            errors=() if passed else (f"score {score} below {self.pass_score}",),
        )


class RecordingExecutor:
    """Returns a fixed answer and remembers every task it received."""

    def __init__(self, answer: str) -> None:
        self.answer = answer
        self.tasks: list[str] = []

    def execute(self, task: str) -> Outcome:
        self.tasks.append(task)
        return Outcome(answer=self.answer, duration_ms=5)


def make_profile(executor_id: str, *tags: str, **kwargs: str) -> ExecutorProfile:
    return ExecutorProfile(executor_id=executor_id, tags=frozenset(tags), **kwargs)


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Path]:
    """Isolated data directory, also exported as DISPATCHER_HOME."""
    home = tmp_path / "dispatcher"
    monkeypatch.setenv("DISPATCHER_HOME", str(home))
    yield home


@pytest.fixture
def registry() -> ExecutorRegistry:
    return ExecutorRegistry()


@pytest.fixture
def store() -> HistoryStore:
    return HistoryStore.in_memory()


@pytest.fixture
def controller_factory(
    store: HistoryStore,
) -> Callable[..., DispatchController]:
    """Build a controller over the in-memory store with answer-returning executors."""

    def factory(
        executors: dict[str, str | Callable[[str], str | Outcome]],
        validator: ScriptedValidator | None = None,
        **kwargs: object,
    ) -> DispatchController:
        controller = DispatchController(
            store=store,
            validator=validator or ScriptedValidator(default=9.0),
            **kwargs,  # type: ignore[arg-type]
        )
        for executor_id, behaviour in executors.items():
            if isinstance(behaviour, str):
                executor = RecordingExecutor(behaviour)
            else:
                executor = FunctionExecutor(behaviour)
            controller.register(executor_id, executor, make_profile(executor_id))
        return controller

    return factory
