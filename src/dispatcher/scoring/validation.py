"""Outcome validation capability and a heuristic default.

The dispatch loop treats the validator as opaque: it only consumes the score
(0-10), the pass flag and the list of issues, which feed task reframing.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final, Protocol, runtime_checkable

if TYPE_CHECKING:
    from dispatcher.engine.executors import Outcome

ERROR_INDICATORS: Final[tuple[str, ...]] = (
    "error",
    "failed",
    "exception",
    "undefined",
    "traceback",
    "nan",
    "invalid",
)

MIN_COMPLETE_LENGTH: Final[int] = 50

_ERROR_RE = re.compile(r"\b(?:" + "|".join(ERROR_INDICATORS) + r")\b")


@dataclass(frozen=True)
class Validation:
    """Validator verdict for one outcome."""

    score: float
    passed: bool
    errors: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not 0.0 <= self.score <= 10.0:
            raise ValueError(f"score must be in [0.0, 10.0], got {self.score}")


@runtime_checkable
class Validator(Protocol):
    """Grades an executor outcome against the task."""

    def validate(self, task: str, outcome: Outcome) -> Validation: ...


class HeuristicValidator:
    """Length and error-marker heuristic used when no grader is configured."""

    def __init__(self, pass_score: float = 5.0) -> None:
        self.pass_score = pass_score

    def validate(self, task: str, outcome: Outcome) -> Validation:
        if not outcome.ok:
            return Validation(
                score=0.0,
                passed=False,
                errors=(f"Executor failed: {outcome.error}",),
            )

        answer = outcome.answer.strip()
        if not answer:
            return Validation(score=0.0, passed=False, errors=("Empty answer",))

        issues: list[str] = []
        score = 6.0 if len(answer) > MIN_COMPLETE_LENGTH else 4.0
        if len(answer) <= MIN_COMPLETE_LENGTH:
            issues.append("Answer seems too short")

        lower = answer.lower()
        if _ERROR_RE.search(lower):
            score -= 2.0
            issues.append("Answer contains error indicators")

        task_words = {w for w in task.lower().split() if len(w) > 3}
        if task_words:
            overlap = len(task_words & set(lower.split())) / len(task_words)
            score += 2.0 * overlap

        score = max(0.0, min(10.0, round(score, 2)))
        return Validation(score=score, passed=score >= self.pass_score, errors=tuple(issues))
