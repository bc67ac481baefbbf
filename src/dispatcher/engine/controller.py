"""Dispatch Controller - select, execute, validate, retry and learn.

Workflow per task:
1. Extract features
2. Derive the quality bar and attempt budget from task difficulty
3. Recommend an executor not yet tried on this task (k-NN or rules)
4. Execute, validate against the original task, append the outcome to history
5. Accept, or retry with another executor / a reframed task until the budget
   runs out, then surface the best attempt
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any, Protocol

from dispatcher.config import DispatchConfig, load_config
from dispatcher.engine.executors import CommandExecutor, Executor, Outcome
from dispatcher.engine.registry import ExecutorProfile, ExecutorRegistry, RegisteredExecutor
from dispatcher.errors import (
    ConfigError,
    ErrorKind,
    ExecutionFailure,
    NoExecutorsError,
    StoreUnavailableError,
)
from dispatcher.learning.history import HistoryStore
from dispatcher.learning.knn import KNNRecommender, Recommendation
from dispatcher.scoring.features import FeatureExtractor, TaskFeatures
from dispatcher.scoring.rule_scorer import RuleScorer
from dispatcher.scoring.threshold import AdaptiveThresholdPolicy
from dispatcher.scoring.validation import HeuristicValidator, Validation, Validator
from dispatcher.storage.database import Database

logger = logging.getLogger(__name__)

Reframer = Callable[[str, Sequence[str]], str]


class CancelToken(Protocol):
    """Anything with ``is_set()``, e.g. ``threading.Event``."""

    def is_set(self) -> bool: ...


class DispatchState(StrEnum):
    """Control loop states."""

    SELECTING = "selecting"
    EXECUTING = "executing"
    VALIDATING = "validating"
    ACCEPTED = "accepted"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class AttemptRecord:
    """One pass through select / execute / validate."""

    attempt: int
    executor_id: str
    method: str
    confidence: float
    score: float
    passed: bool
    duration_ms: int
    reframed: bool = False
    error: str | None = None
    issues: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["issues"] = list(self.issues)
        return data


@dataclass
class DispatchResult:
    """Outcome of ``DispatchController.run``."""

    answer: str
    success: bool
    error_kind: ErrorKind | None = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "answer": self.answer,
            "success": self.success,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "error": self.error,
            "metadata": self.metadata,
        }


def clarify_reframer(task: str, issues: Sequence[str]) -> str:
    """Default reframing: restate the task with the validator's complaints."""
    notes = "; ".join(issues) if issues else "the answer did not meet the quality bar"
    return (
        f"A previous attempt at this task fell short ({notes}). "
        f"Read the task carefully and answer it completely and precisely.\n\n"
        f"Task: {task}"
    )


class DispatchController:
    """
    Adaptive dispatcher over a pool of registered executors.

    The history store is passed in explicitly; nothing is global. ``run`` is
    safe to call from many threads at once, the store being the only shared
    mutable state.
    """

    def __init__(
        self,
        registry: ExecutorRegistry | None = None,
        store: HistoryStore | None = None,
        validator: Validator | None = None,
        config: DispatchConfig | None = None,
        extractor: FeatureExtractor | None = None,
        rule_scorer: RuleScorer | None = None,
        policy: AdaptiveThresholdPolicy | None = None,
        reframer: Reframer | None = None,
    ) -> None:
        self.config = config or DispatchConfig()
        self.registry = registry or ExecutorRegistry()
        self.store = store if store is not None else HistoryStore.in_memory()
        self.validator = validator or HeuristicValidator()
        self.extractor = extractor or FeatureExtractor()
        self.rule_scorer = rule_scorer or RuleScorer()
        self.policy = policy or AdaptiveThresholdPolicy(
            max_relaxation=self.config.max_relaxation,
            floor=self.config.quality_floor,
            hard_task_difficulty=self.config.hard_task_difficulty,
        )
        self.reframer = reframer or clarify_reframer
        self.recommender = KNNRecommender(
            self.store,
            self.registry,
            rule_scorer=self.rule_scorer,
            extractor=self.extractor,
            min_confidence=self.config.min_confidence,
            recency_half_life_days=self.config.recency_half_life_days,
        )

    @classmethod
    def from_config(
        cls,
        config: DispatchConfig | None = None,
        validator: Validator | None = None,
    ) -> DispatchController:
        """
        Build a controller backed by the SQLite history in ``config.data_dir``
        with every configured command executor registered.

        Raises:
            ConfigError: An executor entry has no command or an invalid profile.
        """
        config = config or load_config()
        store = HistoryStore(Database(config.data_dir))
        controller = cls(store=store, validator=validator, config=config)

        for spec in config.executors:
            if not spec.command:
                raise ConfigError(f"Executor {spec.executor_id!r} needs a command")
            try:
                profile = ExecutorProfile(
                    executor_id=spec.executor_id,
                    tags=frozenset(spec.tags),
                    complexity=spec.complexity,
                    speed=spec.speed,
                    quality_class=spec.quality_class,
                    kind=spec.kind,
                    description=spec.description,
                )
            except ValueError as e:
                raise ConfigError(f"Executor {spec.executor_id!r}: {e}") from e
            controller.register(
                spec.executor_id,
                CommandExecutor(spec.command, timeout=spec.timeout),
                profile,
            )

        return controller

    # ═══════════════════════════════════════════════════════════════════════
    # REGISTRATION & PREVIEW
    # ═══════════════════════════════════════════════════════════════════════

    def register(self, executor_id: str, executor: Executor, profile: ExecutorProfile) -> None:
        self.registry.register(executor_id, executor, profile)

    def recommend(self, task_text: str) -> Recommendation:
        """Read-only preview of the first routing decision for a task.

        Raises:
            NoExecutorsError: The registry is empty.
        """
        features = self.extractor.extract(task_text)
        return self.recommender.recommend(features, self.config.k, self.config.min_history)

    def required_quality(self, features: TaskFeatures) -> float:
        """Policy threshold, optionally lowered to what similar tasks achieved."""
        threshold = self.policy.required_quality(features, self.config.base_threshold)
        if (
            self.config.calibrate_from_history
            and not self.store.degraded
            and len(self.store) >= self.config.min_history
        ):
            calibrated = self.recommender.historical_threshold(features, default=threshold)
            threshold = self.policy.clamp(min(threshold, calibrated))
        return threshold

    # ═══════════════════════════════════════════════════════════════════════
    # CONTROL LOOP
    # ═══════════════════════════════════════════════════════════════════════

    def run(
        self,
        task_text: str,
        cancel: CancelToken | None = None,
        timeout: float | None = None,
    ) -> DispatchResult:
        """
        Dispatch a task until an answer clears the quality bar.

        Args:
            task_text: The task to solve
            cancel: Token checked before each attempt
            timeout: Seconds after which no new attempt is started

        Returns:
            DispatchResult; on failure it still carries the best answer seen
        """
        run_id = f"run-{uuid.uuid4().hex[:8]}"
        start = time.monotonic()
        deadline = start + timeout if timeout is not None else None

        features = self.extractor.extract(task_text)
        threshold = self.required_quality(features)
        max_attempts = self.policy.max_attempts(features, self.config.base_attempts)
        logger.info(
            "%s: difficulty=%.3f threshold=%.2f max_attempts=%d",
            run_id,
            features.difficulty,
            threshold,
            max_attempts,
        )

        attempts: list[AttemptRecord] = []
        answers: list[str] = []
        tried: list[str] = []
        current_task = task_text
        method = ""

        def finish(
            state: DispatchState,
            error_kind: ErrorKind | None = None,
            error: str | None = None,
        ) -> DispatchResult:
            self._transition(run_id, state)
            self._flush_pending()
            best = _best_attempt(attempts)
            final = attempts[-1] if state == DispatchState.ACCEPTED else best
            return DispatchResult(
                answer=answers[final.attempt - 1] if final else "",
                success=state == DispatchState.ACCEPTED,
                error_kind=error_kind,
                error=error,
                metadata={
                    "run_id": run_id,
                    "state": state.value,
                    "final_agent": final.executor_id if final else None,
                    "final_quality": final.score if final else 0.0,
                    "method": method,
                    "attempts": len(attempts),
                    "duration": round(time.monotonic() - start, 3),
                    "threshold": threshold,
                    "max_attempts": max_attempts,
                    "difficulty": features.difficulty,
                    "attempt_log": [a.to_dict() for a in attempts],
                    "all_attempts_errored": bool(attempts) and all(a.error for a in attempts),
                    "store_degraded": self.store.degraded,
                },
            )

        while len(attempts) < max_attempts:
            if cancel is not None and cancel.is_set():
                return finish(DispatchState.CANCELLED, ErrorKind.CANCELLED, "Run cancelled")
            if deadline is not None and time.monotonic() >= deadline:
                return finish(
                    DispatchState.CANCELLED,
                    ErrorKind.CANCELLED,
                    f"Timed out after {timeout}s",
                )

            # 1. Select
            self._transition(run_id, DispatchState.SELECTING)
            untried = [eid for eid in self.registry.ids() if eid not in tried]
            repeating = bool(tried) and not untried
            try:
                rec = self.recommender.recommend(
                    features,
                    self.config.k,
                    self.config.min_history,
                    exclude=() if repeating else tried,
                )
            except NoExecutorsError as e:
                return finish(DispatchState.EXHAUSTED, ErrorKind.NO_EXECUTORS, str(e))
            method = rec.method.value
            entry = self.registry.get(rec.executor_id)

            if repeating:
                current_task = self.reframer(task_text, attempts[-1].issues)

            # 2. Execute
            self._transition(run_id, DispatchState.EXECUTING)
            outcome = self._execute(entry, current_task)

            # 3. Validate against the original task
            self._transition(run_id, DispatchState.VALIDATING)
            validation = self._validate(task_text, outcome)

            # 4. Learn
            self.store.append(
                features,
                rec.executor_id,
                quality_score=validation.score,
                success=validation.passed,
                duration_ms=outcome.duration_ms,
                task_preview=task_text,
            )

            attempt = AttemptRecord(
                attempt=len(attempts) + 1,
                executor_id=rec.executor_id,
                method=method,
                confidence=rec.confidence,
                score=validation.score,
                passed=validation.passed,
                duration_ms=outcome.duration_ms,
                reframed=current_task != task_text,
                error=outcome.error,
                issues=validation.errors,
            )
            attempts.append(attempt)
            answers.append(outcome.answer)
            if rec.executor_id not in tried:
                tried.append(rec.executor_id)

            logger.info(
                "%s: attempt %d/%d %s scored %.2f (%s)",
                run_id,
                attempt.attempt,
                max_attempts,
                rec.executor_id,
                validation.score,
                "passed" if validation.passed else "failed",
            )

            # 5. Accept or retry
            if validation.passed and validation.score >= threshold:
                return finish(DispatchState.ACCEPTED)

            self._transition(run_id, DispatchState.RETRYING)
            if (
                self.config.enable_reframing
                and outcome.ok
                and validation.score < threshold - self.config.reframe_margin
            ):
                current_task = self.reframer(task_text, validation.errors)
                logger.info("%s: quality far below threshold, reframing task", run_id)

        best = _best_attempt(attempts)
        if best is not None and all(a.error for a in attempts):
            return finish(
                DispatchState.EXHAUSTED,
                ErrorKind.QUALITY_NOT_REACHED,
                f"Every attempt failed to execute; last error: {attempts[-1].error}",
            )
        return finish(
            DispatchState.EXHAUSTED,
            ErrorKind.QUALITY_NOT_REACHED,
            f"Could not reach quality threshold {threshold} after {len(attempts)} attempts. "
            f"Best score: {best.score if best else 0.0}/10",
        )

    def _transition(self, run_id: str, state: DispatchState) -> None:
        logger.debug("%s -> %s", run_id, state.value)

    def _execute(self, entry: RegisteredExecutor, task: str) -> Outcome:
        """Run one executor; raised errors become an errored Outcome."""
        executor_id = entry.profile.executor_id
        start = time.monotonic()
        try:
            outcome = entry.executor.execute(task)
        except Exception as e:
            failure = ExecutionFailure(executor_id, f"{type(e).__name__}: {e}")
            logger.warning("Execution failed: %s", failure)
            return Outcome(
                answer="",
                duration_ms=int((time.monotonic() - start) * 1000),
                error=str(failure),
            )

        if isinstance(outcome, str):
            return Outcome(answer=outcome, duration_ms=int((time.monotonic() - start) * 1000))
        if outcome.error:
            logger.warning("Execution failed: %s: %s", executor_id, outcome.error)
        return outcome

    def _validate(self, task: str, outcome: Outcome) -> Validation:
        if not outcome.ok:
            return Validation(
                score=0.0, passed=False, errors=(f"Execution failed: {outcome.error}",)
            )
        try:
            return self.validator.validate(task, outcome)
        except Exception as e:
            logger.warning("Validator failed: %s: %s", type(e).__name__, e)
            return Validation(score=0.0, passed=False, errors=(f"Validator error: {e}",))

    def _flush_pending(self) -> None:
        if not (self.store.persistent and self.store.degraded):
            return
        try:
            self.store.save()
        except StoreUnavailableError as e:
            logger.debug("History still unavailable: %s", e)

    # ═══════════════════════════════════════════════════════════════════════
    # STATS
    # ═══════════════════════════════════════════════════════════════════════

    def get_history_stats(self) -> dict[str, Any]:
        return self.store.stats_snapshot()

    def get_performance(self) -> dict[str, dict[str, Any]]:
        """Per-executor counters, including registered executors with no history."""
        counters = self.store.performance()
        performance: dict[str, dict[str, Any]] = {}
        for profile in self.registry.profiles():
            counter = counters.pop(profile.executor_id, None)
            data = counter.to_dict() if counter else {
                "attempts": 0,
                "successes": 0,
                "failures": 0,
                "success_rate": 0.0,
                "avg_quality": 0.0,
                "avg_duration_ms": 0.0,
            }
            performance[profile.executor_id] = {**data, "registered": True}
        for executor_id, counter in counters.items():
            performance[executor_id] = {**counter.to_dict(), "registered": False}
        return performance

    def best_for_similar(self, task_text: str, top_n: int = 3) -> list[dict[str, Any]]:
        features = self.extractor.extract(task_text)
        return self.recommender.best_for_similar(features, top_n=top_n)

    def flush(self) -> dict[str, Any]:
        """Write records held in memory while the store was degraded."""
        try:
            written = self.store.save()
        except StoreUnavailableError as e:
            return {
                "written": 0,
                "error_kind": ErrorKind.STORE_UNAVAILABLE.value,
                "error": str(e),
            }
        return {"written": written, "error_kind": None, "error": None}


def _best_attempt(attempts: Sequence[AttemptRecord]) -> AttemptRecord | None:
    """Highest score; earliest attempt wins ties."""
    best: AttemptRecord | None = None
    for attempt in attempts:
        if best is None or attempt.score > best.score:
            best = attempt
    return best
