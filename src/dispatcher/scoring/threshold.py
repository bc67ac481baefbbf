"""Adaptive quality threshold and retry budget.

Harder tasks get a lower quality bar and, above a difficulty cut-off, one
extra attempt. The bar never drops below the configured floor.
"""

from __future__ import annotations

from dataclasses import dataclass

from dispatcher.scoring.features import TaskFeatures

MAX_QUALITY = 10.0


@dataclass(frozen=True)
class AdaptiveThresholdPolicy:
    """Derives the acceptance bar and attempt budget from task difficulty."""

    max_relaxation: float = 2.0
    floor: float = 4.0
    hard_task_difficulty: float = 0.7
    extra_attempts: int = 1

    def __post_init__(self) -> None:
        if not 0.0 <= self.floor <= MAX_QUALITY:
            raise ValueError(f"floor must be in [0, 10], got {self.floor}")
        if self.max_relaxation < 0.0:
            raise ValueError(f"max_relaxation must be >= 0, got {self.max_relaxation}")

    def clamp(self, threshold: float) -> float:
        return round(max(self.floor, min(MAX_QUALITY, threshold)), 3)

    def required_quality(self, features: TaskFeatures, base_threshold: float) -> float:
        """``base - difficulty * max_relaxation``, clamped to [floor, 10]."""
        return self.clamp(base_threshold - features.difficulty * self.max_relaxation)

    def max_attempts(self, features: TaskFeatures, base_attempts: int) -> int:
        if features.difficulty >= self.hard_task_difficulty:
            return base_attempts + self.extra_attempts
        return base_attempts
