"""
Rule Scorer - Profile Matching Without History

Ranks executors from their declared profiles alone, so a recommendation is
always available before any outcome has been recorded.

Scoring formula:
    score = tag_overlap * 0.6 + complexity_match * 0.3 + quality_bonus
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

from dispatcher.scoring.features import TaskFeatures

if TYPE_CHECKING:
    from dispatcher.engine.registry import ExecutorProfile

# Scoring weights (tag + complexity + max quality bonus sum to 1.0)
TAG_WEIGHT: Final[float] = 0.6
COMPLEXITY_WEIGHT: Final[float] = 0.3

QUALITY_BONUS: Final[dict[str, float]] = {
    "standard": 0.0,
    "high": 0.05,
    "extreme": 0.1,
}

COMPLEXITY_ORDER: Final[tuple[str, ...]] = ("simple", "medium", "complex")

# Difficulty bucket upper bounds
DIFFICULTY_BUCKETS: Final[tuple[tuple[float, str], ...]] = (
    (0.34, "simple"),
    (0.67, "medium"),
    (1.01, "complex"),
)

MIN_PREFIX_TAG_LENGTH: Final[int] = 3


@dataclass(frozen=True)
class RuleScore:
    """Score breakdown for one executor."""

    executor_id: str
    score: float
    tag_overlap: float
    complexity_match: float
    quality_bonus: float


def difficulty_bucket(difficulty: float) -> str:
    """Map a 0-1 difficulty estimate to a complexity level."""
    for upper, label in DIFFICULTY_BUCKETS:
        if difficulty < upper:
            return label
    return "complex"


def _tag_hits(tag: str, features: TaskFeatures) -> bool:
    if tag in features.keywords or tag in features.tags:
        return True
    if len(tag) < MIN_PREFIX_TAG_LENGTH:
        return False
    # "calc" hits "calculate", "invest" hits "investment"
    return any(keyword.startswith(tag) for keyword in features.keywords)


def tag_overlap(features: TaskFeatures, profile: ExecutorProfile) -> float:
    """Share of the profile's tags that the task hits."""
    if not profile.tags:
        return 0.0
    hits = sum(1 for tag in profile.tags if _tag_hits(tag, features))
    return hits / len(profile.tags)


def complexity_match(features: TaskFeatures, profile: ExecutorProfile) -> float:
    """1.0 for the task's own bucket, 0.5 one step away, 0.0 otherwise."""
    task_rank = COMPLEXITY_ORDER.index(difficulty_bucket(features.difficulty))
    profile_rank = COMPLEXITY_ORDER.index(str(profile.complexity))
    distance = abs(task_rank - profile_rank)
    if distance == 0:
        return 1.0
    if distance == 1:
        return 0.5
    return 0.0


class RuleScorer:
    """Deterministic, history-free ranking of executor profiles."""

    def breakdown(
        self, features: TaskFeatures, profiles: Sequence[ExecutorProfile]
    ) -> list[RuleScore]:
        """Score every profile; result is sorted best first, ties in input order."""
        scored = []
        for profile in profiles:
            overlap = tag_overlap(features, profile)
            match = complexity_match(features, profile)
            bonus = QUALITY_BONUS.get(str(profile.quality_class), 0.0)
            total = overlap * TAG_WEIGHT + match * COMPLEXITY_WEIGHT + bonus
            scored.append(
                RuleScore(
                    executor_id=profile.executor_id,
                    score=round(max(0.0, min(1.0, total)), 6),
                    tag_overlap=overlap,
                    complexity_match=match,
                    quality_bonus=bonus,
                )
            )

        # sort() is stable, so equal scores keep registration order
        scored.sort(key=lambda s: -s.score)
        return scored

    def score(
        self, features: TaskFeatures, profiles: Sequence[ExecutorProfile]
    ) -> list[tuple[str, float]]:
        """
        Rank executors for a task.

        Args:
            features: Extracted task features
            profiles: Candidate profiles in registration order

        Returns:
            (executor_id, score in [0, 1]) pairs, best first. Non-empty
            whenever ``profiles`` is.
        """
        return [(s.executor_id, s.score) for s in self.breakdown(features, profiles)]
