"""
k-NN Recommender - Executor Selection from Similar Past Tasks

Finds the k stored records closest to a task in feature space and lets them
vote for the executor that handled them:

    weight = 1 / (distance + ε) * quality_score * (1.0 if success else 0.5)

The winner's share of the total weight is the confidence. Sparse history,
a degraded store or an inconclusive vote falls back to the rule scorer, so a
recommendation is always produced with an honest confidence.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Collection, Sequence
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

from dispatcher.errors import NoExecutorsError
from dispatcher.learning.history import HistoryRecord, HistoryStore
from dispatcher.scoring.features import FeatureExtractor, TaskFeatures
from dispatcher.scoring.rule_scorer import RuleScorer

if TYPE_CHECKING:
    from dispatcher.engine.registry import ExecutorProfile, ExecutorRegistry

logger = logging.getLogger(__name__)

EPSILON: Final[float] = 1e-6
DEFAULT_K: Final[int] = 5
DEFAULT_MIN_HISTORY: Final[int] = 5
DEFAULT_MIN_CONFIDENCE: Final[float] = 0.3
FAILED_VOTE_FACTOR: Final[float] = 0.5

# Bounds for thresholds calibrated from similar successful tasks
CALIBRATED_THRESHOLD_MIN: Final[float] = 5.0
CALIBRATED_THRESHOLD_MAX: Final[float] = 9.5


class Method(StrEnum):
    """How a recommendation was produced."""

    RULE = "rule"
    KNN = "knn"


@dataclass(frozen=True)
class Recommendation:
    """Transient routing decision. Not persisted."""

    executor_id: str
    confidence: float
    method: Method
    reasoning: str
    alternatives: tuple[tuple[str, float], ...] = ()
    neighbors: int = 0

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0.0, 1.0], got {self.confidence}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "executor_id": self.executor_id,
            "confidence": round(self.confidence, 3),
            "method": self.method.value,
            "reasoning": self.reasoning,
            "alternatives": [
                {"executor_id": eid, "score": round(score, 3)} for eid, score in self.alternatives
            ],
            "neighbors": self.neighbors,
        }


@dataclass(frozen=True)
class Neighbor:
    """A stored record and its distance to the query."""

    record: HistoryRecord
    distance: float

    @property
    def similarity(self) -> float:
        return 1.0 / (1.0 + self.distance)


def euclidean_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Euclidean distance; vectors must have equal length."""
    if len(a) != len(b):
        raise ValueError(f"dimension mismatch: {len(a)} != {len(b)}")
    return math.dist(a, b)


def recency_weight(timestamp: float, half_life_days: float, now: float | None = None) -> float:
    """Exponential decay: 1.0 now, 0.5 after one half-life."""
    age_days = max(0.0, ((now or time.time()) - timestamp) / 86400)
    return math.exp(-math.log(2) * age_days / half_life_days)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class KNNRecommender:
    """Similarity-weighted voting over the history store."""

    def __init__(
        self,
        store: HistoryStore,
        registry: ExecutorRegistry,
        rule_scorer: RuleScorer | None = None,
        extractor: FeatureExtractor | None = None,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        recency_half_life_days: float | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.rule_scorer = rule_scorer or RuleScorer()
        self.extractor = extractor or FeatureExtractor()
        self.min_confidence = min_confidence
        self.recency_half_life_days = recency_half_life_days

    # ═══════════════════════════════════════════════════════════════════════
    # NEIGHBOR SEARCH
    # ═══════════════════════════════════════════════════════════════════════

    def nearest(
        self,
        features: TaskFeatures,
        k: int,
        records: Sequence[HistoryRecord] | None = None,
    ) -> list[Neighbor]:
        """
        The k records closest to ``features``.

        Records with a different vector length (an older feature schema) are
        skipped. Ties are broken by the smaller record id.
        """
        pool = self.store.all_records() if records is None else records
        dims = len(features.vector)
        scored = [
            Neighbor(record=r, distance=euclidean_distance(features.vector, r.features.vector))
            for r in pool
            if len(r.features.vector) == dims
        ]
        scored.sort(key=lambda n: (n.distance, n.record.record_id))
        return scored[:k]

    def _vote_weight(self, neighbor: Neighbor, now: float) -> float:
        record = neighbor.record
        weight = (
            (1.0 / (neighbor.distance + EPSILON))
            * record.quality_score
            * (1.0 if record.success else FAILED_VOTE_FACTOR)
        )
        if self.recency_half_life_days:
            weight *= recency_weight(record.timestamp, self.recency_half_life_days, now)
        return weight

    # ═══════════════════════════════════════════════════════════════════════
    # RECOMMENDATION
    # ═══════════════════════════════════════════════════════════════════════

    def _eligible(self, exclude: Collection[str]) -> list[ExecutorProfile]:
        eligible = [p for p in self.registry.profiles() if p.executor_id not in exclude]
        if not eligible:
            raise NoExecutorsError(
                "No executors registered"
                if len(self.registry) == 0
                else "Every registered executor is excluded"
            )
        return eligible

    def _rule_recommendation(
        self,
        features: TaskFeatures,
        profiles: Sequence[ExecutorProfile],
        reason: str,
        alternatives: tuple[tuple[str, float], ...] | None = None,
        neighbors: int = 0,
    ) -> Recommendation:
        ranking = self.rule_scorer.score(features, profiles)
        top_id, top_score = ranking[0]
        return Recommendation(
            executor_id=top_id,
            confidence=_clamp(top_score),
            method=Method.RULE,
            reasoning=f"{reason}; rule score {top_score:.3f} for {top_id}",
            alternatives=tuple(ranking[1:]) if alternatives is None else alternatives,
            neighbors=neighbors,
        )

    def recommend(
        self,
        features: TaskFeatures,
        k: int = DEFAULT_K,
        min_history: int = DEFAULT_MIN_HISTORY,
        exclude: Collection[str] = (),
    ) -> Recommendation:
        """
        Recommend an executor for a task.

        Args:
            features: Extracted task features
            k: Number of neighbors that vote
            min_history: Below this many records the rule scorer decides
            exclude: Executor ids that must not be recommended

        Returns:
            Recommendation with method ``knn`` or ``rule``

        Raises:
            NoExecutorsError: No registered executor is eligible.
        """
        profiles = self._eligible(exclude)

        if self.store.degraded:
            return self._rule_recommendation(features, profiles, "History store degraded")

        records = self.store.all_records()
        if len(records) < min_history:
            return self._rule_recommendation(
                features, profiles, f"History too small ({len(records)} < {min_history})"
            )

        eligible_ids = {p.executor_id for p in profiles}
        candidates = [r for r in records if r.executor_id in eligible_ids]
        neighbors = self.nearest(features, k, candidates)

        now = time.time()
        votes: dict[str, float] = {}
        for neighbor in neighbors:
            executor_id = neighbor.record.executor_id
            votes[executor_id] = votes.get(executor_id, 0.0) + self._vote_weight(neighbor, now)

        total = sum(votes.values())
        if total <= 0.0:
            return self._rule_recommendation(
                features,
                profiles,
                "No similar task carried a usable quality signal",
                neighbors=len(neighbors),
            )

        ranking = sorted(votes.items(), key=lambda kv: (-kv[1], self.registry.position(kv[0])))
        shares = tuple((eid, _clamp(weight / total)) for eid, weight in ranking)
        winner, confidence = shares[0]

        if confidence < self.min_confidence:
            logger.debug("k-NN inconclusive (%.3f < %.3f)", confidence, self.min_confidence)
            return self._rule_recommendation(
                features,
                profiles,
                f"Similarity inconclusive (top k-NN share {confidence:.2f} "
                f"< {self.min_confidence:.2f})",
                alternatives=shares,
                neighbors=len(neighbors),
            )

        return Recommendation(
            executor_id=winner,
            confidence=confidence,
            method=Method.KNN,
            reasoning=(
                f"{len(neighbors)} similar task(s); {winner} holds "
                f"{confidence:.0%} of the weighted votes"
            ),
            alternatives=shares[1:],
            neighbors=len(neighbors),
        )

    def recommend_text(
        self,
        task_text: str,
        k: int = DEFAULT_K,
        min_history: int = DEFAULT_MIN_HISTORY,
    ) -> Recommendation:
        return self.recommend(self.extractor.extract(task_text), k, min_history)

    # ═══════════════════════════════════════════════════════════════════════
    # SIMILAR-TASK ANALYTICS
    # ═══════════════════════════════════════════════════════════════════════

    def best_for_similar(
        self, features: TaskFeatures, k: int = 10, top_n: int = 3
    ) -> list[dict[str, Any]]:
        """Executors that did best on the k most similar tasks.

        Score = success rate (40%) + quality/10 (40%) + similarity (20%).
        """
        grouped: dict[str, list[Neighbor]] = {}
        for neighbor in self.nearest(features, k):
            grouped.setdefault(neighbor.record.executor_id, []).append(neighbor)

        results = []
        for executor_id, group in grouped.items():
            attempts = len(group)
            success_rate = sum(1 for n in group if n.record.success) / attempts
            avg_quality = sum(n.record.quality_score for n in group) / attempts
            avg_similarity = sum(n.similarity for n in group) / attempts
            results.append(
                {
                    "executor_id": executor_id,
                    "score": round(
                        success_rate * 0.4 + avg_quality / 10 * 0.4 + avg_similarity * 0.2, 3
                    ),
                    "success_rate": round(success_rate, 3),
                    "avg_quality": round(avg_quality, 3),
                    "avg_similarity": round(avg_similarity, 3),
                    "attempts": attempts,
                }
            )

        results.sort(key=lambda r: r["score"], reverse=True)
        return results[:top_n]

    def historical_threshold(
        self, features: TaskFeatures, k: int = 10, default: float = 7.0
    ) -> float:
        """Quality bar achievable on similar tasks: mean - 0.5 * stddev.

        Uses the k nearest successful records; clamped to [5.0, 9.5].
        """
        successful = [r for r in self.store.all_records() if r.success]
        neighbors = self.nearest(features, k, successful)
        if not neighbors:
            return default

        qualities = [n.record.quality_score for n in neighbors]
        mean = sum(qualities) / len(qualities)
        std_dev = math.sqrt(sum((q - mean) ** 2 for q in qualities) / len(qualities))
        threshold = mean - 0.5 * std_dev
        threshold = max(CALIBRATED_THRESHOLD_MIN, min(CALIBRATED_THRESHOLD_MAX, threshold))
        return round(threshold, 1)
