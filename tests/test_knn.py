"""Tests for the k-NN recommender."""

from __future__ import annotations

import time

import pytest
from conftest import make_profile

from dispatcher.engine import ExecutorRegistry, FunctionExecutor
from dispatcher.errors import NoExecutorsError
from dispatcher.learning import HistoryStore, KNNRecommender, Method, euclidean_distance
from dispatcher.learning.knn import recency_weight
from dispatcher.scoring import FeatureExtractor, TaskFeatures

EXTRACTOR = FeatureExtractor()

INVEST_TASKS = [
    "invest $1000 at 3% for 5 years",
    "invest $2500 at 5% for 3 years",
    "invest $8000 at 2% for 10 years",
    "invest $400 at 6% for 1 years",
    "invest $12000 at 4% for 7 years",
    "invest $3000 at 3% for 2 years",
    "invest $750 at 7% for 4 years",
    "invest $6000 at 5% for 6 years",
    "invest $9000 at 1% for 9 years",
    "invest $1500 at 8% for 3 years",
]

CHAT_TASKS = [
    "hello, how are you today?",
    "thanks for the help, good morning!",
]


def _register(registry: ExecutorRegistry, *profiles: tuple[str, tuple[str, ...]]) -> None:
    for executor_id, tags in profiles:
        registry.register(
            executor_id, FunctionExecutor(lambda task: task), make_profile(executor_id, *tags)
        )


def _seed(
    store: HistoryStore,
    tasks: list[str],
    executor_id: str,
    quality: float = 9.0,
    success: bool = True,
) -> None:
    for task in tasks:
        store.append(
            EXTRACTOR.extract(task),
            executor_id,
            quality_score=quality,
            success=success,
            duration_ms=10,
            task_preview=task,
        )


class TestRecommend:
    """Tests for KNNRecommender.recommend."""

    def test_rule_method_without_history(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _register(registry, ("E1", ("calc",)))
        recommender = KNNRecommender(store, registry)

        rec = recommender.recommend(EXTRACTOR.extract("Calculate 2+2"), k=5, min_history=5)

        assert rec.executor_id == "E1"
        assert rec.method == Method.RULE
        assert 0.0 <= rec.confidence <= 1.0

    def test_knn_picks_executor_of_similar_tasks(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _register(registry, ("E1", ("chat",)), ("E2", ("finance",)))
        _seed(store, INVEST_TASKS, "E2", quality=9.0)
        _seed(store, CHAT_TASKS, "E1", quality=9.0)
        recommender = KNNRecommender(store, registry)

        rec = recommender.recommend(
            EXTRACTOR.extract("invest $5000 at 4% for 2 years"), k=3, min_history=5
        )

        assert rec.executor_id == "E2"
        assert rec.method == Method.KNN
        assert rec.confidence > 0.5
        assert rec.neighbors == 3

    def test_rule_fallback_below_history_floor(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _register(registry, ("E1", ("calc",)), ("E2", ("finance",)))
        _seed(store, INVEST_TASKS[:3], "E2")
        recommender = KNNRecommender(store, registry)

        rec = recommender.recommend(EXTRACTOR.extract("Calculate 2+2"), k=3, min_history=5)

        assert rec.method == Method.RULE
        assert rec.executor_id == "E1"
        assert "History too small" in rec.reasoning

    def test_inconclusive_vote_falls_back_with_knn_alternatives(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _register(registry, ("E1", ()), ("E2", ()))
        task = "invest $5000 at 4% for 2 years"
        for _ in range(3):
            _seed(store, [task], "E1", quality=8.0)
            _seed(store, [task], "E2", quality=8.0)
        recommender = KNNRecommender(store, registry, min_confidence=0.9)

        rec = recommender.recommend(EXTRACTOR.extract(task), k=6, min_history=5)

        assert rec.method == Method.RULE
        assert "inconclusive" in rec.reasoning
        shares = dict(rec.alternatives)
        assert set(shares) == {"E1", "E2"}
        assert shares["E1"] == pytest.approx(0.5)

    def test_failed_records_vote_at_half_weight(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _register(registry, ("E1", ()), ("E2", ()))
        task = "invest $5000 at 4% for 2 years"
        _seed(store, [task] * 3, "E1", quality=8.0, success=True)
        _seed(store, [task] * 3, "E2", quality=8.0, success=False)
        recommender = KNNRecommender(store, registry)

        rec = recommender.recommend(EXTRACTOR.extract(task), k=6, min_history=5)

        assert rec.executor_id == "E1"
        assert rec.confidence == pytest.approx(2 / 3)
        assert rec.alternatives[0][0] == "E2"

    def test_confidence_bounds_on_mixed_history(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _register(registry, ("E1", ()), ("E2", ()), ("E3", ()))
        _seed(store, INVEST_TASKS[::2], "E1", quality=6.0)
        _seed(store, INVEST_TASKS[1::2], "E2", quality=7.0, success=False)
        _seed(store, CHAT_TASKS, "E3", quality=10.0)
        recommender = KNNRecommender(store, registry)

        for task in INVEST_TASKS + CHAT_TASKS + ["Design a scalable system"]:
            rec = recommender.recommend(EXTRACTOR.extract(task), k=5, min_history=5)
            assert 0.0 <= rec.confidence <= 1.0
            assert rec.executor_id in registry

    def test_exclude(self, store: HistoryStore, registry: ExecutorRegistry) -> None:
        _register(registry, ("E1", ()), ("E2", ()))
        _seed(store, INVEST_TASKS, "E2")
        recommender = KNNRecommender(store, registry)

        rec = recommender.recommend(
            EXTRACTOR.extract("invest $5000 at 4% for 2 years"), k=3, min_history=5, exclude={"E2"}
        )

        assert rec.executor_id == "E1"

    def test_retired_executors_do_not_vote(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _register(registry, ("E1", ()), ("E2", ()))
        _seed(store, INVEST_TASKS, "retired")
        _seed(store, CHAT_TASKS * 3, "E2")
        recommender = KNNRecommender(store, registry)

        rec = recommender.recommend(
            EXTRACTOR.extract("invest $5000 at 4% for 2 years"), k=3, min_history=5
        )

        assert rec.executor_id != "retired"
        assert rec.executor_id in registry

    def test_degraded_store_uses_rules(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _register(registry, ("E1", ("calc",)), ("E2", ()))
        _seed(store, INVEST_TASKS, "E2")
        store.degraded = True
        recommender = KNNRecommender(store, registry)

        rec = recommender.recommend(
            EXTRACTOR.extract("invest $5000 at 4% for 2 years"), k=3, min_history=5
        )

        assert rec.method == Method.RULE

    def test_no_executors(self, store: HistoryStore, registry: ExecutorRegistry) -> None:
        with pytest.raises(NoExecutorsError):
            KNNRecommender(store, registry).recommend(EXTRACTOR.extract("anything"))

    def test_everything_excluded(self, store: HistoryStore, registry: ExecutorRegistry) -> None:
        _register(registry, ("E1", ()))
        with pytest.raises(NoExecutorsError):
            KNNRecommender(store, registry).recommend(EXTRACTOR.extract("x"), exclude={"E1"})

    def test_to_dict(self, store: HistoryStore, registry: ExecutorRegistry) -> None:
        _register(registry, ("E1", ("calc",)), ("E2", ()))
        data = KNNRecommender(store, registry).recommend_text("Calculate 2+2").to_dict()
        assert data["executor_id"] == "E1"
        assert data["method"] == "rule"
        assert data["alternatives"][0]["executor_id"] == "E2"


class TestNeighbors:
    """Tests for distance and neighbor selection."""

    def test_euclidean_distance(self) -> None:
        assert euclidean_distance((0.0, 0.0), (3.0, 4.0)) == 5.0
        with pytest.raises(ValueError):
            euclidean_distance((0.0,), (0.0, 1.0))

    def test_ties_broken_by_record_id(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _seed(store, ["same task"] * 3, "E1")
        recommender = KNNRecommender(store, registry)

        [nearest] = recommender.nearest(EXTRACTOR.extract("same task"), k=1)

        assert nearest.record.record_id == 1
        assert nearest.distance == 0.0

    def test_skips_other_dimensionality(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        store.append(TaskFeatures(vector=(0.5, 0.5), difficulty=0.1), "old", 9.0, True, 1)
        _seed(store, ["current schema"], "E1")
        recommender = KNNRecommender(store, registry)

        neighbors = recommender.nearest(EXTRACTOR.extract("current schema"), k=5)

        assert [n.record.executor_id for n in neighbors] == ["E1"]

    def test_recency_weight_halves_per_half_life(self) -> None:
        now = time.time()
        assert recency_weight(now, 7.0, now) == pytest.approx(1.0)
        assert recency_weight(now - 7 * 86400, 7.0, now) == pytest.approx(0.5)

    def test_recency_prefers_recent_executor(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _register(registry, ("E1", ()), ("E2", ()))
        task = "invest $5000 at 4% for 2 years"
        features = EXTRACTOR.extract(task)
        old = time.time() - 60 * 86400
        for _ in range(3):
            store.append(features, "E1", 9.0, True, 1, timestamp=old)
            store.append(features, "E2", 8.0, True, 1)

        plain = KNNRecommender(store, registry).recommend(features, k=6, min_history=5)
        recent = KNNRecommender(store, registry, recency_half_life_days=7.0).recommend(
            features, k=6, min_history=5
        )

        assert plain.executor_id == "E1"
        assert recent.executor_id == "E2"


class TestSimilarTaskAnalytics:
    """Tests for best_for_similar and historical_threshold."""

    def test_best_for_similar(self, store: HistoryStore, registry: ExecutorRegistry) -> None:
        _seed(store, INVEST_TASKS[:5], "E2", quality=9.0)
        _seed(store, INVEST_TASKS[5:], "E1", quality=4.0, success=False)
        recommender = KNNRecommender(store, registry)

        ranked = recommender.best_for_similar(EXTRACTOR.extract("invest $5000 at 4% for 2 years"))

        assert ranked[0]["executor_id"] == "E2"
        assert ranked[0]["success_rate"] == 1.0
        assert ranked[0]["score"] > ranked[-1]["score"]

    def test_historical_threshold(self, store: HistoryStore, registry: ExecutorRegistry) -> None:
        _seed(store, INVEST_TASKS[:4], "E2", quality=8.0)
        recommender = KNNRecommender(store, registry)

        features = EXTRACTOR.extract("invest $5000 at 4% for 2 years")
        threshold = recommender.historical_threshold(features)

        assert threshold == 8.0

    def test_historical_threshold_clamped(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _seed(store, INVEST_TASKS[:4], "E2", quality=2.0)
        recommender = KNNRecommender(store, registry)
        assert recommender.historical_threshold(EXTRACTOR.extract("invest")) == 5.0

    def test_historical_threshold_default_without_successes(
        self, store: HistoryStore, registry: ExecutorRegistry
    ) -> None:
        _seed(store, INVEST_TASKS[:4], "E2", quality=9.0, success=False)
        recommender = KNNRecommender(store, registry)
        assert recommender.historical_threshold(EXTRACTOR.extract("invest"), default=6.5) == 6.5
