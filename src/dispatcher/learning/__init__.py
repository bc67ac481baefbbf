"""
Learning - outcome history and similarity-based executor recommendation.

Core Components:
- history: append-only outcome log with per-executor performance counters
- knn: k-nearest-neighbor voting over the log, rule-scorer fallback
"""

from .history import HistoryRecord, HistoryStore, PerformanceCounter, fold_counters
from .knn import KNNRecommender, Method, Neighbor, Recommendation, euclidean_distance

__all__ = [
    # History
    "HistoryRecord",
    "HistoryStore",
    "PerformanceCounter",
    "fold_counters",
    # k-NN
    "KNNRecommender",
    "Method",
    "Neighbor",
    "Recommendation",
    "euclidean_distance",
]
