"""Feature extraction, rule scoring, thresholds and validation."""

from .features import FEATURE_DIMENSIONS, FEATURE_NAMES, FeatureExtractor, TaskFeatures
from .rule_scorer import RuleScore, RuleScorer, difficulty_bucket
from .threshold import AdaptiveThresholdPolicy
from .validation import HeuristicValidator, Validation, Validator

__all__ = [
    "FEATURE_DIMENSIONS",
    "FEATURE_NAMES",
    "FeatureExtractor",
    "TaskFeatures",
    "RuleScore",
    "RuleScorer",
    "difficulty_bucket",
    "AdaptiveThresholdPolicy",
    "HeuristicValidator",
    "Validation",
    "Validator",
]
