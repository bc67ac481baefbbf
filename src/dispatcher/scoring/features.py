#!/usr/bin/env python3
"""Feature Extractor - fixed-schema numeric descriptors for task text.

Turns a task string into a normalized feature vector, a difficulty estimate
and the signal categories it hits. The same text always yields the same
features, so k-NN distances over stored history are reproducible.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Final

# ═══════════════════════════════════════════════════════════════════════════
# SIGNALS
# ═══════════════════════════════════════════════════════════════════════════

SIGNALS: Final[dict[str, list[str]]] = {
    "code": [
        "function",
        "class",
        "async",
        "import",
        "interface",
        "module",
        "return",
        "compile",
        "script",
        "regex",
        "sql",
    ],
    "architecture": [
        "design",
        "architecture",
        "system",
        "refactor",
        "pattern",
        "microservice",
        "distributed",
        "scalable",
        "optimize",
    ],
    "debug": [
        "error",
        "fix",
        "bug",
        "debug",
        "not working",
        "broken",
        "crash",
        "exception",
        "failed",
    ],
    "analysis": [
        "analyze",
        "analyse",
        "review",
        "compare",
        "evaluate",
        "assess",
        "investigate",
        "research",
        "explain why",
    ],
    "creation": [
        "create",
        "build",
        "implement",
        "develop",
        "write",
        "generate",
        "draft",
        "compose",
    ],
    "math": [
        "calculate",
        "compute",
        "solve",
        "equation",
        "formula",
        "multiply",
        "divide",
        "square root",
        "average",
        "percent",
        "+",
    ],
    "finance": [
        "invest",
        "interest",
        "loan",
        "mortgage",
        "compound",
        "portfolio",
        "savings",
        "stock",
        "$",
        "%",
    ],
    "retrieval": [
        "search",
        "look up",
        "lookup",
        "document",
        "source",
        "cite",
        "according to",
        "reference",
        "knowledge base",
    ],
    "conversation": [
        "hello",
        "thanks",
        "thank you",
        "how are you",
        "good morning",
        "chat",
    ],
}

# Difficulty contribution per matched keyword (capped at 3 per category)
CATEGORY_WEIGHTS: Final[dict[str, float]] = {
    "code": 0.05,
    "architecture": 0.08,
    "debug": 0.03,
    "analysis": 0.05,
    "creation": 0.02,
    "math": 0.02,
    "finance": 0.02,
    "retrieval": 0.02,
    "conversation": -0.08,  # Negative weight reduces difficulty
}

# Structural contributions to difficulty
LENGTH_WEIGHT: Final[float] = 0.35
CLAUSE_WEIGHT: Final[float] = 0.20
TECHNICAL_WEIGHT: Final[float] = 0.20
SENTENCE_WEIGHT: Final[float] = 0.05
MARKUP_WEIGHT: Final[float] = 0.05

# Normalization caps
LENGTH_CAP: Final[int] = 200  # words
SENTENCE_CAP: Final[int] = 10
CLAUSES_PER_SENTENCE_CAP: Final[float] = 5.0
DIGIT_RATIO_SCALE: Final[float] = 5.0
SIGNAL_CAP: Final[int] = 3

CONJUNCTIONS: Final[frozenset[str]] = frozenset(
    {"and", "or", "but", "because", "which", "while", "if", "then", "unless", "although", "whereas"}
)

STOPWORDS: Final[frozenset[str]] = frozenset(
    {
        "the", "and", "for", "from", "with", "this", "that", "are", "was", "will",
        "can", "has", "have", "been", "what", "how", "please", "into", "about",
        "your", "you", "its", "our", "them", "then", "than",
    }
)

FEATURE_NAMES: Final[tuple[str, ...]] = (
    "length",
    "sentences",
    "clause_density",
    "technical_ratio",
    "digit_ratio",
    *(f"signal_{category}" for category in SIGNALS),
    "question",
    "markup",
    "list",
)

FEATURE_DIMENSIONS: Final[int] = len(FEATURE_NAMES)

_WORD_RE = re.compile(r"[a-z][a-z0-9_'-]+")
_SENTENCE_RE = re.compile(r"[.!?]+(?:\s|$)")
_CAMEL_RE = re.compile(r"[a-z][A-Z]")
_MARKUP_RE = re.compile(r"```|`[^`]+`|\{.*\}|<[a-zA-Z/][^>]*>|https?://", re.DOTALL)
_LIST_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)])\s+", re.MULTILINE)


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    # Word-start anchored so stems match inflections ("invest" -> "investment")
    if re.fullmatch(r"[a-z ]+", keyword.strip()):
        return re.compile(r"\b" + re.escape(keyword.strip()))
    return re.compile(re.escape(keyword))


_PATTERNS: Final[dict[str, list[re.Pattern[str]]]] = {
    category: [_keyword_pattern(k) for k in keywords] for category, keywords in SIGNALS.items()
}


# ═══════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True)
class TaskFeatures:
    """Normalized descriptor of one task. Value type, never mutated."""

    vector: tuple[float, ...]
    difficulty: float
    tags: frozenset[str] = field(default_factory=frozenset)
    keywords: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not 0.0 <= self.difficulty <= 1.0:
            raise ValueError(f"difficulty must be in [0.0, 1.0], got {self.difficulty}")

    def as_dict(self) -> dict[str, Any]:
        named = dict(zip(FEATURE_NAMES, self.vector))
        return {
            "difficulty": self.difficulty,
            "tags": sorted(self.tags),
            "features": named,
        }


# ═══════════════════════════════════════════════════════════════════════════
# ANALYSIS FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════


def tokenize(text: str) -> list[str]:
    """Lowercased word tokens."""
    return _WORD_RE.findall(text.lower())


def count_signals(text: str, category: str) -> int:
    """Count matching keywords for a category."""
    lower_text = text.lower()
    return sum(1 for pattern in _PATTERNS[category] if pattern.search(lower_text))


def count_sentences(text: str) -> int:
    stripped = text.strip()
    if not stripped:
        return 0
    terminators = len(_SENTENCE_RE.findall(stripped))
    # Trailing fragment without a terminator still counts as a sentence
    if not re.search(r"[.!?]\s*$", stripped):
        terminators += 1
    return max(1, terminators)


def count_clauses(text: str) -> int:
    """Clause boundaries: separators plus subordinating/coordinating words."""
    separators = sum(text.count(ch) for ch in ",;:")
    conjunctions = sum(1 for word in tokenize(text) if word in CONJUNCTIONS)
    return separators + conjunctions


def is_technical_token(token: str) -> bool:
    if any(ch.isdigit() for ch in token):
        return True
    if "_" in token or "::" in token or "()" in token:
        return True
    if "." in token.strip(".") and not token.endswith("."):
        return True
    if _CAMEL_RE.search(token):
        return True
    return len(token.strip(".,;:!?")) >= 12


def extract_keywords(text: str) -> frozenset[str]:
    """Content words used for tag overlap against executor profiles."""
    return frozenset(w for w in tokenize(text) if len(w) >= 3 and w not in STOPWORDS)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


# ═══════════════════════════════════════════════════════════════════════════
# MAIN EXTRACTION
# ═══════════════════════════════════════════════════════════════════════════


class FeatureExtractor:
    """Maps task text to ``TaskFeatures`` over the ``FEATURE_NAMES`` schema."""

    dimensions = FEATURE_DIMENSIONS
    feature_names = FEATURE_NAMES

    def extract(self, task_text: str) -> TaskFeatures:
        """Extract features for a task.

        Returns TaskFeatures with:
            - vector: FEATURE_DIMENSIONS values in [0, 1]
            - difficulty: 0-1 estimate, rising with length, clause density and
              technical-token share
            - tags: signal categories present in the text
            - keywords: content words
        """
        text = task_text or ""
        raw_tokens = text.split()
        words = len(raw_tokens)
        sentences = count_sentences(text)

        length = _clamp(words / LENGTH_CAP)
        sentence_score = _clamp(sentences / SENTENCE_CAP)
        clauses_per_sentence = count_clauses(text) / sentences if sentences else 0.0
        clause_density = _clamp(clauses_per_sentence / CLAUSES_PER_SENTENCE_CAP)
        technical = (
            sum(1 for t in raw_tokens if is_technical_token(t)) / words if words else 0.0
        )
        digit_ratio = (
            _clamp(sum(1 for ch in text if ch.isdigit()) / len(text) * DIGIT_RATIO_SCALE)
            if text
            else 0.0
        )

        signal_counts = {category: count_signals(text, category) for category in SIGNALS}
        signal_values = [min(count, SIGNAL_CAP) / SIGNAL_CAP for count in signal_counts.values()]

        question = 1.0 if "?" in text else 0.0
        markup = 1.0 if _MARKUP_RE.search(text) else 0.0
        listing = 1.0 if _LIST_RE.search(text) else 0.0

        vector = (
            round(length, 4),
            round(sentence_score, 4),
            round(clause_density, 4),
            round(technical, 4),
            round(digit_ratio, 4),
            *(round(v, 4) for v in signal_values),
            question,
            markup,
            listing,
        )

        difficulty = (
            LENGTH_WEIGHT * length
            + CLAUSE_WEIGHT * clause_density
            + TECHNICAL_WEIGHT * technical
            + SENTENCE_WEIGHT * sentence_score
            + MARKUP_WEIGHT * markup
        )
        for category, count in signal_counts.items():
            difficulty += CATEGORY_WEIGHTS[category] * min(count, SIGNAL_CAP)

        return TaskFeatures(
            vector=vector,
            difficulty=round(_clamp(difficulty), 3),
            tags=frozenset(c for c, count in signal_counts.items() if count > 0),
            keywords=extract_keywords(text),
        )
