"""
Deterministic keyword classifier.

Always available, used whenever the LLM is unavailable or returns something
unusable, and for bulk seeding. Each field is decided by the first matching
rule in its table, so the order of the tables matters.
"""

from typing import Sequence, Tuple, TypeVar

from pulse.models.schemas import Analysis, Category

T = TypeVar("T")

SUMMARY_LENGTH = 50

SENTIMENT_RULES: Tuple[Tuple[float, Tuple[str, ...]], ...] = (
    (0.7, ("love", "great", "amazing", "thank")),
    (-0.6, ("broken", "fail", "error", "bug")),
    (-0.9, ("outage", "down", "urgent")),
)
DEFAULT_SENTIMENT = 0.0

URGENCY_RULES: Tuple[Tuple[int, Tuple[str, ...]], ...] = (
    (5, ("outage", "critical", "urgent", "down")),
    (4, ("broken", "fail", "error")),
    (2, ("feature", "request", "would love")),
)
DEFAULT_URGENCY = 3

CATEGORY_RULES: Tuple[Tuple[Category, Tuple[str, ...]], ...] = (
    (Category.BUG, ("bug", "error", "broken", "fail")),
    (Category.FEATURE, ("feature", "request", "would love")),
    (Category.DOCS, ("doc", "example")),
    (Category.PERFORMANCE, ("slow", "performance", "lag")),
    (Category.BILLING, ("billing", "charge", "payment")),
    (Category.OUTAGE, ("outage", "down", "503")),
    (Category.PRAISE, ("love", "great", "amazing")),
)
DEFAULT_CATEGORY = Category.OTHER


def _first_match(text: str, rules: Sequence[Tuple[T, Tuple[str, ...]]], default: T) -> T:
    for value, keywords in rules:
        if any(keyword in text for keyword in keywords):
            return value
    return default


def summarize(text: str) -> str:
    """First 50 characters, with an ellipsis when truncated."""
    return text[:SUMMARY_LENGTH] + ("..." if len(text) > SUMMARY_LENGTH else "")


def heuristic_analysis(text: str) -> Analysis:
    lower = text.lower()
    return Analysis(
        sentiment=_first_match(lower, SENTIMENT_RULES, DEFAULT_SENTIMENT),
        urgency=_first_match(lower, URGENCY_RULES, DEFAULT_URGENCY),
        category=_first_match(lower, CATEGORY_RULES, DEFAULT_CATEGORY),
        summary=summarize(text),
    )


class HeuristicClassifier:
    """Keyword classifier exposing the common ``classify`` interface."""

    name = "heuristic"

    def classify(self, text: str) -> Analysis:
        return heuristic_analysis(text)
