"""Unit tests for the keyword heuristic classifier."""
import pytest

from pulse.agents.heuristic import HeuristicClassifier, heuristic_analysis, summarize


class TestHeuristicAnalysis:
    """Test keyword rules and their priority order."""

    def test_outage_text(self):
        """An outage report is critical and very negative."""
        result = heuristic_analysis("Site is completely down!")

        assert result.category == "outage"
        assert result.sentiment == -0.9
        assert result.urgency == 5

    def test_praise_text(self):
        """Praise without urgency keywords keeps the default urgency."""
        result = heuristic_analysis("Love the new dashboard!")

        assert result.category == "praise"
        assert result.sentiment == 0.7
        assert result.urgency == 3

    def test_error_text(self):
        result = heuristic_analysis("Getting error 500 when trying to sync")

        assert result.category == "bug"
        assert result.sentiment == -0.6
        assert result.urgency == 4

    def test_feature_request(self):
        """Positive keywords win for sentiment, feature wording lowers urgency."""
        result = heuristic_analysis("Would love to see a dark mode feature")

        assert result.category == "feature"
        assert result.sentiment == 0.7
        assert result.urgency == 2

    @pytest.mark.parametrize("text,category", [
        ("Docs don't match the actual API response format", "docs"),
        ("The app is so slow today", "performance"),
        ("Double charged for my Pro subscription", "billing"),
        ("All APIs returning 503", "outage"),
        ("Hello there", "other"),
    ])
    def test_categories(self, text, category):
        assert heuristic_analysis(text).category == category

    def test_earlier_category_wins_on_overlap(self):
        """'fail' is a bug keyword and is checked before billing keywords."""
        result = heuristic_analysis("Payment failed but still got charged")

        assert result.category == "bug"
        assert result.urgency == 4

    def test_case_insensitive(self):
        assert heuristic_analysis("MAJOR OUTAGE - nothing is working!").category == "outage"

    def test_defaults(self):
        result = heuristic_analysis("Just checking in")

        assert result.sentiment == 0.0
        assert result.urgency == 3
        assert result.category == "other"

    def test_deterministic(self):
        text = "Login fails on iOS every time I try. Super frustrating!"
        assert heuristic_analysis(text) == heuristic_analysis(text)


class TestSummarize:

    def test_short_text_unchanged(self):
        assert summarize("Site is completely down!") == "Site is completely down!"

    def test_long_text_truncated(self):
        text = "x" * 60
        assert summarize(text) == "x" * 50 + "..."

    def test_exactly_fifty_characters(self):
        text = "y" * 50
        assert summarize(text) == text


class TestHeuristicClassifier:

    def test_classify(self):
        classifier = HeuristicClassifier()
        assert classifier.classify("Site is completely down!").category == "outage"
        assert classifier.name == "heuristic"
