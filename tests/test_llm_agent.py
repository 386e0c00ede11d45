"""Unit tests for the LLM classifier, its response decoding and the fallback wrapper."""
import threading
import time

import pytest
from unittest.mock import Mock, patch
from openai import RateLimitError

from pulse.agents.heuristic import HeuristicClassifier
from pulse.agents.llm_agent import (
    ChatAgent, FallbackClassifier, FeedbackClassifier, LLMClassifier,
    build_classifier, extract_json_object, parse_analysis,
)
from pulse.config.settings import Settings
from pulse.models.schemas import Analysis, FeedbackItem


@pytest.fixture
def config():
    """Settings with an API key, no .env file and no real waiting."""
    return Settings(
        _env_file=None,
        openai_api_key="test-key",
        openai_llm_model="gpt-4o-mini",
        llm_max_retries=3,
        llm_base_delay=0.0,
        max_workers=2,
    )


def _completion(content):
    completion = Mock()
    completion.choices = [Mock(message=Mock(content=content))]
    return completion


def _rate_limit_error():
    return RateLimitError("rate limited", response=Mock(status_code=429, headers={}), body=None)


class TestExtractJsonObject:
    """Test locating the JSON object inside an LLM reply."""

    def test_plain_object(self):
        assert extract_json_object('{"a": 1}') == '{"a": 1}'

    def test_surrounding_prose(self):
        response = 'Sure! Here is the analysis: {"a": 1} Hope that helps.'
        assert extract_json_object(response) == '{"a": 1}'

    def test_markdown_fence(self):
        assert extract_json_object('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_nested_object(self):
        response = 'x {"a": {"b": 2}} y {"c": 3}'
        assert extract_json_object(response) == '{"a": {"b": 2}}'

    def test_braces_inside_strings(self):
        response = '{"summary": "uses {braces}", "a": 1} trailing }'
        assert extract_json_object(response) == '{"summary": "uses {braces}", "a": 1}'

    def test_escaped_quote_in_string(self):
        response = '{"summary": "say \\"hi\\" }", "a": 1}'
        assert extract_json_object(response) == response

    def test_no_object(self):
        with pytest.raises(ValueError):
            extract_json_object("I cannot help with that.")

    def test_unbalanced_object(self):
        with pytest.raises(ValueError):
            extract_json_object('{"a": 1')


class TestParseAnalysis:
    """Test strict decoding and clamping of the model output."""

    def test_valid_response(self):
        result = parse_analysis(
            '{"sentiment": -0.4, "urgency": 4, "category": "bug", "summary": "Login broken"}'
        )
        assert result == Analysis(sentiment=-0.4, urgency=4, category="bug", summary="Login broken")

    def test_values_clamped(self):
        """Out-of-range numbers are clamped rather than rejected."""
        high = parse_analysis('{"sentiment": 2, "urgency": 12, "category": "outage", "summary": "down"}')
        low = parse_analysis('{"sentiment": -5, "urgency": 0, "category": "outage", "summary": "down"}')

        assert high.sentiment == 1.0
        assert high.urgency == 5
        assert low.sentiment == -1.0
        assert low.urgency == 1

    def test_urgency_rounded_half_up(self):
        assert parse_analysis('{"sentiment": 0, "urgency": 2.5, "category": "docs", "summary": "s"}').urgency == 3
        assert parse_analysis('{"sentiment": 0, "urgency": 3.4, "category": "docs", "summary": "s"}').urgency == 3

    def test_numeric_strings_accepted(self):
        result = parse_analysis('{"sentiment": "0.5", "urgency": "2", "category": "praise", "summary": "s"}')
        assert result.sentiment == 0.5
        assert result.urgency == 2

    def test_category_case_normalized(self):
        assert parse_analysis('{"sentiment": 0, "urgency": 3, "category": " Bug ", "summary": "s"}').category == "bug"

    @pytest.mark.parametrize("response", [
        '{"urgency": 3, "category": "bug", "summary": "s"}',
        '{"sentiment": "very bad", "urgency": 3, "category": "bug", "summary": "s"}',
        '{"sentiment": 0, "urgency": null, "category": "bug", "summary": "s"}',
        '{"sentiment": 0, "urgency": 3, "category": "complaint", "summary": "s"}',
        '{"sentiment": 0, "urgency": 3, "category": "bug", "summary": ""}',
        '{"sentiment": 0, "urgency": 3, "category": "bug"}',
        '{"sentiment": 0, "urgency": 3, category: bug}',
        'no json here',
    ])
    def test_invalid_responses_rejected(self, response):
        with pytest.raises(ValueError):
            parse_analysis(response)


class TestChatAgent:
    """Test ChatAgent with a patched OpenAI client."""

    def test_agent_initialization(self, config):
        with patch('pulse.agents.llm_agent.OpenAI') as mock_openai:
            agent = ChatAgent(config)

        mock_openai.assert_called_once_with(api_key="test-key", timeout=config.llm_timeout_seconds)
        assert agent.model == "gpt-4o-mini"
        assert agent.max_tokens == 150

    def test_analyze_feedback_sends_prompt(self, config):
        with patch('pulse.agents.llm_agent.OpenAI') as mock_openai:
            create = mock_openai.return_value.chat.completions.create
            create.return_value = _completion('{"sentiment": 0}')

            agent = ChatAgent(config)
            result = agent.analyze_feedback("Site is completely down!")

        assert result == '{"sentiment": 0}'
        kwargs = create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["max_tokens"] == 150
        assert 'Feedback: "Site is completely down!"' in kwargs["messages"][0]["content"]

    @patch('pulse.agents.llm_agent.time.sleep')
    def test_chat_retries_on_rate_limit(self, mock_sleep, config):
        with patch('pulse.agents.llm_agent.OpenAI') as mock_openai:
            create = mock_openai.return_value.chat.completions.create
            create.side_effect = [_rate_limit_error(), _completion("ok")]

            agent = ChatAgent(config)
            assert agent.chat_single("hello") == "ok"

        assert create.call_count == 2
        mock_sleep.assert_called_once()

    @patch('pulse.agents.llm_agent.time.sleep')
    def test_chat_gives_up_after_max_retries(self, mock_sleep, config):
        with patch('pulse.agents.llm_agent.OpenAI') as mock_openai:
            create = mock_openai.return_value.chat.completions.create
            create.side_effect = _rate_limit_error()

            agent = ChatAgent(config)
            with pytest.raises(RateLimitError):
                agent.chat_single("hello")

        assert create.call_count == 3


class TestFallbackClassifier:
    """Test that every failure of the LLM path falls back to the heuristic."""

    def test_primary_result_used(self):
        agent = Mock()
        agent.analyze_feedback.return_value = (
            'Analysis: {"sentiment": 0.2, "urgency": 1, "category": "feature", "summary": "nice idea"}'
        )
        classifier = FallbackClassifier(LLMClassifier(agent), HeuristicClassifier())

        result = classifier.classify("Site is completely down!")

        assert result.category == "feature"
        assert result.urgency == 1

    def test_malformed_response_falls_back(self):
        agent = Mock()
        agent.analyze_feedback.return_value = "I think this is about an outage."
        classifier = FallbackClassifier(LLMClassifier(agent), HeuristicClassifier())

        result = classifier.classify("Site is completely down!")

        assert result.category == "outage"
        assert result.sentiment == -0.9
        assert result.urgency == 5

    def test_api_error_falls_back(self):
        agent = Mock()
        agent.analyze_feedback.side_effect = TimeoutError("timed out")
        classifier = FallbackClassifier(LLMClassifier(agent), HeuristicClassifier())

        assert classifier.classify("Love the new dashboard!").category == "praise"

    def test_name(self):
        classifier = FallbackClassifier(LLMClassifier(Mock()), HeuristicClassifier())
        assert classifier.name == "llm+heuristic"


class TestBuildClassifier:

    def test_without_api_key_uses_heuristic(self):
        config = Settings(_env_file=None, openai_api_key=None)
        assert isinstance(build_classifier(config), HeuristicClassifier)

    def test_with_api_key_wraps_llm(self, config):
        with patch('pulse.agents.llm_agent.OpenAI'):
            classifier = build_classifier(config)

        assert isinstance(classifier, FallbackClassifier)
        assert isinstance(classifier.primary, LLMClassifier)
        assert isinstance(classifier.fallback, HeuristicClassifier)


class TestFeedbackClassifier:
    """Test batch classification of feedback items."""

    @pytest.fixture
    def items(self):
        texts = [
            "Site is completely down!",
            "Love the new dashboard!",
            "Getting error 500 when trying to sync",
            "Please update the docs, the examples don't work",
        ]
        return [
            FeedbackItem(id=f"fb-{i}", source="forum", created_at=1_700_000_000_000 + i, raw_text=text)
            for i, text in enumerate(texts)
        ]

    def test_classify_items_preserves_order(self, config, items):
        classifier = FeedbackClassifier(config, classifier=HeuristicClassifier())

        results = classifier.classify_items(items)

        assert [r.id for r in results] == ["fb-0", "fb-1", "fb-2", "fb-3"]
        assert [r.category for r in results] == ["outage", "praise", "bug", "docs"]
        assert [r.cluster_id for r in results] == [
            "cluster-outage", "cluster-praise", "cluster-bug", "cluster-docs"
        ]

    def test_classify_empty(self, config):
        classifier = FeedbackClassifier(config, classifier=HeuristicClassifier())
        assert classifier.classify_items([]) == []

    def test_failure_aborts_batch(self, config, items):
        """A classifier that raises (no fallback) fails the whole batch."""
        strategy = Mock()
        strategy.classify.side_effect = KeyError("boom")
        classifier = FeedbackClassifier(config, classifier=strategy)

        with pytest.raises(RuntimeError, match="Error classifying feedback"):
            classifier.classify_items(items)

    def test_failure_does_not_wait_for_other_calls(self, config, items):
        """One failed item aborts the batch without waiting on slow calls; queued items never start."""
        gate = threading.Event()
        started = []

        def classify(text):
            started.append(text)
            if text == "Site is completely down!":
                raise ValueError("bad reply")
            gate.wait(timeout=10)
            return HeuristicClassifier().classify(text)

        strategy = Mock()
        strategy.classify.side_effect = classify
        classifier = FeedbackClassifier(config, classifier=strategy)

        began = time.monotonic()
        try:
            with pytest.raises(RuntimeError, match="Error classifying feedback fb-0"):
                classifier.classify_items(items)
            elapsed = time.monotonic() - began
            assert "Please update the docs, the examples don't work" not in started
        finally:
            gate.set()

        assert elapsed < 5

    def test_category_distribution(self, config, items):
        classifier = FeedbackClassifier(config, classifier=HeuristicClassifier())
        results = classifier.classify_items(items + items[:1])

        distribution = classifier.get_category_distribution(results)

        assert list(distribution.items())[0] == ("outage", 2)
        assert sum(distribution.values()) == 5


@pytest.fixture
def live_config(pytestconfig):
    """Configuration with a real OpenAI API key from the command line or environment."""
    api_key = pytestconfig.getoption("openai_api_key") or Settings(_env_file=None).openai_api_key
    if not api_key:
        pytest.skip("OpenAI API key not provided via --openai-api-key or environment variable")
    return Settings(_env_file=None, openai_api_key=api_key)


class TestChatAgentLive:
    """Calls the real API; skipped without a key."""

    def test_classify_outage(self, live_config):
        result = build_classifier(live_config).classify("Site is completely down!")

        assert -1.0 <= result.sentiment <= 1.0
        assert 1 <= result.urgency <= 5
        assert result.summary
