# pulse/agents/llm_agent.py
from openai import OpenAI, RateLimitError
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional
from pulse.config.settings import Settings
from pulse.agents.heuristic import HeuristicClassifier
from pulse.models.schemas import Analysis, Category, FeedbackItem
import json
import math
import re
import time
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed

logger = logging.getLogger(__name__)


ANALYSIS_PROMPT = """Analyze this product feedback and return ONLY a JSON object with these exact fields:
- sentiment: number between -1 (very negative) and 1 (very positive)
- urgency: integer 1-5 (1=low, 5=critical)
- category: one of "bug", "feature", "docs", "performance", "billing", "outage", "praise", "other"
- summary: short 5-10 word summary

Feedback: "{text}"

Return ONLY valid JSON, no explanation:"""


class ChatAgent:
    """OpenAI Chatbot client."""

    def __init__(self, config: Settings):
        self.config = config
        self.client = OpenAI(api_key=config.openai_api_key, timeout=config.llm_timeout_seconds)
        self.model = config.openai_llm_model
        self.max_tokens = config.llm_max_tokens

    def chat(self, messages: List[dict]) -> str:
        """
        Send a list of messages to the OpenAI chat model and get the response.
        Uses exponential backoff retry logic for rate limit errors.

        Args:
            messages: List of message dicts (e.g., [{"role": "user", "content": "Hello"}])

        Returns:
            The assistant's reply as a string.
        """
        max_retries = self.config.llm_max_retries
        base_delay = self.config.llm_base_delay

        for attempt in range(max_retries):
            try:
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_tokens=self.max_tokens
                )
                return response.choices[0].message.content or ""
            except RateLimitError:
                if attempt == max_retries - 1:
                    raise

                delay = base_delay * (2 ** attempt)
                logger.warning(f"Rate limit hit on chat completion. Retrying in {delay}s... (attempt {attempt + 1}/{max_retries})")
                time.sleep(delay)
        raise RuntimeError("Chat completion was not attempted (llm_max_retries < 1)")

    def chat_single(self, prompt: str) -> str:
        """
        Send a single prompt to the OpenAI chat model and get the response.

        Args:
            prompt: The user's prompt as a string.

        Returns:
            The assistant's reply as a string.
        """
        messages = [{"role": "user", "content": prompt}]
        return self.chat(messages)

    def analyze_feedback(self, feedback_text: str) -> str:
        """Ask the model for a sentiment/urgency/category/summary JSON object."""
        return self.chat_single(ANALYSIS_PROMPT.format(text=feedback_text))


def extract_json_object(response: str) -> str:
    """
    Return the first balanced ``{...}`` substring of an LLM response.

    Markdown code fences are dropped first. Braces inside JSON string literals
    do not count towards the balance.

    Raises:
        ValueError: if the response holds no complete object
    """
    response = re.sub(r'```json\s*|\s*```', '', response)
    start = response.find("{")
    if start == -1:
        raise ValueError("No JSON object in response")

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(response)):
        char = response[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return response[start:index + 1]

    raise ValueError("Unbalanced JSON object in response")


class LLMAnalysis(BaseModel):
    """Schema the model's JSON must satisfy; anything else is rejected."""
    model_config = ConfigDict(allow_inf_nan=False, use_enum_values=True)

    sentiment: float
    urgency: float
    category: Category
    summary: str = Field(..., min_length=1)

    @field_validator("category", mode="before")
    @classmethod
    def _normalize_category(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    def to_analysis(self) -> Analysis:
        """Clamp sentiment to [-1, 1]; round urgency half-up and clamp to [1, 5]."""
        urgency = int(math.floor(self.urgency + 0.5))
        return Analysis(
            sentiment=max(-1.0, min(1.0, self.sentiment)),
            urgency=max(1, min(5, urgency)),
            category=self.category,
            summary=self.summary.strip(),
        )


def parse_analysis(response: str) -> Analysis:
    """
    Decode an LLM reply into an Analysis.

    Raises:
        ValueError: no JSON object, invalid JSON, or fields missing / of the wrong type
    """
    payload = json.loads(extract_json_object(response))
    if not isinstance(payload, dict):
        raise ValueError("LLM response is not a JSON object")
    return LLMAnalysis.model_validate(payload).to_analysis()


class LLMClassifier:
    """Classifier backed by the chat model. Failures propagate to the caller."""

    name = "llm"

    def __init__(self, agent: ChatAgent):
        self.agent = agent

    def classify(self, text: str) -> Analysis:
        return parse_analysis(self.agent.analyze_feedback(text))


class FallbackClassifier:
    """Try the primary classifier; on any failure use the fallback instead."""

    def __init__(self, primary, fallback):
        self.primary = primary
        self.fallback = fallback
        self.name = f"{primary.name}+{fallback.name}"

    def classify(self, text: str) -> Analysis:
        try:
            return self.primary.classify(text)
        except Exception as e:
            logger.warning(f"{self.primary.name} classification failed ({type(e).__name__}: {e}); using {self.fallback.name}")
            return self.fallback.classify(text)


def build_classifier(config: Settings):
    """LLM with heuristic fallback when an API key is configured, heuristic alone otherwise."""
    if not config.openai_api_key:
        logger.info("No OpenAI API key configured; classifying with keyword heuristic only")
        return HeuristicClassifier()
    return FallbackClassifier(LLMClassifier(ChatAgent(config)), HeuristicClassifier())


class FeedbackClassifier:
    """Classify feedback items, fanning out over a thread pool."""

    def __init__(self, config: Settings, classifier=None):
        """
        Initialize the feedback classifier.

        Args:
            config: Settings object with OpenAI configuration
            classifier: Optional classifier strategy (built from config if None)
        """
        self.classifier = classifier if classifier is not None else build_classifier(config)
        self.max_workers = config.max_workers

    def classify_single(self, item: FeedbackItem) -> FeedbackItem:
        return item.with_analysis(self.classifier.classify(item.raw_text))

    def classify_items(self, items: List[FeedbackItem]) -> List[FeedbackItem]:
        """
        Classify every item; returns only once all items are done.

        Args:
            items: Unclassified feedback items

        Returns:
            Classified copies in the same order as the input

        Raises:
            RuntimeError: if any item could not be classified
        """
        if not items:
            return []

        results = {}

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        future_to_index = {
            executor.submit(self.classify_single, item): index
            for index, item in enumerate(items)
        }

        for future in as_completed(future_to_index):
            index = future_to_index[future]
            try:
                results[index] = future.result()
            except Exception as e:
                # Queued items are cancelled; in-flight calls are not awaited.
                executor.shutdown(wait=False, cancel_futures=True)
                raise RuntimeError(f"Error classifying feedback {items[index].id}: {e}") from e

        executor.shutdown()
        return [results[index] for index in range(len(items))]

    def get_category_distribution(self, items: List[FeedbackItem]) -> dict:
        """Count classified items per category, largest first."""
        distribution = {}
        for item in items:
            if item.category is not None:
                distribution[item.category] = distribution.get(item.category, 0) + 1
        return dict(sorted(distribution.items(), key=lambda x: x[1], reverse=True))
