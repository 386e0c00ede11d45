"""
Synthetic feedback generator.

Stands in for collection from external channels: each run draws a weighted
category, renders one of its templates with random vocabulary, and stamps the
item with a random source and a time within the last 24 hours.
"""

from typing import Dict, List, Optional, Tuple
import random
import uuid

from pulse.models.schemas import Category, FeedbackItem, Source
from pulse.utils.timestamps import DAY_MS, now_ms


FEEDBACK_TEMPLATES: Dict[str, Tuple[str, ...]] = {
    Category.BUG.value: (
        "Login fails on {platform} every time I try. {emotion}!",
        "Can't log in on my {device}, keeps showing error",
        "{platform} login broken again? Come on...",
        "Getting error {errorCode} when trying to {action}",
        "Bug: {feature} returns {errorCode} error on {platform}",
        "The {feature} is completely broken on {device}",
        "{feature} crashes whenever I try to {action}",
        "Authentication fails with error code {errorCode}",
    ),
    Category.FEATURE.value: (
        "Would love to see a {feature} feature",
        "Feature request: ability to {action} at once",
        "Please add support for {platform}",
        "We need {feature} for our workflow",
        "Any plans to add {feature}? Would be super helpful",
        "Missing feature: {action} functionality",
    ),
    Category.DOCS.value: (
        "Documentation is outdated, spent hours figuring out the {feature}",
        "Docs don't match the actual {feature} response format",
        "Please update the docs, the examples don't work",
        "The {feature} documentation is missing key details",
        "Documentation issue: /{feature} endpoint description is wrong",
    ),
    Category.PERFORMANCE.value: (
        "The app is so slow today, taking {duration} to load",
        "Performance has degraded significantly this {timeframe}",
        "{feature} is extremely laggy now",
        "Page load times are {duration}+ lately",
        "Everything feels sluggish since the last update",
    ),
    Category.BILLING.value: (
        "Payment failed but still got charged",
        "Double charged for my {plan} subscription",
        "Billing issue - got charged {count} times this month",
        "Invoice shows wrong amount for {plan}",
        "Refund request - charged incorrectly",
    ),
    Category.OUTAGE.value: (
        "MAJOR OUTAGE - nothing is working!",
        "Site is completely down!",
        "Is there an outage? Can't access anything",
        "Full service outage right now",
        "URGENT: Complete service unavailability",
        "Critical: Global service outage affecting all regions",
        "All APIs returning {errorCode}",
    ),
    Category.PRAISE.value: (
        "Love the new {feature}! {emotion}!",
        "Finally {feature}! Thank you devs",
        "The new dashboard is amazing!",
        "Great job on the {feature} update",
        "Best {product} I've ever used",
        "Support team was super helpful with my issue",
    ),
}

TEMPLATE_VARS: Dict[str, Tuple[str, ...]] = {
    "platform": ("mobile", "iOS", "Android", "web", "desktop app", "Chrome", "Firefox", "Safari"),
    "device": ("iPhone", "Android phone", "iPad", "MacBook", "Windows laptop", "tablet"),
    "emotion": ("Super frustrating", "Absolutely love it", "Really annoying", "Very impressed", "Totally broken"),
    "errorCode": ("500", "503", "401", "404", "timeout", "connection refused"),
    "action": ("login", "export data", "upload files", "sync", "search", "save changes", "load dashboard"),
    "feature": ("API", "dashboard", "search", "export", "notifications", "dark mode", "analytics", "reports"),
    "duration": ("10+ seconds", "forever", "30 seconds", "a minute", "way too long"),
    "timeframe": ("week", "month", "few days", "since the update"),
    "plan": ("Pro", "Enterprise", "Team", "Basic", "Premium"),
    "count": ("twice", "three times", "multiple"),
    "product": ("product", "tool", "platform", "service"),
}

# Weighted towards bugs and outages; sums to 100.
CATEGORY_WEIGHTS: Dict[str, int] = {
    Category.BUG.value: 25,
    Category.OUTAGE.value: 15,
    Category.PERFORMANCE.value: 15,
    Category.BILLING.value: 10,
    Category.DOCS.value: 10,
    Category.FEATURE.value: 15,
    Category.PRAISE.value: 10,
}

SOURCES: Tuple[str, ...] = tuple(source.value for source in Source)


def fill_template(template: str, rng: random.Random) -> str:
    """Replace every ``{slot}`` occurrence, each with an independent random choice."""
    text = template
    for key, values in TEMPLATE_VARS.items():
        placeholder = "{" + key + "}"
        while placeholder in text:
            text = text.replace(placeholder, rng.choice(values), 1)
    return text


def pick_category(rng: random.Random) -> str:
    total_weight = sum(CATEGORY_WEIGHTS.values())
    remaining = rng.random() * total_weight
    for category, weight in CATEGORY_WEIGHTS.items():
        remaining -= weight
        if remaining <= 0:
            return category
    return Category.BUG.value


def generate_feedback_item(category: str, rng: Optional[random.Random] = None,
                           reference_ms: Optional[int] = None) -> FeedbackItem:
    """
    Render one unclassified feedback item for a category.

    Unknown categories use the bug templates.
    """
    rng = rng or random.Random()
    reference_ms = reference_ms if reference_ms is not None else now_ms()
    templates = FEEDBACK_TEMPLATES.get(category, FEEDBACK_TEMPLATES[Category.BUG.value])

    return FeedbackItem(
        id=str(uuid.UUID(int=rng.getrandbits(128), version=4)),
        source=rng.choice(SOURCES),
        created_at=reference_ms - rng.randrange(DAY_MS),
        raw_text=fill_template(rng.choice(templates), rng),
    )


def generate_fresh_feedback(count: int, rng: Optional[random.Random] = None,
                            reference_ms: Optional[int] = None) -> List[FeedbackItem]:
    """Generate ``count`` items with weighted category selection."""
    rng = rng or random.Random()
    reference_ms = reference_ms if reference_ms is not None else now_ms()
    return [
        generate_feedback_item(pick_category(rng), rng, reference_ms)
        for _ in range(count)
    ]
