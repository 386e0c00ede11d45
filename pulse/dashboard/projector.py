"""
Dashboard read model.

Pure transformation of persisted feedback and cluster rows into the view the
dashboard renders. No writes and no hidden state: the same inputs, clock and
random source always give the same view.

Day buckets without any feedback get a synthetic value (random sentiment in
[-0.3, 0.1], random volume in [5, 15)) so the charts stay continuous. Those
entries are presentation filler, not statistics.
"""

from typing import Dict, Iterable, List, Optional
import random

import pandas as pd

from pulse.models.schemas import (
    ActivityItem, Category, ClusterRecord, DashboardCluster, DashboardStats,
    DashboardView, FeedbackItem,
)
from pulse.utils.timestamps import DAY_MS, now_ms

URGENT_CLUSTER_MIN_URGENCY = 3
ESCALATED_ITEM_MIN_URGENCY = 4

FILLER_SENTIMENT_RANGE = (-0.3, 0.1)
FILLER_VOLUME_RANGE = (5, 15)


def activity_action(item: FeedbackItem) -> str:
    if item.urgency is not None and item.urgency >= ESCALATED_ITEM_MIN_URGENCY:
        return "escalated"
    if item.category == Category.OUTAGE.value:
        return "alert"
    if item.sentiment is not None and item.sentiment > 0:
        return "positive"
    return "processed"


def is_escalated_item(item: FeedbackItem) -> bool:
    return (
        (item.urgency is not None and item.urgency >= ESCALATED_ITEM_MIN_URGENCY)
        or item.category == Category.OUTAGE.value
    )


def sources_by_cluster(rows: Iterable[dict]) -> Dict[str, Dict[str, int]]:
    """Fold ``(cluster_id, source, count)`` rows into ``{cluster_id: {source: count}}``."""
    result: Dict[str, Dict[str, int]] = {}
    for row in rows:
        result.setdefault(row["cluster_id"], {})[row["source"]] = int(row["count"])
    return result


def _feedback_frame(feedback: List[FeedbackItem]) -> pd.DataFrame:
    df = pd.DataFrame(
        [(item.source, item.created_at, item.sentiment) for item in feedback],
        columns=["source", "created_at", "sentiment"],
    )
    df["sentiment"] = df["sentiment"].astype(float).fillna(0.0)
    # Unreadable timestamps become NaN and fall outside every day bucket.
    df["created_at"] = pd.to_numeric(df["created_at"], errors="coerce")
    return df


def _newest_first(feedback: List[FeedbackItem]) -> List[FeedbackItem]:
    """Sort by created_at descending; items without a timestamp go last."""
    return sorted(
        feedback,
        key=lambda item: (item.created_at is not None, item.created_at or 0),
        reverse=True,
    )


def daily_trends(df: pd.DataFrame, now: int, days: int, rng: random.Random):
    """
    Sentiment and volume per trailing day bucket, oldest first.

    Bucket ``i`` days back covers ``[now - (i+1) days, now - i days)``.
    """
    sentiment_trend: List[float] = []
    volume_trend: List[int] = []

    for i in range(days - 1, -1, -1):
        day_start = now - (i + 1) * DAY_MS
        day_end = now - i * DAY_MS
        day = df[(df["created_at"] >= day_start) & (df["created_at"] < day_end)]

        if len(day) > 0:
            sentiment_trend.append(round(float(day["sentiment"].mean()), 2))
            volume_trend.append(int(len(day)))
        else:
            sentiment_trend.append(round(rng.uniform(*FILLER_SENTIMENT_RANGE), 2))
            volume_trend.append(rng.randrange(*FILLER_VOLUME_RANGE))

    return sentiment_trend, volume_trend


def project_dashboard(
    feedback: List[FeedbackItem],
    clusters: List[ClusterRecord],
    cluster_source_counts: Iterable[dict],
    total_feedback: int,
    now: Optional[int] = None,
    rng: Optional[random.Random] = None,
    escalated_items_limit: int = 10,
    recent_activity_limit: int = 15,
    trend_days: int = 7,
) -> DashboardView:
    """
    Build the dashboard view.

    Args:
        feedback: The windowed feedback rows (most recent N)
        clusters: All cluster rows
        cluster_source_counts: ``(cluster_id, source, count)`` rows over the whole feedback table
        total_feedback: Size of the whole feedback table, not just the window
        now: Reference time in epoch milliseconds for the day buckets
        rng: Random source for the filler values of empty day buckets

    Returns:
        DashboardView
    """
    now = now if now is not None else now_ms()
    rng = rng or random.Random()

    recent = _newest_first(feedback)
    df = _feedback_frame(recent)

    cluster_sources = sources_by_cluster(cluster_source_counts)
    enriched = [
        DashboardCluster(**cluster.model_dump(), sources=cluster_sources.get(cluster.id, {}))
        for cluster in sorted(clusters, key=lambda c: c.avg_urgency, reverse=True)
    ]

    source_breakdown = {
        str(source): int(count)
        for source, count in df.groupby("source", sort=False).size().items()
    }
    sentiment_trend, volume_trend = daily_trends(df, now, trend_days, rng)

    stats = DashboardStats(
        total_feedback=total_feedback,
        escalated_count=sum(1 for cluster in clusters if cluster.escalated),
        avg_sentiment=float(df["sentiment"].mean()) if len(df) else 0.0,
        clusters_count=len(clusters),
    )

    return DashboardView(
        stats=stats,
        urgent_issues=[c for c in enriched if c.avg_urgency >= URGENT_CLUSTER_MIN_URGENCY],
        escalated_items=[item for item in recent if is_escalated_item(item)][:escalated_items_limit],
        recent_activity=[
            ActivityItem(**item.model_dump(), action=activity_action(item))
            for item in recent[:recent_activity_limit]
        ],
        clusters=enriched,
        source_breakdown=source_breakdown,
        sentiment_trend=sentiment_trend,
        volume_trend=volume_trend,
    )
