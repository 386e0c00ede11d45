from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Dict, Literal
from enum import Enum

from pulse.utils.timestamps import normalize_timestamp_ms


class Category(str, Enum):
    """Fixed feedback categories; one cluster per category."""
    BUG = "bug"
    FEATURE = "feature"
    DOCS = "docs"
    PERFORMANCE = "performance"
    BILLING = "billing"
    OUTAGE = "outage"
    PRAISE = "praise"
    OTHER = "other"


class Source(str, Enum):
    """Origin channels feedback is collected from."""
    TWITTER = "twitter"
    REDDIT = "reddit"
    FORUM = "forum"
    GITHUB = "github"
    DISCORD = "discord"


def cluster_id_for(category: str) -> str:
    """Clusters are keyed by category."""
    return f"cluster-{getattr(category, 'value', category)}"


class Analysis(BaseModel):
    """Classifier output for a single piece of feedback."""
    model_config = ConfigDict(use_enum_values=True)

    sentiment: float = Field(..., ge=-1.0, le=1.0)
    urgency: int = Field(..., ge=1, le=5)
    category: Category
    summary: str


class FeedbackItem(BaseModel):
    """A feedback item; classification fields stay empty until it is analyzed."""
    model_config = ConfigDict(use_enum_values=True)

    id: str
    source: Source
    created_at: Optional[int]
    raw_text: str = Field(..., min_length=1)
    sentiment: Optional[float] = Field(None, ge=-1.0, le=1.0)
    urgency: Optional[int] = Field(None, ge=1, le=5)
    category: Optional[Category] = None
    cluster_id: Optional[str] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _normalize_created_at(cls, value):
        # Unreadable stored values become None rather than failing the read.
        return normalize_timestamp_ms(value)

    @property
    def is_classified(self) -> bool:
        return self.category is not None

    def with_analysis(self, analysis: Analysis) -> "FeedbackItem":
        """Return a copy carrying the classifier output and derived cluster id."""
        return self.model_copy(update={
            "sentiment": analysis.sentiment,
            "urgency": analysis.urgency,
            "category": analysis.category,
            "cluster_id": cluster_id_for(analysis.category),
        })


class ClusterRecord(BaseModel):
    """Per-category aggregate produced by a triage run."""
    model_config = ConfigDict(use_enum_values=True)

    id: str
    summary: str
    category: Category
    avg_sentiment: float
    avg_urgency: float
    count_today: int = 0
    count_7d: int = 0
    trend_score: float = 0.0
    escalation_score: float = 0.0
    escalated: bool = False


class ReportRecord(BaseModel):
    """Immutable digest of one triage run."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str
    created_at: int
    summary: str
    clusters: List[ClusterRecord]
    escalated_clusters: List[ClusterRecord] = Field(default_factory=list, alias="escalatedClusters")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class DashboardStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_feedback: int = Field(0, alias="totalFeedback")
    escalated_count: int = Field(0, alias="escalatedCount")
    avg_sentiment: float = Field(0.0, alias="avgSentiment")
    clusters_count: int = Field(0, alias="clustersCount")


class DashboardCluster(ClusterRecord):
    """Cluster row enriched with its per-source item counts."""
    sources: Dict[str, int] = Field(default_factory=dict)


class ActivityItem(FeedbackItem):
    action: Literal["escalated", "alert", "positive", "processed"]


class DashboardView(BaseModel):
    """Read model served to the dashboard."""
    model_config = ConfigDict(populate_by_name=True)

    stats: DashboardStats
    urgent_issues: List[DashboardCluster] = Field(default_factory=list, alias="urgentIssues")
    escalated_items: List[FeedbackItem] = Field(default_factory=list, alias="escalatedItems")
    recent_activity: List[ActivityItem] = Field(default_factory=list, alias="recentActivity")
    clusters: List[DashboardCluster] = Field(default_factory=list)
    source_breakdown: Dict[str, int] = Field(default_factory=dict, alias="sourceBreakdown")
    sentiment_trend: List[float] = Field(default_factory=list, alias="sentimentTrend")
    volume_trend: List[int] = Field(default_factory=list, alias="volumeTrend")

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)
