"""
Daily triage pipeline.

Generates fresh feedback, classifies it, stores it, groups it into one cluster
per category with escalation scoring, and records a report for the run.
"""

from typing import Callable, Dict, List, Optional, TypeVar
import argparse
import logging
import random
import uuid

import pandas as pd

from pulse.config.settings import Settings
from pulse.data_access.sql_client import SQLClient
from pulse.agents.llm_agent import FeedbackClassifier
from pulse.pipelines.generator import generate_fresh_feedback
from pulse.models.schemas import FeedbackItem, ClusterRecord, ReportRecord, cluster_id_for
from pulse.utils.timestamps import DAY_MS, now_ms


logger = logging.getLogger(__name__)

T = TypeVar("T")

ESCALATION_THRESHOLD = 3.5
TREND_WINDOW_DAYS = 7


class TriageRunError(RuntimeError):
    """A triage run stopped at ``step``; nothing after that step was produced."""

    def __init__(self, step: str, cause: Exception):
        super().__init__(f"Triage run failed at step '{step}': {cause}")
        self.step = step
        self.cause = cause


def trend_score_for(avg_urgency: float) -> float:
    """Step proxy for "getting worse", from current urgency alone."""
    if avg_urgency > 3.5:
        return 0.3
    if avg_urgency > 2.5:
        return 0.1
    return -0.1


def volume_spike_for(count: int) -> int:
    if count > 5:
        return 4
    if count > 2:
        return 2
    return 1


def sentiment_drop_for(avg_sentiment: float) -> int:
    if avg_sentiment < -0.5:
        return 4
    if avg_sentiment < 0:
        return 2
    return 0


def calculate_escalation_score(avg_urgency: float, volume_spike: float, sentiment_drop: float) -> float:
    return 0.5 * avg_urgency + 0.3 * volume_spike + 0.2 * sentiment_drop


def aggregate(items: List[FeedbackItem], counts_7d: Optional[Dict[str, int]] = None) -> List[ClusterRecord]:
    """
    Group classified items into one cluster per category present.

    Args:
        items: Classified feedback items; items without a category are ignored
        counts_7d: Optional trailing 7-day item counts per category. When absent,
            count_7d equals the number of items in this batch.

    Returns:
        Cluster records in order of first appearance of each category
    """
    classified = [item for item in items if item.category is not None]
    if not classified:
        return []

    df = pd.DataFrame(
        [(item.category, item.sentiment, item.urgency) for item in classified],
        columns=["category", "sentiment", "urgency"],
    )
    df[["sentiment", "urgency"]] = df[["sentiment", "urgency"]].astype(float).fillna(0.0)

    grouped = df.groupby("category", sort=False).agg(
        avg_sentiment=("sentiment", "mean"),
        avg_urgency=("urgency", "mean"),
        count=("category", "size"),
    )

    counts_7d = counts_7d or {}
    clusters = []
    for category, row in grouped.iterrows():
        count = int(row["count"])
        avg_sentiment = float(row["avg_sentiment"])
        avg_urgency = float(row["avg_urgency"])
        escalation_score = calculate_escalation_score(
            avg_urgency, volume_spike_for(count), sentiment_drop_for(avg_sentiment)
        )

        clusters.append(ClusterRecord(
            id=cluster_id_for(category),
            summary=f"{category} issues ({count} reports)",
            category=category,
            avg_sentiment=avg_sentiment,
            avg_urgency=avg_urgency,
            count_today=count,
            count_7d=max(count, int(counts_7d.get(category, 0))),
            trend_score=trend_score_for(avg_urgency),
            escalation_score=escalation_score,
            escalated=escalation_score > ESCALATION_THRESHOLD,
        ))

    return clusters


def build_report(clusters: List[ClusterRecord], item_count: int,
                 report_id: Optional[str] = None, created_at: Optional[int] = None) -> ReportRecord:
    escalated_clusters = [cluster for cluster in clusters if cluster.escalated]
    return ReportRecord(
        id=report_id or str(uuid.uuid4()),
        created_at=created_at if created_at is not None else now_ms(),
        summary=(
            f"Daily Triage Report: {item_count} feedback items processed, "
            f"{len(clusters)} clusters identified, {len(escalated_clusters)} escalated."
        ),
        clusters=clusters,
        escalated_clusters=escalated_clusters,
    )


class TriagePipeline:
    """One daily triage run: generate, classify, store, cluster, report."""

    def __init__(self, config: Settings, classifier: Optional[FeedbackClassifier] = None,
                 rng: Optional[random.Random] = None):
        """
        Initialize the triage pipeline.

        Args:
            config: Application settings
            classifier: Feedback classifier. If None, one is built from config.
            rng: Random source for feedback generation
        """
        self.config = config
        self.sql_client = SQLClient(config)
        self.classifier = classifier or FeedbackClassifier(config)
        self.rng = rng or random.Random()

    def _step(self, run_id: str, name: str, action: Callable[[], T]) -> T:
        logger.info(f"[{run_id}] Step {name}")
        try:
            return action()
        except Exception as e:
            logger.error(f"[{run_id}] Step {name} failed: {e}")
            raise TriageRunError(name, e) from e

    def run(self, count: Optional[int] = None, run_id: Optional[str] = None) -> dict:
        """
        Execute one triage run.

        Args:
            count: Number of feedback items to generate (random within configured bounds if None)
            run_id: Identifier for log correlation (generated if None)

        Returns:
            Dictionary with run id, counts and the report

        Raises:
            TriageRunError: if any step fails; later steps are not executed
        """
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

        run_id = run_id or str(uuid.uuid4())
        if count is None:
            count = self.rng.randint(self.config.run_min_items, self.config.run_max_items)

        logger.info(f"[{run_id}] Starting triage run with {count} feedback items")

        try:
            feedback_items = self._step(
                run_id, "fetch-sources",
                lambda: generate_fresh_feedback(count, self.rng)
            )

            analyzed_items = self._step(
                run_id, "analyze-feedback",
                lambda: self.classifier.classify_items(feedback_items)
            )
            logger.info(f"[{run_id}] Category distribution: {self.classifier.get_category_distribution(analyzed_items)}")

            self._step(
                run_id, "store-feedback",
                lambda: self.sql_client.upsert_feedback(analyzed_items)
            )

            clusters = self._step(
                run_id, "update-clusters",
                lambda: self._update_clusters(analyzed_items)
            )

            report = self._step(
                run_id, "generate-report",
                lambda: self._generate_report(clusters, len(analyzed_items))
            )
        finally:
            self.sql_client.close()

        logger.info(f"[{run_id}] {report.summary}")

        return {
            "success": True,
            "run_id": run_id,
            "items_processed": len(analyzed_items),
            "clusters": len(clusters),
            "escalated": len(report.escalated_clusters),
            "report": report,
        }

    def _update_clusters(self, items: List[FeedbackItem]) -> List[ClusterRecord]:
        since = now_ms() - TREND_WINDOW_DAYS * DAY_MS
        counts_7d = self.sql_client.get_category_counts_since(since)
        clusters = aggregate(items, counts_7d)
        self.sql_client.upsert_clusters(clusters)
        return clusters

    def _generate_report(self, clusters: List[ClusterRecord], item_count: int) -> ReportRecord:
        report = build_report(clusters, item_count)
        self.sql_client.insert_report(report)
        return report


def main():
    """Main entry point for running one triage run with CLI arguments."""
    config = Settings()

    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description='Run the daily feedback triage pipeline once.')
    parser.add_argument(
        '--count',
        type=int,
        help='Number of feedback items to generate (default: random within configured bounds)'
    )
    parser.add_argument(
        '--init-schema',
        action='store_true',
        help='Create the database tables before running'
    )
    args = parser.parse_args()

    if args.count is not None and args.count < 0:
        parser.error("--count must be zero or positive")

    if args.init_schema:
        client = SQLClient(config)
        try:
            client.initialize_schema()
        finally:
            client.close()

    pipeline = TriagePipeline(config)
    result = pipeline.run(count=args.count)
    report = result["report"]

    print("\n" + "="*60)
    print("TRIAGE RUN RESULTS")
    print("="*60)
    print(f"Run id: {result['run_id']}")
    print(report.summary)
    for cluster in report.clusters:
        flag = "ESCALATED" if cluster.escalated else ""
        print(f"  {cluster.summary:<35} urgency={cluster.avg_urgency:.1f} "
              f"sentiment={cluster.avg_sentiment:+.2f} score={cluster.escalation_score:.2f} {flag}")
    print("="*60)


if __name__ == "__main__":
    main()
