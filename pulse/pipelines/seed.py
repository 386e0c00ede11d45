# pulse/pipelines/seed.py
"""
Seed pipeline to populate an empty store with demo feedback.
Classifies with the keyword heuristic only, so seeding is fast and deterministic
for a given random source.
"""

from typing import Optional
import argparse
import logging
import random

from pulse.config.settings import Settings
from pulse.data_access.sql_client import SQLClient
from pulse.agents.heuristic import HeuristicClassifier
from pulse.agents.llm_agent import FeedbackClassifier
from pulse.pipelines.generator import generate_fresh_feedback
from pulse.pipelines.triage import aggregate


logger = logging.getLogger(__name__)


class SeedPipeline:
    """Pipeline for seeding feedback and clusters without calling the LLM."""

    def __init__(self, config: Settings, rng: Optional[random.Random] = None):
        self.config = config
        self.sql_client = SQLClient(config)
        self.classifier = FeedbackClassifier(config, classifier=HeuristicClassifier())
        self.rng = rng or random.Random()

    def run(self, count: Optional[int] = None) -> dict:
        """
        Execute the seed pipeline.

        Args:
            count: Number of feedback items to seed (default from config)

        Returns:
            Dictionary with seeding statistics
        """
        if count is None:
            count = self.config.seed_items

        logger.info(f"Seeding {count} feedback items")

        try:
            items = self.classifier.classify_items(generate_fresh_feedback(count, self.rng))

            logger.info(f"Saving {len(items)} feedback items")
            self.sql_client.upsert_feedback(items)

            clusters = aggregate(items)
            logger.info(f"Saving {len(clusters)} clusters")
            self.sql_client.upsert_clusters(clusters)
        finally:
            self.sql_client.close()

        return {
            "success": True,
            "seeded": len(items),
            "clusters": len(clusters),
        }


def main():
    """Main entry point for running the seed pipeline."""
    config = Settings()

    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description='Seed the feedback store with heuristic-classified demo data.')
    parser.add_argument('--count', type=int, help='Number of feedback items to seed')
    parser.add_argument('--init-schema', action='store_true', help='Create the database tables first')
    args = parser.parse_args()

    if args.init_schema:
        client = SQLClient(config)
        try:
            client.initialize_schema()
        finally:
            client.close()

    stats = SeedPipeline(config).run(count=args.count)

    print("\n" + "="*50)
    print("SEED PIPELINE RESULTS")
    print("="*50)
    print(f"Feedback items seeded: {stats['seeded']}")
    print(f"Clusters written: {stats['clusters']}")
    print("="*50)


if __name__ == "__main__":
    main()
