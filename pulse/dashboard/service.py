"""
Dashboard read path: load persisted state and project it.
"""

from typing import Optional
import argparse
import json
import logging
import random

from pulse.config.settings import Settings
from pulse.data_access.sql_client import SQLClient
from pulse.dashboard.projector import project_dashboard
from pulse.models.schemas import DashboardView, ReportRecord


logger = logging.getLogger(__name__)


class DashboardUnavailableError(RuntimeError):
    """The dashboard could not be built; callers may retry."""

    retryable = True


class DashboardService:
    """Builds dashboard views and serves the latest report."""

    def __init__(self, config: Settings):
        self.config = config
        self.sql_client = SQLClient(config)

    def get_dashboard(self, now: Optional[int] = None, rng: Optional[random.Random] = None) -> DashboardView:
        """
        Read current state and project it. Either the full view or an error.

        Raises:
            DashboardUnavailableError: on any read or projection failure
        """
        try:
            total_feedback = self.sql_client.count_feedback()
            feedback = self.sql_client.get_recent_feedback(self.config.dashboard_window)
            clusters = self.sql_client.get_clusters()
            cluster_source_counts = self.sql_client.get_cluster_source_counts()

            return project_dashboard(
                feedback,
                clusters,
                cluster_source_counts,
                total_feedback,
                now=now,
                rng=rng,
                escalated_items_limit=self.config.escalated_items_limit,
                recent_activity_limit=self.config.recent_activity_limit,
                trend_days=self.config.trend_days,
            )
        except Exception as e:
            logger.error(f"Dashboard read failed: {e}")
            raise DashboardUnavailableError(f"Dashboard unavailable: {e}") from e
        finally:
            self.sql_client.close()

    def get_latest_report(self) -> Optional[ReportRecord]:
        """Newest report, or None before the first run."""
        try:
            return self.sql_client.get_latest_report()
        except Exception as e:
            logger.error(f"Report read failed: {e}")
            raise DashboardUnavailableError(f"Report unavailable: {e}") from e
        finally:
            self.sql_client.close()


def main():
    """Print the dashboard view (or the latest report) as JSON."""
    config = Settings()

    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description='Print the triage dashboard as JSON.')
    parser.add_argument('--report', action='store_true', help='Print the latest report instead')
    args = parser.parse_args()

    service = DashboardService(config)
    if args.report:
        report = service.get_latest_report()
        print(report.to_json() if report else json.dumps({"message": "No reports yet"}))
    else:
        print(service.get_dashboard().to_json())


if __name__ == "__main__":
    main()
