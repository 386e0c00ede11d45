"""
Read triage clusters from SQL Server.

Usage:
    python read_clusters.py
    python read_clusters.py --escalated
    python read_clusters.py --category outage --samples
    python read_clusters.py --export clusters.csv
"""

import os
import argparse
import pymssql
import pandas as pd
from dotenv import load_dotenv

load_dotenv()


def get_connection():
    """Create SQL Server connection."""
    return pymssql.connect(
        server=os.getenv("SQL_SERVER_HOST", "localhost"),
        port=int(os.getenv("SQL_SERVER_PORT", 1433)),
        database=os.getenv("SQL_SERVER_DATABASE", "pulse"),
        user=os.getenv("SQL_SERVER_USERNAME", "sa"),
        password=os.getenv("SQL_SERVER_PASSWORD", ""),
    )


def get_clusters(conn, category=None, escalated_only=False):
    """Query clusters, most pressing first."""
    query = """
        SELECT
            id,
            summary,
            category,
            avg_sentiment,
            avg_urgency,
            count_today,
            count_7d,
            trend_score,
            escalation_score,
            escalated
        FROM pulse.clusters
        WHERE 1=1
    """
    params = []

    if category:
        query += " AND category = %s"
        params.append(category)

    if escalated_only:
        query += " AND escalated = 1"

    query += " ORDER BY escalation_score DESC, avg_urgency DESC"

    return pd.read_sql(query, conn, params=params if params else None)


def get_cluster_feedback_samples(conn, cluster_id, limit=5):
    """Get the newest feedback for a cluster."""
    query = f"""
        SELECT TOP {int(limit)}
            id,
            source,
            raw_text,
            sentiment,
            urgency,
            created_at
        FROM pulse.feedback
        WHERE cluster_id = %s
        ORDER BY created_at DESC
    """
    return pd.read_sql(query, conn, params=(cluster_id,))


def main():
    parser = argparse.ArgumentParser(description="Read triage clusters")
    parser.add_argument("--category", help="Filter by category (bug/feature/docs/performance/billing/outage/praise/other)")
    parser.add_argument("--escalated", action="store_true", help="Only escalated clusters")
    parser.add_argument("--export", help="Export to CSV file")
    parser.add_argument("--samples", action="store_true", help="Show sample feedback for each cluster")
    args = parser.parse_args()

    conn = get_connection()

    print("Fetching clusters...")
    df = get_clusters(conn, category=args.category, escalated_only=args.escalated)

    print(f"\nFound {len(df)} clusters\n")
    print("=" * 80)

    if len(df) > 0:
        print(f"Items today: {df['count_today'].sum():,}")
        print(f"Items in the last 7 days: {df['count_7d'].sum():,}")
        print(f"Escalated: {int(df['escalated'].sum())}")
        print(f"Mean sentiment across clusters: {df['avg_sentiment'].mean():+.2f}")
        print("=" * 80)

        print("\nClusters by escalation score:\n")
        print(df[["id", "summary", "avg_urgency", "avg_sentiment", "escalation_score", "escalated"]]
              .to_string(index=False))

    if args.samples:
        print("\n" + "=" * 80)
        print("Sample Feedback:\n")
        for _, row in df.head(5).iterrows():
            print(f"\n--- {row['id']} ({row['count_today']} today) ---")
            samples = get_cluster_feedback_samples(conn, row["id"])
            for _, sample in samples.iterrows():
                print(f"  [{sample['source']}] u={sample['urgency']} {sample['raw_text'][:100]}")

    if args.export:
        df.to_csv(args.export, index=False)
        print(f"\nExported to {args.export}")

    conn.close()


if __name__ == "__main__":
    main()
