"""
Query triaged feedback with filters.

Usage:
    python read_feedback.py --cluster-id cluster-outage
    python read_feedback.py --source github --limit 100
    python read_feedback.py --min-urgency 4 --since-hours 24
    python read_feedback.py --category billing --export billing.csv
"""

import os
import time
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


def get_feedback(
    conn,
    cluster_id=None,
    source=None,
    category=None,
    min_urgency=None,
    since_hours=None,
    limit=100,
):
    """Query feedback with filters, newest first."""
    query = """
        SELECT TOP {limit}
            id,
            source,
            created_at,
            raw_text,
            sentiment,
            urgency,
            category,
            cluster_id
        FROM pulse.feedback
        WHERE 1=1
    """.format(limit=int(limit))
    params = []

    if cluster_id:
        query += " AND cluster_id = %s"
        params.append(cluster_id)

    if source:
        query += " AND source = %s"
        params.append(source)

    if category:
        query += " AND category = %s"
        params.append(category)

    if min_urgency is not None:
        query += " AND urgency >= %s"
        params.append(min_urgency)

    if since_hours is not None:
        # created_at is epoch milliseconds
        query += " AND created_at >= %s"
        params.append(int((time.time() - since_hours * 3600) * 1000))

    query += " ORDER BY created_at DESC"

    df = pd.read_sql(query, conn, params=params if params else None)
    df["created"] = pd.to_datetime(df["created_at"], unit="ms", utc=True)
    return df


def main():
    parser = argparse.ArgumentParser(description="Query triaged feedback")
    parser.add_argument("--cluster-id", help="Filter by cluster ID (cluster-<category>)")
    parser.add_argument("--source", help="Filter by source (twitter/reddit/forum/github/discord)")
    parser.add_argument("--category", help="Filter by category")
    parser.add_argument("--min-urgency", type=int, help="Minimum urgency (1-5)")
    parser.add_argument("--since-hours", type=float, help="Only feedback from the last N hours")
    parser.add_argument("--limit", type=int, default=100, help="Max records to return")
    parser.add_argument("--export", help="Export to CSV file")
    args = parser.parse_args()

    conn = get_connection()

    print("Fetching feedback...")
    df = get_feedback(
        conn,
        cluster_id=args.cluster_id,
        source=args.source,
        category=args.category,
        min_urgency=args.min_urgency,
        since_hours=args.since_hours,
        limit=args.limit,
    )

    print(f"\nFound {len(df)} feedback records\n")
    print("=" * 80)

    if len(df) > 0:
        print(f"Sources: {df['source'].value_counts().to_dict()}")
        print(f"Categories: {df['category'].value_counts().to_dict()}")
        print(f"Date range: {df['created'].min()} to {df['created'].max()}")
        if df["sentiment"].notna().any():
            print(f"Avg sentiment: {df['sentiment'].mean():+.2f}")
        print("=" * 80)

        print("\nSample Feedback:\n")
        for _, row in df.head(10).iterrows():
            print(f"[{row['source']}] {row['raw_text'][:100]}")
            if row["cluster_id"]:
                print(f"  Cluster: {row['cluster_id']}  urgency={row['urgency']}")
            print()

    if args.export:
        df.to_csv(args.export, index=False)
        print(f"\nExported to {args.export}")

    conn.close()


if __name__ == "__main__":
    main()
