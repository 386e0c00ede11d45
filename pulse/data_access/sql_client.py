import pymssql
import threading
from typing import Dict, List, Optional
from pulse.config.settings import Settings
from pulse.models.schemas import FeedbackItem, ClusterRecord, ReportRecord


class PersistenceError(RuntimeError):
    """A write to the triage tables failed."""


SCHEMA_SQL = """
IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = 'pulse')
    EXEC('CREATE SCHEMA pulse');

IF OBJECT_ID('pulse.feedback', 'U') IS NULL
BEGIN
    CREATE TABLE pulse.feedback (
        id VARCHAR(64) PRIMARY KEY,
        source VARCHAR(32) NOT NULL,
        created_at BIGINT NOT NULL,
        raw_text NVARCHAR(MAX) NOT NULL,
        sentiment FLOAT NULL,
        urgency INT NULL,
        category VARCHAR(32) NULL,
        cluster_id VARCHAR(64) NULL
    );
    CREATE INDEX idx_feedback_source ON pulse.feedback(source);
    CREATE INDEX idx_feedback_created_at ON pulse.feedback(created_at);
    CREATE INDEX idx_feedback_cluster_id ON pulse.feedback(cluster_id);
END;

IF OBJECT_ID('pulse.clusters', 'U') IS NULL
BEGIN
    CREATE TABLE pulse.clusters (
        id VARCHAR(64) PRIMARY KEY,
        summary NVARCHAR(400) NULL,
        category VARCHAR(32) NULL,
        avg_sentiment FLOAT NULL,
        avg_urgency FLOAT NULL,
        count_today INT DEFAULT 0,
        count_7d INT DEFAULT 0,
        trend_score FLOAT DEFAULT 0,
        escalation_score FLOAT DEFAULT 0,
        escalated BIT DEFAULT 0
    );
    CREATE INDEX idx_clusters_category ON pulse.clusters(category);
    CREATE INDEX idx_clusters_escalated ON pulse.clusters(escalated);
END;

IF OBJECT_ID('pulse.reports', 'U') IS NULL
    CREATE TABLE pulse.reports (
        id VARCHAR(64) PRIMARY KEY,
        created_at BIGINT NOT NULL,
        summary NVARCHAR(400) NULL,
        json NVARCHAR(MAX) NULL
    );
"""

FEEDBACK_COLUMNS = "id, source, created_at, raw_text, sentiment, urgency, category, cluster_id"
CLUSTER_COLUMNS = (
    "id, summary, category, avg_sentiment, avg_urgency, count_today, count_7d, "
    "trend_score, escalation_score, escalated"
)


class SQLClient:
    """SQL Server client for the feedback, clusters and reports tables."""

    def __init__(self, config: Settings):
        self.config = config
        self.conn = None
        self._write_lock = threading.Lock()

    def connect(self) -> None:
        """Establish database connection."""
        self.conn = pymssql.connect(
            server=self.config.sql_server_host,
            port=self.config.sql_server_port,
            user=self.config.sql_server_username,
            password=self.config.sql_server_password,
            database=self.config.sql_server_database
        )

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def _execute_writes(self, statements: List[tuple]) -> None:
        """Run (query, params) pairs in one transaction, one writer at a time."""
        with self._write_lock:
            try:
                if not self.conn:
                    self.connect()
                with self.conn.cursor() as cursor:
                    for query, params in statements:
                        cursor.execute(query, params)
                self.conn.commit()
            except pymssql.Error as e:
                if self.conn:
                    self.conn.rollback()
                raise PersistenceError(f"Write failed: {e}") from e

    def initialize_schema(self) -> None:
        """Create the schema, tables and indexes if they don't exist."""
        self._execute_writes([(SCHEMA_SQL, None)])

    def upsert_feedback(self, items: List[FeedbackItem]) -> None:
        """
        Insert or replace feedback rows keyed by id.
        """
        query = """
            MERGE INTO pulse.feedback WITH (HOLDLOCK) AS target
            USING (VALUES (%s, %s, %s, %s, %s, %s, %s, %s)) AS source
                (id, source, created_at, raw_text, sentiment, urgency, category, cluster_id)
            ON target.id = source.id
            WHEN MATCHED THEN
                UPDATE SET
                    source = source.source,
                    created_at = source.created_at,
                    raw_text = source.raw_text,
                    sentiment = source.sentiment,
                    urgency = source.urgency,
                    category = source.category,
                    cluster_id = source.cluster_id
            WHEN NOT MATCHED THEN
                INSERT (id, source, created_at, raw_text, sentiment, urgency, category, cluster_id)
                VALUES (source.id, source.source, source.created_at, source.raw_text,
                        source.sentiment, source.urgency, source.category, source.cluster_id);
        """
        self._execute_writes([
            (query, (item.id, item.source, item.created_at, item.raw_text,
                     item.sentiment, item.urgency, item.category, item.cluster_id))
            for item in items
        ])

    def upsert_clusters(self, clusters: List[ClusterRecord]) -> None:
        """
        Insert or replace cluster rows keyed by id.
        """
        query = """
            MERGE INTO pulse.clusters WITH (HOLDLOCK) AS target
            USING (VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)) AS source
                (id, summary, category, avg_sentiment, avg_urgency, count_today, count_7d,
                 trend_score, escalation_score, escalated)
            ON target.id = source.id
            WHEN MATCHED THEN
                UPDATE SET
                    summary = source.summary,
                    category = source.category,
                    avg_sentiment = source.avg_sentiment,
                    avg_urgency = source.avg_urgency,
                    count_today = source.count_today,
                    count_7d = source.count_7d,
                    trend_score = source.trend_score,
                    escalation_score = source.escalation_score,
                    escalated = source.escalated
            WHEN NOT MATCHED THEN
                INSERT (id, summary, category, avg_sentiment, avg_urgency, count_today, count_7d,
                        trend_score, escalation_score, escalated)
                VALUES (source.id, source.summary, source.category, source.avg_sentiment,
                        source.avg_urgency, source.count_today, source.count_7d,
                        source.trend_score, source.escalation_score, source.escalated);
        """
        self._execute_writes([
            (query, (cluster.id, cluster.summary, cluster.category, cluster.avg_sentiment,
                     cluster.avg_urgency, cluster.count_today, cluster.count_7d,
                     cluster.trend_score, cluster.escalation_score, int(cluster.escalated)))
            for cluster in clusters
        ])

    def insert_report(self, report: ReportRecord) -> None:
        """
        Append a report. Reports are never updated.
        """
        query = """
            INSERT INTO pulse.reports (id, created_at, summary, json)
            VALUES (%s, %s, %s, %s)
        """
        self._execute_writes([
            (query, (report.id, report.created_at, report.summary, report.to_json()))
        ])

    def _fetch_all(self, query: str, params=None) -> List[dict]:
        if not self.conn:
            self.connect()

        with self.conn.cursor(as_dict=True) as cursor:
            cursor.execute(query, params)
            return cursor.fetchall()

    def count_feedback(self) -> int:
        rows = self._fetch_all("SELECT COUNT(*) AS count FROM pulse.feedback")
        return rows[0]['count'] if rows else 0

    def get_recent_feedback(self, limit: int = 50) -> List[FeedbackItem]:
        """
        Retrieve the most recent feedback rows, newest first.
        """
        query = f"""
            SELECT TOP {int(limit)} {FEEDBACK_COLUMNS}
            FROM pulse.feedback
            ORDER BY created_at DESC
        """
        return [FeedbackItem(**row) for row in self._fetch_all(query)]

    def get_clusters(self, escalated_only: bool = False) -> List[ClusterRecord]:
        """
        Retrieve clusters ordered by average urgency, highest first.
        """
        query = f"SELECT {CLUSTER_COLUMNS} FROM pulse.clusters"
        if escalated_only:
            query += " WHERE escalated = 1"
        query += " ORDER BY avg_urgency DESC"

        return [
            ClusterRecord(**{
                **row,
                'escalated': bool(row['escalated']),
                'escalation_score': row['escalation_score'] or 0.0,
            })
            for row in self._fetch_all(query)
        ]

    def get_escalated_clusters(self) -> List[ClusterRecord]:
        return self.get_clusters(escalated_only=True)

    def get_cluster_source_counts(self) -> List[dict]:
        """
        Feedback counts grouped by (cluster_id, source).
        """
        query = """
            SELECT cluster_id, source, COUNT(*) AS count
            FROM pulse.feedback
            GROUP BY cluster_id, source
        """
        return self._fetch_all(query)

    def get_category_counts_since(self, since_ms: int) -> Dict[str, int]:
        """
        Feedback counts per category for rows created at or after ``since_ms``.
        """
        query = """
            SELECT category, COUNT(*) AS count
            FROM pulse.feedback
            WHERE category IS NOT NULL AND created_at >= %s
            GROUP BY category
        """
        return {row['category']: row['count'] for row in self._fetch_all(query, (since_ms,))}

    def get_latest_report(self) -> Optional[ReportRecord]:
        query = """
            SELECT TOP 1 id, created_at, summary, json
            FROM pulse.reports
            ORDER BY created_at DESC
        """
        rows = self._fetch_all(query)
        if not rows:
            return None
        return ReportRecord.model_validate_json(rows[0]['json'])
