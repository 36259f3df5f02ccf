# devpulse/data_access/postgres_client.py
"""
PostgreSQL client for feedback items, enrichment results, daily aggregates and
the collection run audit log.
"""

from contextlib import contextmanager
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, Iterator, List, Optional, Set
import logging

import psycopg2
from psycopg2.extras import Json, RealDictCursor, execute_values

from devpulse.config.settings import Settings
from devpulse.models.errors import StorageError
from devpulse.models.schemas import (
    CollectionRunReport,
    DailyAggregate,
    EnrichmentResult,
    FeedbackItem,
    StoredFeedbackItem,
)
from devpulse.pipelines.dedupe import make_key

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS feedback_item (
    id BIGSERIAL PRIMARY KEY,
    platform VARCHAR(32) NOT NULL,
    author VARCHAR(255) NOT NULL,
    content TEXT NOT NULL,
    url TEXT,
    timestamp TIMESTAMPTZ NOT NULL,
    metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    collected_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS feedback_item_platform_ts_idx ON feedback_item(platform, timestamp);
CREATE INDEX IF NOT EXISTS feedback_item_ts_idx ON feedback_item(timestamp);

CREATE TABLE IF NOT EXISTS enrichment_result (
    id BIGSERIAL PRIMARY KEY,
    feedback_id BIGINT NOT NULL REFERENCES feedback_item(id),
    sentiment_score DOUBLE PRECISION NOT NULL,
    sentiment_label VARCHAR(16) NOT NULL,
    confidence DOUBLE PRECISION NOT NULL,
    intent VARCHAR(32),
    summary TEXT,
    pain_points JSONB NOT NULL DEFAULT '[]'::jsonb,
    feature_requests JSONB NOT NULL DEFAULT '[]'::jsonb,
    competitor_mentions JSONB NOT NULL DEFAULT '[]'::jsonb,
    priority_score SMALLINT NOT NULL,
    source VARCHAR(32) NOT NULL,
    model VARCHAR(100),
    analyzed_at TIMESTAMPTZ NOT NULL,
    heart JSONB
);

ALTER TABLE enrichment_result ADD COLUMN IF NOT EXISTS heart JSONB;

CREATE INDEX IF NOT EXISTS enrichment_result_feedback_idx ON enrichment_result(feedback_id, analyzed_at DESC);

CREATE TABLE IF NOT EXISTS daily_aggregate (
    date DATE PRIMARY KEY,
    total_feedback INTEGER NOT NULL,
    average_sentiment DOUBLE PRECISION,
    active_platforms INTEGER NOT NULL,
    critical_issues INTEGER NOT NULL,
    last_updated TIMESTAMPTZ
);

CREATE TABLE IF NOT EXISTS collection_run (
    id BIGSERIAL PRIMARY KEY,
    started_at TIMESTAMPTZ NOT NULL,
    finished_at TIMESTAMPTZ,
    partial BOOLEAN NOT NULL,
    report JSONB NOT NULL
);
"""


def day_bounds(day: date):
    """UTC [start, end) datetimes of a calendar day."""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


class PostgresClient:
    """PostgreSQL client implementing the pipeline's storage operations."""

    def __init__(self, config: Settings):
        self.config = config
        self.conn = None

    def connect(self) -> None:
        """Establish database connection."""
        try:
            self.conn = psycopg2.connect(
                host=self.config.postgres_host,
                port=self.config.postgres_port,
                database=self.config.postgres_database,
                user=self.config.postgres_username,
                password=self.config.postgres_password,
                sslmode=self.config.postgres_sslmode
            )
        except psycopg2.Error as e:
            raise StorageError(f"Could not connect to PostgreSQL: {e}") from e

    def close(self) -> None:
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    @contextmanager
    def _cursor(self, operation: str, dict_rows: bool = False) -> Iterator[Any]:
        """Cursor that commits on success and rolls back + raises StorageError on failure."""
        if not self.conn:
            self.connect()
        try:
            with self.conn.cursor(cursor_factory=RealDictCursor if dict_rows else None) as cursor:
                yield cursor
            self.conn.commit()
        except (psycopg2.Error, ValueError, TypeError) as e:
            logger.error(f"{operation} failed: {e}")
            try:
                self.conn.rollback()
            except psycopg2.Error as rollback_error:
                logger.error(f"Rollback after {operation} failed: {rollback_error}")
            raise StorageError(f"{operation} failed: {e}") from e

    def initialize_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._cursor("initialize_schema") as cursor:
            cursor.execute(SCHEMA_SQL)
        logger.info("Database schema initialized")

    def insert_feedback(self, items: List[FeedbackItem]) -> List[int]:
        """
        Insert feedback items.

        Args:
            items: Items already deduplicated against storage

        Returns:
            Storage ids in input order
        """
        if not items:
            return []

        values = [
            (
                getattr(item.platform, "value", item.platform),
                item.author,
                item.content,
                item.url,
                item.timestamp,
                Json(item.metadata),
            )
            for item in items
        ]
        query = """
            INSERT INTO feedback_item (platform, author, content, url, timestamp, metadata)
            VALUES %s
            RETURNING id
        """
        with self._cursor("insert_feedback") as cursor:
            rows = execute_values(cursor, query, values, page_size=self.config.batch_size, fetch=True)
        return [row[0] for row in rows]

    def query_existing_keys(self, platform: str, start: datetime, end: datetime) -> Set[str]:
        """
        Dedup keys of items already stored for a platform inside a time range.

        Args:
            platform: Platform value
            start: Range start (inclusive)
            end: Range end (inclusive)

        Returns:
            Set of dedup keys
        """
        query = """
            SELECT platform, author, content
            FROM feedback_item
            WHERE platform = %s AND timestamp BETWEEN %s AND %s
        """
        with self._cursor("query_existing_keys") as cursor:
            cursor.execute(query, (platform, start, end))
            rows = cursor.fetchall()
        return {make_key(p, author, content) for p, author, content in rows}

    def query_unanalyzed(self, limit: Optional[int] = None) -> List[StoredFeedbackItem]:
        """Stored items that have no enrichment result yet, oldest first."""
        query = """
            SELECT fi.id, fi.platform, fi.author, fi.content, fi.url, fi.timestamp,
                   fi.metadata, fi.collected_at
            FROM feedback_item fi
            LEFT JOIN enrichment_result er ON er.feedback_id = fi.id
            WHERE er.id IS NULL
            ORDER BY fi.id
        """
        params = []
        if limit:
            query += " LIMIT %s"
            params.append(limit)

        with self._cursor("query_unanalyzed", dict_rows=True) as cursor:
            cursor.execute(query, params)
            rows = cursor.fetchall()

        return [
            StoredFeedbackItem(
                id=row['id'],
                platform=row['platform'],
                author=row['author'],
                content=row['content'],
                url=row.get('url') or "",
                timestamp=row['timestamp'],
                metadata=row.get('metadata') or {},
                collected_at=row.get('collected_at'),
            )
            for row in rows
        ]

    def insert_enrichment_results(self, results: List[EnrichmentResult]) -> None:
        """
        Insert enrichment results. Results are append-only; re-analysis adds a row.

        Args:
            results: EnrichmentResult objects
        """
        if not results:
            return

        values = [
            (
                r.feedback_id,
                r.sentiment_score,
                r.sentiment_label.value,
                r.confidence,
                r.intent.value,
                r.summary,
                Json([p.model_dump(mode="json") for p in r.pain_points]),
                Json([f.model_dump(mode="json") for f in r.feature_requests]),
                Json([c.model_dump(mode="json") for c in r.competitor_mentions]),
                r.priority_score,
                r.source.value,
                r.model,
                r.analyzed_at,
                Json(r.heart.model_dump()) if r.heart else None,
            )
            for r in results
        ]
        query = """
            INSERT INTO enrichment_result (
                feedback_id, sentiment_score, sentiment_label, confidence, intent, summary,
                pain_points, feature_requests, competitor_mentions, priority_score,
                source, model, analyzed_at, heart
            )
            VALUES %s
        """
        with self._cursor("insert_enrichment_results") as cursor:
            execute_values(cursor, query, values, page_size=self.config.batch_size)

    def get_feedback_with_enrichment(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        """
        Items with timestamp in [start, end), each joined with its latest enrichment result.

        Returns:
            Dicts with id, platform, timestamp, sentiment_score, sentiment_label
            (the last two are None for unanalyzed items), ordered by id
        """
        query = """
            SELECT fi.id, fi.platform, fi.timestamp, er.sentiment_score, er.sentiment_label
            FROM feedback_item fi
            LEFT JOIN (
                SELECT DISTINCT ON (feedback_id) feedback_id, sentiment_score, sentiment_label
                FROM enrichment_result
                ORDER BY feedback_id, analyzed_at DESC, id DESC
            ) er ON er.feedback_id = fi.id
            WHERE fi.timestamp >= %s AND fi.timestamp < %s
            ORDER BY fi.id
        """
        with self._cursor("get_feedback_with_enrichment", dict_rows=True) as cursor:
            cursor.execute(query, (start, end))
            return [dict(row) for row in cursor.fetchall()]

    def upsert_daily_aggregate(self, aggregate: DailyAggregate) -> None:
        """Insert or replace the rollup row for a date."""
        query = """
            INSERT INTO daily_aggregate
                (date, total_feedback, average_sentiment, active_platforms, critical_issues, last_updated)
            VALUES (%s, %s, %s, %s, %s, %s)
            ON CONFLICT (date) DO UPDATE
            SET total_feedback = EXCLUDED.total_feedback,
                average_sentiment = EXCLUDED.average_sentiment,
                active_platforms = EXCLUDED.active_platforms,
                critical_issues = EXCLUDED.critical_issues,
                last_updated = EXCLUDED.last_updated
        """
        with self._cursor("upsert_daily_aggregate") as cursor:
            cursor.execute(
                query,
                (
                    aggregate.date,
                    aggregate.total_feedback,
                    aggregate.average_sentiment,
                    aggregate.active_platforms,
                    aggregate.critical_issues,
                    aggregate.last_updated,
                ),
            )

    def get_daily_aggregate(self, day: date) -> Optional[DailyAggregate]:
        query = """
            SELECT date, total_feedback, average_sentiment, active_platforms, critical_issues, last_updated
            FROM daily_aggregate
            WHERE date = %s
        """
        with self._cursor("get_daily_aggregate", dict_rows=True) as cursor:
            cursor.execute(query, (day,))
            row = cursor.fetchone()
        return DailyAggregate(**row) if row else None

    def record_run(self, report: CollectionRunReport) -> None:
        """Append a run report to the audit table."""
        query = """
            INSERT INTO collection_run (started_at, finished_at, partial, report)
            VALUES (%s, %s, %s, %s)
        """
        with self._cursor("record_run") as cursor:
            cursor.execute(
                query,
                (report.start_time, report.end_time, report.partial, Json(report.model_dump(mode="json"))),
            )
