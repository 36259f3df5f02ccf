"""Unit tests for the PostgreSQL storage client."""
import psycopg2
import pytest
from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch
from devpulse.data_access.postgres_client import PostgresClient, day_bounds
from devpulse.models.errors import StorageError
from devpulse.models.schemas import (
    CollectionRunReport,
    DailyAggregate,
    EnrichmentResult,
    EnrichmentSource,
    FeedbackItem,
    HeartScores,
    PainPoint,
    SentimentLabel,
)
from devpulse.pipelines.dedupe import make_key


@pytest.fixture
def connection():
    """Mock psycopg2 connection whose cursor() is a context manager."""
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    return conn, cursor


@pytest.fixture
def client(mock_config, connection):
    """PostgresClient with psycopg2.connect patched."""
    conn, _ = connection
    with patch('devpulse.data_access.postgres_client.psycopg2.connect', return_value=conn) as mock_connect:
        pg = PostgresClient(mock_config)
        pg.mock_connect = mock_connect
        yield pg


def _item(content="Gemini works"):
    return FeedbackItem(
        platform="forum",
        author="alice",
        content=content,
        url="https://example.com/t/1",
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        metadata={"views": 3},
    )


class TestPostgresClient:
    """Test PostgresClient."""

    def test_connect(self, client, mock_config):
        """Test connection parameters come from config."""
        client.connect()

        client.mock_connect.assert_called_once_with(
            host="localhost",
            port=mock_config.postgres_port,
            database="devpulse",
            user="user",
            password="secret",
            sslmode=mock_config.postgres_sslmode,
        )

    def test_connect_failure(self, mock_config):
        """Test a failed connection raises StorageError."""
        with patch('devpulse.data_access.postgres_client.psycopg2.connect',
                   side_effect=psycopg2.OperationalError("refused")):
            with pytest.raises(StorageError):
                PostgresClient(mock_config).connect()

    def test_insert_feedback_empty(self, client):
        """Test inserting nothing does not touch the database."""
        assert client.insert_feedback([]) == []
        client.mock_connect.assert_not_called()

    @patch('devpulse.data_access.postgres_client.execute_values')
    def test_insert_feedback_returns_ids(self, mock_execute_values, client, connection):
        """Test ids returned by the insert come back in input order."""
        conn, cursor = connection
        mock_execute_values.return_value = [(11,), (12,)]

        ids = client.insert_feedback([_item("one"), _item("two")])

        assert ids == [11, 12]
        args, kwargs = mock_execute_values.call_args
        assert args[0] is cursor
        assert "RETURNING id" in args[1]
        assert args[2][0][:5] == ("forum", "alice", "one", "https://example.com/t/1", datetime(2024, 1, 1, tzinfo=timezone.utc))
        assert kwargs["fetch"] is True
        conn.commit.assert_called_once()

    def test_error_rolls_back(self, client, connection):
        """Test a database error rolls back and raises StorageError."""
        conn, cursor = connection
        cursor.execute.side_effect = psycopg2.Error("boom")

        with pytest.raises(StorageError):
            client.upsert_daily_aggregate(DailyAggregate(date=date(2024, 1, 1)))

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    @patch('devpulse.data_access.postgres_client.execute_values')
    def test_adapter_error_rolls_back(self, mock_execute_values, client, connection):
        """Test a ValueError raised while adapting parameters becomes a StorageError."""
        conn, _ = connection
        mock_execute_values.side_effect = ValueError(
            "A string literal cannot contain NUL (0x00) characters."
        )

        with pytest.raises(StorageError, match="insert_feedback failed"):
            client.insert_feedback([_item()])

        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_query_existing_keys(self, client, connection):
        """Test stored rows are turned into dedup keys."""
        _, cursor = connection
        cursor.fetchall.return_value = [("forum", "alice", "X"), ("forum", "bob", "Y")]
        start, end = day_bounds(date(2024, 1, 1))

        keys = client.query_existing_keys("forum", start, end)

        assert keys == {make_key("forum", "alice", "X"), make_key("forum", "bob", "Y")}
        assert cursor.execute.call_args.args[1] == ("forum", start, end)

    def test_query_unanalyzed(self, client, connection):
        """Test rows without results are mapped to stored items."""
        _, cursor = connection
        cursor.fetchall.return_value = [{
            "id": 5, "platform": "social", "author": "bob", "content": "hi",
            "url": None, "timestamp": datetime(2024, 1, 1, tzinfo=timezone.utc),
            "metadata": {"score": 1}, "collected_at": None,
        }]

        items = client.query_unanalyzed(limit=10)

        assert items[0].id == 5
        assert items[0].url == ""
        assert items[0].metadata == {"score": 1}
        query, params = cursor.execute.call_args.args
        assert "LIMIT %s" in query
        assert params == [10]

    @patch('devpulse.data_access.postgres_client.execute_values')
    def test_insert_enrichment_results(self, mock_execute_values, client):
        """Test results are written with enum values and JSON sub-records."""
        result = EnrichmentResult(
            feedback_id=5,
            sentiment_score=-0.5,
            sentiment_label=SentimentLabel.NEGATIVE,
            confidence=0.7,
            pain_points=[PainPoint(description="slow", severity=7)],
            priority_score=7,
            source=EnrichmentSource.FALLBACK_HEURISTIC,
            model="rule-based-analyzer",
        )

        client.insert_enrichment_results([result])

        row = mock_execute_values.call_args.args[2][0]
        assert row[0] == 5
        assert row[2] == "negative"
        assert row[4] == "question"
        assert row[6].adapted == [{"description": "slow", "category": "other", "severity": 7}]
        assert row[10] == "fallback_heuristic"
        assert row[13] is None

    @patch('devpulse.data_access.postgres_client.execute_values')
    def test_insert_enrichment_heart(self, mock_execute_values, client):
        """Test HEART scores are stored as a JSON object in the last column."""
        result = EnrichmentResult(
            feedback_id=5,
            sentiment_score=0.5,
            sentiment_label=SentimentLabel.POSITIVE,
            confidence=0.7,
            source=EnrichmentSource.LLM,
            heart=HeartScores.from_dimensions(happiness_csat=5, engagement=2),
        )

        client.insert_enrichment_results([result])

        query, values = mock_execute_values.call_args.args[1:3]
        assert "analyzed_at, heart" in query
        assert values[0][13].adapted == {
            "happiness_csat": 5, "engagement": 2, "adoption": 3,
            "retention": 3, "task_success": 3, "overall_score": 3.2,
        }

    def test_get_daily_aggregate(self, client, connection):
        """Test a stored row is returned as a DailyAggregate."""
        _, cursor = connection
        cursor.fetchone.return_value = {
            "date": date(2024, 1, 1), "total_feedback": 10, "average_sentiment": 0.1,
            "active_platforms": 3, "critical_issues": 2, "last_updated": None,
        }

        aggregate = client.get_daily_aggregate(date(2024, 1, 1))

        assert aggregate.total_feedback == 10
        assert aggregate.critical_issues == 2

    def test_get_daily_aggregate_missing(self, client, connection):
        """Test a missing day returns None."""
        _, cursor = connection
        cursor.fetchone.return_value = None

        assert client.get_daily_aggregate(date(2024, 1, 1)) is None

    def test_upsert_daily_aggregate(self, client, connection):
        """Test the upsert conflicts on date."""
        _, cursor = connection

        client.upsert_daily_aggregate(DailyAggregate(date=date(2024, 1, 1), total_feedback=4))

        query, params = cursor.execute.call_args.args
        assert "ON CONFLICT (date) DO UPDATE" in query
        assert params[0] == date(2024, 1, 1)
        assert params[1] == 4

    def test_record_run(self, client, connection):
        """Test the report is stored as JSON."""
        _, cursor = connection
        report = CollectionRunReport(start_time=datetime(2024, 1, 1, tzinfo=timezone.utc), partial=True)

        client.record_run(report)

        params = cursor.execute.call_args.args[1]
        assert params[2] is True
        assert params[3].adapted["partial"] is True

    def test_close(self, client, connection):
        """Test close() closes and forgets the connection."""
        conn, _ = connection
        client.connect()

        client.close()

        conn.close.assert_called_once()
        assert client.conn is None


class TestDayBounds:
    """Test day_bounds()."""

    def test_utc_day(self):
        """Test bounds cover exactly one UTC day."""
        start, end = day_bounds(date(2024, 1, 1))
        assert start == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert end == datetime(2024, 1, 2, tzinfo=timezone.utc)
