"""Unit tests for the EnrichmentBackfillPipeline class."""
import json
import pytest
from unittest.mock import Mock, patch
from datetime import date, datetime, timezone
from devpulse.agents.enrichment import EnrichmentEngine
from devpulse.models.errors import StorageError
from devpulse.models.schemas import EnrichmentSource, FeedbackItem
from devpulse.pipelines.backfill import EnrichmentBackfillPipeline


LLM_REPLY = json.dumps({"sentiment_score": 0.5, "sentiment_label": "positive", "confidence": 0.8})


@pytest.fixture
def seeded_storage(storage):
    """In-memory storage with three unanalyzed items over two days."""
    storage.insert_feedback([
        FeedbackItem(platform="forum", author="a", content="Gemini is great",
                     timestamp=datetime(2024, 1, 1, 10, tzinfo=timezone.utc)),
        FeedbackItem(platform="social", author="b", content="Quota errors again",
                     timestamp=datetime(2024, 1, 1, 11, tzinfo=timezone.utc)),
        FeedbackItem(platform="technews", author="c", content="Gemini vs GPT-4",
                     timestamp=datetime(2024, 1, 2, 9, tzinfo=timezone.utc)),
    ])
    return storage


@pytest.fixture
def engine(mock_config, generator_factory):
    """Enrichment engine over a stub generator."""
    return EnrichmentEngine(mock_config, generator_factory(default=LLM_REPLY), sleep=Mock())


class TestEnrichmentBackfillPipeline:
    """Test EnrichmentBackfillPipeline class."""

    @patch('devpulse.pipelines.backfill.DailyAggregator')
    @patch('devpulse.pipelines.backfill.EnrichmentEngine')
    @patch('devpulse.pipelines.backfill.ChatAgent')
    @patch('devpulse.pipelines.backfill.PostgresClient')
    def test_pipeline_initialization(
        self, mock_postgres, mock_chat_agent, mock_engine, mock_aggregator, mock_config
    ):
        """Test EnrichmentBackfillPipeline builds its collaborators from config."""
        pipeline = EnrichmentBackfillPipeline(mock_config)

        assert pipeline.config == mock_config
        mock_postgres.assert_called_once_with(mock_config)
        mock_chat_agent.assert_called_once_with(mock_config)
        mock_engine.assert_called_once_with(mock_config, mock_chat_agent.return_value)
        mock_aggregator.assert_called_once_with(mock_postgres.return_value)

    def test_run_with_no_items(self, mock_config, storage, engine):
        """Test pipeline run with nothing to enrich."""
        pipeline = EnrichmentBackfillPipeline(mock_config, storage=storage, enrichment_engine=engine)

        stats = pipeline.run()

        assert stats["total_items"] == 0
        assert stats["enriched"] == 0
        assert stats["errors"] == 0

    def test_run_enriches_and_recomputes(self, mock_config, seeded_storage, engine):
        """Test every unanalyzed item is enriched and each touched day recomputed."""
        pipeline = EnrichmentBackfillPipeline(mock_config, storage=seeded_storage, enrichment_engine=engine)

        stats = pipeline.run(batch_size=2)

        assert stats["total_items"] == 3
        assert stats["enriched"] == 3
        assert stats["llm_enriched"] == 3
        assert stats["days_recomputed"] == 2
        assert seeded_storage.query_unanalyzed() == []
        assert seeded_storage.get_daily_aggregate(date(2024, 1, 1)).average_sentiment == 0.5
        assert seeded_storage.get_daily_aggregate(date(2024, 1, 2)).total_feedback == 1

    def test_run_respects_limit(self, mock_config, seeded_storage, engine):
        """Test limit caps the number of items processed."""
        pipeline = EnrichmentBackfillPipeline(mock_config, storage=seeded_storage, enrichment_engine=engine)

        stats = pipeline.run(limit=1)

        assert stats["total_items"] == 1
        assert len(seeded_storage.query_unanalyzed()) == 2

    def test_call_ceiling_falls_back(self, mock_config, seeded_storage, generator_factory):
        """Test items beyond the call ceiling still get fallback results."""
        mock_config.enrichment_call_ceiling = 1
        engine = EnrichmentEngine(mock_config, generator_factory(default=LLM_REPLY), sleep=Mock())
        pipeline = EnrichmentBackfillPipeline(mock_config, storage=seeded_storage, enrichment_engine=engine)

        stats = pipeline.run()

        assert stats["llm_enriched"] == 1
        assert stats["fallback_enriched"] == 2
        sources = sorted(r.source.value for r in seeded_storage.results)
        assert sources == [EnrichmentSource.FALLBACK_HEURISTIC.value] * 2 + [EnrichmentSource.LLM.value]

    def test_save_errors_counted(self, mock_config, seeded_storage, engine):
        """Test a failing save is counted and the run continues."""
        seeded_storage.insert_enrichment_results = Mock(
            side_effect=[StorageError("db down"), None]
        )
        pipeline = EnrichmentBackfillPipeline(mock_config, storage=seeded_storage, enrichment_engine=engine)

        stats = pipeline.run(batch_size=2)

        assert stats["errors"] == 2
        assert stats["enriched"] == 1
        assert stats["days_recomputed"] == 1
