"""Shared fixtures: mock settings, an in-memory storage fake and a stub text generator."""
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional
from unittest.mock import Mock

import pytest

from devpulse.config.settings import Settings
from devpulse.models.schemas import StoredFeedbackItem
from devpulse.pipelines.dedupe import dedup_key


def make_config(**overrides):
    """Mock(spec=Settings) carrying every default plus test credentials."""
    config = Mock(spec=Settings)
    for name, field in Settings.model_fields.items():
        if not field.is_required():
            setattr(config, name, field.get_default(call_default_factory=True))
    config.openai_api_key = "test-api-key"
    config.postgres_host = "localhost"
    config.postgres_database = "devpulse"
    config.postgres_username = "user"
    config.postgres_password = "secret"
    # Keep tests fast
    config.forum_pacing_seconds = 0.0
    config.social_pacing_seconds = 0.0
    config.technews_pacing_seconds = 0.0
    config.articles_pacing_seconds = 0.0
    config.enrichment_batch_delay_seconds = 0.0
    config.enrichment_retry_delay_seconds = 0.0
    for name, value in overrides.items():
        setattr(config, name, value)
    return config


@pytest.fixture
def config_factory():
    """Build a mock configuration with overrides."""
    return make_config


@pytest.fixture
def mock_config():
    """Create a mock configuration."""
    return make_config()


class InMemoryStorage:
    """Storage fake with the same operations as PostgresClient."""

    def __init__(self):
        self.items: List[StoredFeedbackItem] = []
        self.results = []
        self.aggregates: Dict = {}
        self.runs = []
        self._next_id = 1
        self._lock = threading.Lock()

    def insert_feedback(self, items):
        ids = []
        with self._lock:
            for item in items:
                stored = StoredFeedbackItem(
                    id=self._next_id,
                    collected_at=datetime.now(timezone.utc),
                    **item.model_dump(),
                )
                self.items.append(stored)
                ids.append(stored.id)
                self._next_id += 1
        return ids

    def query_existing_keys(self, platform, start, end):
        return {
            dedup_key(item)
            for item in self.items
            if item.platform == platform and start <= item.timestamp <= end
        }

    def query_unanalyzed(self, limit: Optional[int] = None):
        analyzed = {result.feedback_id for result in self.results}
        pending = [item for item in self.items if item.id not in analyzed]
        return pending[:limit] if limit else pending

    def insert_enrichment_results(self, results):
        self.results.extend(results)

    def get_feedback_with_enrichment(self, start, end):
        latest = {}
        for result in self.results:
            current = latest.get(result.feedback_id)
            if current is None or result.analyzed_at >= current.analyzed_at:
                latest[result.feedback_id] = result
        rows = []
        for item in self.items:
            if not (start <= item.timestamp < end):
                continue
            result = latest.get(item.id)
            rows.append({
                "id": item.id,
                "platform": item.platform,
                "timestamp": item.timestamp,
                "sentiment_score": result.sentiment_score if result else None,
                "sentiment_label": result.sentiment_label.value if result else None,
            })
        return rows

    def upsert_daily_aggregate(self, aggregate):
        self.aggregates[aggregate.date] = aggregate

    def get_daily_aggregate(self, day):
        return self.aggregates.get(day)

    def record_run(self, report):
        self.runs.append(report)


@pytest.fixture
def storage():
    """Create an empty in-memory storage."""
    return InMemoryStorage()


class StubGenerator:
    """Text generator returning queued replies (strings) or raising queued errors."""

    model = "stub-model"

    def __init__(self, replies=None, default=None):
        self.replies = list(replies or [])
        self.default = default
        self.prompts = []
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def generate(self, prompt: str) -> str:
        with self._lock:
            self.prompts.append(prompt)
            reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return reply


@pytest.fixture
def generator_factory():
    """Build a stub generator."""
    return StubGenerator
