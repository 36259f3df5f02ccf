"""
Common collector loop: one platform, several queries, per-query fault isolation.
"""

from abc import ABC, abstractmethod
from typing import Any, List, Optional
import threading
import logging

from pydantic import BaseModel, Field

from devpulse.config.settings import Settings
from devpulse.http.fetch_client import FetchClient, FetchRequest
from devpulse.models.errors import NotFoundError, Result
from devpulse.models.schemas import CollectionWindow, FeedbackItem, Platform

logger = logging.getLogger(__name__)


class CollectorResult(BaseModel):
    """Items gathered by one collector plus the errors of failed queries."""
    platform: str
    items: List[FeedbackItem] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    queries_attempted: int = 0
    cancelled: bool = False

    @property
    def success(self) -> bool:
        return self.queries_attempted > 0 and len(self.errors) < self.queries_attempted

    @property
    def error_summary(self) -> Optional[str]:
        if not self.errors:
            return "cancelled" if self.cancelled else None
        return "; ".join(self.errors)


class BaseCollector(ABC):
    """Fetches and normalizes feedback from exactly one platform."""

    platform: Platform

    def __init__(self, config: Settings, fetch_client: FetchClient):
        self.config = config
        self.fetch_client = fetch_client
        self._cancel_event: Optional[threading.Event] = None

    @abstractmethod
    def build_queries(self) -> List[Any]:
        """Return the platform-specific queries to run, in order."""

    @abstractmethod
    def run_query(self, query: Any, window: CollectionWindow) -> Result:
        """Run one query and return a Result holding a list of FeedbackItems."""

    def collect(
        self, window: CollectionWindow, cancel_event: Optional[threading.Event] = None
    ) -> CollectorResult:
        """
        Run every query for this platform and gather items inside the window.

        A failing query is logged and recorded; the remaining queries still run.

        Args:
            window: Recency bounds
            cancel_event: Checked before each query; when set, collection stops

        Returns:
            CollectorResult with items in source order
        """
        result = CollectorResult(platform=self.platform.value)
        self._cancel_event = cancel_event
        self.start_run()
        queries = self.build_queries()
        logger.info(f"Collecting {self.platform.value}: {len(queries)} queries")

        for query in queries:
            if self.cancelled():
                logger.warning(f"{self.platform.value} collection cancelled")
                result.cancelled = True
                break

            result.queries_attempted += 1
            outcome = self.run_query(query, window)

            if isinstance(outcome.error, NotFoundError):
                logger.info(f"{self.platform.value} query {query!r} not found, skipping")
                continue
            if not outcome.ok:
                logger.error(f"{self.platform.value} query {query!r} failed: {outcome.error}")
                result.errors.append(f"{query}: {outcome.error}")
                continue

            logger.info(f"{self.platform.value} query {query!r}: {len(outcome.value)} items")
            result.items.extend(outcome.value)

        logger.info(
            f"{self.platform.value} collection complete: {len(result.items)} items, "
            f"{len(result.errors)} failed queries"
        )
        return result

    def start_run(self) -> None:
        """Hook called at the start of every collect() call."""

    def cancelled(self) -> bool:
        return self._cancel_event is not None and self._cancel_event.is_set()

    def fetch(self, url: str, params: Optional[dict] = None) -> Result:
        return self.fetch_client.fetch(
            FetchRequest(platform=self.platform, url=url, params=params or {})
        )

    def to_item(self, **fields) -> Optional[FeedbackItem]:
        """Build a FeedbackItem, or None when the record is rejected (e.g. empty content)."""
        try:
            return FeedbackItem(platform=self.platform, **fields)
        except ValueError as e:
            logger.debug(f"Rejected {self.platform.value} record: {e}")
            return None
