"""
Discussion forum collector (Discourse topic listings).
"""

from typing import List, Optional
import logging

from pydantic import ValidationError

from devpulse.collectors.base import BaseCollector
from devpulse.models.errors import ParseError, Result
from devpulse.models.schemas import CollectionWindow, FeedbackItem, Platform
from devpulse.models.sources import ForumTopic
from devpulse.utils.text import clean_html, parse_utc_datetime

logger = logging.getLogger(__name__)


def endpoint_label(endpoint: str) -> str:
    """'/tags/c/gemini-api/4/bug/l/hot' -> 'gemini-api-bug-hot'."""
    parts = [
        part for part in endpoint.strip("/").split("/")
        if part and not part.isdigit() and part not in ("c", "tags", "tag", "l")
    ]
    return "-".join(parts) or "latest"


class ForumCollector(BaseCollector):
    platform = Platform.FORUM

    def build_queries(self) -> List[str]:
        return list(self.config.forum_endpoints)

    def run_query(self, endpoint: str, window: CollectionWindow) -> Result:
        base_url = self.config.forum_base_url.rstrip("/")
        response = self.fetch(f"{base_url}{endpoint}.json")
        if not response.ok:
            return response

        if not isinstance(response.value, dict):
            return Result.failure(ParseError(f"Unexpected payload for {endpoint}"))
        topics = (response.value.get("topic_list") or {}).get("topics") or []

        items = []
        for raw in topics:
            try:
                topic = ForumTopic.model_validate(raw)
            except ValidationError as e:
                logger.debug(f"Skipping malformed forum topic: {e}")
                continue
            item = self._to_feedback_item(topic, endpoint, window)
            if item is not None:
                items.append(item)
        return Result.success(items)

    def _to_feedback_item(
        self, topic: ForumTopic, endpoint: str, window: CollectionWindow
    ) -> Optional[FeedbackItem]:
        created = parse_utc_datetime(topic.created_at)
        if created is None or not window.contains(created):
            return None

        base_url = self.config.forum_base_url.rstrip("/")
        return self.to_item(
            content=clean_html(topic.excerpt) or topic.title,
            author=topic.last_poster_username,
            url=f"{base_url}/t/{topic.slug}/{topic.id}",
            timestamp=created,
            metadata={
                "title": topic.title,
                "replies": topic.reply_count,
                "views": topic.views,
                "tags": topic.tags,
                "category": endpoint_label(endpoint),
                "category_id": topic.category_id,
                "source_id": str(topic.id),
                "last_posted": topic.last_posted_at,
                "source_endpoint": endpoint,
            },
        )
