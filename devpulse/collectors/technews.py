"""
Tech news collector (Hacker News item API).

Story lists only return ids, so every story and comment is fetched on its own;
the fetch client's rate limiter paces those calls.
"""

from typing import Dict, List, Optional
import logging

from pydantic import ValidationError

from devpulse.collectors.base import BaseCollector
from devpulse.models.errors import ParseError, Result
from devpulse.models.schemas import CollectionWindow, FeedbackItem, Platform
from devpulse.models.sources import TechNewsItem
from devpulse.utils.text import clean_html, contains_any, parse_utc_datetime

logger = logging.getLogger(__name__)

ITEM_URL = "https://news.ycombinator.com/item?id={id}"


class TechNewsCollector(BaseCollector):
    platform = Platform.TECHNEWS

    def __init__(self, config, fetch_client):
        super().__init__(config, fetch_client)
        self.start_run()

    def start_run(self) -> None:
        self._cache: Dict[int, Optional[TechNewsItem]] = {}
        self._seen_stories = set()

    def build_queries(self) -> List[str]:
        return list(self.config.technews_story_lists)

    def run_query(self, list_name: str, window: CollectionWindow) -> Result:
        base_url = self.config.technews_base_url.rstrip("/")
        response = self.fetch(f"{base_url}/{list_name}.json")
        if not response.ok:
            return response
        if not isinstance(response.value, list):
            return Result.failure(ParseError(f"Unexpected payload for {list_name}"))

        items: List[FeedbackItem] = []
        for story_id in response.value[: self.config.technews_max_stories]:
            if self.cancelled():
                break
            if story_id in self._seen_stories:
                continue
            self._seen_stories.add(story_id)

            story = self._get_item(story_id)
            if story is None or not self._is_live_story(story):
                continue
            if not contains_any(f"{story.title or ''} {story.text or ''}", self.config.relevance_terms):
                continue

            created = parse_utc_datetime(story.time)
            if not window.contains(created):
                continue

            item = self._story_to_item(story, created)
            if item is not None:
                items.append(item)
            items.extend(self._collect_comments(story, window))

        return Result.success(items)

    def _get_item(self, item_id: int) -> Optional[TechNewsItem]:
        """Fetch one item; failures are logged and treated as a missing item."""
        if item_id in self._cache:
            return self._cache[item_id]

        base_url = self.config.technews_base_url.rstrip("/")
        response = self.fetch(f"{base_url}/item/{item_id}.json")
        item = None
        if not response.ok:
            logger.warning(f"Failed to fetch technews item {item_id}: {response.error}")
        elif response.value:
            try:
                item = TechNewsItem.model_validate(response.value)
            except ValidationError as e:
                logger.debug(f"Skipping malformed technews item {item_id}: {e}")
        self._cache[item_id] = item
        return item

    @staticmethod
    def _is_live_story(story: TechNewsItem) -> bool:
        return story.type == "story" and not story.deleted and not story.dead

    def _story_to_item(self, story: TechNewsItem, created) -> Optional[FeedbackItem]:
        return self.to_item(
            content=clean_html(story.text) or story.title,
            author=story.by,
            url=story.url or ITEM_URL.format(id=story.id),
            timestamp=created,
            metadata={
                "title": story.title,
                "score": story.score,
                "descendants": story.descendants,
                "story_id": story.id,
                "type": "story",
            },
        )

    def _collect_comments(self, story: TechNewsItem, window: CollectionWindow) -> List[FeedbackItem]:
        comments = []
        for comment_id in story.kids[: self.config.technews_max_comments]:
            if self.cancelled():
                break
            comment = self._get_item(comment_id)
            if comment is None or comment.deleted or comment.dead or not comment.text:
                continue

            text = clean_html(comment.text)
            if not contains_any(text, self.config.relevance_terms):
                continue
            created = parse_utc_datetime(comment.time)
            if not window.contains(created):
                continue

            item = self.to_item(
                content=text,
                author=comment.by,
                url=ITEM_URL.format(id=comment.id),
                timestamp=created,
                metadata={
                    "title": story.title,
                    "score": comment.score,
                    "story_id": story.id,
                    "parent_id": comment.parent,
                    "type": "comment",
                },
            )
            if item is not None:
                comments.append(item)
        return comments
