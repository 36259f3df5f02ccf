"""
Social link-aggregator collector (Reddit community listings, unauthenticated JSON).
"""

from typing import List, Optional
import logging

from pydantic import ValidationError

from devpulse.collectors.base import BaseCollector
from devpulse.models.errors import ParseError, Result
from devpulse.models.schemas import CollectionWindow, FeedbackItem, Platform
from devpulse.models.sources import SocialPost
from devpulse.utils.text import parse_utc_datetime

logger = logging.getLogger(__name__)


class SocialCollector(BaseCollector):
    platform = Platform.SOCIAL

    def build_queries(self) -> List[str]:
        return list(self.config.social_communities)

    def run_query(self, community: str, window: CollectionWindow) -> Result:
        base_url = self.config.social_base_url.rstrip("/")
        response = self.fetch(
            f"{base_url}/r/{community}/hot.json",
            params={"limit": self.config.social_listing_limit},
        )
        if not response.ok:
            return response

        if not isinstance(response.value, dict):
            return Result.failure(ParseError(f"Unexpected payload for r/{community}"))
        children = (response.value.get("data") or {}).get("children") or []

        items = []
        for child in children:
            try:
                post = SocialPost.model_validate((child or {}).get("data") or {})
            except ValidationError as e:
                logger.debug(f"Skipping malformed post in r/{community}: {e}")
                continue
            item = self._to_feedback_item(post, window)
            if item is not None:
                items.append(item)
        return Result.success(items)

    def _to_feedback_item(self, post: SocialPost, window: CollectionWindow) -> Optional[FeedbackItem]:
        created = parse_utc_datetime(post.created_utc)
        if created is None or not window.contains(created):
            return None

        base_url = self.config.social_base_url.rstrip("/")
        return self.to_item(
            content=post.selftext or post.title,
            author=post.author,
            url=f"{base_url}{post.permalink}" if post.permalink else (post.url or ""),
            timestamp=created,
            metadata={
                "title": post.title,
                "score": post.score,
                "comments": post.num_comments,
                "subreddit": post.subreddit,
                "source_id": post.id,
                "source_url": post.url,
            },
        )
